"""Abstract base classes for output writers."""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar

from zoom_ics.geometry.refinement import RefinementHierarchy
from zoom_ics.grids.hierarchy import GridHierarchy
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.exceptions import ConfigurationError
from zoom_ics.utilities.logging import ZoomLogDescriptor, mylog
from zoom_ics.utilities.types import Registry, ensure_ytquantity

output_writer_registry: Registry = Registry()
""":py:class:`~zoom_ics.utilities.types.Registry`: Name-keyed lookup of output writers."""


class OutputWriter(ABC):
    """Abstract base class for output writers.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters. ``output.filename`` is the output path and ``setup.boxlength`` the
        physical side length of the box in ``Mpc``.

    Examples
    --------
    To support a new format, subclass and register the writer:

    .. code-block:: python

        @output_writer_registry.autoregister("my_format")
        class MyWriter(OutputWriter):
            def write_density(self, delta, geometry):
                ...
    """

    name: ClassVar[str] = None
    logger: ClassVar[logging.Logger] = ZoomLogDescriptor()

    def __init__(self, params: ICParameters):
        self.params = params
        self.path: Path = Path(params.get_value_safe("output", "filename", "ics.hdf5", str))
        self.boxlength = ensure_ytquantity(params.get_value_safe("setup", "boxlength", 100.0, float), "Mpc")

    def __str__(self):
        return f"<{self.__class__.__name__} path={self.path}>"

    def __repr__(self):
        return self.__str__()

    @abstractmethod
    def write_density(self, delta: GridHierarchy, geometry: RefinementHierarchy) -> Path:
        """Serialize the density hierarchy and return the path written to."""
        pass

    def finalize(self):
        """Hook called once all fields have been written."""
        self.logger.info("Finished writing %s.", self.path)


def select_output_writer(params: ICParameters) -> OutputWriter:
    """
    Instantiate the writer named by ``output.format`` (default ``"hdf5"``).

    Raises
    ------
    ConfigurationError
        If no writer is registered under that name.
    """
    name = params.get_value_safe("output", "format", "hdf5", str)

    if name not in output_writer_registry:
        raise ConfigurationError(
            f"Unknown output format '{name}'. Available: {list(output_writer_registry.keys())}",
            "output.format",
        )

    mylog.info("Selecting output plug-in: %s", name)
    return output_writer_registry[name](params)
