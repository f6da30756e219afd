"""
Region Generators
=================

A region generator decides which part of the simulation volume is to be refined. The geometry
resolver only needs the axis-aligned bounding box of the region, whereas the refinement mask of a
:py:class:`~zoom_ics.grids.hierarchy.GridHierarchy` queries individual cell centers.

Region generators are plugins: subclasses of :py:class:`RegionGenerator` are registered by name in
:py:data:`region_generator_registry` and selected from the ``setup.region`` run parameter via
:py:func:`select_region_generator`.

All coordinates are in units of the box length, i.e. the simulation volume is ``[0, 1)^3`` with
periodic topology.
"""
from abc import ABC, abstractmethod
from typing import ClassVar, Optional

import numpy as np
from numpy.typing import NDArray

from zoom_ics.geometry._types import Index3, coerce_to_index3, coerce_to_point3, periodic_delta
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.exceptions import ConfigurationError
from zoom_ics.utilities.logging import mylog
from zoom_ics.utilities.types import Registry

region_generator_registry: Registry = Registry()
""":py:class:`~zoom_ics.utilities.types.Registry`: Name-keyed lookup of region generator classes."""


class RegionGenerator(ABC):
    """
    Abstract base class for region generators.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters. ``setup.levelmin`` and ``setup.levelmax`` are required.
    """

    name: ClassVar[str] = None

    def __init__(self, params: ICParameters):
        self.params = params
        self.levelmin: int = params.get_value("setup", "levelmin", int)
        self.levelmax: int = params.get_value("setup", "levelmax", int)

    def __str__(self):
        return f"<{self.__class__.__name__} levels={self.levelmin}-{self.levelmax}>"

    def __repr__(self):
        return self.__str__()

    @abstractmethod
    def get_bounding_box(self, level: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return the ``(left, right)`` corners of the region's bounding box at ``level``."""
        pass

    @abstractmethod
    def query_point(self, x: NDArray[np.float64], level: int) -> bool:
        """Return ``True`` if the point ``x`` lies in the region at ``level``."""
        pass

    def query_points(self, x: NDArray[np.float64], level: int) -> NDArray[np.bool_]:
        """Vectorized :py:meth:`query_point` over an ``(N, 3)`` array of points."""
        x = np.atleast_2d(x)
        return np.fromiter((self.query_point(p, level) for p in x), dtype=bool, count=len(x))

    @abstractmethod
    def is_grid_dim_forced(self) -> Optional[Index3]:
        """Return the forced fine-grid dimensions if the region imposes them, otherwise ``None``."""
        pass

    @abstractmethod
    def get_center(self) -> NDArray[np.float64]:
        pass

    @abstractmethod
    def update_bounding_box(self, left: NDArray[np.float64], right: NDArray[np.float64]):
        """Replace the region's bounding box with the one the geometry resolver actually uses."""
        pass


@region_generator_registry.autoregister("box")
class BoxRegion(RegionGenerator):
    """
    Rectangular refinement region.

    Recognized ``setup`` parameters:

    - ``ref_offset`` or ``ref_center``: lower corner or center of the box.
    - ``ref_extent`` or ``ref_dims``: box extent (box units) or forced number of finest-level cells.
    - ``padding``: number of padding cells between levels (required for zooms).
    - ``region_extra_padding``: if true, points within ``padding + 1`` finest-level cells of the box
      boundary are excluded by :py:meth:`query_point` and the bounding box is enlarged accordingly.

    For unigrid runs (``levelmin == levelmax``) the region is the whole box.
    """

    name = "box"

    def __init__(self, params: ICParameters):
        super().__init__(params)

        self._forced_dims: Optional[Index3] = None
        self.do_extra_padding = False
        self.padding = 0
        self.padding_fine = 0.0

        if self.levelmin == self.levelmax:
            self.x0ref = np.zeros(3)
            self.lxref = np.ones(3)
            self.xcref = np.full(3, 0.5)
            return

        self.padding = params.get_value("setup", "padding", int)

        if not (params.contains_key("setup", "ref_offset") or params.contains_key("setup", "ref_center")):
            raise ConfigurationError(
                "Found levelmin!=levelmax but neither ref_offset nor ref_center was specified.",
                "setup.ref_offset",
                "setup.ref_center",
            )
        if not (params.contains_key("setup", "ref_extent") or params.contains_key("setup", "ref_dims")):
            raise ConfigurationError(
                "Found levelmin!=levelmax but neither ref_extent nor ref_dims was specified.",
                "setup.ref_extent",
                "setup.ref_dims",
            )

        if params.contains_key("setup", "ref_extent"):
            self.lxref = coerce_to_point3(params.get_triple("setup", "ref_extent", float))
        else:
            self._forced_dims = coerce_to_index3(params.get_triple("setup", "ref_dims", int))
            self.lxref = self._forced_dims / float(2**self.levelmax)

        if params.contains_key("setup", "ref_center"):
            self.xcref = coerce_to_point3(params.get_triple("setup", "ref_center", float))
            self.x0ref = np.mod(self.xcref - 0.5 * self.lxref + 1.0, 1.0)
        else:
            self.x0ref = coerce_to_point3(params.get_triple("setup", "ref_offset", float))
            self.xcref = np.mod(self.x0ref + 0.5 * self.lxref, 1.0)

        self.do_extra_padding = params.get_value_safe("setup", "region_extra_padding", False, bool)
        if self.do_extra_padding:
            self.padding_fine = (self.padding + 1) / float(2**self.levelmax)

        mylog.debug("Box region: left=%s extent=%s center=%s", self.x0ref, self.lxref, self.xcref)

    def get_bounding_box(self, level: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        pad = (self.padding + 1) / float(2**level) if self.do_extra_padding else 0.0
        return self.x0ref - pad, self.x0ref + self.lxref + pad

    def update_bounding_box(self, left: NDArray[np.float64], right: NDArray[np.float64]):
        left, right = coerce_to_point3(left), coerce_to_point3(right)
        dx = periodic_delta(right - left)
        self.x0ref = left
        self.lxref = dx
        self.xcref = left + 0.5 * dx

    def query_point(self, x: NDArray[np.float64], level: int) -> bool:
        return bool(self.query_points(np.asarray(x, dtype=np.float64)[None, :], level)[0])

    def query_points(self, x: NDArray[np.float64], level: int) -> NDArray[np.bool_]:
        x = np.atleast_2d(np.asarray(x, dtype=np.float64))
        if not self.do_extra_padding:
            return np.ones(len(x), dtype=bool)

        dx = periodic_delta(x - self.x0ref[None, :])
        return np.all(
            (dx >= self.padding_fine) & (dx <= self.lxref[None, :] - self.padding_fine),
            axis=1,
        )

    def is_grid_dim_forced(self) -> Optional[Index3]:
        return None if self._forced_dims is None else self._forced_dims.copy()

    def get_center(self) -> NDArray[np.float64]:
        return self.xcref.copy()


def select_region_generator(params: ICParameters) -> RegionGenerator:
    """
    Instantiate the region generator named by ``setup.region`` (default ``"box"``).

    Raises
    ------
    ConfigurationError
        If no region generator is registered under that name.
    """
    name = params.get_value_safe("setup", "region", "box", str)

    if name not in region_generator_registry:
        raise ConfigurationError(
            f"Unknown region generator '{name}'. Available: {list(region_generator_registry.keys())}",
            "setup.region",
        )

    mylog.info("Selecting region generator plug-in: %s", name)
    return region_generator_registry[name](params)
