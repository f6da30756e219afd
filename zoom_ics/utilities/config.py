"""Package-level configuration of ``zoom_ics`` (logging and user preferences).

The settings live in ``zoom_ics/bin/config.yaml`` and are exposed through :py:data:`zicparams`.
Run parameters of an individual initial conditions run are handled separately by
:py:class:`zoom_ics.parameters.ICParameters`.
"""
import operator
import pathlib as pt
from functools import reduce
from typing import Any, Collection, Iterable, Mapping

import ruamel.yaml
from unyt import Unit, unyt_array, unyt_quantity

from zoom_ics.utilities.types import AttrDict

config_directory: pt.Path = pt.Path(__file__).parents[1] / "bin" / "config.yaml"
""":py:class:`pathlib.Path`: Location of the package configuration file."""

# Round-trip loader so that comments survive set_param; unit types may appear as values.
yaml = ruamel.yaml.YAML()
for _cls in (unyt_array, unyt_quantity, Unit):
    yaml.register_class(_cls)


class YAMLConfiguration:
    """Lazily loaded view of a YAML configuration file.

    Values are reached through attribute access on :py:attr:`config` or by indexing with a
    tuple (or dotted string) of keys. Attribute assignments on :py:attr:`config` are runtime
    overrides; they last until :py:meth:`reload` and are never written to disk.

    Parameters
    ----------
    path: str or pathlib.Path
        The YAML file backing the configuration.

    Examples
    --------
    >>> zicparams["logging", "mylog", "level"] # doctest: +SKIP
    'INFO'
    >>> zicparams.config.system.preferences.disable_progress_bars = True # doctest: +SKIP
    """

    def __init__(self, path: pt.Path | str):
        self.path: pt.Path = pt.Path(path)
        self._config: AttrDict | None = None

    def __getitem__(self, item: str | Collection[str]) -> Any:
        keys = item.split(".") if isinstance(item, str) else item
        return getFromDict(self.config, keys)

    def __str__(self):
        return f"<YAMLConfiguration: {self.path}>"

    def __repr__(self):
        return self.__str__()

    @property
    def config(self) -> AttrDict:
        if self._config is None:
            self._config = AttrDict(self.load())

        return self._config

    @classmethod
    def load_from_path(cls, path: pt.Path | str) -> dict:
        try:
            with open(path, "r") as cf:
                return yaml.load(cf)
        except FileNotFoundError as er:
            raise FileNotFoundError(f"Configuration file {path} is missing: {er}") from er

    def load(self) -> dict:
        return self.load_from_path(self.path)

    def reload(self):
        """Drop runtime overrides; the next access re-reads the file."""
        self._config = None

    @classmethod
    def set_on_disk(cls, path: pt.Path | str, name: str | Collection[str], value: Any):
        """Write ``value`` under the key path ``name`` into the file at ``path``."""
        data = cls.load_from_path(path)
        keys = name.split(".") if isinstance(name, str) else list(name)

        setInDict(data, keys, value)

        with open(path, "w") as cf:
            yaml.dump(data, cf)

    def set_param(self, name: str | Collection[str], value: Any):
        """Persist a value to this configuration's file and reload."""
        self.set_on_disk(self.path, name, value)
        self.reload()


zicparams: YAMLConfiguration = YAMLConfiguration(config_directory)
""":py:class:`YAMLConfiguration`: The ``zoom_ics`` package configuration."""


def getFromDict(dataDict: Mapping, mapList: Iterable[str]) -> Any:
    """Follow the keys in ``mapList`` through the nested mapping ``dataDict``."""
    return reduce(operator.getitem, mapList, dataDict)


def setInDict(dataDict: Mapping, mapList: list[str], value: Any):
    """Set the entry at the key path ``mapList`` of the nested mapping ``dataDict``."""
    getFromDict(dataDict, mapList[:-1])[mapList[-1]] = value
