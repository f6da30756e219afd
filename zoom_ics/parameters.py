"""
Run Parameters
==============

The parameters of a single initial-conditions run are organised in sections (``setup``,
``random``, ``kernel``, ``output``) of a YAML document:

.. code-block:: yaml

    setup:
      levelmin: 7
      levelmax: 9
      padding: 8
      region: box
      ref_center: [0.5, 0.5, 0.5]
      ref_extent: [0.2, 0.2, 0.2]
    random:
      seed: 12345

:py:class:`ICParameters` wraps such a document and provides typed, section/key based access.
Required parameters raise :py:class:`~zoom_ics.utilities.exceptions.ConfigurationError` naming the
offending key when they are missing or malformed.
"""
import copy
import pathlib as pt
from typing import Any, Callable, Mapping

from ruamel.yaml import YAML

from zoom_ics.utilities.exceptions import ConfigurationError

_MISSING = object()

_TRUTHY = {"yes", "true", "on", "1"}
_FALSY = {"no", "false", "off", "0"}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUTHY | _FALSY:
        return value.strip().lower() in _TRUTHY
    raise ValueError(f"cannot interpret {value!r} as a boolean")


def _coerce_triple(value: Any) -> tuple:
    if isinstance(value, str):
        value = [v for v in value.replace(" ", "").split(",") if v != ""]
    value = tuple(value)
    if len(value) != 3:
        raise ValueError(f"expected three values, got {len(value)}")
    return value


class ICParameters:
    """Section/key view over the YAML run configuration.

    Parameters
    ----------
    mapping: dict, optional
        Nested mapping ``{section: {key: value}}``. It is deep-copied so that
        :py:meth:`insert_value` never mutates the caller's dictionary.
    path: str or pathlib.Path, optional
        The file the mapping was read from (informational only).
    """

    def __init__(self, mapping: Mapping | None = None, path: pt.Path | str | None = None):
        self._sections: dict = {
            str(k): dict(v) for k, v in copy.deepcopy(dict(mapping or {})).items()
        }
        self.path = pt.Path(path) if path is not None else None

    @classmethod
    def from_yaml(cls, path: pt.Path | str) -> "ICParameters":
        """Load run parameters from a YAML file."""
        yaml = YAML(typ="safe")
        try:
            with open(path, "r") as f:
                mapping = yaml.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Run configuration file {path} does not exist.")

        if mapping is None:
            mapping = {}
        if not isinstance(mapping, Mapping):
            raise ConfigurationError(f"Run configuration file {path} must contain a mapping of sections.")

        return cls(mapping, path=path)

    def __str__(self):
        return f"<ICParameters: {len(self._sections)} sections>"

    def __repr__(self):
        return self.__str__()

    def contains_key(self, section: str, key: str) -> bool:
        return key in self._sections.get(section, {})

    def insert_value(self, section: str, key: str, value: Any):
        """Insert (or overwrite) a value, creating the section if needed."""
        self._sections.setdefault(section, {})[key] = value

    def _convert(self, section: str, key: str, value: Any, dtype: Callable | None) -> Any:
        if dtype is None:
            return value
        try:
            if dtype is bool:
                return _coerce_bool(value)
            if dtype is tuple:
                return _coerce_triple(value)
            return dtype(value)
        except (TypeError, ValueError) as er:
            raise ConfigurationError(
                f"Failed to parse value {value!r} ({er})", f"{section}.{key}"
            )

    def get_value(self, section: str, key: str, dtype: Callable | None = None) -> Any:
        """Fetch a required value.

        Raises
        ------
        ConfigurationError
            If ``section.key`` is not present or cannot be converted to ``dtype``.
        """
        if not self.contains_key(section, key):
            raise ConfigurationError("Missing required parameter", f"{section}.{key}")
        return self._convert(section, key, self._sections[section][key], dtype)

    def get_value_safe(self, section: str, key: str, default: Any = None, dtype: Callable | None = None) -> Any:
        """Fetch an optional value, falling back to ``default`` when absent."""
        if not self.contains_key(section, key):
            return default
        return self._convert(section, key, self._sections[section][key], dtype)

    def get_triple(self, section: str, key: str, dtype: Callable = float, default: Any = _MISSING) -> tuple:
        """Fetch a three-component value (YAML sequence or ``"a, b, c"`` string)."""
        if default is not _MISSING and not self.contains_key(section, key):
            return default
        raw = self.get_value(section, key, dtype=tuple)
        return tuple(self._convert(section, key, v, dtype) for v in raw)

    def as_dict(self) -> dict:
        return copy.deepcopy(self._sections)
