"""Container types and unit helpers shared across ``zoom_ics``."""
from numbers import Number
from types import SimpleNamespace
from typing import Any, Callable, Iterable, Mapping

from unyt import Unit, unyt_quantity

try:
    from typing import Self  # noqa
except ImportError:
    from typing_extensions import Self as Self  # noqa


class AttrDict(dict):
    """Dictionary whose keys double as attributes; nested mappings are converted recursively."""

    def __init__(self, mapping: Mapping):
        super().__init__(mapping)
        self.__dict__ = self

        for key, value in self.items():
            self[key] = self.__class__.from_nested_dict(value)

    @classmethod
    def from_nested_dict(cls, data: Any) -> Self:
        if isinstance(data, dict):
            return cls({key: cls.from_nested_dict(value) for key, value in data.items()})

        return data


class Registry:
    """Name-keyed table of plugin classes.

    Every plugin family (region generators, noise sources, kernels, output writers) owns one
    registry. Entries are stored as namespaces holding the registered object (``obj``) and any
    metadata passed at registration; indexing the registry returns the object itself.

    Examples
    --------
    >>> plugins = Registry()
    >>> @plugins.autoregister("spam")
    ... class Spam:
    ...     pass
    >>> plugins["spam"] is Spam
    True
    """

    def __init__(self):
        self._entries = AttrDict({})

    def __getitem__(self, name: str) -> Any:
        return self._entries[name].obj

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __str__(self):
        return f"<Registry: {', '.join(self._entries.keys()) or 'empty'}>"

    def __repr__(self):
        return self.__str__()

    @property
    def meta(self) -> AttrDict:
        """The raw entries, i.e. namespaces of ``obj`` plus registration metadata."""
        return self._entries

    def register(self, name: str, obj: Any, overwrite: bool = False, **kwargs):
        """Add ``obj`` under ``name``.

        Parameters
        ----------
        name: str
            The registry key.
        obj: Any
            The object to store.
        overwrite: bool
            Replace an existing entry instead of raising.
        kwargs:
            Metadata stored alongside the object.

        Raises
        ------
        ValueError
            If ``name`` is taken and ``overwrite`` is ``False``.
        """
        if name in self._entries and not overwrite:
            raise ValueError(f"'{name}' is already registered in {self}.")

        self._entries[name] = SimpleNamespace(obj=obj, **kwargs)

    def unregister(self, name: str):
        del self._entries[name]

    def autoregister(self, name: str = None, **meta) -> Callable[[Any], Any]:
        """Class decorator registering the decorated object (under its ``__name__`` by default)."""

        def _decorator(obj: Any) -> Any:
            self.register(obj.__name__ if name is None else name, obj, **meta)
            return obj

        return _decorator

    def keys(self) -> Iterable[str]:
        return self._entries.keys()


def ensure_ytquantity(x: Number | unyt_quantity | tuple, default_units: Unit | str) -> unyt_quantity:
    """Return ``x`` as a :py:class:`unyt.unyt_quantity` expressed in ``default_units``.

    Parameters
    ----------
    x: float, unyt_quantity or tuple
        A bare number (interpreted in ``default_units``), a quantity, or a ``(value, unit)`` pair.
    default_units: Unit or str
        The target units.
    """
    if isinstance(x, unyt_quantity):
        return x.to(default_units)
    if isinstance(x, tuple):
        return unyt_quantity(*x).to(default_units)

    return unyt_quantity(x, default_units)
