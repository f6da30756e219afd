"""HDF5 access used by the output writers."""
import pathlib as pt
from typing import Any, Union

import h5py


class HDF5FileHandler:
    """
    Thin wrapper around an HDF5 file or group.

    A handler opened from a path owns the file and closes it on :py:meth:`close` (or when leaving
    a ``with`` block). A handler wrapping an existing :py:class:`h5py.Group` never closes anything.

    Parameters
    ----------
    handle: str, pathlib.Path, h5py.File or h5py.Group
        Path of the file to open, or an open file/group to wrap.
    mode: str, optional
        Mode used when opening a path. Defaults to ``"r+"``.
    """

    def __init__(self, handle: Union[h5py.File, h5py.Group, str, pt.Path], mode: str = "r+"):
        self._owns_file = isinstance(handle, (str, pt.Path))
        self.mode = mode

        if self._owns_file:
            self.filename = str(handle)
            self.handle = h5py.File(self.filename, mode=mode)
        elif isinstance(handle, (h5py.File, h5py.Group)):
            self.filename = handle.file.filename
            self.handle = handle
        else:
            raise TypeError(f"Cannot build an HDF5 handler from {type(handle).__name__}.")

    def __getitem__(self, key: str) -> Any:
        return self.handle[key]

    @property
    def attrs(self) -> h5py.AttributeManager:
        return self.handle.attrs

    def write_data(self, dataset_name: str, data: Any, overwrite: bool = True, **kwargs) -> h5py.Dataset:
        """
        Create the dataset ``dataset_name`` from ``data``.

        Parameters
        ----------
        dataset_name: str
            Name of the dataset, relative to the wrapped group.
        data: array_like
            The values to store.
        overwrite: bool, optional
            Replace an existing dataset of the same name. If ``False``, an existing dataset raises
            :py:class:`ValueError`.
        kwargs:
            Forwarded to :py:meth:`h5py.Group.create_dataset` (``compression`` and friends).
        """
        if dataset_name in self.handle:
            if not overwrite:
                raise ValueError(f"Dataset '{dataset_name}' already exists in {self}.")
            del self.handle[dataset_name]

        return self.handle.create_dataset(dataset_name, data=data, **kwargs)

    def create_group(self, name: str, **kwargs) -> "HDF5FileHandler":
        """Create the group ``name`` and return a handler wrapping it."""
        return self.__class__(self.handle.create_group(name, **kwargs), mode=self.mode)

    def close(self):
        if self._owns_file:
            self.handle.close()

    def __enter__(self) -> "HDF5FileHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __str__(self) -> str:
        return f"<HDF5FileHandler: {self.filename}:{self.handle.name}>"

    def __repr__(self) -> str:
        return self.__str__()
