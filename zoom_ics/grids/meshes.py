"""
Mesh Module
===========

In-memory grid primitives used to store a single level of the nested hierarchy.

- :py:class:`Mesh`: a rectangular 3D array with an integer offset relative to its parent level.
- :py:class:`MeshBnd`: a :py:class:`Mesh` carrying a uniform ghost margin of ``nbnd`` cells on
  every face. The ghost cells are not part of the logical index range.
- :py:class:`PaddedMesh`: a working grid padded by a (per-axis) convolution margin. The pipeline
  convolves and splices the full padded array and then copies the interior into the hierarchy.
- :py:class:`RefinementMask`: the tri-state refinement mask of a level.

Indexing a mesh with ``[...]`` always addresses the logical (interior) region; the full buffer,
including ghost or margin cells, is available as :py:attr:`Mesh.data`.

Examples
--------

.. code-block:: python

    grid = MeshBnd(2, (16, 16, 16), offset=(4, 4, 4))
    grid[...] = 1.0
    grid.data.shape   # (20, 20, 20)
    grid.mean()       # 1.0
"""
import math
import operator
from typing import Any, Callable, Union

import numpy as np
from numpy.typing import NDArray

from zoom_ics.grids._types import (
    DomainShape,
    DtypeAlias,
    IncompatibleHierarchyError,
    coerce_to_domain_shape,
)
from zoom_ics.geometry._types import Index3, coerce_to_index3


class Mesh:
    """
    A rectangular 3D array positioned inside its parent grid.

    Parameters
    ----------
    size: array-like of int
        Logical extent ``(nx, ny, nz)`` of the mesh.
    offset: array-like of int, optional
        Offset of the mesh relative to its parent, in parent cells. Defaults to ``(0, 0, 0)``.
    dtype: data-type, optional
        The data type of the buffer. Defaults to ``float64``.

    Attributes
    ----------
    data: numpy.ndarray
        The full buffer of the mesh.
    offsets: numpy.ndarray
        Mutable offset vector (see :py:meth:`offset`).
    """

    def __init__(self, size: DomainShape, offset: DomainShape = (0, 0, 0), dtype: DtypeAlias = np.float64):
        self._size: Index3 = coerce_to_domain_shape(size)
        self.offsets: Index3 = coerce_to_index3(offset)
        self.data: NDArray = np.zeros(self._buffer_shape(), dtype=dtype)

    def _buffer_shape(self) -> tuple[int, ...]:
        return tuple(int(n) for n in self._size)

    def _interior_slices(self) -> tuple[slice, ...]:
        return tuple(slice(0, int(n)) for n in self._size)

    @property
    def interior(self) -> NDArray:
        """View of the logical region of the buffer."""
        return self.data[self._interior_slices()]

    @property
    def buffer(self) -> NDArray:
        """The array that noise, kernels and spectral transforms act on (the logical region)."""
        return self.interior

    @property
    def buffer_margins(self) -> Index3:
        """Width of the margin between :py:attr:`buffer` and the logical region, per axis."""
        return np.zeros(3, dtype=np.int64)

    @property
    def shape(self) -> tuple[int, ...]:
        """Logical shape ``(nx, ny, nz)``."""
        return tuple(int(n) for n in self._size)

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    def size(self, idim: int) -> int:
        """Logical extent along ``idim``."""
        return int(self._size[idim])

    def offset(self, idim: int) -> int:
        """Offset along ``idim`` relative to the parent, in parent cells."""
        return int(self.offsets[idim])

    def __getitem__(self, key: Any) -> Any:
        return self.interior[key]

    def __setitem__(self, key: Any, value: Any):
        self.interior[key] = value

    def __str__(self):
        return f"<{self.__class__.__name__} size={self.shape} offset={tuple(self.offsets)}>"

    def __repr__(self):
        return self.__str__()

    def __len__(self) -> int:
        return math.prod(self.shape)

    def zero(self):
        """Set every cell, including ghost or margin cells, to zero."""
        self.data[...] = 0

    def copy(self) -> "Mesh":
        new = self.__class__.__new__(self.__class__)
        new.__dict__.update(self.__dict__)
        new._size = self._size.copy()
        new.offsets = self.offsets.copy()
        new.data = self.data.copy()
        return new

    def sum(self) -> float:
        """Sum over the logical region using an extended precision accumulator."""
        return float(np.sum(self.interior, dtype=np.longdouble))

    def mean(self) -> float:
        """Mean over the logical region using an extended precision accumulator."""
        return float(np.sum(self.interior, dtype=np.longdouble) / len(self))

    def is_compatible(self, other: "Mesh") -> bool:
        """Check that ``other`` has the same logical extent."""
        return self.shape == other.shape

    # ---------------------------------------------------------------------------------------- #
    # Arithmetic                                                                               #
    # ---------------------------------------------------------------------------------------- #
    def _inplace(self, op: Callable, other: Union["Mesh", float]) -> "Mesh":
        if isinstance(other, Mesh):
            if not self.is_compatible(other):
                raise IncompatibleHierarchyError(
                    f"Attempt to operate on incompatible meshes {self} and {other}."
                )
            other = other.interior

        interior = self.interior
        interior[...] = op(interior, other)
        return self

    def __iadd__(self, other):
        return self._inplace(operator.add, other)

    def __isub__(self, other):
        return self._inplace(operator.sub, other)

    def __imul__(self, other):
        return self._inplace(operator.mul, other)

    def __itruediv__(self, other):
        return self._inplace(operator.truediv, other)


class MeshBnd(Mesh):
    """
    A :py:class:`Mesh` with ``nbnd`` ghost cells on every face.

    Parameters
    ----------
    nbnd: int
        Width of the ghost margin.
    size: array-like of int
        Logical extent of the mesh (ghost cells excluded).
    offset: array-like of int, optional
        Offset relative to the parent, in parent cells.
    dtype: data-type, optional
        The data type of the buffer.
    """

    def __init__(self, nbnd: int, size: DomainShape, offset: DomainShape = (0, 0, 0), dtype: DtypeAlias = np.float64):
        if nbnd < 0:
            raise ValueError(f"Ghost margin must be non-negative, got {nbnd}.")
        self.nbnd: int = int(nbnd)
        super().__init__(size, offset=offset, dtype=dtype)

    def _buffer_shape(self) -> tuple[int, ...]:
        return tuple(int(n) + 2 * self.nbnd for n in self._size)

    def _interior_slices(self) -> tuple[slice, ...]:
        return tuple(slice(self.nbnd, self.nbnd + int(n)) for n in self._size)

    def cell(self, i: int, j: int, k: int) -> float:
        """Value of a single cell; indices in ``[-nbnd, n + nbnd)`` reach into the ghost zone."""
        return self.data[i + self.nbnd, j + self.nbnd, k + self.nbnd]

    def __str__(self):
        return f"<MeshBnd size={self.shape} offset={tuple(self.offsets)} nbnd={self.nbnd}>"


class PaddedMesh(Mesh):
    """
    Working grid with a convolution margin on every face.

    The margin can differ between axes. The full padded buffer (:py:attr:`data`) is what the
    noise source fills, the kernel convolves and the spectral coupler splices; the logical region
    is copied into the hierarchy with :py:meth:`copy_unpad`.

    Parameters
    ----------
    size: array-like of int
        Logical extent of the grid.
    offset: array-like of int
        Offset of the logical region relative to the parent level, in parent cells.
    margin: int or array-like of int
        Margin width on each side, per axis.
    """

    def __init__(self, size: DomainShape, offset: DomainShape = (0, 0, 0), margin: Union[int, DomainShape] = 0,
                 dtype: DtypeAlias = np.float64):
        self.margins: Index3 = coerce_to_domain_shape(margin)
        super().__init__(size, offset=offset, dtype=dtype)

    @classmethod
    def with_double_padding(cls, size: DomainShape, offset: DomainShape = (0, 0, 0), dtype: DtypeAlias = np.float64):
        """
        Construct a working grid padded to (at least) twice its logical extent.

        The margin along each axis is ``2 * ceil(n / 4)`` so that it stays even.
        """
        size = coerce_to_domain_shape(size)
        margin = 2 * ((size + 3) // 4)
        return cls(size, offset=offset, margin=margin, dtype=dtype)

    def _buffer_shape(self) -> tuple[int, ...]:
        return tuple(int(n + 2 * m) for n, m in zip(self._size, self.margins))

    def _interior_slices(self) -> tuple[slice, ...]:
        return tuple(slice(int(m), int(m + n)) for n, m in zip(self._size, self.margins))

    def copy(self) -> "PaddedMesh":
        new = super().copy()
        new.margins = self.margins.copy()
        return new

    @property
    def buffer(self) -> NDArray:
        """The full padded buffer."""
        return self.data

    @property
    def buffer_margins(self) -> Index3:
        return self.margins

    def margin(self, idim: int) -> int:
        """Margin width along ``idim``."""
        return int(self.margins[idim])

    def padded_size(self, idim: int) -> int:
        """Extent of the full padded buffer along ``idim``."""
        return int(self.data.shape[idim])

    def copy_unpad(self, target: Mesh):
        """
        Copy the logical region into ``target``.

        Raises
        ------
        IncompatibleHierarchyError
            If ``target`` has a different logical extent.
        """
        if not self.is_compatible(target):
            raise IncompatibleHierarchyError(f"Cannot copy {self} into {target}: extents differ.")
        target[...] = self.interior

    def __str__(self):
        return f"<PaddedMesh size={self.shape} offset={tuple(self.offsets)} margin={tuple(self.margins)}>"


class RefinementMask(Mesh):
    """
    Tri-state refinement mask of one level.

    Values are ``-1`` (outside the refinement region), ``1`` (leaf cell) and ``2`` (refined).
    A freshly allocated mask is filled with ``value``.
    """

    def __init__(self, size: DomainShape, value: int = 0):
        super().__init__(size, dtype=np.int16)
        self.data[...] = value

    def count_flagged(self) -> int:
        return int(np.count_nonzero(self.data))

    def count_notflagged(self) -> int:
        return int(self.data.size - np.count_nonzero(self.data))
