"""
Grid Hierarchy Module
=====================

The :py:class:`GridHierarchy` owns one :py:class:`~zoom_ics.grids.meshes.MeshBnd` per level of the
nested grid structure, together with the absolute offset of each level and its refinement mask.

Level Layout
------------

Levels ``0`` through :py:attr:`GridHierarchy.levelmin` are full periodic grids of side
:math:`2^L`. Every level above :py:attr:`GridHierarchy.levelmin` is a patch at twice the linear
resolution of its parent. Each level stores its offset relative to the parent (in parent cells)
on the mesh itself; the hierarchy keeps the absolute offsets (in the level's own cells) and
maintains

.. math::

    {\\bf a}_{L} = 2\\,({\\bf a}_{L-1} + {\\bf o}_{L})

on every mutation.

Refinement Mask
---------------

Once :py:meth:`GridHierarchy.add_refinement_mask` has been called, every level carries a mask with
values ``-1`` (outside the refinement region), ``1`` (leaf) and ``2`` (refined). Before that, the
refinement queries fall back to a purely geometric test against the next finer level's footprint.
"""
from typing import TYPE_CHECKING, Iterator, Optional

import numpy as np
from numpy.typing import NDArray

from zoom_ics.geometry._types import Index3, coerce_to_index3, coerce_to_point3
from zoom_ics.grids._types import (
    MASK_LEAF,
    MASK_OUTSIDE,
    MASK_REFINED,
    DomainShape,
    GeometryError,
    IncompatibleHierarchyError,
    LevelNotFoundError,
    coerce_to_domain_shape,
)
from zoom_ics.grids.meshes import MeshBnd, RefinementMask
from zoom_ics.utilities.logging import ZoomLogDescriptor

if TYPE_CHECKING:
    import logging

    from zoom_ics.geometry.regions import RegionGenerator


class GridHierarchy:
    """
    Collection of rectangular grids representing a multi-level hierarchy.

    Parameters
    ----------
    nbnd: int
        Number of ghost cells added on every face of every level.
    region: :py:class:`~zoom_ics.geometry.regions.RegionGenerator`, optional
        The region generator queried by :py:meth:`add_refinement_mask`.

    Notes
    -----
    The hierarchy starts empty. It is populated with :py:meth:`create_base_hierarchy` and then
    grown one level at a time with :py:meth:`add_patch`. Levels are never removed individually;
    :py:meth:`deallocate` drops the whole hierarchy.
    """

    logger: "logging.Logger" = ZoomLogDescriptor()

    def __init__(self, nbnd: int, region: Optional["RegionGenerator"] = None):
        self.nbnd: int = int(nbnd)
        self.region = region

        self._grids: list[MeshBnd] = []
        self._offabs: list[Index3] = []
        self._masks: list[RefinementMask] = []
        self._levelmin: int = 0

        self.have_refmask: bool = False
        self._mask_shift: NDArray[np.float64] = np.zeros(3)

    def __str__(self):
        if not self._grids:
            return "<GridHierarchy (empty)>"
        return f"<GridHierarchy levels={self.levelmin}-{self.levelmax}>"

    def __repr__(self):
        return self.__str__()

    def __len__(self) -> int:
        return len(self._grids)

    def __iter__(self) -> Iterator[MeshBnd]:
        return iter(self._grids)

    def __getitem__(self, ilevel: int) -> MeshBnd:
        return self.get_grid(ilevel)

    # ---------------------------------------------------------------------------------------- #
    # Level access                                                                             #
    # ---------------------------------------------------------------------------------------- #
    @property
    def levelcount(self) -> int:
        """Number of allocated levels (``levelmax + 1``)."""
        return len(self._grids)

    @property
    def levelmax(self) -> int:
        """The finest level of the hierarchy."""
        return len(self._grids) - 1

    @property
    def levelmin(self) -> int:
        """The finest level that extends over the entire domain."""
        return self._levelmin

    def _check_level(self, ilevel: int):
        if ilevel < 0 or ilevel >= len(self._grids):
            raise LevelNotFoundError(
                f"Attempt to access level {ilevel} but levelmax = {len(self._grids) - 1}."
            )

    def get_grid(self, ilevel: int) -> MeshBnd:
        """
        Return the mesh storing ``ilevel``.

        Raises
        ------
        LevelNotFoundError
            If ``ilevel`` has not been allocated.
        """
        self._check_level(ilevel)
        return self._grids[ilevel]

    def get_mask(self, ilevel: int) -> RefinementMask:
        self._check_level(ilevel)
        return self._masks[ilevel]

    def offset(self, ilevel: int, idim: int) -> int:
        """Offset of ``ilevel`` relative to its parent along ``idim``, in parent cells."""
        return self.get_grid(ilevel).offset(idim)

    def offset_abs(self, ilevel: int, idim: int) -> int:
        """Offset of ``ilevel`` relative to the domain origin along ``idim``, in its own cells."""
        self._check_level(ilevel)
        return int(self._offabs[ilevel][idim])

    def size(self, ilevel: int, idim: int) -> int:
        return self.get_grid(ilevel).size(idim)

    def cell_pos(self, ilevel: int, i: int, j: int, k: int) -> NDArray[np.float64]:
        """
        Position of the center of cell ``(i, j, k)`` of ``ilevel`` in box units.
        """
        self._check_level(ilevel)
        h = 1.0 / 2**ilevel
        ppos = h * (self._offabs[ilevel] + np.array([i, j, k], dtype=np.float64) + 0.5)

        if np.any(ppos >= 1.0):
            self.logger.warning("Cell seems outside domain! : (%f, %f, %f)", *ppos)

        return ppos

    def grid_bbox(self, ilevel: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """The ``(left, right)`` corners of ``ilevel`` in box units."""
        self._check_level(ilevel)
        h = 1.0 / 2**ilevel
        left = h * self._offabs[ilevel].astype(np.float64)
        right = left + h * np.asarray(self._grids[ilevel].shape, dtype=np.float64)
        return left, right

    # ---------------------------------------------------------------------------------------- #
    # Construction                                                                             #
    # ---------------------------------------------------------------------------------------- #
    def create_base_hierarchy(self, lmax: int):
        """
        Create levels ``0..lmax``, each a zeroed full-domain grid of side ``2**level``.

        The minimum level is set to ``lmax``.
        """
        self.deallocate()

        for ilevel in range(lmax + 1):
            n = 2**ilevel
            self._grids.append(MeshBnd(self.nbnd, (n, n, n)))
            self._offabs.append(np.zeros(3, dtype=np.int64))

        self._levelmin = lmax

        for ilevel in range(lmax + 1):
            self._masks.append(RefinementMask(self._grids[ilevel].shape, value=int(ilevel != lmax)))

        self.logger.debug("[NEW ] Created base hierarchy with levels 0-%d.", lmax)

    def add_patch(self, offset: DomainShape, size: DomainShape):
        """
        Append a new finest level.

        Parameters
        ----------
        offset: array-like of int
            Offset of the new patch in cells of the current finest level.
        size: array-like of int
            Extent of the new patch in its own cells.
        """
        if not self._grids:
            raise LevelNotFoundError("Cannot add a patch to an empty hierarchy.")

        offset, size = coerce_to_index3(offset), coerce_to_domain_shape(size)

        self._grids.append(MeshBnd(self.nbnd, size, offset=offset))
        self._offabs.append(2 * (self._offabs[-1] + offset))
        self._masks.append(RefinementMask(size, value=0))

        self.logger.debug(
            "[NEW ] Added patch on level %d: offset=%s, size=%s.", self.levelmax, offset, size
        )

    def cut_patch(self, ilevel: int, offset_abs: DomainShape, size: DomainShape, enforce_coarse_mean: bool):
        """
        Crop a level to a new region.

        Parameters
        ----------
        ilevel: int
            The level to cut.
        offset_abs: array-like of int
            New absolute offset of the level, in its own cells.
        size: array-like of int
            New extent of the level.
        enforce_coarse_mean: bool
            If ``True``, the cut patch is shifted by a constant so that its mean equals the mean of
            the coarser level over the same footprint. If ``False``, the coarser level's footprint is
            shifted instead to match the patch.

        Raises
        ------
        GeometryError
            If the shift is not a multiple of two cells or the new region is not contained in the
            old one.

        Notes
        -----
        The relative offset of ``ilevel + 1`` is adjusted so that its absolute position is unchanged.
        A refinement mask that has already been built is recomputed.
        """
        old = self.get_grid(ilevel)
        offset_abs, size = coerce_to_index3(offset_abs), coerce_to_domain_shape(size)

        dx = offset_abs - self._offabs[ilevel]
        if np.any(dx % 2 != 0):
            raise GeometryError(f"Cannot cut level {ilevel} by an odd number of cells {dx}.")
        if np.any(dx < 0) or np.any(dx + size > np.asarray(old.shape)):
            raise GeometryError(
                f"Cut region offset_abs={offset_abs}, size={size} on level {ilevel} is not contained in {old}."
            )

        new = MeshBnd(self.nbnd, size, offset=old.offsets + dx // 2, dtype=old.dtype)
        new[...] = old[dx[0]:dx[0] + size[0], dx[1]:dx[1] + size[1], dx[2]:dx[2] + size[2]]
        finemean = new.mean()

        self._grids[ilevel] = new
        self._offabs[ilevel] = self._offabs[ilevel] + dx

        if ilevel < self.levelmax:
            self._grids[ilevel + 1].offsets -= dx

        if ilevel > self._levelmin:
            footprint = self._coarse_footprint(ilevel)
            coarsemean = float(np.sum(footprint, dtype=np.longdouble) / footprint.size)

            if enforce_coarse_mean:
                new += coarsemean - finemean
            else:
                footprint -= coarsemean - finemean

            self.logger.info(
                "[CUT ] Level %d : corrected patch overlap mean value by %f", ilevel, coarsemean - finemean
            )

        self._masks[ilevel] = RefinementMask(size, value=0)
        if self.have_refmask:
            self.add_refinement_mask(self._mask_shift)

        self.find_new_levelmin()

    def _coarse_footprint(self, ilevel: int) -> NDArray:
        grid = self._grids[ilevel]
        coarse = self._grids[ilevel - 1]
        lo = grid.offsets
        hi = lo + np.asarray(grid.shape) // 2

        if np.any(lo < 0) or np.any(hi > np.asarray(coarse.shape)):
            raise GeometryError(f"Level {ilevel} extends beyond its parent level.")

        return coarse[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]]

    def find_new_levelmin(self):
        """Set :py:attr:`levelmin` to the finest level that extends over the whole domain."""
        for ilevel, grid in enumerate(self._grids):
            n = 2**ilevel
            if all(s == n for s in grid.shape):
                self._levelmin = ilevel

    # ---------------------------------------------------------------------------------------- #
    # Refinement mask                                                                          #
    # ---------------------------------------------------------------------------------------- #
    def add_refinement_mask(self, shift=(0.0, 0.0, 0.0)):
        """
        Build the refinement mask of every level from the region generator.

        Parameters
        ----------
        shift: array-like of float
            Coordinate shift (box units) applied to cell positions before they are handed to the
            region generator. This undoes the domain re-centering of the geometry.

        Notes
        -----
        The region is sampled once per block of ``2x2x2`` cells, at the center of its first cell.
        The coarsest level is always inside the mask. Afterwards, every coarse cell with at least
        one child inside the mask is marked refined and all eight of its children become leaves.
        """
        self.have_refmask = False
        self._mask_shift = coerce_to_point3(shift)

        if self._levelmin == self.levelmax:
            return

        if self.region is None:
            raise GeometryError("Cannot build a refinement mask without a region generator.")

        for ilevel in range(self.levelmax, self._levelmin - 1, -1):
            shape = np.asarray(self._grids[ilevel].shape)
            dx = 1.0 / 2**ilevel

            if ilevel == self._levelmin:
                inside = np.ones(tuple((shape + 1) // 2), dtype=bool)
            else:
                axes = [
                    (self._offabs[ilevel][idim] + np.arange(0, shape[idim], 2)) * dx
                    + 0.5 * dx
                    + self._mask_shift[idim]
                    for idim in range(3)
                ]
                xq = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1)
                inside = self.region.query_points(xq.reshape(-1, 3), ilevel).reshape(xq.shape[:-1])

            block_values = np.where(inside, MASK_LEAF, MASK_OUTSIDE).astype(np.int16)
            for axis in range(3):
                block_values = np.repeat(block_values, 2, axis=axis)

            mask = RefinementMask(shape, value=0)
            mask.data[...] = block_values[: shape[0], : shape[1], : shape[2]]
            self._masks[ilevel] = mask

        self.have_refmask = True

        for ilevel in range(self._levelmin, self.levelmax):
            self._flag_refined(ilevel)

    def _flag_refined(self, ilevel: int):
        coarse = self._masks[ilevel].data
        fine = self._masks[ilevel + 1].data
        off = self._grids[ilevel + 1].offsets

        nblocks = np.asarray(fine.shape) // 2
        lo = np.maximum(off, 0)
        hi = np.minimum(off + nblocks, np.asarray(coarse.shape))
        if np.any(hi <= lo):
            return

        # Children of coarse cells [lo, hi) in fine cell units.
        flo, fhi = 2 * (lo - off), 2 * (hi - off)
        children = fine[flo[0]:fhi[0], flo[1]:fhi[1], flo[2]:fhi[2]]
        nb = (hi - lo)

        flagged = (children.reshape(nb[0], 2, nb[1], 2, nb[2], 2) > 0).any(axis=(1, 3, 5))

        coarse[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]][flagged] = MASK_REFINED

        expanded = flagged
        for axis in range(3):
            expanded = np.repeat(expanded, 2, axis=axis)
        children[expanded] = MASK_LEAF

    def refined_cells(self, ilevel: int) -> NDArray[np.bool_]:
        """Boolean array marking the refined cells of ``ilevel`` (see :py:meth:`is_refined`)."""
        grid = self.get_grid(ilevel)

        if self.have_refmask:
            return self._masks[ilevel].data == MASK_REFINED

        refined = np.zeros(grid.shape, dtype=bool)
        if ilevel == self.levelmax:
            return refined

        child = self._grids[ilevel + 1]
        lo = np.maximum(child.offsets, 0)
        hi = np.minimum(child.offsets + np.asarray(child.shape) // 2, np.asarray(grid.shape))
        if np.all(hi > lo):
            refined[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]] = True
        return refined

    def cells_in_mask(self, ilevel: int) -> NDArray[np.bool_]:
        """Boolean array marking the cells of ``ilevel`` inside the refinement region."""
        grid = self.get_grid(ilevel)

        if self.have_refmask:
            return self._masks[ilevel].data >= 0

        return np.ones(grid.shape, dtype=bool)

    def is_refined(self, ilevel: int, i: int, j: int, k: int) -> bool:
        """
        Check whether cell ``(i, j, k)`` of ``ilevel`` exists on the next finer level.

        Without a refinement mask the cell counts as refined if it lies under the footprint of
        the next finer level.
        """
        self._check_level(ilevel)

        if self.have_refmask:
            return bool(self._masks[ilevel].data[i, j, k] == MASK_REFINED)

        if ilevel == self.levelmax:
            return False

        child = self._grids[ilevel + 1]
        for idim, idx in enumerate((i, j, k)):
            if idx < child.offset(idim) or idx >= child.offset(idim) + child.size(idim) // 2:
                return False

        return True

    def is_in_mask(self, ilevel: int, i: int, j: int, k: int) -> bool:
        """Check whether cell ``(i, j, k)`` of ``ilevel`` lies inside the refinement region."""
        self._check_level(ilevel)

        if self.have_refmask:
            return bool(self._masks[ilevel].data[i, j, k] >= 0)

        return True

    def count_leaf_cells(self, lmin: Optional[int] = None, lmax: Optional[int] = None) -> int:
        """
        Count the cells between ``lmin`` and ``lmax`` that are in the mask and not refined.

        Defaults to the range :py:attr:`levelmin` to :py:attr:`levelmax`.
        """
        lmin = self.levelmin if lmin is None else lmin
        lmax = self.levelmax if lmax is None else lmax

        return int(
            sum(
                np.count_nonzero(self.cells_in_mask(ilevel) & ~self.refined_cells(ilevel))
                for ilevel in range(lmax, lmin - 1, -1)
            )
        )

    # ---------------------------------------------------------------------------------------- #
    # Whole-hierarchy operations                                                               #
    # ---------------------------------------------------------------------------------------- #
    def zero(self):
        """Set every level to zero."""
        for grid in self._grids:
            grid.zero()

    def deallocate(self):
        """Drop all levels and masks."""
        self._grids.clear()
        self._offabs.clear()
        self._masks.clear()
        self._levelmin = 0
        self.have_refmask = False

    def copy(self) -> "GridHierarchy":
        """Deep copy of all levels and masks. The region generator is shared."""
        new = self.__class__(self.nbnd, region=self.region)
        new._grids = [grid.copy() for grid in self._grids]
        new._offabs = [off.copy() for off in self._offabs]
        new._masks = [mask.copy() for mask in self._masks]
        new._levelmin = self._levelmin
        new.have_refmask = self.have_refmask
        new._mask_shift = self._mask_shift.copy()
        return new

    def is_consistent(self, other: "GridHierarchy") -> bool:
        """Check that ``other`` has the same levels, extents and offsets."""
        if other.levelmax != self.levelmax or other.levelmin != self.levelmin:
            return False

        for ilevel in range(self.levelmin, self.levelmax + 1):
            mine, theirs = self._grids[ilevel], other._grids[ilevel]
            if mine.shape != theirs.shape or np.any(mine.offsets != theirs.offsets):
                return False

        return True

    def _inplace(self, name: str, other):
        if isinstance(other, GridHierarchy):
            if not self.is_consistent(other):
                raise IncompatibleHierarchyError(
                    f"GridHierarchy.{name} : attempt to operate on incompatible data ({self}, {other})."
                )
            for grid, other_grid in zip(self._grids, other._grids):
                getattr(grid, name)(other_grid)
        else:
            for grid in self._grids:
                getattr(grid, name)(other)
        return self

    def __iadd__(self, other):
        return self._inplace("__iadd__", other)

    def __isub__(self, other):
        return self._inplace("__isub__", other)

    def __imul__(self, other):
        return self._inplace("__imul__", other)

    def __itruediv__(self, other):
        return self._inplace("__itruediv__", other)
