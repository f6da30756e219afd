r"""
Refinement Geometry
===================

This module resolves the geometry of the nested grid hierarchy: for every level between
``levelmin`` and ``levelmax`` it determines the extent of the level's grid and its offset, both
relative to the parent level (in parent cells) and absolute (in the level's own cells, measured
from the domain origin).

Mathematical Formalism
----------------------

Level :math:`L` has a linear resolution of :math:`2^L` cells across the unit box. For every level
:math:`L > L_{\rm min}` the relative offset :math:`{\bf o}_L` and the absolute offset
:math:`{\bf a}_L` satisfy

.. math::

    {\bf a}_L = 2\,{\bf a}_{L-1} + 2\,{\bf o}_L,

which is enforced by a final forward sweep after all levels have been placed.

Algorithm
---------

1. The refinement region's bounding box (from the region generator) is optionally shifted so that
   its center lies in the middle of the box, away from the periodic boundary. The shift is a
   multiple of a shift unit compatible with the noise generator's ``base_unit``.
2. The box is expressed in finest-level cells and snapped outwards according to the alignment
   mode (``align_top``, ``preserve_dims`` or the default ``gridding_unit`` alignment) and the
   optional ``blocking_factor``.
3. Walking from ``levelmax - 1`` down to ``levelmin + 1`` the box is halved, padded by ``padding``
   cells on every side and snapped again. ``force_equal_extent`` turns every box into a cube by
   symmetric enlargement of the shorter axes.
4. Relative offsets are derived, absolute offsets are reconstructed by the forward sweep, and the
   result is validated (non-empty boxes, zoom levels no larger than half the box).
"""
import copy
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from zoom_ics.geometry._types import Index3, coerce_to_index3
from zoom_ics.geometry.regions import RegionGenerator
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.exceptions import ConfigurationError, GeometryError, LevelNotFoundError
from zoom_ics.utilities.logging import mylog


class LevelGeometry(NamedTuple):
    """Resolved geometry of a single level."""

    level: int
    offset: Index3
    offset_abs: Index3
    size: Index3


def _cmod(a, b):
    # Remainder with the sign of the dividend (truncated division).
    return np.fmod(a, b)


def _ctrunc(x) -> NDArray[np.int64]:
    return np.trunc(x).astype(np.int64)


def _cdiv(a, b) -> NDArray[np.int64]:
    return (a - _cmod(a, b)) // b


class RefinementHierarchy:
    """
    Level geometry resolver.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters (``setup`` and ``random`` sections).
    region: :py:class:`~zoom_ics.geometry.regions.RegionGenerator`
        The region generator supplying the refinement bounding box. It is updated with the
        bounding box that is actually realised.

    Raises
    ------
    ConfigurationError
        If alignment parameters are incompatible with each other or with a forced grid size.
    GeometryError
        If a level's box is degenerate or a zoom level spans more than half the box.
    """

    def __init__(self, params: ICParameters, region: RegionGenerator):
        self.params = params
        self.region = region

        # Query the parameter data we need.
        self.levelmin: int = params.get_value("setup", "levelmin", int)
        self.levelmax: int = params.get_value("setup", "levelmax", int)
        self.levelmin_tf: int = params.get_value_safe("setup", "levelmin_TF", self.levelmin, int)
        self.align_top: bool = params.get_value_safe("setup", "align_top", False, bool)
        self.preserve_dims: bool = params.get_value_safe("setup", "preserve_dims", False, bool)
        self.equal_extent: bool = params.get_value_safe("setup", "force_equal_extent", False, bool)
        self.blocking_factor: int = params.get_value_safe("setup", "blocking_factor", 0, int)
        self.gridding_unit: int = params.get_value_safe("setup", "gridding_unit", 2, int)
        self.margin: int = params.get_value_safe("setup", "convolution_margin", 4, int)
        self.padding: int = params.get_value_safe("setup", "padding", 8, int)

        no_shift = params.get_value_safe("setup", "no_shift", False, bool)
        force_shift = params.get_value_safe("setup", "force_shift", False, bool)

        if self.levelmax < self.levelmin:
            raise ConfigurationError(
                f"levelmax ({self.levelmax}) must not be smaller than levelmin ({self.levelmin}).",
                "setup.levelmin",
                "setup.levelmax",
            )
        if not (self.levelmin <= self.levelmin_tf <= self.levelmax):
            raise ConfigurationError(
                f"levelmin_TF ({self.levelmin_tf}) must lie in [levelmin, levelmax].",
                "setup.levelmin_TF",
            )

        if self.gridding_unit != 2 and self.blocking_factor == 0:
            self.blocking_factor = self.gridding_unit
        elif self.gridding_unit != 2 and self.blocking_factor != 0 and self.gridding_unit != self.blocking_factor:
            raise ConfigurationError(
                f"Incompatible gridding unit ({self.gridding_unit}) and blocking factor ({self.blocking_factor}).",
                "setup.gridding_unit",
                "setup.blocking_factor",
            )

        nlevels = self.levelmax + 1
        self._offsets = np.zeros((nlevels, 3), dtype=np.int64)
        self._absoffsets = np.zeros((nlevels, 3), dtype=np.int64)
        self._len = np.zeros((nlevels, 3), dtype=np.int64)
        self.x0 = np.zeros((nlevels, 3))
        self.xl = np.ones((nlevels, 3))

        # Call the region generator.
        forced_dims = None
        if self.levelmin != self.levelmax:
            x0ref, x1ref = self.region.get_bounding_box(self.levelmax)
            x0ref = np.asarray(x0ref, dtype=np.float64).copy()
            lxref = np.asarray(x1ref, dtype=np.float64) - x0ref

            mylog.info(
                "Refinement region is '%s' w/ bounding box left=%s, right=%s",
                self.region.name,
                x0ref,
                np.asarray(x1ref),
            )
            forced_dims = self.region.is_grid_dim_forced()
        else:
            x0ref, lxref = np.zeros(3), np.ones(3)

        ncoarse = 2**self.levelmin

        # Determine the domain shift.
        xc = np.fmod(x0ref + 0.5 * lxref, 1.0)
        if self.levelmin != self.levelmax and (not no_shift or force_shift):
            base_unit = params.get_value_safe("random", "base_unit", 1, int)
            shift_unit = self.get_shift_unit(base_unit, self.levelmin)
            if shift_unit != 1:
                mylog.info("Volume can only be shifted by multiples of %d coarse cells.", shift_unit)
            self.xshift = _ctrunc((0.5 - xc) * ncoarse / shift_unit + 0.5) * shift_unit
        else:
            self.xshift = np.zeros(3, dtype=np.int64)

        for idim, axis in enumerate("xyz"):
            params.insert_value("setup", f"shift_{axis}", int(self.xshift[idim]))

        self.rshift = -self.xshift / float(ncoarse)
        x0ref = x0ref + self.xshift / float(ncoarse)

        # Set up base hierarchy sizes.
        for ilevel in range(self.levelmin + 1):
            self._len[ilevel] = 2**ilevel

        # If no refinement, we can exit here.
        if self.levelmax == self.levelmin:
            return

        self._resolve(x0ref, lxref, forced_dims)

    # ---------------------------------------------------------------------------------------- #
    # Resolution                                                                               #
    # ---------------------------------------------------------------------------------------- #
    @staticmethod
    def get_shift_unit(base_unit: int, levelmin: int) -> int:
        """
        Shift granularity (in ``levelmin`` cells) compatible with a noise source that partitions
        the box in multiples of ``base_unit`` cells.
        """
        level_m = 0
        while base_unit * 2**level_m < 2**levelmin:
            level_m += 1

        return max(1, 2**levelmin // int(np.gcd(base_unit * 2**level_m, 2**levelmin)))

    def _align(self, lo: NDArray, hi: NDArray, ilevel: int, finest: bool) -> tuple[NDArray, NDArray]:
        if self.align_top:
            # Require alignment with the top grid.
            nref = 2 ** (ilevel - self.levelmin + (1 if finest else 0))
            lo = _ctrunc(lo / nref) * nref
            if finest:
                hi_down = _ctrunc(hi / nref) * nref
                hi = np.where(hi_down < hi, _ctrunc(hi / nref + 1.0) * nref, hi_down)
            else:
                hi = _ctrunc(hi / nref + 1.0) * nref
        elif self.preserve_dims:
            # Require alignment with the coarser grid in the direction of the shift.
            al = np.where(self.xshift >= 0, 1, -1)
            lo = lo + al * _cmod(lo, 2)
            hi = hi + al * _cmod(hi, 2)
        else:
            gu = self.gridding_unit
            lo = lo - _cmod(lo, gu)
            hi = np.where(_cmod(hi, gu) != 0, (_cdiv(hi, gu) + 1) * gu, hi)

        if self.blocking_factor:
            # Require alignment with the coarser block.
            coarse_block = 2 * self.blocking_factor
            nres = 2**ilevel
            lo = lo - _cmod(lo, coarse_block)
            hi = hi + _cmod(nres - hi, coarse_block)

        return lo, hi

    def _make_equal_extent(self, ilevel: int) -> tuple[NDArray, NDArray]:
        nmax = self._len[ilevel].max()
        dx = _ctrunc((nmax - self._len[ilevel]) * 0.5)
        self._absoffsets[ilevel] -= dx
        self._len[ilevel] = nmax

        lo = self._absoffsets[ilevel].copy()
        return lo, lo + nmax

    def _resolve(self, x0ref: NDArray, lxref: NDArray, forced_dims: Index3 | None):
        nresmax = 2**self.levelmax

        # Determine the position of the refinement region on the finest grid.
        lo = _ctrunc(x0ref * nresmax)
        hi = _ctrunc((x0ref + lxref) * nresmax)

        if self.align_top and forced_dims is not None:
            if np.any(forced_dims % 2 ** (self.levelmax - self.levelmin) != 0):
                raise ConfigurationError(
                    "Specified ref_dims and align_top=yes but cannot be aligned with coarse grid!",
                    "setup.ref_dims",
                    "setup.align_top",
                )

        if not (self.align_top or self.preserve_dims):
            mylog.info(
                "Internal refinement bounding box: [%d,%d]x[%d,%d]x[%d,%d]",
                lo[0], hi[0], lo[1], hi[1], lo[2], hi[2],
            )

        lo, hi = self._align(lo, hi, self.levelmax, finest=True)

        if forced_dims is not None:
            hi = lo + coerce_to_index3(forced_dims)

        # Make sure the bounding box lies in the domain.
        lo = (lo + nresmax) % nresmax
        hi = (hi + nresmax) % nresmax

        if np.any(lo >= hi):
            raise GeometryError(
                f"Internal refinement bounding box error: [{lo[0]},{hi[0]}]x[{lo[1]},{hi[1]}]x[{lo[2]},{hi[2]}]"
                f" on level {self.levelmax}."
            )

        self._absoffsets[self.levelmax] = lo
        self._len[self.levelmax] = hi - lo

        if self.equal_extent:
            if forced_dims is not None and len(set(np.asarray(forced_dims).tolist())) != 1:
                raise ConfigurationError(
                    "Specified force_equal_extent=yes conflicting with ref_dims which are not equal.",
                    "setup.force_equal_extent",
                    "setup.ref_dims",
                )
            lo, hi = self._make_equal_extent(self.levelmax)

        # Determine the position of the coarser grids.
        for ilevel in range(self.levelmax - 1, self.levelmin, -1):
            lo = _ctrunc(lo * 0.5 - self.padding)
            hi = _ctrunc(hi * 0.5 + self.padding)

            lo, hi = self._align(lo, hi, ilevel, finest=False)

            if np.any(lo >= hi) or np.any(lo < 0):
                raise GeometryError(
                    f"Internal refinement bounding box error: [{lo[0]},{hi[0]}]x[{lo[1]},{hi[1]}]x[{lo[2]},{hi[2]}]"
                    f" on level {ilevel}."
                )

            self._absoffsets[ilevel] = lo
            self._len[ilevel] = hi - lo

            if self.blocking_factor:
                self._len[ilevel] += self._len[ilevel] % self.blocking_factor

            if self.equal_extent:
                lo, hi = self._make_equal_extent(ilevel)

        # Determine relative offsets between grids.
        for ilevel in range(self.levelmax, self.levelmin, -1):
            self._offsets[ilevel] = _cdiv(self._absoffsets[ilevel], 2) - self._absoffsets[ilevel - 1]

        # Forward sweep so that the absolute offsets are consistent with the relative ones.
        self._forward_sweep()

        for ilevel in range(self.levelmin + 1, self.levelmax + 1):
            if np.any(self._len[ilevel] > 2 ** (ilevel - 1)):
                raise GeometryError(
                    f"On level {ilevel}, subgrid is larger than half the box. This is not allowed!"
                )

        # Update the region generator with what has actually been created.
        left = self.x0[self.levelmax] + self.rshift
        right = left + self.xl[self.levelmax]
        self.region.update_bounding_box(left, right)

    def _forward_sweep(self):
        for ilevel in range(self.levelmin + 1, self.levelmax + 1):
            self._absoffsets[ilevel] = 2 * self._absoffsets[ilevel - 1] + 2 * self._offsets[ilevel]

        for ilevel in range(self.levelmin + 1, self.levelmax + 1):
            h = 1.0 / 2**ilevel
            self.x0[ilevel] = h * self._absoffsets[ilevel]
            self.xl[ilevel] = h * self._len[ilevel]

    # ---------------------------------------------------------------------------------------- #
    # Mutation                                                                                 #
    # ---------------------------------------------------------------------------------------- #
    def adjust_level(self, ilevel: int, size, offset_abs):
        """
        Resize a level and move it to a new absolute offset.

        The induced shift is propagated to the relative offset of the next finer level so that
        the absolute position of every other level stays the same.

        Parameters
        ----------
        ilevel: int
            The level to adjust.
        size: array-like
            New extent in cells of ``ilevel``.
        offset_abs: array-like
            New absolute offset in cells of ``ilevel``.
        """
        self._check_level(ilevel)
        size, offset_abs = coerce_to_index3(size), coerce_to_index3(offset_abs)

        dx = self._absoffsets[ilevel] - offset_abs
        if np.any(dx % 2 != 0):
            raise GeometryError(f"Adjusting level {ilevel} by an odd number of cells ({dx}) breaks nesting.")

        self._offsets[ilevel] -= dx // 2
        self._absoffsets[ilevel] = offset_abs
        self._len[ilevel] = size

        h = 1.0 / 2**ilevel
        self.x0[ilevel] = h * offset_abs
        self.xl[ilevel] = h * size

        if ilevel < self.levelmax:
            self._offsets[ilevel + 1] += dx

        self.find_new_levelmin()

    def find_new_levelmin(self, verbose: bool = False):
        """Set :py:attr:`levelmin` to the finest level that covers the whole domain."""
        old_levelmin = self.levelmin

        for ilevel in range(self.levelmax + 1):
            n = 2**ilevel
            if np.all(self._absoffsets[ilevel] == 0) and np.all(self._len[ilevel] == n):
                self.levelmin = ilevel

        if old_levelmin != self.levelmin and verbose:
            mylog.info("Refinement hierarchy: set new levelmin to %d", self.levelmin)

    def expanded_to_levelmin_tf(self) -> "RefinementHierarchy":
        """
        Return a copy in which every level up to ``levelmin_TF`` covers the whole domain.

        The density is convolved on full periodic grids up to ``levelmin_TF``; the copy describes
        the hierarchy that is built before those levels are cut back to their zoom geometry.
        """
        rh = self.copy()
        for ilevel in range(self.levelmin + 1, self.levelmin_tf + 1):
            n = 2**ilevel
            rh.adjust_level(ilevel, (n, n, n), (0, 0, 0))
        rh.find_new_levelmin(verbose=True)
        return rh

    def copy(self) -> "RefinementHierarchy":
        """Copy the geometry record. The region generator and parameters are shared."""
        new = copy.copy(self)
        for attr in ("_offsets", "_absoffsets", "_len", "x0", "xl", "xshift", "rshift"):
            setattr(new, attr, getattr(self, attr).copy())
        return new

    # ---------------------------------------------------------------------------------------- #
    # Accessors                                                                                #
    # ---------------------------------------------------------------------------------------- #
    def _check_level(self, ilevel: int):
        if not (0 <= ilevel <= self.levelmax):
            raise LevelNotFoundError(
                f"Attempt to access level {ilevel} but levelmax = {self.levelmax}."
            )

    def offset(self, ilevel: int, idim: int) -> int:
        """Relative offset of ``ilevel`` along ``idim`` in cells of ``ilevel - 1``."""
        self._check_level(ilevel)
        return int(self._offsets[ilevel, idim])

    def offset_abs(self, ilevel: int, idim: int) -> int:
        """Absolute offset of ``ilevel`` along ``idim`` in cells of ``ilevel``."""
        self._check_level(ilevel)
        return int(self._absoffsets[ilevel, idim])

    def size(self, ilevel: int, idim: int) -> int:
        self._check_level(ilevel)
        return int(self._len[ilevel, idim])

    def level(self, ilevel: int) -> LevelGeometry:
        """The full geometry record of ``ilevel``."""
        self._check_level(ilevel)
        return LevelGeometry(
            ilevel,
            self._offsets[ilevel].copy(),
            self._absoffsets[ilevel].copy(),
            self._len[ilevel].copy(),
        )

    def get_shift(self, idim: int) -> int:
        """Total shift of the coordinate system along ``idim`` in units of coarse cells."""
        return int(self.xshift[idim])

    def get_coord_shift(self) -> NDArray[np.float64]:
        """Total shift of the coordinate system in box units."""
        return self.rshift.copy()

    def get_margin(self) -> int:
        """Margin reserved for convolutions with isolated boundaries (``-1`` = double padding)."""
        return self.margin

    def __str__(self):
        return f"<RefinementHierarchy levels={self.levelmin}-{self.levelmax}>"

    def __repr__(self):
        return self.__str__()

    def output(self):
        """Log the grid structure."""
        mylog.info("-" * 79)
        if np.any(self.xshift != 0):
            mylog.info(" - Domain will be shifted by (%d, %d, %d)", *self.xshift)

        mylog.info(" - Grid structure:")
        for ilevel in range(self.levelmin, self.levelmax + 1):
            mylog.info(
                "     Level %3d :   offset = (%5d, %5d, %5d)", ilevel, *self._offsets[ilevel]
            )
            mylog.info(
                "               offset_abs = (%5d, %5d, %5d)", *self._absoffsets[ilevel]
            )
            mylog.info("                   size   = (%5d, %5d, %5d)", *self._len[ilevel])
        mylog.info("-" * 79)
