"""
Density Assembly
================

Builds the multi-level density field from white noise.

The pipeline walks the levels from ``levelmin`` to ``levelmax``:

1. The base level is a full periodic grid. It is filled with white noise, convolved and copied into
   the hierarchy.
2. Every finer level gets a padded working grid around its patch. It is filled with white noise
   and convolved, then the long wavelengths of the previous working grid are spliced in with
   :py:func:`~zoom_ics.numalgs.fft_interpolate`. The interior is copied into a new patch of the
   hierarchy and the previous working grid is released, so at most two working grids are alive at
   any time.
3. Without spectral splicing, the levels are instead coarsened in real space afterwards
   (:py:func:`coarsen_density`).

:py:func:`generate_density` runs the whole chain, including the expansion to ``levelmin_TF`` and
the final mean removal.
"""
from time import perf_counter

import numpy as np
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from zoom_ics.geometry.refinement import RefinementHierarchy
from zoom_ics.grids.hierarchy import GridHierarchy
from zoom_ics.grids.meshes import Mesh, PaddedMesh
from zoom_ics.kernels import ConvolutionKernel
from zoom_ics.noise import NoiseGenerator
from zoom_ics.numalgs import fft_coarsen, fft_interpolate, restrict
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.config import zicparams
from zoom_ics.utilities.exceptions import tqdmWarningRedirector
from zoom_ics.utilities.logging import mylog


def _progress_disabled() -> bool:
    return bool(zicparams["system", "preferences", "disable_progress_bars"])


def _mode_flags(params: ICParameters) -> tuple[bool, bool]:
    fix = params.get_value_safe("setup", "fix_mode_amplitude", False, bool)
    flip = params.get_value_safe("setup", "flip_mode_amplitude", False, bool)
    return fix, flip


def generate_density_unigrid(
    params: ICParameters,
    geometry: RefinementHierarchy,
    noise: NoiseGenerator,
    kernel: ConvolutionKernel,
    delta: GridHierarchy,
    shift: bool = False,
):
    """
    Generate the density of a single full periodic grid at ``geometry.levelmin``.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters.
    geometry: :py:class:`~zoom_ics.geometry.refinement.RefinementHierarchy`
        The level geometry.
    noise: :py:class:`~zoom_ics.noise.NoiseGenerator`
        White noise source.
    kernel: :py:class:`~zoom_ics.kernels.ConvolutionKernel`
        Convolution kernel.
    delta: :py:class:`~zoom_ics.grids.hierarchy.GridHierarchy`
        The hierarchy to populate. It is reset to a base hierarchy.
    shift: bool, optional
        Passed on to the kernel.
    """
    fix, flip = _mode_flags(params)
    levelmin = geometry.levelmin
    nbase = 2**levelmin

    mylog.info("[EXEC] Running unigrid density convolution...")
    mylog.info("[EXEC] Performing noise convolution on level %3d", levelmin)

    top = Mesh((nbase, nbase, nbase))
    noise.fill(top, levelmin)
    kernel.fetch_kernel(levelmin, is_patch=False).apply(top.buffer, shift, fix, flip)

    delta.create_base_hierarchy(levelmin)
    delta.get_grid(levelmin)[...] = top[...]


def generate_density_hierarchy(
    params: ICParameters,
    geometry: RefinementHierarchy,
    noise: NoiseGenerator,
    kernel: ConvolutionKernel,
    delta: GridHierarchy,
    shift: bool = False,
):
    """
    Generate the density of a nested hierarchy, level by level.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters. ``setup.fourier_splicing`` selects spectral splicing (default) or
        real-space restriction; ``setup.fix_mode_amplitude`` and ``setup.flip_mode_amplitude`` are
        passed on to the kernel.
    geometry: :py:class:`~zoom_ics.geometry.refinement.RefinementHierarchy`
        The level geometry. Levels up to ``geometry.levelmin`` are generated as one full grid.
    noise: :py:class:`~zoom_ics.noise.NoiseGenerator`
        White noise source.
    kernel: :py:class:`~zoom_ics.kernels.ConvolutionKernel`
        Convolution kernel.
    delta: :py:class:`~zoom_ics.grids.hierarchy.GridHierarchy`
        The hierarchy to populate.
    shift: bool, optional
        Passed on to the kernel.
    """
    fix, flip = _mode_flags(params)
    fourier_splicing = params.get_value_safe("setup", "fourier_splicing", True, bool)
    levelmin, levelmax = geometry.levelmin, geometry.levelmax

    if fix and levelmin != levelmax:
        mylog.warning(
            "You have chosen mode fixing for a zoom. This is not well tested, please proceed at your own risk..."
        )

    tstart = perf_counter()

    # Coarse level.
    nbase = 2**levelmin
    mylog.info("[EXEC] Performing noise convolution on level %3d", levelmin)

    coarse: Mesh = Mesh((nbase, nbase, nbase))
    noise.fill(coarse, levelmin)
    kernel.fetch_kernel(levelmin, is_patch=False).apply(coarse.buffer, shift, fix, flip)

    delta.create_base_hierarchy(levelmin)
    delta.get_grid(levelmin)[...] = coarse[...]

    with logging_redirect_tqdm(loggers=[mylog]), tqdmWarningRedirector():
        with tqdm(
            total=levelmax - levelmin,
            desc="Convolving levels",
            unit="level",
            disable=_progress_disabled(),
        ) as pbar:
            for ilevel in range(levelmin + 1, levelmax + 1):
                pbar.set_description(f"Convolving level {ilevel}")
                level = geometry.level(ilevel)

                mylog.info("[EXEC] Performing noise convolution on level %3d...", ilevel)
                mylog.info("[NEW ] Allocating refinement patch")
                mylog.info("   offset=(%5d,%5d,%5d)", *level.offset)
                mylog.info("   size  =(%5d,%5d,%5d)", *level.size)

                if geometry.get_margin() > 0:
                    fine = PaddedMesh(level.size, offset=level.offset, margin=geometry.get_margin())
                else:
                    fine = PaddedMesh.with_double_padding(level.size, offset=level.offset)
                mylog.info("    margin = %s", tuple(fine.margins))

                noise.fill(fine, ilevel, level.offset_abs - fine.margins)
                kernel.fetch_kernel(ilevel, is_patch=True).apply(fine.buffer, shift, fix, flip)

                if fourier_splicing:
                    fft_interpolate(coarse, fine, from_basegrid=(ilevel == levelmin + 1))

                delta.add_patch(level.offset, level.size)
                fine.copy_unpad(delta.get_grid(ilevel))

                # Retire the previous working grid before the next one is allocated.
                del coarse
                coarse = fine
                pbar.update(1)

    del coarse

    mylog.info("[EXEC] Density calculation took %.4f s.", perf_counter() - tstart)

    if not fourier_splicing:
        coarsen_density(geometry, delta, False)

    mylog.info("[EXEC] Finished computing the density field in %.4f s.", perf_counter() - tstart)


def normalize_density(delta: GridHierarchy) -> float:
    """
    Subtract the mean of the coarsest full level from every level from there to ``levelmax``.

    Returns
    -------
    float
        The subtracted mean.
    """
    levelmin, levelmax = delta.levelmin, delta.levelmax
    mean = delta.get_grid(levelmin).mean()

    mylog.info("- Top grid mean density is off by %g, correcting...", mean)

    for ilevel in range(levelmin, levelmax + 1):
        delta.get_grid(ilevel)[...] -= mean

    return mean


def normalize_levelmin_density(delta: GridHierarchy) -> float:
    """
    Subtract the mean of the coarsest full level from that level only.

    Returns
    -------
    float
        The subtracted mean.
    """
    grid = delta.get_grid(delta.levelmin)
    mean = grid.mean()

    mylog.info("- Top grid mean density is off by %g, correcting...", mean)
    grid[...] -= mean

    return mean


def coarsen_density(geometry: RefinementHierarchy, delta: GridHierarchy, fourier_coarsening: bool):
    """
    Propagate the density down to ``geometry.levelmin`` and cut levels to their final geometry.

    Parameters
    ----------
    geometry: :py:class:`~zoom_ics.geometry.refinement.RefinementHierarchy`
        The target geometry.
    delta: :py:class:`~zoom_ics.grids.hierarchy.GridHierarchy`
        The hierarchy, with full levels up to its own ``levelmin``.
    fourier_coarsening: bool
        If ``True``, full levels from ``delta.levelmin`` down to ``geometry.levelmin`` are obtained with
        :py:func:`~zoom_ics.numalgs.fft_coarsen`. Otherwise every level from ``delta.levelmax`` down to
        ``geometry.levelmin`` is restricted in real space, cut patches keep the coarse mean, and the
        mean of the coarsest full level is removed afterwards.
    """
    levelmin_tf = delta.levelmin

    if fourier_coarsening:
        for ilevel in range(levelmin_tf, geometry.levelmin, -1):
            mylog.debug("Fourier coarsening level %d -> %d", ilevel, ilevel - 1)
            fft_coarsen(delta.get_grid(ilevel), delta.get_grid(ilevel - 1))
    else:
        for ilevel in range(delta.levelmax, geometry.levelmin, -1):
            mylog.debug("Restricting level %d -> %d", ilevel, ilevel - 1)
            restrict(delta.get_grid(ilevel), delta.get_grid(ilevel - 1))

    for ilevel in range(1, geometry.levelmax + 1):
        grid = delta.get_grid(ilevel)
        target = geometry.level(ilevel)

        if np.any(target.offset != grid.offsets) or np.any(target.size != np.asarray(grid.shape)):
            delta.cut_patch(ilevel, target.offset_abs, target.size, not fourier_coarsening)

    if not fourier_coarsening:
        normalize_levelmin_density(delta)


def generate_density(
    params: ICParameters,
    geometry: RefinementHierarchy,
    noise: NoiseGenerator,
    kernel: ConvolutionKernel,
    nbnd: int = 2,
    shift: bool = False,
) -> GridHierarchy:
    """
    Generate the complete, mean-free density hierarchy for ``geometry``.

    Levels up to ``levelmin_TF`` are first generated on full grids and then Fourier-coarsened and
    cut back to the zoom geometry. The refinement mask is built from the geometry's region generator.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters.
    geometry: :py:class:`~zoom_ics.geometry.refinement.RefinementHierarchy`
        The resolved level geometry.
    noise: :py:class:`~zoom_ics.noise.NoiseGenerator`
        White noise source.
    kernel: :py:class:`~zoom_ics.kernels.ConvolutionKernel`
        Convolution kernel.
    nbnd: int, optional
        Ghost margin of the hierarchy's levels.
    shift: bool, optional
        Passed on to the kernel.

    Returns
    -------
    :py:class:`~zoom_ics.grids.hierarchy.GridHierarchy`
        The density hierarchy.
    """
    geometry.output()
    delta = GridHierarchy(nbnd, region=geometry.region)

    if geometry.levelmin == geometry.levelmax:
        generate_density_unigrid(params, geometry, noise, kernel, delta, shift=shift)
    else:
        geometry_tf = geometry.expanded_to_levelmin_tf()
        generate_density_hierarchy(params, geometry_tf, noise, kernel, delta, shift=shift)

        if geometry_tf.levelmin != geometry.levelmin:
            coarsen_density(geometry, delta, True)

    delta.add_refinement_mask(geometry.get_coord_shift())
    normalize_density(delta)

    return delta
