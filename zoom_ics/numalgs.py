"""
Numerical algorithms coupling adjacent levels of the grid hierarchy.

The two spectral routines move a field by one level in either direction:

- :py:func:`fft_coarsen`: fine to coarse. The fine field is transformed, every coarse-grid mode
  is read from the matching fine mode, phase-corrected for the half-cell offset between a coarse
  cell center and the centers of its children, low-pass filtered and transformed back.
- :py:func:`fft_interpolate`: coarse to fine with splicing. The coarse field under the fine
  patch's footprint supplies the long wavelengths, the fine field keeps its own short
  wavelengths. The two are blended with a smooth window in Fourier space.

Both use the Meyer scaling function as window. :py:func:`restrict` is the plain real-space
alternative to :py:func:`fft_coarsen`.

All transforms assume periodic boundaries on the transformed array; padding is the caller's job.
"""
import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import fft

from zoom_ics.grids._types import GeometryError
from zoom_ics.grids.meshes import Mesh
from zoom_ics.utilities.exceptions import SpectralPreconditionError
from zoom_ics.utilities.logging import devlog


def meyer_scaling_function(k: ArrayLike, kmax: float) -> NDArray[np.float64]:
    r"""
    Meyer scaling function used as smooth low-pass window.

    Parameters
    ----------
    k: array_like
        Wavenumber(s) in units of the fundamental mode. The sign is ignored.
    kmax: float
        Wavenumber mapped onto :math:`\pi`.

    Returns
    -------
    numpy.ndarray
        The window, equal to ``1`` for :math:`|k| < 2k_{\rm max}/3`, ``0`` for
        :math:`|k| > 4k_{\rm max}/3` and smooth in between.

    Notes
    -----
    With :math:`\kappa = \pi |k|/k_{\rm max}`,

    .. math::

        \phi(\kappa) = \cos\left(\frac{\pi}{2}\,\nu\left(\frac{3\kappa}{2\pi} - 1\right)\right),
        \quad \nu(x) = x^4 (35 - 84x + 70x^2 - 20x^3)

    in the transition band.
    """
    k = np.abs(np.asarray(k, dtype=np.float64)) / kmax * np.pi

    x = np.clip(3.0 * k / (2.0 * np.pi) - 1.0, 0.0, 1.0)
    nu = x**4 * (35.0 - 84.0 * x + 70.0 * x**2 - 20.0 * x**3)

    return np.where(
        k < 2.0 * np.pi / 3.0,
        1.0,
        np.where(k < 4.0 * np.pi / 3.0, np.cos(0.5 * np.pi * nu), 0.0),
    )


def signed_wavenumbers(n: int) -> NDArray[np.float64]:
    """Wavenumbers of the ``n`` bins of a full FFT axis, with ``n // 2`` counted as positive."""
    i = np.arange(n)
    return np.where(i <= n // 2, i, i - n).astype(np.float64)


def _fine_bins(nc: int, nf: int) -> NDArray[np.int64]:
    # Fine-grid bin carrying the same signed wavenumber as coarse bin i.
    i = np.arange(nc)
    return np.where(i > nc // 2, i + nf // 2, i)


def _check_even(shape, what: str):
    if any(n % 2 != 0 for n in shape):
        raise SpectralPreconditionError(f"{what} must have even extents, got {tuple(shape)}.")


def fft_coarsen(fine: Mesh, coarse: Mesh):
    """
    Replace the content of ``coarse`` by the band-limited decimation of ``fine``.

    Parameters
    ----------
    fine: :py:class:`~zoom_ics.grids.meshes.Mesh`
        The fine field. Its logical extent must be twice that of ``coarse`` on every axis.
    coarse: :py:class:`~zoom_ics.grids.meshes.Mesh`
        The coarse field, overwritten in place.

    Raises
    ------
    SpectralPreconditionError
        If the extents are odd or not in a ratio of two.
    """
    nf, nF = np.asarray(fine.shape), np.asarray(coarse.shape)
    _check_even(nf, "fine grid")
    _check_even(nF, "coarse grid")
    if np.any(nf != 2 * nF):
        raise SpectralPreconditionError(
            f"Cannot coarsen a grid of extent {tuple(nf)} onto one of extent {tuple(nF)}."
        )

    cfine = fft.rfftn(fine[...], workers=-1)

    ii, jj = _fine_bins(nF[0], nf[0]), _fine_bins(nF[1], nf[1])
    kk = np.arange(nF[2] // 2 + 1)

    kx = signed_wavenumbers(nF[0])[:, None, None]
    ky = signed_wavenumbers(nF[1])[None, :, None]
    kz = kk.astype(np.float64)[None, None, :]

    phase = (kx / nF[0] + ky / nF[1] + kz / nF[2]) * 0.5 * np.pi
    blend = (
        meyer_scaling_function(kx, nF[0] // 2)
        * meyer_scaling_function(ky, nF[1] // 2)
        * meyer_scaling_function(kz, nF[2] // 2)
    )

    # The inverse transform is normalized by the coarse cell count, leaving the 1/8 volume ratio.
    ccoarse = cfine[np.ix_(ii, jj, kk)] * np.exp(1j * phase) / 8.0 * blend

    coarse[...] = fft.irfftn(ccoarse, s=tuple(nF), workers=-1)


def fft_interpolate(coarse: Mesh, fine: Mesh, from_basegrid: bool = False):
    """
    Splice the long wavelengths of ``coarse`` into ``fine``.

    Parameters
    ----------
    coarse: :py:class:`~zoom_ics.grids.meshes.Mesh`
        The parent field. If ``from_basegrid`` is set it is the full periodic base grid and its
        logical region is read with periodic wrap-around. Otherwise it is the parent's padded
        working grid (:py:class:`~zoom_ics.grids.meshes.PaddedMesh`) and its full buffer is read.
    fine: :py:class:`~zoom_ics.grids.meshes.Mesh`
        The fine working grid, modified in place. For a :py:class:`~zoom_ics.grids.meshes.PaddedMesh`
        the full padded buffer takes part in the transform. Its offsets are relative to ``coarse``'s
        logical region, in coarse cells.
    from_basegrid: bool, optional
        Whether ``coarse`` is the periodic base grid.

    Raises
    ------
    SpectralPreconditionError
        If the fine buffer or the margins have odd extents or the fine buffer is too small.
    GeometryError
        If the footprint of ``fine`` does not fit into the buffer of ``coarse``.

    Notes
    -----
    Coarse mode :math:`{\\bf k}` is phase shifted by :math:`-\\pi/2\\,\\sum_d k_d/n_{c,d}`, scaled by
    ``8`` and blended into the fine mode with the same wavenumber with weight :math:`W({\\bf k})`,
    the product of :py:func:`meyer_scaling_function` with :math:`k_{\\rm max} = n_c/4` per axis.
    The fine mode keeps weight :math:`1 - W`. Fine modes without a coarse counterpart are unchanged.
    """
    rfine, mf = fine.buffer, fine.buffer_margins
    nf = np.asarray(rfine.shape)

    _check_even(nf, "fine grid")
    _check_even(mf, "fine grid margin")

    nc = nf // 2
    if np.any(nc < 4):
        raise SpectralPreconditionError(f"Fine grid of extent {tuple(nf)} is too small to splice.")

    if from_basegrid:
        start = fine.offsets - mf // 2
        rtop = coarse[...]
        idx = [(start[idim] + np.arange(nc[idim])) % rtop.shape[idim] for idim in range(3)]
        rcoarse = rtop[np.ix_(*idx)]
    else:
        rtop, mc = coarse.buffer, coarse.buffer_margins
        start = fine.offsets - mf // 2 + mc
        stop = start + nc
        if np.any(start < 0) or np.any(stop > np.asarray(rtop.shape)):
            raise GeometryError(
                f"Footprint [{tuple(start)}, {tuple(stop)}) of {fine} lies outside of {coarse}."
            )
        rcoarse = rtop[start[0]:stop[0], start[1]:stop[1], start[2]:stop[2]]

    devlog.debug("FFT interpolate: offset=%s size=%s", tuple(start), tuple(nf))

    ccoarse = fft.rfftn(rcoarse, workers=-1)
    cfine = fft.rfftn(rfine, workers=-1)

    ii, jj = _fine_bins(nc[0], nf[0]), _fine_bins(nc[1], nf[1])
    kk = np.arange(nc[2] // 2 + 1)

    kx = signed_wavenumbers(nc[0])[:, None, None]
    ky = signed_wavenumbers(nc[1])[None, :, None]
    kz = kk.astype(np.float64)[None, None, :]

    phase = -0.5 * np.pi * (kx / nc[0] + ky / nc[1] + kz / nc[2])
    val = ccoarse * np.exp(1j * phase) * 8.0

    blend_coarse = (
        meyer_scaling_function(kx, nc[0] // 4)
        * meyer_scaling_function(ky, nc[1] // 4)
        * meyer_scaling_function(kz, nc[2] // 4)
    )

    sel = np.ix_(ii, jj, kk)
    cfine[sel] = (1.0 - blend_coarse) * cfine[sel] + blend_coarse * val

    rfine[...] = fft.irfftn(cfine, s=tuple(nf), workers=-1)


def restrict(fine: Mesh, coarse: Mesh):
    """
    Average every block of ``2x2x2`` fine cells into the coarse cell underneath.

    Only the footprint of ``fine`` (at ``fine.offsets`` in ``coarse``) is overwritten.

    Raises
    ------
    GeometryError
        If ``fine`` has odd extents or its footprint exceeds ``coarse``.
    """
    nf = np.asarray(fine.shape)
    if np.any(nf % 2 != 0):
        raise GeometryError(f"Cannot restrict a grid with odd extent {tuple(nf)}.")

    lo = fine.offsets
    hi = lo + nf // 2
    if np.any(lo < 0) or np.any(hi > np.asarray(coarse.shape)):
        raise GeometryError(f"Footprint of {fine} lies outside of {coarse}.")

    blocks = fine[...].reshape(nf[0] // 2, 2, nf[1] // 2, 2, nf[2] // 2, 2)
    coarse[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]] = blocks.mean(axis=(1, 3, 5))
