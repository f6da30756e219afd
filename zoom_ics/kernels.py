"""
Convolution Kernels
===================

A convolution kernel turns white noise into a correlated field. The pipeline retrieves the kernel
of a level with :py:meth:`ConvolutionKernel.fetch_kernel` and applies it in place to the level's
working buffer with :py:meth:`ConvolutionKernel.apply`.

The only kernel shipped here is :py:class:`PowerLawKernel`, which multiplies every Fourier mode of
the noise by :math:`\\sqrt{P(k)/\\Delta x^3}` for a power-law spectrum :math:`P(k) = A k^n`. The
division by the cell volume makes the result independent of the resolution of the level, so that
fields on adjacent levels carry the same power on the scales they share.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar, Optional

import numpy as np
from numpy.typing import NDArray
from scipy import fft

from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.exceptions import ConfigurationError
from zoom_ics.utilities.logging import ZoomLogDescriptor, mylog
from zoom_ics.utilities.types import Registry, ensure_ytquantity

if TYPE_CHECKING:
    import logging

kernel_registry: Registry = Registry()
""":py:class:`~zoom_ics.utilities.types.Registry`: Name-keyed lookup of convolution kernels."""


class ConvolutionKernel(ABC):
    """
    Abstract base class for convolution kernels.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters (``kernel`` and ``setup`` sections).
    """

    name: ClassVar[str] = None
    logger: "logging.Logger" = ZoomLogDescriptor()

    def __init__(self, params: ICParameters):
        self.params = params
        self.boxlength = ensure_ytquantity(params.get_value_safe("setup", "boxlength", 100.0, float), "Mpc")

        self.level: Optional[int] = None
        self.is_patch: bool = False

    def __str__(self):
        return f"<{self.__class__.__name__} level={self.level}>"

    def __repr__(self):
        return self.__str__()

    @property
    def cell_size(self) -> float:
        """Cell size of the current level in ``Mpc``."""
        if self.level is None:
            raise ValueError(f"{self} has not been fetched for a level yet.")
        return self.boxlength.to_value("Mpc") / 2**self.level

    def fetch_kernel(self, level: int, is_patch: bool = False) -> "ConvolutionKernel":
        """
        Prepare the kernel for ``level`` and return it.

        Parameters
        ----------
        level: int
            The level whose working grid will be convolved.
        is_patch: bool, optional
            Whether the working grid is a (padded) refinement patch rather than a periodic full grid.
        """
        self.level = level
        self.is_patch = is_patch
        self.logger.debug("Fetched kernel for level %d (patch=%s).", level, is_patch)
        return self

    @abstractmethod
    def apply(self, buffer: NDArray[np.float64], shift: bool = False, fix: bool = False, flip: bool = False):
        """
        Convolve ``buffer`` in place.

        Parameters
        ----------
        buffer: numpy.ndarray
            The working buffer of the current level.
        shift: bool, optional
            Shift the result by half a cell along every axis.
        fix: bool, optional
            Replace the noise amplitude of every mode by its expectation value, keeping the phase.
        flip: bool, optional
            Flip the sign of the result.
        """
        pass


@kernel_registry.autoregister("power_law")
class PowerLawKernel(ConvolutionKernel):
    r"""
    Kernel realising a power-law spectrum :math:`P(k) = A\,k^n`.

    Recognized ``kernel`` parameters are ``spectral_index`` (:math:`n`, default ``-2``) and
    ``amplitude`` (:math:`A`, default ``1``). The mean mode is removed.
    """

    name = "power_law"

    def __init__(self, params: ICParameters):
        super().__init__(params)
        self.spectral_index: float = params.get_value_safe("kernel", "spectral_index", -2.0, float)
        self.amplitude: float = params.get_value_safe("kernel", "amplitude", 1.0, float)

        if self.amplitude < 0:
            raise ConfigurationError("Kernel amplitude must be non-negative.", "kernel.amplitude")

    def wavenumbers(self, shape: tuple[int, ...]) -> list[NDArray[np.float64]]:
        """Physical wavenumbers (``1/Mpc``) of the real-to-complex transform of ``shape``."""
        dx = self.cell_size
        return [
            2.0 * np.pi * fft.fftfreq(shape[0], d=dx)[:, None, None],
            2.0 * np.pi * fft.fftfreq(shape[1], d=dx)[None, :, None],
            2.0 * np.pi * fft.rfftfreq(shape[2], d=dx)[None, None, :],
        ]

    def transfer(self, k: NDArray[np.float64]) -> NDArray[np.float64]:
        """The multiplier :math:`\\sqrt{P(k)/\\Delta x^3}`, zero at :math:`k = 0`."""
        out = np.zeros_like(k)
        nonzero = k > 0
        out[nonzero] = np.sqrt(self.amplitude * k[nonzero] ** self.spectral_index / self.cell_size**3)
        return out

    def apply(self, buffer: NDArray[np.float64], shift: bool = False, fix: bool = False, flip: bool = False):
        shape = buffer.shape
        kx, ky, kz = self.wavenumbers(shape)

        cdata = fft.rfftn(buffer, workers=-1)

        if fix:
            amp = np.abs(cdata)
            nonzero = amp > 0
            cdata[nonzero] *= np.sqrt(buffer.size) / amp[nonzero]

        cdata *= self.transfer(np.sqrt(kx**2 + ky**2 + kz**2))

        if shift:
            cdata *= np.exp(-0.5j * self.cell_size * (kx + ky + kz))

        if flip:
            cdata *= -1.0

        buffer[...] = fft.irfftn(cdata, s=shape, workers=-1)


def select_kernel(params: ICParameters) -> ConvolutionKernel:
    """
    Instantiate the kernel named by ``kernel.type`` (default ``"power_law"``).

    Raises
    ------
    ConfigurationError
        If no kernel is registered under that name.
    """
    name = params.get_value_safe("kernel", "type", "power_law", str)

    if name not in kernel_registry:
        raise ConfigurationError(
            f"Unknown convolution kernel '{name}'. Available: {list(kernel_registry.keys())}",
            "kernel.type",
        )

    mylog.info("Selecting convolution kernel plug-in: %s", name)
    return kernel_registry[name](params)
