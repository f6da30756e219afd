"""
White Noise Sources
===================

A noise source fills the working grid of a level with independent, unit-variance Gaussian white
noise. The values are deterministic given the run's seed: every cell of level :math:`L` has a fixed
value regardless of which working grid requests it, so overlapping or re-requested regions always
agree.

The default :py:class:`CubeWhiteNoise` partitions each level into cubes of ``random.cubesize`` cells.
Each cube draws its values from its own random stream, seeded from ``(seed, level, cube index)``.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from numpy.typing import NDArray

from zoom_ics.geometry._types import coerce_to_index3
from zoom_ics.grids.meshes import Mesh
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.exceptions import ConfigurationError
from zoom_ics.utilities.logging import ZoomLogDescriptor, mylog
from zoom_ics.utilities.types import Registry

if TYPE_CHECKING:
    import logging

noise_generator_registry: Registry = Registry()
""":py:class:`~zoom_ics.utilities.types.Registry`: Name-keyed lookup of noise sources."""


class NoiseGenerator(ABC):
    """
    Abstract base class for white noise sources.

    Parameters
    ----------
    params: :py:class:`~zoom_ics.parameters.ICParameters`
        The run parameters (``random`` section).
    """

    name: ClassVar[str] = None
    logger: "logging.Logger" = ZoomLogDescriptor()

    def __init__(self, params: ICParameters):
        self.params = params
        self.seed: int = params.get_value_safe("random", "seed", 12345, int)

    def __str__(self):
        return f"<{self.__class__.__name__} seed={self.seed}>"

    def __repr__(self):
        return self.__str__()

    def fill(self, grid: Mesh, level: int, offset_abs=(0, 0, 0)):
        """
        Fill the buffer of ``grid`` with white noise of ``level``.

        Parameters
        ----------
        grid: :py:class:`~zoom_ics.grids.meshes.Mesh`
            The grid to fill. The whole :py:attr:`~zoom_ics.grids.meshes.Mesh.buffer` is filled,
            margins included.
        level: int
            The level the noise belongs to.
        offset_abs: array-like of int
            Absolute index (in cells of ``level``) of the first buffer cell. Indices wrap
            periodically.
        """
        buffer = grid.buffer
        buffer[...] = self.sample(level, coerce_to_index3(offset_abs), buffer.shape)

    @abstractmethod
    def sample(self, level: int, offset_abs: NDArray[np.int64], shape: tuple[int, ...]) -> NDArray[np.float64]:
        """Return the white noise of the box starting at ``offset_abs`` with the given shape."""
        pass


@noise_generator_registry.autoregister("cube")
class CubeWhiteNoise(NoiseGenerator):
    """
    Cube-seeded Gaussian white noise.

    Recognized ``random`` parameters are ``seed`` and ``cubesize``. On levels coarser than a
    single cube the whole level forms one cube.
    """

    name = "cube"

    def __init__(self, params: ICParameters):
        super().__init__(params)
        self.cubesize: int = params.get_value_safe("random", "cubesize", 32, int)

        if self.cubesize <= 0 or (self.cubesize & (self.cubesize - 1)) != 0:
            raise ConfigurationError(
                f"Noise cube size must be a positive power of two, got {self.cubesize}.", "random.cubesize"
            )

    def _cube(self, level: int, cube_index: tuple[int, int, int], cubesize: int) -> NDArray[np.float64]:
        rng = np.random.default_rng(np.random.SeedSequence([self.seed, level, *cube_index]))
        return rng.standard_normal((cubesize, cubesize, cubesize))

    def sample(self, level: int, offset_abs: NDArray[np.int64], shape: tuple[int, ...]) -> NDArray[np.float64]:
        nres = 2**level
        cubesize = min(self.cubesize, nres)

        # Per axis: wrapped absolute index, owning cube and index within that cube.
        idx = [(offset_abs[idim] + np.arange(shape[idim])) % nres for idim in range(3)]
        cube_ids = [ix // cubesize for ix in idx]
        local = [ix % cubesize for ix in idx]

        out = np.empty(shape, dtype=np.float64)
        ncubes = 0
        for ci in np.unique(cube_ids[0]):
            si = np.nonzero(cube_ids[0] == ci)[0]
            for cj in np.unique(cube_ids[1]):
                sj = np.nonzero(cube_ids[1] == cj)[0]
                for ck in np.unique(cube_ids[2]):
                    sk = np.nonzero(cube_ids[2] == ck)[0]

                    values = self._cube(level, (int(ci), int(cj), int(ck)), cubesize)
                    out[np.ix_(si, sj, sk)] = values[np.ix_(local[0][si], local[1][sj], local[2][sk])]
                    ncubes += 1

        self.logger.debug("Sampled %d noise cube(s) on level %d for a %s box.", ncubes, level, shape)
        return out


def select_noise_generator(params: ICParameters) -> NoiseGenerator:
    """
    Instantiate the noise source named by ``random.generator`` (default ``"cube"``).

    Raises
    ------
    ConfigurationError
        If no noise source is registered under that name.
    """
    name = params.get_value_safe("random", "generator", "cube", str)

    if name not in noise_generator_registry:
        raise ConfigurationError(
            f"Unknown noise generator '{name}'. Available: {list(noise_generator_registry.keys())}",
            "random.generator",
        )

    mylog.info("Selecting noise generator plug-in: %s", name)
    return noise_generator_registry[name](params)
