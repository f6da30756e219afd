"""
Tests for the white noise sources.
"""
import numpy as np
import pytest
from numpy.testing import assert_allclose

from zoom_ics.grids.meshes import Mesh, PaddedMesh
from zoom_ics.noise import CubeWhiteNoise, noise_generator_registry, select_noise_generator
from zoom_ics.utilities.exceptions import ConfigurationError


class TestCubeWhiteNoise:
    def test_selection(self, zoom_params):
        noise = select_noise_generator(zoom_params)
        assert isinstance(noise, CubeWhiteNoise)
        assert noise.seed == 4242
        assert noise.cubesize == 16
        assert "cube" in noise_generator_registry

    def test_unknown_generator(self, make_params):
        with pytest.raises(ConfigurationError, match="random.generator"):
            select_noise_generator(make_params(random={"generator": "panphasia"}))

    @pytest.mark.parametrize("cubesize", [0, 12, -8])
    def test_bad_cubesize(self, make_params, cubesize):
        with pytest.raises(ConfigurationError, match="random.cubesize"):
            CubeWhiteNoise(make_params(random={"cubesize": cubesize}))

    def test_deterministic(self, zoom_params):
        a, b = Mesh((32, 32, 32)), Mesh((32, 32, 32))
        CubeWhiteNoise(zoom_params).fill(a, 5)
        CubeWhiteNoise(zoom_params).fill(b, 5)

        assert np.array_equal(a[...], b[...])

    def test_statistics(self, zoom_params):
        grid = Mesh((32, 32, 32))
        CubeWhiteNoise(zoom_params).fill(grid, 5)

        assert abs(grid.mean()) < 0.05
        assert np.std(grid[...]) == pytest.approx(1.0, abs=0.05)

    def test_subregion_agrees(self, zoom_params):
        noise = CubeWhiteNoise(zoom_params)
        full = Mesh((64, 64, 64))
        noise.fill(full, 6)

        patch = PaddedMesh((16, 16, 16), offset=(12, 12, 12), margin=4)
        noise.fill(patch, 6, offset_abs=(20, 30, 40))

        assert_allclose(patch.buffer, full[20:44, 30:54, 40:64])

    def test_periodic_wrap(self, zoom_params):
        noise = CubeWhiteNoise(zoom_params)
        full = Mesh((32, 32, 32))
        noise.fill(full, 5)

        patch = Mesh((8, 8, 8))
        noise.fill(patch, 5, offset_abs=(-4, 28, 0))

        ix = np.arange(-4, 4) % 32
        iy = np.arange(28, 36) % 32
        assert_allclose(patch[...], full[...][np.ix_(ix, iy, np.arange(8))])

    def test_levels_and_seeds_differ(self, make_params):
        a, b, c = Mesh((16, 16, 16)), Mesh((16, 16, 16)), Mesh((16, 16, 16))
        CubeWhiteNoise(make_params()).fill(a, 5)
        CubeWhiteNoise(make_params()).fill(b, 6)
        CubeWhiteNoise(make_params(random={"seed": 1})).fill(c, 5)

        assert not np.allclose(a[...], b[...])
        assert not np.allclose(a[...], c[...])

    def test_small_levels(self, zoom_params):
        grid = Mesh((4, 4, 4))
        CubeWhiteNoise(zoom_params).fill(grid, 2)
        assert np.all(np.isfinite(grid[...]))
        assert np.std(grid[...]) > 0
