"""Pytest configuration module for the `zoom_ics` package.

Overview
--------
This configuration file disables progress bars for the test session and provides the fixtures
shared across the test modules:

- `temp_dir`: a temporary directory (or the one passed with ``--tmp``, which is then kept).
- `make_params`: factory building :py:class:`~zoom_ics.parameters.ICParameters` from keyword
  sections, filled with small defaults so that tests stay fast.
- `zoom_params` / `unigrid_params`: ready-made run parameters for a ``5 -> 7`` zoom around the box
  center and a ``5 -> 5`` unigrid run.
- `half_box_region`: a region generator refining the half of the box with ``x < 0.5``.

The `CountingNoise` and `CountingKernel` doubles record how often the pipeline calls them.
"""
import copy
import os

import numpy as np
import pytest

from zoom_ics.geometry.regions import RegionGenerator
from zoom_ics.kernels import PowerLawKernel
from zoom_ics.noise import CubeWhiteNoise
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.config import zicparams

# Disable progress bars during tests to improve compatibility with CI logs.
zicparams.config.system.preferences.disable_progress_bars = True

_default_sections = {
    "setup": {
        "levelmin": 5,
        "levelmax": 7,
        "padding": 4,
        "region": "box",
        "ref_center": [0.5, 0.5, 0.5],
        "ref_extent": [0.125, 0.125, 0.125],
        "boxlength": 100.0,
    },
    "random": {"seed": 4242, "cubesize": 16},
    "kernel": {"type": "power_law", "spectral_index": -2.0, "amplitude": 1.0},
    "output": {"format": "hdf5", "filename": "ics.hdf5"},
}


def pytest_addoption(parser):
    parser.addoption("--tmp", help="The temporary directory to use.", default=None)


@pytest.fixture()
def temp_dir(request) -> str:
    """Fixture to handle temporary directory management.

    If a directory is specified by the user, it will not be wiped after the test run;
    otherwise, a temporary directory is generated and removed after the test completes.
    """
    td = request.config.getoption("--tmp")

    if td is None:
        from tempfile import TemporaryDirectory

        td = TemporaryDirectory()

        yield td.name

        td.cleanup()
    else:
        yield os.path.abspath(td)


@pytest.fixture()
def make_params():
    """Factory for run parameters. Keyword arguments update the default sections."""

    def _make(**sections) -> ICParameters:
        mapping = copy.deepcopy(_default_sections)
        for section, values in sections.items():
            mapping.setdefault(section, {}).update(values)
        return ICParameters(mapping)

    return _make


@pytest.fixture()
def zoom_params(make_params) -> ICParameters:
    return make_params()


@pytest.fixture()
def unigrid_params(make_params) -> ICParameters:
    return make_params(setup={"levelmin": 5, "levelmax": 5})


class HalfBoxRegion(RegionGenerator):
    """Region containing every point with ``x < 0.5``."""

    name = "half_box"

    def __init__(self, levelmin: int = 0, levelmax: int = 16):
        self.params = None
        self.levelmin, self.levelmax = levelmin, levelmax

    def get_bounding_box(self, level):
        return np.array([0.0, 0.0, 0.0]), np.array([0.5, 1.0, 1.0])

    def query_point(self, x, level):
        return bool(x[0] < 0.5)

    def query_points(self, x, level):
        return np.atleast_2d(x)[:, 0] < 0.5

    def is_grid_dim_forced(self):
        return None

    def get_center(self):
        return np.array([0.25, 0.5, 0.5])

    def update_bounding_box(self, left, right):
        pass


@pytest.fixture()
def half_box_region() -> HalfBoxRegion:
    return HalfBoxRegion()


class CountingNoise(CubeWhiteNoise):
    """Cube white noise recording every ``fill`` call as ``(level, buffer shape)``."""

    def __init__(self, params):
        super().__init__(params)
        self.calls = []

    def fill(self, grid, level, offset_abs=(0, 0, 0)):
        self.calls.append((level, grid.buffer.shape))
        super().fill(grid, level, offset_abs)


class CountingKernel(PowerLawKernel):
    """Power-law kernel recording ``fetch_kernel`` and ``apply`` calls."""

    def __init__(self, params):
        super().__init__(params)
        self.fetched = []
        self.applied = []

    def fetch_kernel(self, level, is_patch=False):
        self.fetched.append((level, is_patch))
        return super().fetch_kernel(level, is_patch)

    def apply(self, buffer, shift=False, fix=False, flip=False):
        self.applied.append((self.level, buffer.shape))
        super().apply(buffer, shift, fix, flip)


@pytest.fixture()
def counting_doubles():
    """The ``(noise, kernel)`` classes that record their calls."""
    return CountingNoise, CountingKernel
