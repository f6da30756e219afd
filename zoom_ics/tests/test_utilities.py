"""
Tests for the configuration, registry and I/O utilities.
"""
import os

import h5py
import numpy as np
import pytest
from unyt import unyt_quantity

from zoom_ics.utilities.config import YAMLConfiguration
from zoom_ics.utilities.exceptions import ConfigurationError, GeometryError, LevelNotFoundError, ZoomICsError
from zoom_ics.utilities.io import HDF5FileHandler
from zoom_ics.utilities.types import AttrDict, Registry, ensure_ytquantity


class TestRegistry:
    def test_register(self):
        registry = Registry()
        registry.register("a", int, description="integers")

        assert "a" in registry
        assert len(registry) == 1
        assert registry["a"] is int
        assert registry.meta["a"].description == "integers"

        with pytest.raises(ValueError):
            registry.register("a", float)

        registry.register("a", float, overwrite=True)
        assert registry["a"] is float

        registry.unregister("a")
        assert "a" not in registry

    def test_autoregister(self):
        registry = Registry()

        @registry.autoregister()
        class Foo:
            pass

        @registry.autoregister("bar")
        class Bar:
            pass

        assert sorted(registry.keys()) == ["Foo", "bar"]
        assert registry["bar"] is Bar


def test_attrdict():
    d = AttrDict({"a": {"b": {"c": 1}}, "d": 2})
    assert d.a.b.c == 1
    assert d["a"]["b"]["c"] == 1
    assert d.d == 2


@pytest.mark.parametrize(
    "value,expected",
    [(5.0, 5.0), (unyt_quantity(2000.0, "kpc"), 2.0), ((3000.0, "kpc"), 3.0)],
)
def test_ensure_ytquantity(value, expected):
    q = ensure_ytquantity(value, "Mpc")
    assert str(q.units) == "Mpc"
    assert q.v == pytest.approx(expected)


class TestYAMLConfiguration:
    @pytest.fixture()
    def config(self, temp_dir):
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            f.write("logging:\n  mylog:\n    level: INFO\nsystem:\n  preferences:\n    disable_progress_bars: false\n")
        return YAMLConfiguration(path)

    def test_access(self, config):
        assert config["logging", "mylog", "level"] == "INFO"
        assert config["logging.mylog.level"] == "INFO"
        assert config.config.system.preferences.disable_progress_bars is False

    def test_runtime_override(self, config):
        config.config.system.preferences.disable_progress_bars = True
        assert config["system", "preferences", "disable_progress_bars"] is True

        config.reload()
        assert config["system", "preferences", "disable_progress_bars"] is False

    def test_set_param(self, config):
        config.set_param("logging.mylog.level", "DEBUG")

        assert config["logging", "mylog", "level"] == "DEBUG"
        assert YAMLConfiguration(config.path)["logging", "mylog", "level"] == "DEBUG"

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            YAMLConfiguration(os.path.join(temp_dir, "none.yaml")).config


def test_error_taxonomy():
    assert issubclass(LevelNotFoundError, GeometryError)
    assert issubclass(ConfigurationError, ZoomICsError)

    er = ConfigurationError("Bad value", "setup.padding", "setup.levelmin")
    assert er.parameters == ("setup.padding", "setup.levelmin")
    assert "setup.padding, setup.levelmin" in str(er)


class TestHDF5FileHandler:
    def test_groups_and_datasets(self, temp_dir):
        path = os.path.join(temp_dir, "handler.hdf5")

        with HDF5FileHandler(path, mode="w") as fo:
            group = fo.create_group("LEVEL_3")
            group.attrs["size"] = np.array([8, 8, 8])
            group.write_data("density", np.ones((8, 8, 8)))
            group.write_data("density", np.zeros((8, 8, 8)))

            with pytest.raises(ValueError):
                group.write_data("density", np.ones(3), overwrite=False)

            assert fo["LEVEL_3/density"].shape == (8, 8, 8)

        with h5py.File(path, "r") as f:
            assert f["LEVEL_3/density"][...].sum() == 0.0
            assert list(f["LEVEL_3"].attrs["size"]) == [8, 8, 8]

    def test_bad_handle(self):
        with pytest.raises(TypeError):
            HDF5FileHandler(42)
