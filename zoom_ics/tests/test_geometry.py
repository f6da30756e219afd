"""
Tests for the refinement geometry resolver.
"""
import numpy as np
import pytest
from numpy.testing import assert_allclose

from zoom_ics.geometry import BoxRegion, RefinementHierarchy
from zoom_ics.utilities.exceptions import ConfigurationError, GeometryError, LevelNotFoundError


def resolve(params) -> RefinementHierarchy:
    return RefinementHierarchy(params, BoxRegion(params))


def assert_nesting(rh: RefinementHierarchy):
    for ilevel in range(rh.levelmin + 1, rh.levelmax + 1):
        for idim in range(3):
            assert rh.offset_abs(ilevel, idim) == 2 * (rh.offset_abs(ilevel - 1, idim) + rh.offset(ilevel, idim))


class TestRefinementHierarchy:
    def test_unigrid(self, unigrid_params):
        rh = resolve(unigrid_params)

        assert rh.levelmin == rh.levelmax == 5
        for ilevel in range(6):
            assert rh.size(ilevel, 0) == 2**ilevel
            assert rh.offset_abs(ilevel, 0) == 0
        assert all(rh.get_shift(idim) == 0 for idim in range(3))

    def test_centered_zoom(self, zoom_params):
        rh = resolve(zoom_params)

        assert [rh.offset(6, d) for d in range(3)] == [12, 12, 12]
        assert [rh.offset_abs(6, d) for d in range(3)] == [24, 24, 24]
        assert [rh.size(6, d) for d in range(3)] == [16, 16, 16]
        assert [rh.offset(7, d) for d in range(3)] == [4, 4, 4]
        assert [rh.offset_abs(7, d) for d in range(3)] == [56, 56, 56]
        assert [rh.size(7, d) for d in range(3)] == [16, 16, 16]
        assert_nesting(rh)

        # No shift is needed for a centered region.
        assert all(rh.get_shift(idim) == 0 for idim in range(3))
        assert_allclose(rh.region.get_bounding_box(7)[0], [0.4375] * 3)

    def test_level_record(self, zoom_params):
        level = resolve(zoom_params).level(7)

        assert level.level == 7
        assert np.array_equal(level.offset, [4, 4, 4])
        assert np.array_equal(level.offset_abs, [56, 56, 56])
        assert np.array_equal(level.size, [16, 16, 16])

    def test_shift_to_center(self, make_params):
        params = make_params(setup={"ref_center": [0.2, 0.5, 0.5]})
        rh = resolve(params)

        assert [rh.get_shift(idim) for idim in range(3)] == [10, 0, 0]
        assert params.get_value("setup", "shift_x", int) == 10
        assert params.get_value("setup", "shift_y", int) == 0
        assert_allclose(rh.get_coord_shift(), [-10 / 32, 0.0, 0.0])
        assert_nesting(rh)

        # The region is moved back into unshifted coordinates.
        left = rh.region.get_bounding_box(7)[0]
        assert_allclose(left[0], rh.offset_abs(7, 0) / 128 - 10 / 32)

    def test_no_shift(self, make_params):
        rh = resolve(make_params(setup={"ref_center": [0.2, 0.5, 0.5], "no_shift": True}))
        assert rh.get_shift(0) == 0
        assert_nesting(rh)

    def test_gridding_alignment(self, make_params):
        rh = resolve(make_params(setup={"gridding_unit": 8}))

        for ilevel in (6, 7):
            for idim in range(3):
                assert rh.offset_abs(ilevel, idim) % 16 == 0
        assert_nesting(rh)

    def test_align_top(self, make_params):
        rh = resolve(make_params(setup={"align_top": True}))

        for idim in range(3):
            assert rh.offset_abs(7, idim) % 4 == 0
            assert rh.size(7, idim) % 4 == 0
            assert rh.offset_abs(6, idim) % 2 == 0
        assert_nesting(rh)

    def test_equal_extent(self, make_params):
        rh = resolve(make_params(setup={"ref_extent": [0.125, 0.0625, 0.09375], "force_equal_extent": True}))

        for ilevel in (6, 7):
            assert rh.size(ilevel, 0) == rh.size(ilevel, 1) == rh.size(ilevel, 2)
        assert_nesting(rh)

    def test_equal_extent_at_origin(self, make_params):
        # Widening a thin box at the origin pushes it below zero; relative offsets truncate towards zero.
        params = make_params(
            setup={
                "levelmax": 6,
                "ref_center": [0.015625, 0.125, 0.015625],
                "ref_extent": [0.03125, 0.25, 0.03125],
                "force_equal_extent": True,
                "no_shift": True,
            }
        )
        rh = resolve(params)

        assert [rh.size(6, d) for d in range(3)] == [16, 16, 16]
        assert [rh.offset(6, d) for d in range(3)] == [-3, 0, -3]
        assert [rh.offset_abs(6, d) for d in range(3)] == [-6, 0, -6]
        assert_nesting(rh)

    def test_levelmax_below_levelmin(self, make_params):
        with pytest.raises(ConfigurationError, match="setup.levelmax"):
            resolve(make_params(setup={"levelmin": 7, "levelmax": 6}))

    def test_levelmin_tf_out_of_range(self, make_params):
        with pytest.raises(ConfigurationError, match="setup.levelmin_TF"):
            resolve(make_params(setup={"levelmin_TF": 8}))

    def test_gridding_blocking_conflict(self, make_params):
        with pytest.raises(ConfigurationError, match="blocking_factor"):
            resolve(make_params(setup={"gridding_unit": 4, "blocking_factor": 8}))

    def test_align_top_with_bad_dims(self, make_params):
        mapping = make_params(setup={"align_top": True}).as_dict()
        del mapping["setup"]["ref_extent"]
        mapping["setup"]["ref_dims"] = [18, 18, 18]

        with pytest.raises(ConfigurationError, match="ref_dims"):
            resolve(type(make_params())(mapping))

    def test_patch_larger_than_half_box(self, make_params):
        with pytest.raises(GeometryError, match="half the box"):
            resolve(make_params(setup={"ref_extent": [0.6, 0.6, 0.6]}))

    def test_level_not_found(self, zoom_params):
        rh = resolve(zoom_params)

        with pytest.raises(LevelNotFoundError):
            rh.offset(8, 0)
        with pytest.raises(LevelNotFoundError):
            rh.level(-1)


class TestMutation:
    def test_adjust_level_keeps_finer_levels(self, zoom_params):
        rh = resolve(zoom_params)
        rh.adjust_level(6, (32, 32, 32), (16, 16, 16))

        assert rh.offset(6, 0) == 8
        assert rh.offset(7, 0) == 12
        assert rh.offset_abs(7, 0) == 56
        assert rh.size(6, 0) == 32
        assert_nesting(rh)

    def test_adjust_level_odd_shift(self, zoom_params):
        rh = resolve(zoom_params)
        with pytest.raises(GeometryError):
            rh.adjust_level(6, (17, 17, 17), (23, 23, 23))

    def test_expanded_to_levelmin_tf(self, make_params):
        rh = resolve(make_params(setup={"levelmin_TF": 6}))
        expanded = rh.expanded_to_levelmin_tf()

        assert expanded.levelmin == 6
        assert [expanded.size(6, d) for d in range(3)] == [64, 64, 64]
        assert [expanded.offset_abs(6, d) for d in range(3)] == [0, 0, 0]
        assert [expanded.offset(7, d) for d in range(3)] == [28, 28, 28]
        assert [expanded.offset_abs(7, d) for d in range(3)] == [56, 56, 56]
        assert_nesting(expanded)

        # The unexpanded geometry is untouched.
        assert rh.levelmin == 5
        assert rh.size(6, 0) == 16
        assert rh.offset(7, 0) == 4

    def test_find_new_levelmin(self, zoom_params):
        rh = resolve(zoom_params)
        rh.adjust_level(6, (64, 64, 64), (0, 0, 0))
        assert rh.levelmin == 6


@pytest.mark.parametrize(
    "base_unit,levelmin,expected",
    [(1, 5, 1), (1, 10, 1), (3, 5, 2), (4, 7, 1), (12, 7, 2), (5, 6, 4)],
)
def test_shift_unit(base_unit, levelmin, expected):
    assert RefinementHierarchy.get_shift_unit(base_unit, levelmin) == expected
