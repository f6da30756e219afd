"""
Tests for the multi-level grid hierarchy.
"""
import numpy as np
import pytest
from numpy.testing import assert_allclose

from zoom_ics.grids.hierarchy import GridHierarchy
from zoom_ics.utilities.exceptions import GeometryError, IncompatibleHierarchyError, LevelNotFoundError


@pytest.fixture()
def nested():
    """Levels 0-4 full, a 16^3 patch on level 5 at (4, 4, 4) and an 8^3 patch on level 6 at (4, 4, 4)."""
    gh = GridHierarchy(2)
    gh.create_base_hierarchy(4)
    gh.add_patch((4, 4, 4), (16, 16, 16))
    gh.add_patch((4, 4, 4), (8, 8, 8))
    return gh


class TestConstruction:
    @pytest.mark.parametrize("lmax", [0, 1, 3, 5])
    def test_base_hierarchy(self, lmax):
        gh = GridHierarchy(2)
        gh.create_base_hierarchy(lmax)

        assert gh.levelmin == gh.levelmax == lmax
        assert gh.levelcount == lmax + 1
        for ilevel in range(lmax + 1):
            assert gh.get_grid(ilevel).shape == (2**ilevel,) * 3
            assert gh.offset_abs(ilevel, 0) == 0
            assert gh.get_grid(ilevel).sum() == 0.0

    def test_add_patch(self):
        gh = GridHierarchy(2)
        gh.create_base_hierarchy(7)
        gh.add_patch((32, 32, 32), (128, 128, 128))
        gh.add_patch((10, 10, 10), (64, 64, 64))

        assert gh.levelmax == 9
        assert gh.levelmin == 7
        assert [gh.size(9, d) for d in range(3)] == [64, 64, 64]
        for d in range(3):
            assert gh.offset_abs(8, d) == 64
            assert gh.offset_abs(9, d) == 2 * (gh.offset_abs(8, d) + 10)

    def test_add_patch_to_empty(self):
        with pytest.raises(LevelNotFoundError):
            GridHierarchy(2).add_patch((0, 0, 0), (2, 2, 2))

    def test_missing_level(self, nested):
        with pytest.raises(LevelNotFoundError):
            nested.get_grid(7)
        with pytest.raises(LevelNotFoundError):
            nested.offset_abs(-1, 0)
        assert nested[6] is nested.get_grid(6)

    def test_positions(self, nested):
        assert_allclose(nested.cell_pos(5, 0, 0, 0), [8.5 / 32] * 3)
        left, right = nested.grid_bbox(5)
        assert_allclose(left, 0.25)
        assert_allclose(right, 0.75)

    def test_deallocate(self, nested):
        nested.deallocate()
        assert len(nested) == 0
        assert nested.levelmax == -1


class TestCutPatch:
    def test_offsets(self, nested):
        nested.cut_patch(5, (10, 10, 10), (12, 12, 12), enforce_coarse_mean=True)

        assert [nested.offset(5, d) for d in range(3)] == [5, 5, 5]
        assert [nested.offset_abs(5, d) for d in range(3)] == [10, 10, 10]
        assert nested.get_grid(5).shape == (12, 12, 12)
        assert [nested.offset(6, d) for d in range(3)] == [2, 2, 2]
        assert nested.offset_abs(6, 0) == 2 * (nested.offset_abs(5, 0) + nested.offset(6, 0))

    def test_keeps_values(self, nested):
        fine = nested.get_grid(5)
        fine[...] = np.arange(fine.shape[0])[:, None, None] * 1.0

        nested.cut_patch(5, (10, 10, 10), (12, 12, 12), enforce_coarse_mean=True)
        assert_allclose(nested.get_grid(5)[:, 0, 0] - nested.get_grid(5)[0, 0, 0], np.arange(12.0))

    def test_enforce_coarse_mean(self, nested):
        nested.get_grid(4)[...] = 1.0
        nested.get_grid(5)[...] = 3.0

        nested.cut_patch(5, (10, 10, 10), (12, 12, 12), enforce_coarse_mean=True)

        assert nested.get_grid(5).mean() == pytest.approx(1.0)
        assert np.all(nested.get_grid(4)[...] == 1.0)

    def test_enforce_fine_mean(self, nested):
        nested.get_grid(4)[...] = 1.0
        nested.get_grid(5)[...] = 3.0

        nested.cut_patch(5, (10, 10, 10), (12, 12, 12), enforce_coarse_mean=False)

        coarse = nested.get_grid(4)
        assert np.all(nested.get_grid(5)[...] == 3.0)
        assert_allclose(coarse[5:11, 5:11, 5:11], 3.0)
        assert coarse[0, 0, 0] == 1.0
        assert coarse[11, 5, 5] == 1.0

    def test_odd_shift(self, nested):
        with pytest.raises(GeometryError):
            nested.cut_patch(5, (9, 10, 10), (12, 12, 12), enforce_coarse_mean=True)

    def test_not_contained(self, nested):
        with pytest.raises(GeometryError):
            nested.cut_patch(5, (10, 10, 10), (16, 16, 16), enforce_coarse_mean=True)

    def test_new_levelmin(self):
        gh = GridHierarchy(2)
        gh.create_base_hierarchy(5)
        gh.add_patch((0, 0, 0), (64, 64, 64))
        gh.add_patch((28, 28, 28), (16, 16, 16))
        gh.find_new_levelmin()
        assert gh.levelmin == 6

        gh.cut_patch(6, (24, 24, 24), (16, 16, 16), enforce_coarse_mean=False)

        assert gh.levelmin == 5
        assert [gh.offset(6, d) for d in range(3)] == [12, 12, 12]
        assert [gh.offset(7, d) for d in range(3)] == [4, 4, 4]
        assert gh.offset_abs(7, 0) == 56


class TestRefinementMask:
    def test_leaf_count_without_mask(self, nested):
        expected = (16**3 - 8**3) + (16**3 - 4**3) + 8**3
        assert nested.count_leaf_cells() == expected
        assert nested.count_leaf_cells(4, 5) == (16**3 - 8**3) + (16**3 - 4**3)

    def test_full_region_mask(self, nested, zoom_params):
        from zoom_ics.geometry import BoxRegion

        nested.region = BoxRegion(zoom_params)
        nested.add_refinement_mask()

        assert nested.have_refmask
        total = sum(
            int(np.count_nonzero(nested.get_mask(ilevel).data == 1)) for ilevel in range(4, 7)
        )
        assert nested.count_leaf_cells() == total == (16**3 - 8**3) + (16**3 - 4**3) + 8**3
        assert np.count_nonzero(nested.get_mask(4).data == 2) == 8**3

    def test_partial_region_mask(self, half_box_region):
        gh = GridHierarchy(2, region=half_box_region)
        gh.create_base_hierarchy(4)
        gh.add_patch((4, 4, 4), (16, 16, 16))
        gh.add_refinement_mask()

        coarse, fine = gh.get_mask(4).data, gh.get_mask(5).data

        assert np.count_nonzero(coarse == 2) == 4 * 8 * 8
        assert np.count_nonzero(fine == 1) == 8 * 16 * 16
        assert np.count_nonzero(fine == -1) == 8 * 16 * 16
        assert gh.count_leaf_cells() == (16**3 - 256) + 2048
        assert gh.count_leaf_cells() == sum(int(np.count_nonzero(gh.get_mask(L).data == 1)) for L in (4, 5))

        assert gh.is_refined(4, 4, 4, 4)
        assert not gh.is_refined(4, 10, 4, 4)
        assert gh.is_in_mask(4, 10, 4, 4)
        assert gh.is_in_mask(5, 0, 0, 0)
        assert not gh.is_in_mask(5, 12, 0, 0)

    def test_mask_rebuilt_after_cut(self, nested, half_box_region):
        nested.region = half_box_region
        nested.add_refinement_mask()
        nested.cut_patch(5, (10, 10, 10), (12, 12, 12), enforce_coarse_mean=True)

        assert nested.have_refmask
        assert nested.get_mask(5).shape == (12, 12, 12)
        assert nested.count_leaf_cells() == sum(
            int(np.count_nonzero(nested.get_mask(L).data == 1)) for L in range(4, 7)
        )

    def test_mask_without_region(self, nested):
        with pytest.raises(GeometryError):
            nested.add_refinement_mask()


class TestArithmetic:
    def test_hierarchy_ops(self, nested):
        nested += 2.0
        other = nested.copy()

        nested += other
        assert all(np.all(grid[...] == 4.0) for grid in nested)
        assert np.all(other.get_grid(6)[...] == 2.0)

        nested -= 1.0
        nested *= 0.5
        nested /= other
        for grid in nested:
            assert_allclose(grid[...], 0.75)

    def test_inconsistent(self, nested):
        other = GridHierarchy(2)
        other.create_base_hierarchy(4)
        other.add_patch((4, 4, 4), (16, 16, 16))
        other.add_patch((2, 2, 2), (8, 8, 8))

        assert not nested.is_consistent(other)
        with pytest.raises(IncompatibleHierarchyError):
            nested += other

    def test_zero(self, nested):
        nested += 1.0
        nested.zero()
        assert all(grid.data.sum() == 0.0 for grid in nested)
