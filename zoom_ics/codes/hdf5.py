"""
HDF5 output of the density hierarchy.

File layout::

    /                       attrs: levelmin, levelmax, boxlength, boxlength_units, leaf_cells, shift
    /LEVEL_<L>/density      logical region of level L
    /LEVEL_<L>/mask         refinement mask of level L (only if the mask has been built)
    /LEVEL_<L>              attrs: offset, offset_abs, size

Levels ``levelmin`` through ``levelmax`` of the hierarchy are written.
"""
from pathlib import Path

import numpy as np

from zoom_ics.codes.abc import OutputWriter, output_writer_registry
from zoom_ics.geometry.refinement import RefinementHierarchy
from zoom_ics.grids.hierarchy import GridHierarchy
from zoom_ics.parameters import ICParameters
from zoom_ics.utilities.io import HDF5FileHandler


@output_writer_registry.autoregister("hdf5")
class HDF5Writer(OutputWriter):
    """
    Write every level of the hierarchy to a single HDF5 file.

    Recognized ``output`` parameters are ``filename`` and ``compression`` (passed on to h5py,
    e.g. ``gzip``; default none).
    """

    name = "hdf5"
    LEVEL_PREFIX = "LEVEL_"

    def __init__(self, params: ICParameters):
        super().__init__(params)
        self.compression = params.get_value_safe("output", "compression", None, str)

    def write_density(self, delta: GridHierarchy, geometry: RefinementHierarchy) -> Path:
        self.logger.info("Writing density hierarchy (levels %d-%d) to %s.", delta.levelmin, delta.levelmax, self.path)

        dataset_kwargs = {"compression": self.compression} if self.compression else {}

        with HDF5FileHandler(self.path, mode="w") as fo:
            fo.attrs["levelmin"] = delta.levelmin
            fo.attrs["levelmax"] = delta.levelmax
            fo.attrs["boxlength"] = float(self.boxlength.value)
            fo.attrs["boxlength_units"] = str(self.boxlength.units)
            fo.attrs["leaf_cells"] = delta.count_leaf_cells()
            fo.attrs["shift"] = np.array([geometry.get_shift(idim) for idim in range(3)], dtype=np.int64)

            for ilevel in range(delta.levelmin, delta.levelmax + 1):
                grid = delta.get_grid(ilevel)
                group = fo.create_group(f"{self.LEVEL_PREFIX}{ilevel}")

                group.attrs["offset"] = np.array([delta.offset(ilevel, idim) for idim in range(3)], dtype=np.int64)
                group.attrs["offset_abs"] = np.array(
                    [delta.offset_abs(ilevel, idim) for idim in range(3)], dtype=np.int64
                )
                group.attrs["size"] = np.array(grid.shape, dtype=np.int64)

                group.write_data("density", np.ascontiguousarray(grid[...]), **dataset_kwargs)
                if delta.have_refmask:
                    group.write_data("mask", delta.get_mask(ilevel).data, **dataset_kwargs)

                self.logger.debug("Wrote level %d %s.", ilevel, grid)

        self.finalize()
        return self.path
