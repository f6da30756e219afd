from zoom_ics.codes import HDF5Writer, OutputWriter, select_output_writer
from zoom_ics.densities import (
    coarsen_density,
    generate_density,
    generate_density_hierarchy,
    generate_density_unigrid,
    normalize_density,
    normalize_levelmin_density,
)
from zoom_ics.geometry import BoxRegion, RefinementHierarchy, RegionGenerator, select_region_generator
from zoom_ics.grids.hierarchy import GridHierarchy
from zoom_ics.grids.meshes import Mesh, MeshBnd, PaddedMesh, RefinementMask
from zoom_ics.kernels import ConvolutionKernel, PowerLawKernel, select_kernel
from zoom_ics.noise import CubeWhiteNoise, NoiseGenerator, select_noise_generator
from zoom_ics.numalgs import fft_coarsen, fft_interpolate, meyer_scaling_function, restrict
from zoom_ics.parameters import ICParameters
