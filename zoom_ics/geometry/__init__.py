"""
Geometry Module for Nested Zoom Grids
=====================================

This module determines *where* the grids of a nested zoom hierarchy live. A region generator
describes the part of the unit box that should be resolved at the finest level; the refinement
hierarchy turns that description into integer offsets and extents for every level.

.. rubric:: Core Classes

- `RegionGenerator`: Plugin base class describing the region to refine.
- `BoxRegion`: Rectangular refinement region (``setup.region = box``).
- `RefinementHierarchy`: Resolves per-level offsets and extents from the run parameters and the
  region's bounding box.
"""
from zoom_ics.geometry.refinement import LevelGeometry, RefinementHierarchy
from zoom_ics.geometry.regions import (
    BoxRegion,
    RegionGenerator,
    region_generator_registry,
    select_region_generator,
)
