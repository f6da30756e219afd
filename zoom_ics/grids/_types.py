"""
Grid Types Module
=================

Type aliases, mask constants and re-exported errors used throughout the :py:mod:`grids` module.

Notes
-----
Grids are plain in-memory :py:class:`numpy.ndarray` buffers. Indices are always given in the
logical index range of a grid (ghost and margin cells excluded) unless stated otherwise.
"""
from typing import Collection, Union

import numpy as np
from numpy.typing import NDArray

from zoom_ics.geometry._types import Index3, coerce_to_index3
from zoom_ics.utilities.exceptions import (  # noqa
    GeometryError,
    IncompatibleHierarchyError,
    LevelNotFoundError,
)

DtypeAlias = Union[np.dtype, str, type]
"""
Alias for data type representation, accommodating numpy data types, string names of types,
or Python type objects.
"""

DomainShape = Union[Collection[int], NDArray[np.int64]]
"""
Alias for grid extents, represented as a list, tuple or numpy array of three integers.
"""

MASK_OUTSIDE: int = -1
"""int: Refinement mask value of a cell outside of the refinement region."""
MASK_LEAF: int = 1
"""int: Refinement mask value of a cell inside the region which is not refined further."""
MASK_REFINED: int = 2
"""int: Refinement mask value of a cell inside the region which exists on the next finer level."""


def coerce_to_domain_shape(domain_shape: DomainShape) -> Index3:
    """
    Coerce any input to a length-3 array of non-negative integers.

    Raises
    ------
    ValueError
        If the input cannot be coerced into a valid grid extent.
    """
    domain_shape = coerce_to_index3(domain_shape)

    if (domain_shape < 0).any():
        raise ValueError(f"All grid extents must be non-negative, got {domain_shape}.")

    return domain_shape
