"""
Geometry Types Module
=====================

Type aliases and coercion helpers shared by the refinement geometry and the region generators.
"""
from typing import Any, Collection, Union

import numpy as np
from numpy.typing import NDArray

Index3 = NDArray[np.int64]
"""
Alias for an integer 3-vector (offsets and extents in cell units).
"""

Point3 = Union[NDArray[np.float64], Collection[float]]
"""
Alias for a position in the unit box, represented as a list, tuple or numpy array of floats.
"""


def coerce_to_index3(value: Any) -> Index3:
    """
    Coerce any input to a length-3 integer numpy array.

    Parameters
    ----------
    value : Any
        A scalar (broadcast to all three axes) or a 3-element sequence.

    Returns
    -------
    NDArray[int]
        The coerced array.

    Raises
    ------
    ValueError
        If the input cannot be interpreted as three integers.
    """
    arr = np.asarray(value)
    if arr.ndim == 0:
        arr = np.repeat(arr, 3)

    if arr.shape != (3,):
        raise ValueError(f"Expected 3 components, got shape {arr.shape}.")

    if not np.all(np.equal(np.mod(arr, 1), 0)):
        raise ValueError(f"Expected integer components, got {value}.")

    return arr.astype(np.int64)


def coerce_to_point3(value: Any) -> NDArray[np.float64]:
    """
    Coerce any input to a length-3 float numpy array.
    """
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        arr = np.repeat(arr, 3)

    if arr.shape != (3,):
        raise ValueError(f"Expected 3 components, got shape {arr.shape}.")

    return arr


def periodic_delta(dx: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Wrap coordinate differences in the unit box into ``[-0.5, 0.5]``.
    """
    dx = np.array(dx, dtype=np.float64, copy=True)
    dx[dx < -0.5] += 1.0
    dx[dx > 0.5] -= 1.0
    return dx
