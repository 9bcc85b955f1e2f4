from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any
    NDArray = Any


def as_1d_float_array(values: ArrayLike, *, name: str) -> NDArray[np.float64]:
    import numpy as np

    array = np.atleast_1d(np.asarray(values, dtype=np.float64))
    if array.ndim != 1:
        raise ValueError(f"{name} must be 1D, got shape={array.shape}")
    return array


def as_bounds_array(bounds: ArrayLike, *, n_parameters: int) -> NDArray[np.float64]:
    """Validate a ``(n_parameters, 2)`` matrix of ``[low, high]`` rows.

    Rows with ``low == high`` are allowed and pin the parameter.
    """
    import numpy as np

    array = np.asarray(bounds, dtype=np.float64)
    if array.shape != (n_parameters, 2):
        raise ValueError(
            f"bounds must have shape ({n_parameters}, 2), got shape={array.shape}"
        )
    if not np.all(np.isfinite(array)):
        bad = np.flatnonzero(~np.isfinite(array).all(axis=1)).tolist()
        raise ValueError(f"bounds must be finite, rows {bad} are not")
    low_gt_high = np.flatnonzero(array[:, 0] > array[:, 1]).tolist()
    if low_gt_high:
        raise ValueError(f"bounds low must be <= high, rows {low_gt_high} are not")
    return array


def as_spatial_map(values: ArrayLike, *, shape: tuple[int, ...], name: str) -> NDArray[np.float64]:
    import numpy as np

    array = np.asarray(values, dtype=np.float64)
    if array.shape != tuple(shape):
        raise ValueError(f"{name} must have shape {tuple(shape)}, got shape={array.shape}")
    return array
