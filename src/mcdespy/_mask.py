"""Mask utilities for mcdespy."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any
    NDArray = Any


def resolve_mask(
    mask: ArrayLike | Literal["otsu"] | None,
    data: NDArray[Any],
) -> NDArray[np.bool_]:
    """Resolve a mask argument to a boolean spatial array.

    Parameters
    ----------
    mask : array-like, "otsu", or None
        - None: every voxel is fitted
        - "otsu": Otsu threshold on the mean over the last axis of ``data``
        - array-like: voxels with a value > 0 are fitted
    data : ndarray
        Signal volume ``(*spatial, n)``; its spatial shape is the mask shape.

    Returns
    -------
    ndarray
        Boolean mask of shape ``data.shape[:-1]``.
    """
    import numpy as np

    spatial = data.shape[:-1]
    if mask is None:
        return np.ones(spatial, dtype=bool)

    if isinstance(mask, str):
        if mask.lower().strip() == "otsu":
            return _otsu_mask(data)
        raise ValueError(f"Unknown mask type: {mask!r}. Use 'otsu' or an array.")

    array = np.asarray(mask)
    if array.shape != spatial:
        raise ValueError(f"mask must have shape {spatial}, got shape={array.shape}")
    return np.nan_to_num(array.astype(np.float64), nan=0.0) > 0


def _otsu_mask(data: NDArray[Any]) -> NDArray[np.bool_]:
    import numpy as np

    img = np.mean(np.abs(data), axis=-1)
    return img > _otsu_threshold(img)


def _otsu_threshold(image: NDArray[Any]) -> float:
    """Otsu threshold on a 256-bin histogram of the finite values.

    Maximises ``(mu_T w_k - mu_k)**2 / (w_k (1 - w_k))`` over the split
    after bin ``k`` and returns the upper edge of that bin.
    """
    import numpy as np

    flat = image.ravel()
    flat = flat[np.isfinite(flat)]
    if flat.size == 0:
        return 0.0

    hist, edges = np.histogram(flat, bins=256)
    p = hist / hist.sum()
    omega = np.cumsum(p)
    mu = np.cumsum(p * (edges[:-1] + edges[1:]) / 2)

    with np.errstate(divide="ignore", invalid="ignore"):
        between = (mu[-1] * omega - mu) ** 2 / (omega * (1.0 - omega))
    between[~np.isfinite(between)] = np.nan
    if np.all(np.isnan(between)):
        return float(edges[0])
    return float(edges[int(np.nanargmax(between)) + 1])
