"""Synthetic mcDESPOT data from known parameters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .noise import add_complex_noise, add_rician_noise

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]


def synthetic_signals(
    functor: Any,
    params: ArrayLike,
    *,
    b1: ArrayLike = 1.0,
    complex_signal: bool | None = None,
) -> list[NDArray[Any]]:
    """Noise-free signal of every acquisition for a batch of parameters.

    Parameters
    ----------
    functor : DespotFunctor
        Model and protocol. For DESPOT2-FM its ``t1`` must broadcast
        against the batch shape of ``params``.
    params : array_like
        ``(..., n_parameters)`` in ``functor.names`` order.
    b1 : array_like
        Relative flip-angle map, broadcast against the batch shape.
    complex_signal : bool, optional
        Return the complex transverse signal; defaults to
        ``functor.complex_fit``.

    Returns
    -------
    list of ndarray
        One ``(..., n_i)`` array per acquisition. The scaling policy is not
        applied: this is what a scanner would record.
    """
    if complex_signal is None:
        complex_signal = functor.complex_fit
    pd, tissue, f0s = functor.split_parameters(params)
    return [
        sequence.signal(functor.pools, tissue, pd=pd, b1=b1, f0=f0, complex_signal=complex_signal)
        for sequence, f0 in zip(functor.sequences, f0s)
    ]


def synthetic_volume(
    functor: Any,
    params: ArrayLike,
    *,
    mask: ArrayLike | None = None,
    b1: ArrayLike | None = None,
    sigma: float = 0.0,
    seed: int | None = None,
    complex_signal: bool | None = None,
) -> list[NDArray[Any]]:
    """Per-acquisition 4D volumes for an ``(x, y, z, n_parameters)`` map.

    Voxels outside ``mask`` are zero. With ``sigma > 0`` Rician noise is
    added to magnitude data and complex Gaussian noise to complex data.
    """
    import numpy as np

    params = np.asarray(params, dtype=np.float64)
    if params.ndim != 4 or params.shape[-1] != functor.n_parameters:
        raise ValueError(
            f"params must be (x, y, z, {functor.n_parameters}), got shape={params.shape}"
        )
    spatial = params.shape[:3]
    if complex_signal is None:
        complex_signal = functor.complex_fit

    keep = np.ones(spatial, dtype=bool) if mask is None else np.asarray(mask) > 0
    if keep.shape != spatial:
        raise ValueError(f"mask must have shape {spatial}, got shape={keep.shape}")
    b1_map = np.ones(spatial) if b1 is None else np.broadcast_to(np.asarray(b1, dtype=np.float64), spatial)

    rng = np.random.default_rng(seed)
    volumes = []
    for signal in synthetic_signals(functor, params, b1=b1_map, complex_signal=complex_signal):
        if sigma > 0:
            if complex_signal:
                signal = add_complex_noise(signal, sigma=sigma, rng=rng)
            else:
                signal = add_rician_noise(signal, sigma=sigma, rng=rng)
        volumes.append(np.where(keep[..., None], signal, 0))
    return volumes
