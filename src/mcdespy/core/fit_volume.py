"""Voxel-wise fitting of whole volumes.

Slices along the third axis are processed one after the other and voxels
within a slice are fitted in parallel. A slice's results are written into
the output maps only once every voxel in it has been fitted, so after an
interruption the maps hold complete slices and zeros, never a partial slice.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from .._mask import resolve_mask
from .._parallel import CancellationToken, parallel_map
from ..config import FitConfig
from ..models.functors import validate_bounds
from ..models.pools import OffResMode
from ..optimize.region_contraction import RegionContraction, check_settings, voxel_seed
from .arrays import as_spatial_map
from .result_schema import FitResult

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]

logger = logging.getLogger("mcdespy")


def _signal_volumes(signals: Any, functor: Any) -> list[NDArray[Any]]:
    import numpy as np

    if isinstance(signals, np.ndarray):
        signals = [signals]
    signals = list(signals)
    if len(signals) != len(functor.sequences):
        raise ValueError(
            f"expected {len(functor.sequences)} signal volumes (one per sequence), got {len(signals)}"
        )
    volumes = []
    for i, (values, sequence) in enumerate(zip(signals, functor.sequences)):
        volume = np.asarray(values)
        if volume.ndim != 4:
            raise ValueError(f"signal volume {i} must be 4D (x, y, z, n), got shape={volume.shape}")
        if volume.shape[-1] != sequence.size:
            raise ValueError(
                f"signal volume {i} has {volume.shape[-1]} volumes, "
                f"{sequence.kind.value} sequence expects {sequence.size}"
            )
        if volumes and volume.shape[:3] != volumes[0].shape[:3]:
            raise ValueError(
                f"signal volume {i} has spatial shape {volume.shape[:3]}, expected {volumes[0].shape[:3]}"
            )
        volumes.append(volume)
    return volumes


def _apply_off_resonance(
    bounds: NDArray[np.float64],
    functor: Any,
    f0: float | None,
    f0_low: float | None,
    f0_high: float | None,
) -> None:
    import numpy as np

    rows = functor.off_resonance_index
    match functor.off_resonance:
        case OffResMode.MAP:
            value = 0.0 if f0 is None else float(f0)
            if not np.isfinite(value):
                raise ValueError(f"f0 prior must be finite, got {f0}")
            bounds[rows] = value
        case OffResMode.BOUNDED | OffResMode.MULTI_BOUNDED:
            if f0_low is None or f0_high is None:
                raise ValueError(f"{functor.off_resonance.value} off-resonance needs f0_low and f0_high")
            if not (np.isfinite(f0_low) and np.isfinite(f0_high)):
                raise ValueError(f"f0_low/f0_high priors must be finite, got {f0_low}, {f0_high}")
            if f0_low > f0_high:
                raise ValueError(f"f0_low {f0_low} is above f0_high {f0_high}")
            bounds[rows, 0] = float(f0_low)
            bounds[rows, 1] = float(f0_high)


def fit_voxel(
    functor: Any,
    signals: Sequence[ArrayLike],
    *,
    config: FitConfig | None = None,
    bounds: ArrayLike | None = None,
    weights: ArrayLike | None = None,
    b1: float = 1.0,
    f0: float | None = None,
    f0_low: float | None = None,
    f0_high: float | None = None,
    t1: float | None = None,
    seed: Any = None,
) -> FitResult:
    """Fit one voxel.

    Parameters
    ----------
    functor : DespotFunctor
        Model and protocol; it is copied for this voxel, never modified.
    signals : sequence of array_like
        Observed signal of each acquisition, in protocol order.
    config : FitConfig, optional
        Region Contraction settings.
    bounds : array_like, optional
        Starting bounds; defaults to the functor's preset for
        ``config.field_strength``. Off-resonance rows are replaced from
        ``f0``/``f0_low``/``f0_high`` in the map-driven modes.
    b1, f0, f0_low, f0_high, t1 : float
        This voxel's prior map values.
    seed : optional
        Random seed; defaults to ``config.seed``.

    Returns
    -------
    FitResult
        Best parameters, SoS and optimiser diagnostics.
    """
    import numpy as np

    cfg = config or FitConfig()
    actual = functor.sequences.combine(signals, complex_signal=functor.complex_fit)

    if not (np.isfinite(b1) and b1 > 0):
        raise ValueError(f"b1 prior must be finite and > 0, got {b1}")
    priors: dict[str, Any] = {}
    if functor.REQUIRES_T1:
        if t1 is None:
            raise ValueError(f"{type(functor).__name__} needs a T1 value")
        if not t1 > 0:
            raise ValueError(f"T1 prior must be > 0, got {t1}")
        priors["t1"] = float(t1)
    local = functor.for_voxel(actual, b1=float(b1), **priors)

    if bounds is None:
        start = functor.default_bounds(cfg.field_strength)
    else:
        start = np.array(validate_bounds(bounds, functor.n_parameters))
    _apply_off_resonance(start, functor, f0, f0_low, f0_high)

    if weights is None:
        weights = functor.weights(cfg.spgr_weight)

    optimiser = RegionContraction(
        local,
        start,
        weights,
        cfg.thresholds,
        samples=cfg.samples,
        retain=cfg.retain,
        contract=cfg.contract,
        expand=cfg.expand,
        max_resample=cfg.max_resample,
        polish=cfg.polish,
    )
    return optimiser.optimise(cfg.seed if seed is None else seed)


def fit_volume(
    functor: Any,
    signals: Sequence[ArrayLike] | ArrayLike,
    *,
    config: FitConfig | None = None,
    mask: ArrayLike | str | None = None,
    b1: ArrayLike | None = None,
    f0: ArrayLike | None = None,
    f0_low: ArrayLike | None = None,
    f0_high: ArrayLike | None = None,
    t1: ArrayLike | None = None,
    bounds: ArrayLike | None = None,
    weights: ArrayLike | None = None,
    cancel: CancellationToken | None = None,
    on_slice: Callable[[int, FitResult], None] | None = None,
) -> FitResult:
    """Fit every masked voxel of a multi-acquisition volume.

    Parameters
    ----------
    functor : DespotFunctor
        Model and protocol.
    signals : sequence of array_like
        One ``(x, y, z, n_i)`` array per acquisition, in protocol order.
    config : FitConfig, optional
        Optimiser settings, seed, ``n_jobs`` and slice range.
    mask : array_like or "otsu", optional
        Voxels with mask <= 0 are skipped and stay zero.
    b1, f0, f0_low, f0_high, t1 : array_like, optional
        ``(x, y, z)`` prior maps. ``t1`` is required by DESPOT2-FM. Voxels
        whose prior is unusable (non-finite, B1 <= 0, T1 <= 0) are skipped
        and stay zero.
    bounds, weights : array_like, optional
        Starting bounds and per-signal weights shared by all voxels.
    cancel : CancellationToken, optional
        Checked before each slice; once set, no further slice is started.
    on_slice : callable, optional
        ``on_slice(k, result)`` after slice ``k`` has been written into
        ``result``.

    Returns
    -------
    FitResult
        ``result[name]`` is the ``(x, y, z)`` map of each parameter;
        ``quality`` holds the ``sos`` and ``rmse`` maps; ``diagnostics``
        holds ``residuals`` ``(x, y, z, n)``, ``contractions``, ``width``,
        ``midpoint``, ``completed_slices`` and ``interrupted``.

    Raises
    ------
    ValueError
        For mismatched geometry or invalid settings, before any voxel is fitted.
    """
    import numpy as np

    cfg = config or FitConfig()
    volumes = _signal_volumes(signals, functor)
    spatial = volumes[0].shape[:3]
    fit_mask = resolve_mask(mask, volumes[0])

    def _map(values: ArrayLike | None, name: str) -> NDArray[np.float64] | None:
        return None if values is None else as_spatial_map(values, shape=spatial, name=name)

    b1_map, f0_map, t1_map = _map(b1, "b1"), _map(f0, "f0"), _map(t1, "t1")
    low_map, high_map = _map(f0_low, "f0_low"), _map(f0_high, "f0_high")

    # voxels whose priors cannot be used are skipped and stay zero
    valid = np.ones(spatial, dtype=bool)
    if b1_map is not None:
        valid &= np.isfinite(b1_map) & (b1_map > 0)
    if functor.REQUIRES_T1:
        if t1_map is None:
            raise ValueError(f"{type(functor).__name__} needs a T1 map")
        valid &= t1_map > 0
    if functor.off_resonance.bounded_by_maps:
        if low_map is None or high_map is None:
            raise ValueError(f"{functor.off_resonance.value} off-resonance needs f0_low and f0_high maps")
        valid &= np.isfinite(low_map) & np.isfinite(high_map)
        inverted = fit_mask & valid & (low_map > high_map)
        if np.any(inverted):
            raise ValueError(f"f0_low is above f0_high in {int(inverted.sum())} masked voxels")
    if functor.off_resonance is OffResMode.MAP:
        if f0_map is None:
            logger.warning("no f0 map given, assuming on-resonance")
        else:
            valid &= np.isfinite(f0_map)
    n_invalid = int((fit_mask & ~valid).sum())
    if n_invalid:
        logger.warning("skipping %d masked voxels with invalid prior values", n_invalid)
    fit_mask = fit_mask & valid

    if bounds is None:
        start = functor.default_bounds(cfg.field_strength)
    else:
        start = validate_bounds(bounds, functor.n_parameters)
    if weights is None:
        weights = functor.weights(cfg.spgr_weight)
    start, weights, _ = check_settings(
        functor,
        start,
        weights,
        cfg.thresholds,
        samples=cfg.samples,
        retain=cfg.retain,
        contract=cfg.contract,
        expand=cfg.expand,
        max_resample=cfg.max_resample,
    )

    n_p, n_s = functor.n_parameters, functor.size
    params = np.zeros(spatial + (n_p,))
    residuals = np.zeros(spatial + (n_s,))
    sos = np.zeros(spatial)
    contractions = np.zeros(spatial, dtype=np.int64)
    width = np.zeros(spatial + (n_p,))
    midpoint = np.zeros(spatial + (n_p,))
    completed: list[int] = []

    result = FitResult(
        params={name: params[..., i] for i, name in enumerate(functor.names)},
        quality={"sos": sos, "n_points": n_s},
        diagnostics={
            "residuals": residuals,
            "contractions": contractions,
            "width": width,
            "midpoint": midpoint,
            "completed_slices": completed,
            "interrupted": False,
        },
    )

    start_slice = cfg.start_slice
    stop_slice = spatial[2] if cfg.stop_slice is None else min(cfg.stop_slice, spatial[2])
    logger.info(
        "fitting %s: %d voxels in slices %d-%d, %d parameters %s",
        type(functor).__name__,
        int(fit_mask[:, :, start_slice:stop_slice].sum()),
        start_slice,
        stop_slice - 1,
        n_p,
        functor.names,
    )

    for k in range(start_slice, stop_slice):
        if cancel is not None and cancel.cancelled:
            logger.warning("interrupted, stopping before slice %d", k)
            break

        ii, jj = np.nonzero(fit_mask[:, :, k])
        voxels = list(zip(ii.tolist(), jj.tolist()))

        def _fit_one(ij: tuple[int, int], k: int = k) -> FitResult:
            idx = (ij[0], ij[1], k)
            return fit_voxel(
                functor,
                [v[idx] for v in volumes],
                config=cfg,
                bounds=start,
                weights=weights,
                b1=1.0 if b1_map is None else b1_map[idx],
                f0=None if f0_map is None else f0_map[idx],
                f0_low=None if low_map is None else low_map[idx],
                f0_high=None if high_map is None else high_map[idx],
                t1=None if t1_map is None else t1_map[idx],
                seed=voxel_seed(cfg.seed, int(np.ravel_multi_index(idx, spatial))),
            )

        t_start = time.perf_counter()
        fitted = parallel_map(
            _fit_one, voxels, n_jobs=cfg.n_jobs, verbose=cfg.verbose, desc=f"slice {k}"
        )
        for (i, j), voxel in fitted:
            params[i, j, k] = voxel.x
            r = voxel.residuals
            residuals[i, j, k] = np.abs(r) if np.iscomplexobj(r) else r
            sos[i, j, k] = voxel.sos
            contractions[i, j, k] = voxel.contractions
            width[i, j, k] = voxel.diagnostics["width"]
            midpoint[i, j, k] = voxel.diagnostics["midpoint"]
        completed.append(k)

        elapsed = time.perf_counter() - t_start
        if voxels:
            logger.info(
                "slice %d: %d voxels in %.2f s (%.1f ms/voxel)",
                k,
                len(voxels),
                elapsed,
                1000.0 * elapsed / len(voxels),
            )
        else:
            logger.debug("slice %d: empty mask", k)
        if on_slice is not None:
            on_slice(k, result)

    interrupted = len(completed) < max(stop_slice - start_slice, 0)
    with np.errstate(invalid="ignore"):
        result.quality["rmse"] = np.sqrt(np.mean(residuals**2, axis=-1))
    result.quality["status"] = "interrupted" if interrupted else "ok"
    result.diagnostics["interrupted"] = interrupted
    return result
