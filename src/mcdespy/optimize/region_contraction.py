"""Stochastic Region Contraction.

Region Contraction is a bounded global search for low-dimensional,
multi-modal least-squares problems such as mcDESPOT [1]_. Each iteration
draws a uniform population inside the current box, keeps the best
``retain`` candidates by weighted sum of squares, and shrinks the box to
the span of the retained set (optionally expanded, but never beyond the
starting bounds). The search stops after ``contract`` iterations or when
every parameter's relative width drops below its threshold.

The retained set is carried into the next population, so the best
residual never increases from one iteration to the next.

With ``polish=True`` the best retained candidate is refined afterwards by
a bounded trust-region least-squares fit (``scipy.optimize.least_squares``)
over the free parameters. The refined point replaces it only if it
satisfies the constraint and lowers the cost.

References
----------
.. [1] Berger MF, Silverman HF. (1991). Microphone array optimization by
       stochastic region contraction. IEEE Trans Signal Process, 39(11):2377-2386.
.. [2] Deoni SCL, Rutt BK, Jones DK. (2008). Gleaning multicomponent T1 and T2
       information from steady-state imaging data. Magn Reson Med, 60(6):1372-1387.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from ..core.arrays import as_1d_float_array
from ..core.result_schema import FitResult
from ..models.functors import validate_bounds

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]

logger = logging.getLogger("mcdespy")

# |midpoint| below this fraction of the starting width is replaced by it
# when computing relative widths (parameters centred near zero, e.g. f0)
MIDPOINT_FLOOR = 0.05


def voxel_seed(base_seed: int | None, index: int) -> Any:
    """Seed for one voxel's optimiser.

    With ``base_seed=None`` the seed mixes wall-clock time with the voxel
    index, so repeated runs differ. Otherwise the seed depends only on
    ``(base_seed, index)`` and runs are reproducible regardless of the
    order in which voxels are processed.
    """
    import numpy as np

    if base_seed is None:
        return (time.time_ns() ^ int(index)) & 0xFFFFFFFFFFFFFFFF
    return np.random.SeedSequence([int(base_seed), int(index)])


def check_settings(
    functor: Any,
    bounds: ArrayLike,
    weights: ArrayLike | None = None,
    thresholds: ArrayLike | None = None,
    *,
    samples: int = 5000,
    retain: int = 50,
    contract: int = 10,
    expand: float = 0.0,
    max_resample: int = 100,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Validate Region Contraction settings against a functor.

    Returns
    -------
    tuple of ndarray
        ``(bounds, weights, thresholds)`` as float arrays, with the
        defaults filled in.

    Raises
    ------
    ValueError
        For counts out of range or arrays of the wrong shape.
    """
    import numpy as np

    if samples < 1:
        raise ValueError("samples must be >= 1")
    if not 1 <= retain < samples:
        raise ValueError(f"retain must be in [1, samples), got retain={retain} samples={samples}")
    if contract < 1:
        raise ValueError("contract must be >= 1")
    if expand < 0:
        raise ValueError("expand must be >= 0")
    if max_resample < 1:
        raise ValueError("max_resample must be >= 1")

    bounds = validate_bounds(bounds, functor.n_parameters)

    if weights is None:
        weights = np.ones(functor.size)
    else:
        weights = as_1d_float_array(weights, name="weights")
        if weights.shape != (functor.size,):
            raise ValueError(f"weights must have {functor.size} entries, got {weights.size}")

    if thresholds is None:
        thresholds = np.asarray(functor.default_thresholds(), dtype=np.float64)
    else:
        thresholds = as_1d_float_array(thresholds, name="thresholds")
        if thresholds.shape != (functor.n_parameters,):
            raise ValueError(f"thresholds must have {functor.n_parameters} entries, got {thresholds.size}")
    return bounds, weights, thresholds


class RegionContraction:
    """Region Contraction minimiser of a functor's weighted residuals.

    Parameters
    ----------
    functor : DespotFunctor
        Objective bound to one voxel (``functor.actual`` is set).
    bounds : array_like
        ``(n_parameters, 2)`` starting box; rows with ``low == high`` pin a
        parameter.
    weights : array_like, optional
        Per-signal weights applied to squared residuals. Defaults to ones.
    thresholds : array_like, optional
        Per-parameter relative-width convergence thresholds. Defaults to
        ``functor.default_thresholds()``.
    samples : int
        Candidates drawn per iteration.
    retain : int
        Candidates kept per iteration; must be below ``samples``.
    contract : int
        Maximum number of contractions.
    expand : float
        Fraction of the retained span added on each side of the new box.
    max_resample : int
        Rounds of re-drawing allowed per iteration to replace candidates
        rejected by ``functor.constraint``.
    polish : bool
        Refine the best candidate with a bounded least-squares fit.
    """

    def __init__(
        self,
        functor: Any,
        bounds: ArrayLike,
        weights: ArrayLike | None = None,
        thresholds: ArrayLike | None = None,
        *,
        samples: int = 5000,
        retain: int = 50,
        contract: int = 10,
        expand: float = 0.0,
        max_resample: int = 100,
        polish: bool = False,
    ) -> None:
        import numpy as np

        self.functor = functor
        self.bounds, self.weights, self.thresholds = check_settings(
            functor,
            bounds,
            weights,
            thresholds,
            samples=samples,
            retain=retain,
            contract=contract,
            expand=expand,
            max_resample=max_resample,
        )
        self.samples = int(samples)
        self.retain = int(retain)
        self.contract = int(contract)
        self.expand = float(expand)
        self.max_resample = int(max_resample)
        self.polish = bool(polish)

        self.history: list[float] = []
        self.contractions = 0
        self.width = self.bounds[:, 1] - self.bounds[:, 0]
        self.midpoint = self.bounds.mean(axis=1)
        self.residuals = np.zeros(functor.size)
        self.sos = float("nan")

    def cost(self, population: NDArray[np.float64]) -> NDArray[np.float64]:
        """Weighted sum of squared residuals; non-finite costs become ``inf``."""
        import numpy as np

        r = self.functor.residuals(population)
        with np.errstate(invalid="ignore", over="ignore"):
            sos = np.sum(self.weights * np.abs(r) ** 2, axis=-1)
        return np.where(np.isfinite(sos), sos, np.inf)

    def _sample(self, rng, low, high) -> NDArray[np.float64]:
        import numpy as np

        n_p = low.size
        accepted = []
        n_valid = 0
        for _ in range(self.max_resample):
            draw = low + rng.random((self.samples - n_valid, n_p)) * (high - low)
            ok = np.asarray(self.functor.constraint(draw), dtype=bool)
            accepted.append(draw[ok])
            n_valid += int(ok.sum())
            if n_valid >= self.samples:
                break
        return np.concatenate(accepted, axis=0)

    def _relative_width(self, width, midpoint) -> NDArray[np.float64]:
        import numpy as np

        start_width = self.bounds[:, 1] - self.bounds[:, 0]
        scale = np.maximum(np.abs(midpoint), MIDPOINT_FLOOR * start_width)
        with np.errstate(divide="ignore", invalid="ignore"):
            rel = width / scale
        return np.where(width == 0, 0.0, rel)

    def _refine(self, x0: NDArray[np.float64], cost0: float) -> tuple[NDArray[np.float64], float]:
        """Bounded least-squares refinement of ``x0`` over the free rows."""
        import numpy as np
        from scipy.optimize import least_squares

        low, high = self.bounds[:, 0], self.bounds[:, 1]
        free = high > low
        if not free.any() or not np.isfinite(cost0):
            return x0, cost0
        sqrt_w = np.sqrt(self.weights)

        def residuals(values):
            p = x0.copy()
            p[free] = values
            with np.errstate(all="ignore"):
                r = sqrt_w * self.functor.residuals(p)
            if np.iscomplexobj(r):
                r = np.concatenate([r.real, r.imag])
            return r

        try:
            fit = least_squares(
                residuals,
                x0=x0[free],
                bounds=(low[free], high[free]),
                x_scale=(high - low)[free],
                method="trf",
            )
        except (ValueError, np.linalg.LinAlgError) as exc:
            logger.debug("least-squares refinement failed: %s", exc)
            return x0, cost0

        x = x0.copy()
        x[free] = np.clip(fit.x, low[free], high[free])
        if not bool(self.functor.constraint(x)):
            return x0, cost0
        cost = float(self.cost(x[None, :])[0])
        if cost < cost0:
            return x, cost
        return x0, cost0

    def optimise(self, seed: Any = None) -> FitResult:
        """Run the search and return the best candidate found.

        Raises
        ------
        RuntimeError
            If no candidate satisfying the constraint could be drawn.
        """
        import numpy as np

        rng = np.random.default_rng(seed)
        n_p = self.functor.n_parameters
        start_low, start_high = self.bounds[:, 0], self.bounds[:, 1]
        low, high = start_low.copy(), start_high.copy()

        retained = np.empty((0, n_p))
        retained_cost = np.empty(0)
        self.history = []
        status = "max_contractions"

        for iteration in range(self.contract):
            candidates = self._sample(rng, low, high)
            population = np.concatenate([retained, candidates], axis=0)
            if population.shape[0] == 0:
                raise RuntimeError(
                    "no candidate satisfied the parameter constraint after "
                    f"{self.max_resample} resampling rounds; check the bounds"
                )
            if candidates.shape[0] < self.samples:
                logger.debug(
                    "iteration %d: only %d/%d candidates satisfied the constraint",
                    iteration,
                    candidates.shape[0],
                    self.samples,
                )

            cost = np.concatenate([retained_cost, self.cost(candidates)])
            order = np.argsort(cost, kind="stable")[: self.retain]
            retained, retained_cost = population[order], cost[order]
            self.history.append(float(retained_cost[0]))
            self.contractions = iteration + 1

            span_low, span_high = retained.min(axis=0), retained.max(axis=0)
            pad = self.expand * (span_high - span_low)
            low = np.maximum(span_low - pad, start_low)
            high = np.minimum(span_high + pad, start_high)

            self.width = high - low
            self.midpoint = (high + low) / 2.0
            if np.all(self._relative_width(self.width, self.midpoint) <= self.thresholds):
                status = "converged"
                break

        best, best_cost = retained[0], float(retained_cost[0])
        refined = False
        if self.polish:
            x, x_cost = self._refine(best, best_cost)
            refined = x_cost < best_cost
            best, best_cost = x, x_cost

        residuals = self.functor.residuals(best)
        self.residuals = residuals
        self.sos = best_cost
        n_points = int(np.size(residuals))

        return FitResult(
            params=dict(zip(self.functor.names, (float(v) for v in best))),
            quality={
                "sos": self.sos,
                "rmse": float(np.sqrt(np.mean(np.abs(residuals) ** 2))),
                "n_points": n_points,
                "status": status,
            },
            diagnostics={
                "residuals": residuals,
                "contractions": self.contractions,
                "width": self.width.copy(),
                "midpoint": self.midpoint.copy(),
                "history": np.asarray(self.history),
                "refined": refined,
            },
        )
