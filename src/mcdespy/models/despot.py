from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..bloch.core import magnitude
from ..bloch.equations import one_spgr, one_ssfp
from ..core.arrays import as_1d_float_array

if TYPE_CHECKING:
    from numpy.typing import ArrayLike
else:
    ArrayLike = Any  # type: ignore[misc,assignment]


def _check_b1(b1: Any):
    import numpy as np

    b1 = np.asarray(b1, dtype=np.float64)
    if b1.ndim != 0:
        raise ValueError("b1 must be a scalar")
    if float(b1) <= 0:
        raise ValueError("b1 must be > 0")
    return float(b1)


def _linearize(signal: ArrayLike, alpha: Any, *, min_points: int, name: str):
    import numpy as np

    y = as_1d_float_array(signal, name="signal")
    if y.shape != alpha.shape:
        raise ValueError(f"signal shape {y.shape} must match flip shape {alpha.shape}")
    sin_a = np.sin(alpha)
    tan_a = np.tan(alpha)
    if np.any(sin_a == 0) or np.any(tan_a == 0):
        raise ValueError("invalid flip angles leading to sin/tan = 0")
    xdata = y / tan_a
    ydata = y / sin_a
    valid = np.isfinite(xdata) & np.isfinite(ydata) & (y > 0)
    if int(valid.sum()) < min_points:
        raise ValueError(f"not enough valid points for {name} linear fit")
    return xdata[valid], ydata[valid]


@dataclass(frozen=True, slots=True)
class Despot1:
    """Single-pool T1 from SPGR at several flip angles (DESPOT1).

    Signal model (SPGR steady-state):
        S = PD * sin(a) * (1 - E1) / (1 - E1 * cos(a))
        E1 = exp(-TR / T1)

    Units: flip in radians, tr and T1 in seconds.
    """

    flip: Any
    tr: float
    b1: float = 1.0

    def __post_init__(self) -> None:
        import numpy as np

        flip = as_1d_float_array(self.flip, name="flip")
        if np.any(flip <= 0):
            raise ValueError("flip must be > 0")
        if self.tr <= 0:
            raise ValueError("tr must be > 0")
        object.__setattr__(self, "flip", flip)
        object.__setattr__(self, "b1", _check_b1(self.b1))

    def forward(self, *, pd: float, t1: float) -> Any:
        if t1 <= 0:
            raise ValueError("t1 must be > 0")
        return magnitude(one_spgr(self.flip, self.tr, pd=pd, t1=t1, b1=self.b1))

    def fit_linear(
        self,
        signal: ArrayLike,
        *,
        robust: bool = False,
        huber_k: float = 1.345,
        max_iter: int = 50,
    ) -> dict[str, float]:
        """Fit by the linearized SPGR relation.

        Linearization:
            y = S / sin(a)
            x = S / tan(a)
            y = intercept + slope * x
            slope = E1, intercept = PD * (1 - E1)
        """
        import numpy as np

        alpha = self.flip * self.b1
        x, y = _linearize(signal, alpha, min_points=2, name="DESPOT1")
        intercept, slope = _fit_line(x, y, robust=robust, huber_k=huber_k, max_iter=max_iter)

        slope = min(max(slope, 1e-12), 1.0 - 1e-12)
        t1 = -float(self.tr) / float(np.log(slope))
        pd = intercept / (1.0 - slope)
        return {"PD": float(pd), "T1": float(t1)}


@dataclass(frozen=True, slots=True)
class Despot2:
    """Single-pool T2 from on-resonance bSSFP with 180 degree phase cycling.

    Requires T1 (typically from DESPOT1). With ``E2 = exp(-TR/T2)`` the
    magnetization just before each pulse satisfies
        S / sin(a) = slope * S / tan(a) + intercept
        slope = (E1 - E2) / (1 - E1 E2)
        intercept = PD * E2 * (1 - E1) / (1 - E1 E2)
    """

    flip: Any
    tr: float
    b1: float = 1.0

    def __post_init__(self) -> None:
        import numpy as np

        flip = as_1d_float_array(self.flip, name="flip")
        if np.any(flip <= 0):
            raise ValueError("flip must be > 0")
        if self.tr <= 0:
            raise ValueError("tr must be > 0")
        object.__setattr__(self, "flip", flip)
        object.__setattr__(self, "b1", _check_b1(self.b1))

    def forward(self, *, pd: float, t1: float, t2: float) -> Any:
        import numpy as np

        if t1 <= 0 or t2 <= 0:
            raise ValueError("t1 and t2 must be > 0")
        m = one_ssfp(self.flip, self.tr, np.pi, pd=pd, t1=t1, t2=t2, b1=self.b1)
        return magnitude(m)

    def fit_linear(
        self,
        signal: ArrayLike,
        *,
        t1: float,
        robust: bool = False,
        huber_k: float = 1.345,
        max_iter: int = 50,
    ) -> dict[str, float]:
        import numpy as np

        if t1 <= 0:
            raise ValueError("t1 must be > 0")
        alpha = self.flip * self.b1
        x, y = _linearize(signal, alpha, min_points=2, name="DESPOT2")
        intercept, slope = _fit_line(x, y, robust=robust, huber_k=huber_k, max_iter=max_iter)

        e1 = float(np.exp(-self.tr / t1))
        e2 = (e1 - slope) / (1.0 - slope * e1)
        e2 = min(max(e2, 1e-12), 1.0 - 1e-12)
        t2 = -float(self.tr) / float(np.log(e2))
        pd = intercept * (1.0 - e1 * e2) / (e2 * (1.0 - e1))
        return {"PD": float(pd), "T2": float(t2)}


def _fit_line(
    x: Any,
    y: Any,
    *,
    robust: bool,
    huber_k: float,
    max_iter: int,
) -> tuple[float, float]:
    """Fit y = a + b x. If robust, use IRLS with Huber weights from a Theil-Sen start."""
    import numpy as np

    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    a = np.vstack([np.ones_like(x), x]).T
    if not robust:
        intercept, slope = np.linalg.lstsq(a, y, rcond=None)[0]
        return float(intercept), float(slope)

    i, j = np.triu_indices(x.size, k=1)
    dx = x[i] - x[j]
    keep = dx != 0
    if np.any(keep):
        slope = float(np.median((y[i] - y[j])[keep] / dx[keep]))
        intercept = float(np.median(y - slope * x))
    else:
        intercept, slope = (float(v) for v in np.linalg.lstsq(a, y, rcond=None)[0])

    w = np.ones_like(x)
    for _ in range(max_iter):
        intercept_new, slope_new = (
            float(v) for v in np.linalg.lstsq(a * w[:, None], y * w, rcond=None)[0]
        )
        r = y - (intercept_new + slope_new * x)
        mad = float(np.median(np.abs(r - np.median(r))))
        scale = 1.4826 * mad if mad > 0 else float(np.std(r) + 1e-12)
        c = float(huber_k) * scale
        abs_r = np.abs(r)
        w_new = np.ones_like(w)
        big = abs_r > c
        w_new[big] = c / abs_r[big]

        converged = np.allclose(w, w_new, rtol=0, atol=1e-6) and np.isclose(slope, slope_new, atol=1e-9)
        intercept, slope, w = intercept_new, slope_new, w_new
        if converged:
            break

    return float(intercept), float(slope)
