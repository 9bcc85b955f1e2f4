"""Bloch-McConnell operator matrices.

This module provides the 3x3 (single pool) and 6x6 (two exchanging pools)
matrices that the steady-state signal equations are assembled from.
Every builder broadcasts over leading batch axes: scalar inputs give a
single ``(3, 3)`` matrix, array inputs of shape ``B`` give ``(*B, 3, 3)``.

Magnetization vectors are ordered ``(Mx, My, Mz)``; two-pool vectors are the
concatenation ``(Mx_a, My_a, Mz_a, Mx_b, My_b, Mz_b)``.

Units are seconds, radians and Hz.

References
----------
.. [1] Deoni SCL, Rutt BK, Jones DK. (2008). Gleaning multicomponent T1 and T2
       information from steady-state imaging data. Magn Reson Med, 60(6):1372-1387.
.. [2] Bieri O, Scheffler K. (2007). SSFP signal with finite RF pulses.
       Magn Reson Med, 62(5):1232-1241.
.. [3] McConnell HM. (1958). Reaction rates by nuclear magnetic resonance.
       J Chem Phys, 28(3):430-431.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]


def _zeros(shape: tuple[int, ...], n: int = 3) -> NDArray[np.float64]:
    import numpy as np

    return np.zeros(shape + (n, n), dtype=np.float64)


def rf_rotation(alpha: ArrayLike, phase: ArrayLike = 0.0) -> NDArray[np.float64]:
    """RF pulse rotation ``Rx(alpha) @ Rz(phase)``.

    The phase rotation about z is applied first, then the nutation about x.

    Parameters
    ----------
    alpha : array_like
        Flip angle in radians.
    phase : array_like
        RF phase increment in radians, broadcast against ``alpha``.

    Returns
    -------
    ndarray
        Rotation matrices of shape ``(*broadcast, 3, 3)``.
    """
    import numpy as np

    alpha = np.asarray(alpha, dtype=np.float64)
    phase = np.asarray(phase, dtype=np.float64)
    alpha, phase = np.broadcast_arrays(alpha, phase)

    ca, sa = np.cos(alpha), np.sin(alpha)
    cb, sb = np.cos(phase), np.sin(phase)

    out = _zeros(alpha.shape)
    out[..., 0, 0] = cb
    out[..., 0, 1] = -sb
    out[..., 1, 0] = ca * sb
    out[..., 1, 1] = ca * cb
    out[..., 1, 2] = -sa
    out[..., 2, 0] = sa * sb
    out[..., 2, 1] = sa * cb
    out[..., 2, 2] = ca
    return out


def z_rotation(phase: ArrayLike) -> NDArray[np.float64]:
    """Rotation about z by ``phase`` radians."""
    import numpy as np

    phase = np.asarray(phase, dtype=np.float64)
    c, s = np.cos(phase), np.sin(phase)
    out = _zeros(phase.shape)
    out[..., 0, 0] = c
    out[..., 0, 1] = -s
    out[..., 1, 0] = s
    out[..., 1, 1] = c
    out[..., 2, 2] = 1.0
    return out


def relaxation(t1: ArrayLike, t2: ArrayLike) -> NDArray[np.float64]:
    """Relaxation rate matrix ``diag(1/T2, 1/T2, 1/T1)``.

    Non-positive times are not rejected; they produce infinite or negative
    rates which the callers carry through as non-finite signals.
    """
    import numpy as np

    t1 = np.asarray(t1, dtype=np.float64)
    t2 = np.asarray(t2, dtype=np.float64)
    t1, t2 = np.broadcast_arrays(t1, t2)

    out = _zeros(t1.shape)
    with np.errstate(divide="ignore", invalid="ignore"):
        r2 = 1.0 / t2
        out[..., 0, 0] = r2
        out[..., 1, 1] = r2
        out[..., 2, 2] = 1.0 / t1
    return out


def off_resonance(f0: ArrayLike) -> NDArray[np.float64]:
    """Free precession generator for an off-resonance of ``f0`` Hz."""
    import numpy as np

    f0 = np.asarray(f0, dtype=np.float64)
    dw = 2.0 * np.pi * f0
    out = _zeros(f0.shape)
    out[..., 0, 1] = dw
    out[..., 1, 0] = -dw
    return out


def infinitesimal_rf(dalpha: ArrayLike) -> NDArray[np.float64]:
    """Generator of nutation about x at a rate of ``dalpha`` rad/s.

    Integrated over a pulse of duration ``Trf`` with ``dalpha = alpha / Trf``
    this gives the finite-pulse model of [2]_.
    """
    import numpy as np

    dalpha = np.asarray(dalpha, dtype=np.float64)
    out = _zeros(dalpha.shape)
    out[..., 1, 2] = -dalpha
    out[..., 2, 1] = dalpha
    return out


def spoiling() -> NDArray[np.float64]:
    """Ideal spoiler: destroys transverse magnetization, keeps Mz."""
    import numpy as np

    return np.diag([0.0, 0.0, 1.0])


def exchange_rates(
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f_b: ArrayLike,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Forward and backward exchange rates between pools a and b.

    Detailed balance requires ``f_a * k_ab == f_b * k_ba``, so with
    ``k_ab = 1 / tau_a`` the backward rate is ``f_a / (f_b * tau_a)``.
    When either fraction is zero there is nothing to exchange with and
    both rates are zero.

    Parameters
    ----------
    tau_a : array_like
        Residence time in pool a (s).
    f_a, f_b : array_like
        Pool fractions.

    Returns
    -------
    tuple of ndarray
        ``(k_ab, k_ba)`` in 1/s.
    """
    import numpy as np

    tau_a = np.asarray(tau_a, dtype=np.float64)
    f_a = np.asarray(f_a, dtype=np.float64)
    f_b = np.asarray(f_b, dtype=np.float64)

    with np.errstate(divide="ignore", invalid="ignore"):
        k_ab = 1.0 / tau_a
        k_ba = f_a / (f_b * tau_a)
    single = (f_a == 0.0) | (f_b == 0.0)
    k_ab = np.where(single, 0.0, k_ab)
    k_ba = np.where(single, 0.0, k_ba)
    return k_ab, k_ba


def exchange(k_ab: ArrayLike, k_ba: ArrayLike) -> NDArray[np.float64]:
    """6x6 exchange matrix for two pools.

    Magnetization leaves pool a at ``k_ab`` and pool b at ``k_ba``; the
    off-diagonal blocks carry what is gained from the other pool.
    """
    import numpy as np

    k_ab = np.asarray(k_ab, dtype=np.float64)
    k_ba = np.asarray(k_ba, dtype=np.float64)
    k_ab, k_ba = np.broadcast_arrays(k_ab, k_ba)

    out = _zeros(k_ab.shape, 6)
    for i in range(3):
        out[..., i, i] = k_ab
        out[..., 3 + i, 3 + i] = k_ba
        out[..., 3 + i, i] = -k_ab
        out[..., i, 3 + i] = -k_ba
    return out


def block_diag(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Place two batched 3x3 matrices on the diagonal of a 6x6 matrix."""
    import numpy as np

    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    shape = np.broadcast_shapes(a.shape[:-2], b.shape[:-2])
    out = _zeros(shape, 6)
    out[..., :3, :3] = a
    out[..., 3:, 3:] = b
    return out


def repeat_block(a: ArrayLike, n_pools: int) -> NDArray[np.float64]:
    """Repeat one 3x3 operator for every pool (shared RF, shared off-resonance)."""
    import numpy as np

    a = np.asarray(a, dtype=np.float64)
    if n_pools == 1:
        return a
    out = _zeros(a.shape[:-2], 3 * n_pools)
    for p in range(n_pools):
        out[..., 3 * p : 3 * p + 3, 3 * p : 3 * p + 3] = a
    return out


def sum_pools(m: ArrayLike) -> NDArray[np.float64]:
    """Sum a ``(..., 3 * n_pools)`` magnetization over pools to ``(..., 3)``."""
    import numpy as np

    m = np.asarray(m)
    n_pools = m.shape[-1] // 3
    return m.reshape(m.shape[:-1] + (n_pools, 3)).sum(axis=-2)


def magnitude(m: ArrayLike) -> NDArray[np.float64]:
    """Transverse magnitude ``sqrt(Mx**2 + My**2)``."""
    import numpy as np

    m = np.asarray(m, dtype=np.float64)
    return np.hypot(m[..., 0], m[..., 1])


def transverse_complex(m: ArrayLike) -> NDArray[np.complex128]:
    """Transverse magnetization as the complex number ``Mx + i My``."""
    import numpy as np

    m = np.asarray(m, dtype=np.float64)
    return m[..., 0] + 1j * m[..., 1]
