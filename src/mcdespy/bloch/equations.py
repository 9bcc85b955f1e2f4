"""Steady-state signal equations for one, two and three tissue pools.

Each function returns the steady-state magnetization for every flip angle
(and, for SSFP, every phase increment) of a sequence, shaped
``(*batch, n_signals, 3)`` where ``batch`` is the broadcast shape of the
tissue parameters and ``b1``. SSFP signals are ordered phase-major: all
flip angles for the first phase increment, then all flip angles for the
next one.

All times are in seconds, angles in radians and off-resonance in Hz.
Degenerate parameters (zero or negative times, zero fractions) do not
raise; they propagate to non-finite entries in the result. Callers are
expected to screen candidates with a constraint predicate first.

References
----------
.. [1] Deoni SCL, Rutt BK, Jones DK. (2008). Gleaning multicomponent T1 and T2
       information from steady-state imaging data. Magn Reson Med, 60(6):1372-1387.
.. [2] Deoni SCL. (2011). Correction of main and transmit magnetic field (B0 and B1)
       inhomogeneity effects in multicomponent-driven equilibrium single-pulse
       observation of T1 and T2. Magn Reson Med, 65(4):1021-1035.
.. [3] Bieri O, Scheffler K. (2007). SSFP signal with finite RF pulses.
       Magn Reson Med, 62(5):1232-1241.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .core import (
    block_diag,
    exchange,
    exchange_rates,
    infinitesimal_rf,
    off_resonance,
    relaxation,
    repeat_block,
    rf_rotation,
    spoiling,
    sum_pools,
    z_rotation,
)

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]


def _arr(values: ArrayLike) -> NDArray[np.float64]:
    import numpy as np

    return np.asarray(values, dtype=np.float64)


def _flips(values: ArrayLike) -> NDArray[np.float64]:
    import numpy as np

    return np.atleast_1d(_arr(values)).ravel()


def _expm(a: NDArray[np.float64]) -> NDArray[np.float64]:
    """Batched matrix exponential; non-finite matrices map to NaN."""
    import numpy as np
    from scipy.linalg import expm

    a = np.asarray(a, dtype=np.float64)
    n = a.shape[-1]
    flat = a.reshape((-1, n, n))
    finite = np.isfinite(flat).all(axis=(-2, -1))
    if finite.all():
        return expm(a)
    out = np.full(flat.shape, np.nan)
    if finite.any():
        out[finite] = expm(flat[finite])
    return out.reshape(a.shape)


def _solve(a: NDArray[np.float64], b: NDArray[np.float64]) -> NDArray[np.float64]:
    """Batched ``solve(a, b)`` that returns NaN for singular systems."""
    import numpy as np

    try:
        return np.linalg.solve(a, b)
    except np.linalg.LinAlgError:
        pass

    shape = np.broadcast_shapes(a.shape[:-2], b.shape[:-2])
    a_flat = np.broadcast_to(a, shape + a.shape[-2:]).reshape((-1,) + a.shape[-2:])
    b_flat = np.broadcast_to(b, shape + b.shape[-2:]).reshape((-1,) + b.shape[-2:])
    out = np.full(b_flat.shape, np.nan)

    ok = np.isfinite(a_flat).all(axis=(-2, -1))
    if ok.any():
        det = np.linalg.det(a_flat[ok])
        ok[ok] = np.isfinite(det) & (det != 0.0)
    if ok.any():
        out[ok] = np.linalg.solve(a_flat[ok], b_flat[ok])
    return out.reshape(shape + b.shape[-2:])


def _rf(b1: ArrayLike, flip: NDArray[np.float64], phases: NDArray[np.float64], n_pools: int):
    alpha = _arr(b1)[..., None] * flip
    rf = rf_rotation(alpha[..., None, :], phases[:, None])
    return repeat_block(rf, n_pools)


def _ssfp_steady_state(lam, m0, rf):
    """Solve ``(I - L RF) M = (I - L) m0`` for every flip/phase pair."""
    import numpy as np

    d = lam.shape[-1]
    eye = np.eye(d)
    rhs = (eye - lam) @ m0[..., :, None]
    lhs = eye - lam[..., None, None, :, :] @ rf
    m = _solve(lhs, rhs[..., None, None, :, :])[..., 0]
    return m.reshape(m.shape[:-3] + (-1, d))


def _finite_steady_state(relax, precess, exch, m0, alpha, tr, trf, te, c):
    """Finite-pulse steady state sampled ``te`` after the end of the pulse.

    ``c`` is the ``(k, d, d)`` stack of operators applied between the end of
    free precession and the next pulse (spoiling or phase increment).
    """
    import numpy as np

    d = relax.shape[-1]
    eye = np.eye(d)
    rok = relax + precess + exch

    le = _expm(-rok * te)
    l2 = _expm(-rok * (tr - trf))
    rm0 = relax @ m0[..., :, None]
    m2 = _solve(rok, rm0)[..., 0]

    a = repeat_block(infinitesimal_rf(alpha / trf), d // 3)
    l1 = _expm(-(rok[..., None, :, :] + a) * trf)
    m1 = _solve(rok[..., None, :, :] + a, rm0[..., None, :, :])[..., 0]

    cm2 = (c @ m2[..., None, :, None])[..., 0]
    l1x = l1[..., None, :, :, :]
    lhs = eye - l1x @ c[:, None, :, :] @ l2[..., None, None, :, :]
    rhs = (eye - l1x) @ (m1[..., None, :, :] - cm2[..., :, None, :])[..., None]
    mp = cm2[..., :, None, :] + _solve(lhs, rhs)[..., 0]

    me = (le[..., None, None, :, :] @ (mp - m2[..., None, None, :])[..., None])[..., 0]
    me = me + m2[..., None, None, :]
    return me.reshape(me.shape[:-3] + (-1, d))


def _finite(relax, precess, exch, m0, *, flip, b1, tr, trf, phases, spoil, te, n_pools):
    flip = _flips(flip)
    alpha = _arr(b1)[..., None] * flip
    if spoil:
        if te is None:
            raise ValueError("te is required for a spoiled finite-pulse sequence")
        c = repeat_block(spoiling(), n_pools)[None]
        te_eff = te - trf
    else:
        c = repeat_block(z_rotation(_flips(phases)), n_pools)
        te_eff = (tr - trf) / 2.0
    return _finite_steady_state(relax, precess, exch, m0, alpha, tr, trf, te_eff, c)


def _one_pool_operators(t1, t2, f0):
    import numpy as np

    relax = relaxation(t1, t2)
    precess = off_resonance(f0)
    m0 = np.array([0.0, 0.0, 1.0])
    return relax, precess, m0


def _two_pool_operators(t1_a, t2_a, t1_b, t2_b, tau_a, f_a, f0):
    import numpy as np

    f_a = _arr(f_a)
    f_b = 1.0 - f_a
    relax = block_diag(relaxation(t1_a, t2_a), relaxation(t1_b, t2_b))
    precess = repeat_block(off_resonance(f0), 2)
    exch = exchange(*exchange_rates(tau_a, f_a, f_b))
    m0 = np.zeros(f_a.shape + (6,))
    m0[..., 2] = f_a
    m0[..., 5] = f_b
    return relax, precess, exch, m0


def _scale(pd: ArrayLike, m: NDArray[np.float64]) -> NDArray[np.float64]:
    return _arr(pd)[..., None, None] * m


def one_spgr(
    flip: ArrayLike,
    tr: float,
    *,
    pd: ArrayLike,
    t1: ArrayLike,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Single-pool spoiled gradient echo (Ernst equation).

    ``S = PD (1 - E1) sin(B1 a) / (1 - E1 cos(B1 a))`` with ``E1 = exp(-TR/T1)``,
    returned in the y component.
    """
    import numpy as np

    flip = _flips(flip)
    pd, t1, b1 = _arr(pd), _arr(t1), _arr(b1)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        e1 = np.exp(-tr / t1)[..., None]
        alpha = b1[..., None] * flip
        my = pd[..., None] * (1.0 - e1) * np.sin(alpha) / (1.0 - e1 * np.cos(alpha))
    m = np.zeros(my.shape + (3,))
    m[..., 1] = my
    return m


def one_ssfp(
    flip: ArrayLike,
    tr: float,
    phases: ArrayLike,
    *,
    pd: ArrayLike,
    t1: ArrayLike,
    t2: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Single-pool balanced SSFP with instantaneous pulses.

    Solves ``(I - L RF(B1 a, phase)) M = (I - L) m0`` where
    ``L = expm(-(R + O) TR)``; ``M`` is the magnetization at the end of the
    repetition, just before the next pulse.
    """
    import numpy as np

    flip, phases = _flips(flip), _flips(phases)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        relax, precess, m0 = _one_pool_operators(t1, t2, f0)
        lam = _expm(-(relax + precess) * tr)
        m = _ssfp_steady_state(lam, m0, _rf(b1, flip, phases, 1))
        return _scale(pd, m)


def one_ssfp_finite(
    flip: ArrayLike,
    tr: float,
    trf: float,
    phases: ArrayLike = (0.0,),
    *,
    pd: ArrayLike,
    t1: ArrayLike,
    t2: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
    spoil: bool = False,
    te: float | None = None,
) -> NDArray[np.float64]:
    """Single-pool steady state with finite-duration rectangular pulses.

    With ``spoil=True`` transverse magnetization is destroyed before each
    pulse and the echo is read at ``te`` (measured from the pulse start);
    ``phases`` is ignored. Otherwise the sequence is balanced, the phase
    increment is applied before each pulse and the echo is read at the
    centre of the free-precession period.
    """
    import numpy as np

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        relax, precess, m0 = _one_pool_operators(t1, t2, f0)
        exch = np.zeros((3, 3))
        m = _finite(
            relax,
            precess,
            exch,
            m0,
            flip=flip,
            b1=b1,
            tr=tr,
            trf=trf,
            phases=phases,
            spoil=spoil,
            te=te,
            n_pools=1,
        )
        return _scale(pd, m)


def two_spgr(
    flip: ArrayLike,
    tr: float,
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t1_b: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Two exchanging pools, spoiled gradient echo.

    Only longitudinal magnetization survives spoiling, so the exchange
    model reduces to the 2x2 system of [1]_:
    ``Mz = solve(I - exp(A TR) cos a, (I - exp(A TR)) M0 sin a)``.
    """
    import numpy as np

    flip = _flips(flip)
    pd, t1_a, t1_b, b1 = _arr(pd), _arr(t1_a), _arr(t1_b), _arr(b1)
    f_a = _arr(f_a)
    f_b = 1.0 - f_a
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        k_ab, k_ba = exchange_rates(tau_a, f_a, f_b)
        shape = np.broadcast_shapes(t1_a.shape, t1_b.shape, k_ab.shape)
        a = np.zeros(shape + (2, 2))
        a[..., 0, 0] = -(1.0 / t1_a + k_ab)
        a[..., 0, 1] = k_ba
        a[..., 1, 0] = k_ab
        a[..., 1, 1] = -(1.0 / t1_b + k_ba)
        e = _expm(a * tr)

        m0 = np.stack(np.broadcast_arrays(f_a, f_b), axis=-1)
        rhs = (np.eye(2) - e) @ m0[..., :, None]
        alpha = b1[..., None] * flip
        lhs = np.eye(2) - e[..., None, :, :] * np.cos(alpha)[..., None, None]
        mz = _solve(lhs, rhs[..., None, :, :] * np.sin(alpha)[..., None, None])[..., 0]
        my = pd[..., None] * mz.sum(axis=-1)
    m = np.zeros(my.shape + (3,))
    m[..., 1] = my
    return m


def two_ssfp(
    flip: ArrayLike,
    tr: float,
    phases: ArrayLike,
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t2_a: ArrayLike,
    t1_b: ArrayLike,
    t2_b: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Two exchanging pools, balanced SSFP with instantaneous pulses.

    The 6x6 Bloch-McConnell generator is ``R + O + K`` with both pools
    sharing the off-resonance and the RF. The returned magnetization is
    summed over pools.
    """
    import numpy as np

    flip, phases = _flips(flip), _flips(phases)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        relax, precess, exch, m0 = _two_pool_operators(t1_a, t2_a, t1_b, t2_b, tau_a, f_a, f0)
        lam = _expm(-(relax + precess + exch) * tr)
        m = _ssfp_steady_state(lam, m0, _rf(b1, flip, phases, 2))
        m = sum_pools(m)
        return _scale(pd, m)


def two_ssfp_finite(
    flip: ArrayLike,
    tr: float,
    trf: float,
    phases: ArrayLike = (0.0,),
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t2_a: ArrayLike,
    t1_b: ArrayLike,
    t2_b: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
    spoil: bool = False,
    te: float | None = None,
) -> NDArray[np.float64]:
    """Two exchanging pools with finite-duration pulses (see ``one_ssfp_finite``)."""
    import numpy as np

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        relax, precess, exch, m0 = _two_pool_operators(t1_a, t2_a, t1_b, t2_b, tau_a, f_a, f0)
        m = _finite(
            relax,
            precess,
            exch,
            m0,
            flip=flip,
            b1=b1,
            tr=tr,
            trf=trf,
            phases=phases,
            spoil=spoil,
            te=te,
            n_pools=2,
        )
        m = sum_pools(m)
        return _scale(pd, m)


def _split_three(pd, f_a, f_c):
    import numpy as np

    f_c = _arr(f_c)
    f_ab = 1.0 - f_c
    with np.errstate(divide="ignore", invalid="ignore"):
        f_a_ab = np.where(f_ab > 0.0, _arr(f_a) / f_ab, 0.0)
    pd = _arr(pd)
    return pd * f_ab, f_a_ab, pd * f_c


def three_spgr(
    flip: ArrayLike,
    tr: float,
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t1_b: ArrayLike,
    t1_c: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f_c: ArrayLike,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Three pools: exchanging a/b plus a non-exchanging pool c.

    Pools a and b share the fraction ``1 - f_c`` of the proton density, so
    their exchange model sees ``f_a / (1 - f_c)``. Pool c contributes an
    independent single-pool signal scaled by ``f_c``.
    """
    pd_ab, f_a_ab, pd_c = _split_three(pd, f_a, f_c)
    m_ab = two_spgr(flip, tr, pd=pd_ab, t1_a=t1_a, t1_b=t1_b, tau_a=tau_a, f_a=f_a_ab, b1=b1)
    m_c = one_spgr(flip, tr, pd=pd_c, t1=t1_c, b1=b1)
    return m_ab + m_c


def three_ssfp(
    flip: ArrayLike,
    tr: float,
    phases: ArrayLike,
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t2_a: ArrayLike,
    t1_b: ArrayLike,
    t2_b: ArrayLike,
    t1_c: ArrayLike,
    t2_c: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f_c: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
) -> NDArray[np.float64]:
    """Three pools, balanced SSFP with instantaneous pulses."""
    pd_ab, f_a_ab, pd_c = _split_three(pd, f_a, f_c)
    m_ab = two_ssfp(
        flip,
        tr,
        phases,
        pd=pd_ab,
        t1_a=t1_a,
        t2_a=t2_a,
        t1_b=t1_b,
        t2_b=t2_b,
        tau_a=tau_a,
        f_a=f_a_ab,
        f0=f0,
        b1=b1,
    )
    m_c = one_ssfp(flip, tr, phases, pd=pd_c, t1=t1_c, t2=t2_c, f0=f0, b1=b1)
    return m_ab + m_c


def three_ssfp_finite(
    flip: ArrayLike,
    tr: float,
    trf: float,
    phases: ArrayLike = (0.0,),
    *,
    pd: ArrayLike,
    t1_a: ArrayLike,
    t2_a: ArrayLike,
    t1_b: ArrayLike,
    t2_b: ArrayLike,
    t1_c: ArrayLike,
    t2_c: ArrayLike,
    tau_a: ArrayLike,
    f_a: ArrayLike,
    f_c: ArrayLike,
    f0: ArrayLike = 0.0,
    b1: ArrayLike = 1.0,
    spoil: bool = False,
    te: float | None = None,
) -> NDArray[np.float64]:
    """Three pools with finite-duration pulses."""
    pd_ab, f_a_ab, pd_c = _split_three(pd, f_a, f_c)
    m_ab = two_ssfp_finite(
        flip,
        tr,
        trf,
        phases,
        pd=pd_ab,
        t1_a=t1_a,
        t2_a=t2_a,
        t1_b=t1_b,
        t2_b=t2_b,
        tau_a=tau_a,
        f_a=f_a_ab,
        f0=f0,
        b1=b1,
        spoil=spoil,
        te=te,
    )
    m_c = one_ssfp_finite(
        flip, tr, trf, phases, pd=pd_c, t1=t1_c, t2=t2_c, f0=f0, b1=b1, spoil=spoil, te=te
    )
    return m_ab + m_c
