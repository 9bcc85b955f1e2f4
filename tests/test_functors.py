import numpy as np
import pytest

from mcdespy.models import DESPOT2FMFunctor, FieldStrength, MCDespotFunctor, OffResMode, Pools, Scaling
from mcdespy.sequences import SPGR, SSFP, Sequences

TRUTH_2C = [1.0, 0.3, 0.02, 1.0, 0.1, 0.2, 0.15, 0.0]


def _sequences(scaling=Scaling.NORMALIZE_TO_MEAN):
    return Sequences(
        scaling,
        [
            SPGR.from_degrees([3, 4, 5, 6, 7, 9, 13, 18], 0.0065),
            SSFP.from_degrees([12, 16, 19, 23, 27, 34, 50, 70], 0.005, [180, 0]),
        ],
    )


def test_parameter_names_and_layout():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO)
    assert f.names == ["PD", "T1_a", "T2_a", "T1_b", "T2_b", "tau_a", "f_a", "f0"]
    assert f.n_parameters == 8
    assert f.off_resonance_index == slice(7, 8)

    multi = MCDespotFunctor(_sequences(), pools=3, off_resonance=OffResMode.MULTI)
    assert multi.names[-2:] == ["f0_0", "f0_1"]
    assert multi.n_parameters == 1 + 9 + 2


def test_theory_is_pure_and_batched():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO)
    first = f.theory(TRUTH_2C)
    second = f.theory(TRUTH_2C)
    assert np.array_equal(first, second)
    assert first.shape == (24,)

    population = np.array([TRUTH_2C, TRUTH_2C])
    population[1, 1] = 0.25
    out = f.theory(population)
    assert out.shape == (2, 24)
    assert np.array_equal(out[0], first)


def test_residuals_need_observed_signal():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO)
    with pytest.raises(ValueError, match="for_voxel"):
        f.residuals(TRUTH_2C)

    voxel = f.for_voxel(f.theory(TRUTH_2C))
    np.testing.assert_allclose(voxel.residuals(TRUTH_2C), 0.0, atol=1e-12)
    assert f.actual is None


def test_actual_length_is_checked():
    with pytest.raises(ValueError, match="signals"):
        MCDespotFunctor(_sequences(), actual=np.ones(5))


def test_wrong_parameter_count_raises():
    f = MCDespotFunctor(_sequences(), pools=Pools.ONE)
    with pytest.raises(ValueError, match="parameters"):
        f.theory([1.0, 1.0, 0.1])


def test_two_pool_constraint():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO)
    assert f.constraint(TRUTH_2C)

    swapped_t1 = list(TRUTH_2C)
    swapped_t1[1], swapped_t1[3] = 1.0, 0.3
    assert not f.constraint(swapped_t1)

    swapped_t2 = list(TRUTH_2C)
    swapped_t2[2], swapped_t2[4] = 0.1, 0.02
    assert not f.constraint(swapped_t2)

    population = np.array([TRUTH_2C, swapped_t1, swapped_t2])
    np.testing.assert_array_equal(f.constraint(population), [True, False, False])


def test_three_pool_constraint_fractions():
    f = MCDespotFunctor(_sequences(), pools=Pools.THREE)
    ok = [1.0, 0.3, 0.02, 1.0, 0.1, 4.0, 1.0, 0.2, 0.15, 0.3, 0.0]
    assert f.constraint(ok)
    too_much = list(ok)
    too_much[9] = 0.9
    assert not f.constraint(too_much)
    csf_short = list(ok)
    csf_short[5] = 0.8
    assert not f.constraint(csf_short)


def test_default_bounds_3t_two_pool():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO, off_resonance=OffResMode.SINGLE)
    b = f.default_bounds(FieldStrength.THREE)
    assert b.shape == (8, 2)
    np.testing.assert_allclose(b[0], [1.0, 1.0])
    np.testing.assert_allclose(b[-1], [-100.0, 100.0])
    assert np.all(b[:, 0] <= b[:, 1])


def test_default_bounds_modes_and_overrides():
    seqs = _sequences(Scaling.GLOBAL)
    sym = MCDespotFunctor(seqs, pools=Pools.ONE, off_resonance=OffResMode.SINGLE_SYMMETRIC)
    b = sym.default_bounds("7T", overrides={"T1": (0.5, 2.0)})
    assert b[0, 0] > 1.0
    np.testing.assert_allclose(b[1], [0.5, 2.0])
    np.testing.assert_allclose(b[-1], [0.0, 100.0])

    multi = MCDespotFunctor(seqs, pools=Pools.ONE, off_resonance=OffResMode.MULTI)
    b = multi.default_bounds()
    np.testing.assert_allclose(b[-2], [-0.5 / 0.0065, 0.5 / 0.0065])
    np.testing.assert_allclose(b[-1], [-100.0, 100.0])

    with pytest.raises(ValueError, match="unknown parameter"):
        sym.default_bounds(overrides={"T9": (0.0, 1.0)})
    with pytest.raises(ValueError, match="low must be <= high"):
        sym.default_bounds(overrides={"T1": (2.0, 1.0)})


def test_user_bounds_must_be_given():
    f = MCDespotFunctor(_sequences(), pools=Pools.ONE)
    with pytest.raises(ValueError, match="finite"):
        f.default_bounds(FieldStrength.USER)
    b = f.default_bounds(FieldStrength.USER, overrides={"T1": (0.1, 3.0), "T2": (0.01, 1.0)})
    np.testing.assert_allclose(b[1:3], [[0.1, 3.0], [0.01, 1.0]])


def test_thresholds_and_weights():
    f = MCDespotFunctor(_sequences(), pools=Pools.TWO)
    t = f.default_thresholds()
    assert t.shape == (8,)
    assert t[-1] == pytest.approx(0.1)
    assert t[1] == pytest.approx(0.05)
    assert f.weights(3.0)[0] == 3.0


def test_despot2fm_uses_known_t1():
    ssfp = Sequences(Scaling.NORMALIZE_TO_MEAN, [SSFP.from_degrees([12, 16, 23, 34, 50, 70], 0.005, [180, 0])])
    f = DESPOT2FMFunctor(ssfp, t1=1.2)
    assert f.names == ["PD", "T2", "f0"]
    assert f.pools is Pools.ONE
    full = MCDespotFunctor(ssfp, pools=Pools.ONE)
    np.testing.assert_allclose(f.theory([1.0, 0.08, 15.0]), full.theory([1.0, 1.2, 0.08, 15.0]))

    voxel = f.for_voxel(f.theory([1.0, 0.08, 15.0]), b1=1.0, t1=1.2)
    np.testing.assert_allclose(voxel.residuals([1.0, 0.08, 15.0]), 0.0, atol=1e-12)
    assert not f.constraint([1.0, -0.1, 0.0])

    b = f.default_bounds()
    assert b.shape == (3, 2)


def test_despot2fm_rejects_spgr():
    with pytest.raises(ValueError, match="SSFP"):
        DESPOT2FMFunctor(_sequences(), t1=1.0)
