import numpy as np
import pytest

from mcdespy.models import MCDespotFunctor, OffResMode, Pools, Scaling
from mcdespy.optimize import RegionContraction, voxel_seed
from mcdespy.sequences import SPGR, SSFP, Sequences


def _one_pool_voxel(t1=0.9, t2=0.07):
    seqs = Sequences(
        Scaling.NORMALIZE_TO_MEAN,
        [
            SPGR.from_degrees([3, 5, 8, 12, 18], 0.0065),
            SSFP.from_degrees([10, 20, 35, 50, 70], 0.005, [180, 0]),
        ],
    )
    f = MCDespotFunctor(seqs, pools=Pools.ONE, off_resonance=OffResMode.MAP)
    truth = np.array([1.0, t1, t2, 0.0])
    bounds = np.array([[1.0, 1.0], [0.1, 4.0], [0.01, 1.0], [0.0, 0.0]])
    return f.for_voxel(f.theory(truth)), truth, bounds


def test_recovers_single_pool_parameters():
    f, truth, bounds = _one_pool_voxel()
    rc = RegionContraction(f, bounds, samples=2000, retain=20, contract=20, thresholds=np.full(4, 1e-3))
    result = rc.optimise(seed=1)
    assert result["T1"] == pytest.approx(truth[1], rel=0.02)
    assert result["T2"] == pytest.approx(truth[2], rel=0.02)
    assert result["PD"] == 1.0
    assert result["f0"] == 0.0
    assert result.sos < 1e-4
    assert result.quality["n_points"] == f.size
    assert result.residuals.shape == (f.size,)


def test_best_cost_never_increases():
    f, _, bounds = _one_pool_voxel()
    rc = RegionContraction(f, bounds, samples=500, retain=10, contract=8, thresholds=np.zeros(4))
    result = rc.optimise(seed=3)
    history = result.diagnostics["history"]
    assert history.shape == (8,)
    assert np.all(np.diff(history) <= 0)
    assert result.contractions == 8
    assert result.quality["status"] == "max_contractions"
    assert history[-1] == pytest.approx(result.sos)


def test_converges_early_with_loose_thresholds():
    f, _, bounds = _one_pool_voxel()
    rc = RegionContraction(f, bounds, samples=500, retain=10, contract=50, thresholds=np.full(4, 10.0))
    result = rc.optimise(seed=0)
    assert result.quality["status"] == "converged"
    assert result.contractions == 1


def test_box_stays_inside_start_bounds():
    f, _, bounds = _one_pool_voxel()
    rc = RegionContraction(f, bounds, samples=300, retain=30, contract=5, expand=2.0, thresholds=np.zeros(4))
    result = rc.optimise(seed=5)
    mid, width = result.diagnostics["midpoint"], result.diagnostics["width"]
    assert np.all(mid - width / 2 >= bounds[:, 0] - 1e-12)
    assert np.all(mid + width / 2 <= bounds[:, 1] + 1e-12)
    # pinned parameters have zero width
    assert width[0] == 0.0
    assert width[3] == 0.0


def test_result_satisfies_constraint():
    seqs = Sequences(
        Scaling.NORMALIZE_TO_MEAN,
        [
            SPGR.from_degrees([3, 4, 5, 6, 7, 9, 13, 18], 0.0065),
            SSFP.from_degrees([12, 16, 19, 23, 27, 34, 50, 70], 0.005, [180, 0]),
        ],
    )
    f = MCDespotFunctor(seqs, pools=Pools.TWO, off_resonance=OffResMode.MAP)
    truth = np.array([1.0, 0.3, 0.02, 1.0, 0.1, 0.2, 0.15, 0.0])
    voxel = f.for_voxel(f.theory(truth))
    # overlapping T1/T2 ranges so the sampler sees invalid candidates
    bounds = np.array(
        [[1, 1], [0.1, 1.5], [0.005, 0.12], [0.2, 2.0], [0.01, 0.15], [0.05, 0.3], [0.0, 0.35], [0, 0]],
        dtype=float,
    )
    result = RegionContraction(voxel, bounds, samples=400, retain=10, contract=5).optimise(seed=11)
    assert f.constraint(result.x)


def test_impossible_bounds_raise_runtime_error():
    f, _, _ = _one_pool_voxel()
    bounds = np.array([[1.0, 1.0], [-2.0, -1.0], [0.01, 1.0], [0.0, 0.0]])
    rc = RegionContraction(f, bounds, samples=50, retain=5, max_resample=3)
    with pytest.raises(RuntimeError, match="constraint"):
        rc.optimise(seed=0)


def test_same_seed_same_result():
    f, _, bounds = _one_pool_voxel()
    kwargs = dict(samples=300, retain=10, contract=4)
    a = RegionContraction(f, bounds, **kwargs).optimise(seed=voxel_seed(42, 7))
    b = RegionContraction(f, bounds, **kwargs).optimise(seed=voxel_seed(42, 7))
    c = RegionContraction(f, bounds, **kwargs).optimise(seed=voxel_seed(42, 8))
    np.testing.assert_array_equal(a.x, b.x)
    assert not np.array_equal(a.x, c.x)


def test_voxel_seed_without_base_is_an_int():
    seed = voxel_seed(None, 3)
    assert isinstance(seed, int)
    np.random.default_rng(seed)


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(samples=10, retain=10),
        dict(samples=10, retain=0),
        dict(contract=0),
        dict(expand=-0.1),
        dict(max_resample=0),
    ],
)
def test_invalid_settings_raise(kwargs):
    f, _, bounds = _one_pool_voxel()
    with pytest.raises(ValueError):
        RegionContraction(f, bounds, **kwargs)


def test_bounds_and_weights_are_validated():
    f, _, bounds = _one_pool_voxel()
    bad = bounds.copy()
    bad[1] = [2.0, 1.0]
    with pytest.raises(ValueError, match="low must be <= high"):
        RegionContraction(f, bad)
    with pytest.raises(ValueError, match="shape"):
        RegionContraction(f, bounds[:3])
    with pytest.raises(ValueError, match="weights"):
        RegionContraction(f, bounds, weights=np.ones(3))
    with pytest.raises(ValueError, match="thresholds"):
        RegionContraction(f, bounds, thresholds=np.ones(2))


def test_cost_maps_non_finite_to_inf():
    f, truth, bounds = _one_pool_voxel()
    rc = RegionContraction(f, bounds)
    bad = truth.copy()
    bad[2] = 0.0
    with np.errstate(all="ignore"):
        cost = rc.cost(np.array([truth, bad]))
    assert cost[0] == pytest.approx(0.0, abs=1e-20)
    assert np.isinf(cost[1])


def test_refinement_lowers_cost_and_keeps_history():
    f, truth, bounds = _one_pool_voxel()
    kwargs = dict(samples=200, retain=10, contract=3, thresholds=np.zeros(4))
    plain = RegionContraction(f, bounds, **kwargs).optimise(seed=4)
    refined = RegionContraction(f, bounds, polish=True, **kwargs).optimise(seed=4)

    np.testing.assert_array_equal(plain.diagnostics["history"], refined.diagnostics["history"])
    assert plain.diagnostics["refined"] is False
    assert refined.diagnostics["refined"] is True
    assert refined.sos < plain.sos
    assert refined.sos < 1e-8
    assert refined["T1"] == pytest.approx(truth[1], rel=1e-4)
    assert refined["T2"] == pytest.approx(truth[2], rel=1e-4)
    # pinned rows are left alone
    assert refined["PD"] == 1.0
    assert refined["f0"] == 0.0


def test_relative_width_uses_start_width_near_zero_midpoint():
    f, _, _ = _one_pool_voxel()
    bounds = np.array([[1.0, 1.0], [0.1, 4.0], [0.01, 1.0], [-100.0, 100.0]])
    rc = RegionContraction(f, bounds)
    width = np.array([0.0, 0.04, 0.004, 0.5])
    midpoint = np.array([1.0, 1.0, 0.1, 0.01])
    rel = rc._relative_width(width, midpoint)
    np.testing.assert_allclose(rel, [0.0, 0.04, 0.04, 0.5 / 10.0])


def test_check_settings_fills_defaults():
    from mcdespy.optimize.region_contraction import check_settings

    f, _, bounds = _one_pool_voxel()
    checked, weights, thresholds = check_settings(f, bounds)
    np.testing.assert_array_equal(checked, bounds)
    np.testing.assert_array_equal(weights, np.ones(f.size))
    np.testing.assert_array_equal(thresholds, f.default_thresholds())
    with pytest.raises(ValueError, match="retain"):
        check_settings(f, bounds, samples=10, retain=10)
