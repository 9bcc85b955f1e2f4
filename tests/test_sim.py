import numpy as np
import pytest


def test_gaussian_and_rician_noise() -> None:
    from mcdespy.sim import add_gaussian_noise, add_rician_noise

    rng = np.random.default_rng(0)
    s = np.full(20000, 10.0)
    g = add_gaussian_noise(s, sigma=0.5, rng=rng)
    assert abs(np.std(g) - 0.5) < 0.02
    r = add_rician_noise(s, sigma=2.0, rng=rng)
    assert np.all(r >= 0)
    assert np.mean(r) > 10.0

    np.testing.assert_array_equal(add_rician_noise(s, sigma=0.0, rng=rng), s)
    with pytest.raises(ValueError):
        add_gaussian_noise(s, sigma=-1.0, rng=rng)


def test_complex_noise_keeps_dtype() -> None:
    from mcdespy.sim import add_complex_noise, add_rician_noise

    rng = np.random.default_rng(1)
    z = np.full(1000, 3.0 + 4.0j)
    noisy = add_complex_noise(z, sigma=0.1, rng=rng)
    assert np.iscomplexobj(noisy)
    assert abs(np.mean(noisy) - (3.0 + 4.0j)) < 0.02
    mag = add_rician_noise(z, sigma=0.1, rng=rng)
    assert not np.iscomplexobj(mag)


def test_synthetic_volume_shapes_mask_and_b1() -> None:
    from mcdespy.models import MCDespotFunctor, OffResMode, Pools, Scaling
    from mcdespy.sequences import SPGR, SSFP, Sequences
    from mcdespy.sim import synthetic_volume

    seqs = Sequences(
        Scaling.NORMALIZE_TO_MEAN,
        [SPGR.from_degrees([4, 18], 0.0065), SSFP.from_degrees([20, 60], 0.005, [180, 0])],
    )
    f = MCDespotFunctor(seqs, pools=Pools.TWO, off_resonance=OffResMode.MAP)
    params = np.broadcast_to(np.array([1000.0, 0.3, 0.02, 1.0, 0.1, 0.2, 0.15, 0.0]), (3, 2, 2, 8))
    mask = np.ones((3, 2, 2))
    mask[0] = 0
    b1 = np.full((3, 2, 2), 0.9)

    spgr, ssfp = synthetic_volume(f, params, mask=mask, b1=b1)
    assert spgr.shape == (3, 2, 2, 2)
    assert ssfp.shape == (3, 2, 2, 4)
    assert np.all(spgr[0] == 0)
    # raw signal carries PD; scaling is applied only when fitting
    assert spgr[1, 0, 0, 1] > 10.0
    expected = f.for_voxel(seqs.combine([spgr[2, 1, 1], ssfp[2, 1, 1]]), b1=0.9)
    np.testing.assert_allclose(expected.residuals(params[2, 1, 1]), 0.0, atol=1e-10)

    with pytest.raises(ValueError, match="params"):
        synthetic_volume(f, params[..., :7])


def test_synthetic_volume_noise_is_seeded() -> None:
    from mcdespy.models import MCDespotFunctor, Pools, Scaling
    from mcdespy.sequences import SPGR, Sequences
    from mcdespy.sim import synthetic_volume

    f = MCDespotFunctor(Sequences(Scaling.NONE, [SPGR.from_degrees([4, 18], 0.0065)]), pools=Pools.ONE)
    params = np.broadcast_to(np.array([1.0, 1.0, 0.1, 0.0]), (2, 2, 1, 4))
    a = synthetic_volume(f, params, sigma=0.01, seed=3)[0]
    b = synthetic_volume(f, params, sigma=0.01, seed=3)[0]
    clean = synthetic_volume(f, params)[0]
    np.testing.assert_array_equal(a, b)
    assert not np.array_equal(a, clean)
