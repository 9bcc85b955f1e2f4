def test_despot1_forward_and_fit_linear_noise_free():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot1

    flip = np.deg2rad([3.0, 8.0, 15.0, 25.0])
    model = Despot1(flip=flip, tr=0.015, b1=1.0)

    pd_true = 2000.0
    t1_true = 0.9
    signal = model.forward(pd=pd_true, t1=t1_true)

    fitted = model.fit_linear(signal)
    assert abs(fitted["PD"] - pd_true) / pd_true < 1e-6
    assert abs(fitted["T1"] - t1_true) / t1_true < 1e-6


def test_despot1_two_flip_angles_and_b1():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot1

    model = Despot1(flip=np.deg2rad([4.0, 18.0]), tr=0.0065, b1=0.85)
    signal = model.forward(pd=1.0, t1=1.4)
    fitted = model.fit_linear(signal)
    assert fitted["T1"] == pytest.approx(1.4, rel=1e-6)
    assert fitted["PD"] == pytest.approx(1.0, rel=1e-6)


def test_despot1_robust_fit_tolerates_an_outlier():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot1

    model = Despot1(flip=np.deg2rad([2.0, 3.0, 4.0, 6.0, 9.0, 13.0, 18.0, 25.0]), tr=0.0065)
    signal = model.forward(pd=1000.0, t1=1.0)
    signal[-1] *= 1.5
    robust = model.fit_linear(signal, robust=True)
    plain = model.fit_linear(signal)
    assert abs(robust["T1"] - 1.0) < abs(plain["T1"] - 1.0)


def test_despot1_invalid_inputs():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot1

    with pytest.raises(ValueError):
        Despot1(flip=np.deg2rad([3.0, -1.0]), tr=0.01)
    with pytest.raises(ValueError):
        Despot1(flip=np.deg2rad([3.0, 10.0]), tr=0.0)
    model = Despot1(flip=np.deg2rad([3.0, 10.0]), tr=0.01)
    with pytest.raises(ValueError, match="shape"):
        model.fit_linear([1.0, 2.0, 3.0])
    with pytest.raises(ValueError, match="not enough"):
        model.fit_linear([0.0, 0.0])


def test_despot2_forward_and_fit_linear_noise_free():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot2

    model = Despot2(flip=np.deg2rad([10.0, 20.0, 35.0, 50.0, 70.0]), tr=0.005)
    signal = model.forward(pd=1500.0, t1=1.1, t2=0.07)
    fitted = model.fit_linear(signal, t1=1.1)
    assert abs(fitted["T2"] - 0.07) / 0.07 < 1e-6
    assert abs(fitted["PD"] - 1500.0) / 1500.0 < 1e-6


def test_despot2_requires_positive_t1():
    import pytest

    np = pytest.importorskip("numpy")

    from mcdespy.models import Despot2

    model = Despot2(flip=np.deg2rad([10.0, 40.0]), tr=0.005)
    with pytest.raises(ValueError, match="t1"):
        model.fit_linear([1.0, 2.0], t1=0.0)
