import numpy as np
import pytest

from mcdespy._mask import resolve_mask


def test_resolve_mask_variants() -> None:
    data = np.zeros((4, 4, 1, 3))
    data[1:3, 1:3] = 10.0

    assert resolve_mask(None, data).all()
    explicit = resolve_mask(data[..., 0], data)
    assert explicit.dtype == bool
    assert explicit.sum() == 4

    otsu = resolve_mask("otsu", data)
    np.testing.assert_array_equal(otsu, explicit)

    with pytest.raises(ValueError, match="Unknown mask"):
        resolve_mask("triangle", data)
    with pytest.raises(ValueError, match="shape"):
        resolve_mask(np.ones((4, 4)), data)


def test_nan_in_mask_is_outside() -> None:
    data = np.ones((2, 1, 1, 2))
    mask = np.array([[[np.nan]], [[1.0]]])
    np.testing.assert_array_equal(resolve_mask(mask, data)[:, 0, 0], [False, True])
