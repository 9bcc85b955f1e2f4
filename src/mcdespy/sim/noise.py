from __future__ import annotations

from typing import Any


def add_gaussian_noise(signal: Any, *, sigma: float, rng: Any) -> Any:
    """Add i.i.d. Gaussian noise to a real-valued signal.

    Parameters
    ----------
    signal:
        Array-like.
    sigma:
        Standard deviation of the additive noise.
    rng:
        NumPy Generator-compatible object with `.normal`.
    """
    import numpy as np

    if sigma < 0:
        raise ValueError("sigma must be >= 0")
    x = np.asarray(signal, dtype=np.float64)
    if sigma == 0:
        return x
    return x + rng.normal(loc=0.0, scale=float(sigma), size=x.shape)


def add_complex_noise(signal: Any, *, sigma: float, rng: Any) -> Any:
    """Add independent Gaussian noise to the real and imaginary channels."""
    import numpy as np

    if sigma < 0:
        raise ValueError("sigma must be >= 0")
    z = np.asarray(signal, dtype=np.complex128)
    if sigma == 0:
        return z
    noise = rng.normal(loc=0.0, scale=float(sigma), size=z.shape + (2,))
    return z + noise[..., 0] + 1j * noise[..., 1]


def add_rician_noise(signal: Any, *, sigma: float, rng: Any) -> Any:
    """Add Rician noise (magnitude of complex Gaussian) to a magnitude signal.

        y = sqrt( (s + n1)^2 + n2^2 ),  n1,n2 ~ N(0, sigma)

    Complex input is reduced to its magnitude after adding the noise.
    """
    import numpy as np

    if sigma < 0:
        raise ValueError("sigma must be >= 0")
    s = np.asarray(signal)
    if np.iscomplexobj(s):
        return np.abs(add_complex_noise(s, sigma=sigma, rng=rng))
    s = s.astype(np.float64)
    if sigma == 0:
        return s
    n1 = rng.normal(loc=0.0, scale=float(sigma), size=s.shape)
    n2 = rng.normal(loc=0.0, scale=float(sigma), size=s.shape)
    return np.sqrt((s + n1) ** 2 + (n2**2))
