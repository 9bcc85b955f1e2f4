from .noise import add_complex_noise, add_gaussian_noise, add_rician_noise
from .synthetic import synthetic_signals, synthetic_volume

__all__ = [
    "add_complex_noise",
    "add_gaussian_noise",
    "add_rician_noise",
    "synthetic_signals",
    "synthetic_volume",
]
