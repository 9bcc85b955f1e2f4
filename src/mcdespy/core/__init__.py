"""Core utilities for mcdespy."""

from .arrays import as_1d_float_array, as_bounds_array, as_spatial_map
from .result_schema import FitResult

__all__ = [
    "as_1d_float_array",
    "as_bounds_array",
    "as_spatial_map",
    "FitResult",
]
