from .models import (
    Despot1,
    Despot2,
    DESPOT2FMFunctor,
    FieldStrength,
    MCDespotFunctor,
    OffResMode,
    Pools,
    Scaling,
)
from .sequences import SPGR, SSFP, SPGRFinite, SSFPFinite, Sequences
from .optimize import RegionContraction
from .config import FitConfig, load_config
from .core.fit_volume import fit_volume, fit_voxel
from .core.result_schema import FitResult
from ._parallel import CancellationToken
from .io import load_image, load_tiff, save_image, save_maps, save_tiff

__all__ = [
    "__version__",
    "CancellationToken",
    "DESPOT2FMFunctor",
    "Despot1",
    "Despot2",
    "FieldStrength",
    "FitConfig",
    "FitResult",
    "MCDespotFunctor",
    "OffResMode",
    "Pools",
    "RegionContraction",
    "SPGR",
    "SPGRFinite",
    "SSFP",
    "SSFPFinite",
    "Scaling",
    "Sequences",
    "fit_volume",
    "fit_voxel",
    "load_config",
    "load_image",
    "load_tiff",
    "save_image",
    "save_maps",
    "save_tiff",
]

__version__ = "0.3.0"
