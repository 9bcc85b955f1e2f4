from .despot import Despot1, Despot2
from .functors import DESPOT2FMFunctor, DespotFunctor, MCDespotFunctor, validate_bounds
from .pools import FieldStrength, OffResMode, Pools, Scaling, tissue_names

__all__ = [
    "Despot1",
    "Despot2",
    "DESPOT2FMFunctor",
    "DespotFunctor",
    "FieldStrength",
    "MCDespotFunctor",
    "OffResMode",
    "Pools",
    "Scaling",
    "tissue_names",
    "validate_bounds",
]
