"""Pool counts, fitting modes and field-strength parameter presets.

The tissue parameter layouts are::

    ONE:   T1, T2
    TWO:   T1_a, T2_a, T1_b, T2_b, tau_a, f_a
    THREE: T1_a, T2_a, T1_b, T2_b, T1_c, T2_c, tau_a, f_a, f_c

Pool a is the short (myelin water) component, pool b the intra/extra
cellular water and pool c the free water (CSF). Times are in seconds.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]


class Pools(Enum):
    ONE = 1
    TWO = 2
    THREE = 3


class Scaling(Enum):
    """How the observed and theoretical signals are put on a common scale."""

    NONE = "none"
    NORMALIZE_TO_MEAN = "normalize"
    GLOBAL = "global"


class OffResMode(Enum):
    """How off-resonance enters the parameter vector.

    ``MAP`` pins f0 to a per-voxel map, ``SINGLE`` fits one f0 within
    ``+-0.5/TR``, ``SINGLE_SYMMETRIC`` fits it within ``[0, 0.5/TR]``,
    ``BOUNDED`` fits it between two per-voxel maps. The ``MULTI`` variants
    fit one f0 per sequence.
    """

    MAP = "map"
    SINGLE = "single"
    SINGLE_SYMMETRIC = "symmetric"
    BOUNDED = "bounded"
    MULTI = "multi"
    MULTI_BOUNDED = "multi_bounded"

    @property
    def per_sequence(self) -> bool:
        return self in (OffResMode.MULTI, OffResMode.MULTI_BOUNDED)

    @property
    def bounded_by_maps(self) -> bool:
        return self in (OffResMode.BOUNDED, OffResMode.MULTI_BOUNDED)


class FieldStrength(Enum):
    THREE = "3T"
    SEVEN = "7T"
    USER = "user"


TISSUE_NAMES: dict[Pools, tuple[str, ...]] = {
    Pools.ONE: ("T1", "T2"),
    Pools.TWO: ("T1_a", "T2_a", "T1_b", "T2_b", "tau_a", "f_a"),
    Pools.THREE: ("T1_a", "T2_a", "T1_b", "T2_b", "T1_c", "T2_c", "tau_a", "f_a", "f_c"),
}

TISSUE_BOUNDS: dict[tuple[FieldStrength, Pools], tuple[tuple[float, float], ...]] = {
    (FieldStrength.THREE, Pools.ONE): ((0.1, 4.0), (0.01, 1.5)),
    (FieldStrength.THREE, Pools.TWO): (
        (0.2, 0.4),
        (0.002, 0.03),
        (0.7, 2.0),
        (0.05, 0.15),
        (0.05, 0.3),
        (0.0, 0.35),
    ),
    (FieldStrength.THREE, Pools.THREE): (
        (0.2, 0.4),
        (0.002, 0.03),
        (0.7, 2.0),
        (0.05, 0.15),
        (3.5, 4.5),
        (0.8, 1.5),
        (0.05, 0.3),
        (0.0, 0.35),
        (0.0, 0.95),
    ),
    (FieldStrength.SEVEN, Pools.ONE): ((0.1, 4.0), (0.01, 2.0)),
    (FieldStrength.SEVEN, Pools.TWO): (
        (0.1, 0.5),
        (0.001, 0.025),
        (1.0, 4.0),
        (0.04, 0.08),
        (0.01, 0.25),
        (0.001, 1.0),
    ),
    (FieldStrength.SEVEN, Pools.THREE): (
        (0.1, 0.5),
        (0.001, 0.025),
        (1.0, 2.5),
        (0.04, 0.08),
        (3.0, 4.5),
        (0.5, 2.0),
        (0.01, 0.25),
        (0.001, 0.4),
        (0.001, 1.0),
    ),
}

PD_BOUNDS = (1.0e4, 5.0e6)
"""Proton density range when it is fitted (``Scaling.GLOBAL``)."""

TISSUE_THRESHOLD = 0.05
OFF_RESONANCE_THRESHOLD = 0.1
PD_THRESHOLD = 0.1


def tissue_names(pools: Pools) -> tuple[str, ...]:
    return TISSUE_NAMES[Pools(pools)]


def tissue_bounds(pools: Pools, field_strength: FieldStrength) -> NDArray[np.float64]:
    """Preset ``(n_tissue, 2)`` bounds; ``USER`` gives NaN rows to be filled in."""
    import numpy as np

    pools = Pools(pools)
    field_strength = FieldStrength(field_strength)
    if field_strength is FieldStrength.USER:
        return np.full((len(TISSUE_NAMES[pools]), 2), np.nan)
    return np.array(TISSUE_BOUNDS[(field_strength, pools)], dtype=np.float64)


def unpack_tissue(pools: Pools, tissue: ArrayLike) -> dict[str, NDArray[np.float64]]:
    """Split a ``(..., n_tissue)`` array into signal-equation keyword arguments."""
    import numpy as np

    names = TISSUE_NAMES[Pools(pools)]
    tissue = np.asarray(tissue, dtype=np.float64)
    if tissue.shape[-1] != len(names):
        raise ValueError(
            f"{Pools(pools).name} pool tissue vector needs {len(names)} values, "
            f"got shape={tissue.shape}"
        )
    return {name.lower(): tissue[..., i] for i, name in enumerate(names)}
