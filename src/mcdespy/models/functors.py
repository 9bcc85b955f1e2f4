"""Parameter layout, theory, residuals and constraints for the DESPOT fits.

A functor binds a protocol (``Sequences``) and one voxel's observed signal
into the objective minimised by Region Contraction. The parameter vector is
laid out as::

    [PD, tissue parameters..., f0...]

with one f0 entry, or one per acquisition in the ``MULTI`` off-resonance
modes. All methods accept a single vector ``(n_parameters,)`` or a
population ``(n_candidates, n_parameters)`` and evaluate it in one batch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, ClassVar

from ..core.arrays import as_bounds_array
from ..sequences import SequenceKind, Sequences
from .pools import (
    OFF_RESONANCE_THRESHOLD,
    PD_BOUNDS,
    PD_THRESHOLD,
    TISSUE_THRESHOLD,
    FieldStrength,
    OffResMode,
    Pools,
    Scaling,
    tissue_bounds,
    tissue_names,
)

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]


def validate_bounds(bounds: ArrayLike, n_parameters: int) -> NDArray[np.float64]:
    """Check a bounds matrix for shape, finiteness and ``low <= high``."""
    return as_bounds_array(bounds, n_parameters=n_parameters)


@dataclass(frozen=True, slots=True)
class DespotFunctor:
    """Shared parameter-vector handling for the DESPOT functors."""

    sequences: Sequences
    actual: Any = None
    b1: Any = 1.0
    off_resonance: OffResMode = OffResMode.SINGLE
    complex_fit: bool = False

    REQUIRES_T1: ClassVar[bool] = False

    def __post_init__(self) -> None:
        import numpy as np

        if not isinstance(self.sequences, Sequences):
            raise ValueError("sequences must be a Sequences instance")
        if len(self.sequences) == 0:
            raise ValueError("at least one sequence is required")
        object.__setattr__(self, "off_resonance", OffResMode(self.off_resonance))
        object.__setattr__(self, "b1", np.asarray(self.b1, dtype=np.float64))

        if self.actual is not None:
            actual = np.asarray(self.actual)
            if self.complex_fit:
                actual = actual.astype(np.complex128)
            elif np.iscomplexobj(actual):
                actual = np.abs(actual)
            else:
                actual = actual.astype(np.float64)
            if actual.shape[-1:] != (self.size,):
                raise ValueError(
                    f"actual must have {self.size} signals, got shape={actual.shape}"
                )
            object.__setattr__(self, "actual", actual)

    @property
    def scaling(self) -> Scaling:
        return self.sequences.scaling

    @property
    def size(self) -> int:
        return self.sequences.size

    @property
    def tissue_names(self) -> tuple[str, ...]:
        raise NotImplementedError

    @property
    def n_tissue(self) -> int:
        return len(self.tissue_names)

    @property
    def n_off_resonance(self) -> int:
        return len(self.sequences) if self.off_resonance.per_sequence else 1

    @property
    def n_parameters(self) -> int:
        return 1 + self.n_tissue + self.n_off_resonance

    @property
    def off_resonance_index(self) -> slice:
        return slice(1 + self.n_tissue, self.n_parameters)

    @property
    def names(self) -> list[str]:
        if self.n_off_resonance == 1:
            f0 = ["f0"]
        else:
            f0 = [f"f0_{i}" for i in range(self.n_off_resonance)]
        return ["PD", *self.tissue_names, *f0]

    def _parameters(self, params: ArrayLike) -> NDArray[np.float64]:
        import numpy as np

        p = np.asarray(params, dtype=np.float64)
        if p.shape[-1:] != (self.n_parameters,):
            raise ValueError(
                f"expected {self.n_parameters} parameters {self.names}, got shape={p.shape}"
            )
        return p

    def signal_tissue(self, params: NDArray[np.float64]) -> NDArray[np.float64]:
        """Tissue block as seen by the signal equations."""
        return params[..., 1 : 1 + self.n_tissue]

    def split_parameters(self, params: ArrayLike) -> tuple[Any, Any, list[Any]]:
        """``(pd, tissue, [f0 per acquisition])`` from a parameter vector."""
        p = self._parameters(params)
        f0 = p[..., self.off_resonance_index]
        n_off = self.n_off_resonance
        f0s = [f0[..., min(i, n_off - 1)] for i in range(len(self.sequences))]
        return p[..., 0], self.signal_tissue(p), f0s

    def theory(self, params: ArrayLike) -> NDArray[Any]:
        """Predicted signal ``(..., size)``; a pure function of ``params``."""
        pd, tissue, f0s = self.split_parameters(params)
        return self.sequences.signal(
            self.pools,
            tissue,
            pd=pd,
            b1=self.b1,
            f0=f0s,
            complex_signal=self.complex_fit,
        )

    def residuals(self, params: ArrayLike) -> NDArray[Any]:
        """``theory(params) - actual``."""
        if self.actual is None:
            raise ValueError("no observed signal bound to this functor; use for_voxel()")
        return self.theory(params) - self.actual

    def constraint(self, params: ArrayLike) -> Any:
        raise NotImplementedError

    def _tissue_bounds(self, field_strength: FieldStrength) -> NDArray[np.float64]:
        raise NotImplementedError

    def default_bounds(
        self,
        field_strength: FieldStrength | str = FieldStrength.THREE,
        overrides: dict[str, tuple[float, float]] | None = None,
    ) -> NDArray[np.float64]:
        """Bounds preset ``(n_parameters, 2)`` for a field strength.

        The PD row is fitted only for ``Scaling.GLOBAL`` and pinned to 1
        otherwise. f0 rows span half the bSSFP passband, ``+-0.5/TR``
        (``[0, 0.5/TR]`` for ``SINGLE_SYMMETRIC``); map-driven modes get a
        placeholder row replaced per voxel. ``overrides`` maps parameter
        names to ``(low, high)``; it is required for ``FieldStrength.USER``.
        The result is validated.
        """
        import numpy as np

        field_strength = FieldStrength(field_strength)
        bounds = np.zeros((self.n_parameters, 2))
        bounds[0] = PD_BOUNDS if self.scaling is Scaling.GLOBAL else (1.0, 1.0)
        bounds[1 : 1 + self.n_tissue] = self._tissue_bounds(field_strength)

        rows = range(self.off_resonance_index.start, self.n_parameters)
        for i, row in enumerate(rows):
            tr = self.sequences[i].tr if self.off_resonance.per_sequence else self.sequences.min_tr
            half_band = 0.5 / tr
            match self.off_resonance:
                case OffResMode.SINGLE | OffResMode.MULTI:
                    bounds[row] = (-half_band, half_band)
                case OffResMode.SINGLE_SYMMETRIC:
                    bounds[row] = (0.0, half_band)
                case OffResMode.MAP | OffResMode.BOUNDED | OffResMode.MULTI_BOUNDED:
                    bounds[row] = (0.0, 0.0)

        for name, (low, high) in (overrides or {}).items():
            if name not in self.names:
                raise ValueError(f"unknown parameter {name!r} in bounds, expected one of {self.names}")
            bounds[self.names.index(name)] = (low, high)
        return validate_bounds(bounds, self.n_parameters)

    def default_thresholds(self) -> NDArray[np.float64]:
        """Per-parameter relative-width convergence thresholds."""
        import numpy as np

        thresholds = np.full(self.n_parameters, TISSUE_THRESHOLD)
        thresholds[0] = PD_THRESHOLD
        thresholds[self.off_resonance_index] = OFF_RESONANCE_THRESHOLD
        return thresholds

    def weights(self, spgr_weight: float = 1.0) -> NDArray[np.float64]:
        return self.sequences.weights(spgr_weight)

    def for_voxel(self, actual: ArrayLike, *, b1: ArrayLike = 1.0, **priors: Any) -> DespotFunctor:
        """Copy of this functor bound to one voxel's signal and B1."""
        return replace(self, actual=actual, b1=b1, **priors)


@dataclass(frozen=True, slots=True)
class MCDespotFunctor(DespotFunctor):
    """Multi-component DESPOT (mcDESPOT) objective for one, two or three pools."""

    pools: Pools = Pools.TWO

    def __post_init__(self) -> None:
        object.__setattr__(self, "pools", Pools(self.pools))
        DespotFunctor.__post_init__(self)

    @property
    def tissue_names(self) -> tuple[str, ...]:
        return tissue_names(self.pools)

    def constraint(self, params: ArrayLike) -> Any:
        """Physical validity of one vector (bool) or a population (bool array).

        All relaxation times must be positive. With two pools the short
        pool must have the shorter T1 and T2 and ``f_a <= 1``. With three
        pools the ordering extends to pool c and ``f_a + f_c <= 1``.
        """
        p = self._parameters(params)
        t = p[..., 1 : 1 + self.n_tissue]
        ok = (t[..., 0] > 0) & (t[..., 1] > 0)
        match self.pools:
            case Pools.ONE:
                pass
            case Pools.TWO:
                ok &= (t[..., 0] < t[..., 2]) & (t[..., 1] < t[..., 3])
                ok &= t[..., 5] <= 1.0
            case Pools.THREE:
                ok &= (t[..., 0] < t[..., 2]) & (t[..., 1] < t[..., 3])
                ok &= (t[..., 2] < t[..., 4]) & (t[..., 3] < t[..., 5])
                ok &= (t[..., 7] + t[..., 8]) <= 1.0
        return ok

    def _tissue_bounds(self, field_strength: FieldStrength) -> NDArray[np.float64]:
        return tissue_bounds(self.pools, field_strength)


@dataclass(frozen=True, slots=True)
class DESPOT2FMFunctor(DespotFunctor):
    """DESPOT2-FM: single-pool T2 and off-resonance from SSFP with known T1.

    Only SSFP acquisitions are accepted. ``t1`` is the voxel's T1 (s), usually
    from a prior DESPOT1 map; voxels without a positive T1 are not fitted.
    """

    t1: Any = 0.0

    REQUIRES_T1: ClassVar[bool] = True

    def __post_init__(self) -> None:
        import numpy as np

        for sequence in self.sequences:
            if sequence.kind not in (SequenceKind.SSFP, SequenceKind.SSFP_FINITE):
                raise ValueError(f"DESPOT2-FM needs SSFP data, got {sequence.kind.value}")
        object.__setattr__(self, "t1", np.asarray(self.t1, dtype=np.float64))
        DespotFunctor.__post_init__(self)

    @property
    def pools(self) -> Pools:
        return Pools.ONE

    @property
    def tissue_names(self) -> tuple[str, ...]:
        return ("T2",)

    def signal_tissue(self, params):
        import numpy as np

        t2 = params[..., 1]
        t1 = np.broadcast_to(self.t1, np.broadcast_shapes(self.t1.shape, t2.shape))
        return np.stack(np.broadcast_arrays(t1, t2), axis=-1)

    def constraint(self, params: ArrayLike) -> Any:
        p = self._parameters(params)
        return p[..., 1] > 0

    def _tissue_bounds(self, field_strength: FieldStrength) -> NDArray[np.float64]:
        return tissue_bounds(Pools.ONE, field_strength)[1:2]
