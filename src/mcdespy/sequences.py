"""Acquisition descriptions and the combined multi-sequence signal.

A protocol is a list of SPGR and SSFP acquisitions, each with its own TR
and flip angles (and phase increments for SSFP). Flip angles and phases
are stored in radians; use ``from_degrees`` to build from scanner units.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from .bloch.core import magnitude, transverse_complex
from .bloch.equations import (
    one_spgr,
    one_ssfp,
    one_ssfp_finite,
    three_spgr,
    three_ssfp,
    three_ssfp_finite,
    two_spgr,
    two_ssfp,
    two_ssfp_finite,
)
from .core.arrays import as_1d_float_array
from .models.pools import Pools, Scaling, unpack_tissue

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any  # type: ignore[misc,assignment]
    NDArray = Any  # type: ignore[misc,assignment]

logger = logging.getLogger("mcdespy")


class SequenceKind(Enum):
    SPGR = "SPGR"
    SSFP = "SSFP"
    SPGR_FINITE = "SPGR_FINITE"
    SSFP_FINITE = "SSFP_FINITE"


def _flip_angles(values: ArrayLike) -> NDArray[np.float64]:
    import numpy as np

    flip = as_1d_float_array(values, name="flip")
    if flip.size == 0:
        raise ValueError("flip must contain at least one angle")
    if np.any(flip <= 0) or np.any(flip > np.pi):
        raise ValueError("flip angles must be in (0, pi] radians")
    return flip


def _check_tr(tr: float) -> float:
    tr = float(tr)
    if not tr > 0:
        raise ValueError(f"tr must be > 0, got {tr}")
    return tr


def _check_trf(trf: float, tr: float) -> float:
    trf = float(trf)
    if not 0 < trf < tr:
        raise ValueError(f"trf must be in (0, tr), got trf={trf} tr={tr}")
    return trf


def _without_t2(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if not k.startswith("t2")}


class _Sequence:
    __slots__ = ()

    kind: ClassVar[SequenceKind]

    @property
    def size(self) -> int:
        return int(self.flip.size)

    def magnetization(self, pools: Pools, tissue: ArrayLike, *, pd: ArrayLike = 1.0,
                      b1: ArrayLike = 1.0, f0: ArrayLike = 0.0) -> NDArray[np.float64]:
        raise NotImplementedError

    def signal(
        self,
        pools: Pools,
        tissue: ArrayLike,
        *,
        pd: ArrayLike = 1.0,
        b1: ArrayLike = 1.0,
        f0: ArrayLike = 0.0,
        complex_signal: bool = False,
    ) -> NDArray[Any]:
        """Transverse signal ``(..., size)``; magnitude unless ``complex_signal``."""
        m = self.magnetization(pools, tissue, pd=pd, b1=b1, f0=f0)
        if complex_signal:
            return transverse_complex(m)
        return magnitude(m)


@dataclass(frozen=True, slots=True)
class SPGR(_Sequence):
    """Spoiled gradient echo with instantaneous pulses."""

    flip: Any
    tr: float

    kind: ClassVar[SequenceKind] = SequenceKind.SPGR

    def __post_init__(self) -> None:
        object.__setattr__(self, "flip", _flip_angles(self.flip))
        object.__setattr__(self, "tr", _check_tr(self.tr))

    @classmethod
    def from_degrees(cls, flip_deg: ArrayLike, tr: float) -> SPGR:
        import numpy as np

        return cls(np.deg2rad(as_1d_float_array(flip_deg, name="flip_deg")), tr)

    def magnetization(self, pools, tissue, *, pd=1.0, b1=1.0, f0=0.0):
        p = _without_t2(unpack_tissue(pools, tissue))
        match Pools(pools):
            case Pools.ONE:
                return one_spgr(self.flip, self.tr, pd=pd, b1=b1, **p)
            case Pools.TWO:
                return two_spgr(self.flip, self.tr, pd=pd, b1=b1, **p)
            case Pools.THREE:
                return three_spgr(self.flip, self.tr, pd=pd, b1=b1, **p)


@dataclass(frozen=True, slots=True)
class SPGRFinite(_Sequence):
    """Spoiled gradient echo with rectangular pulses of duration ``trf``.

    ``te`` is measured from the start of the pulse.
    """

    flip: Any
    tr: float
    trf: float
    te: float

    kind: ClassVar[SequenceKind] = SequenceKind.SPGR_FINITE

    def __post_init__(self) -> None:
        object.__setattr__(self, "flip", _flip_angles(self.flip))
        tr = _check_tr(self.tr)
        trf = _check_trf(self.trf, tr)
        te = float(self.te)
        if not trf <= te < tr:
            raise ValueError(f"te must be in [trf, tr), got te={te}")
        object.__setattr__(self, "tr", tr)
        object.__setattr__(self, "trf", trf)
        object.__setattr__(self, "te", te)

    @classmethod
    def from_degrees(cls, flip_deg: ArrayLike, tr: float, trf: float, te: float) -> SPGRFinite:
        import numpy as np

        return cls(np.deg2rad(as_1d_float_array(flip_deg, name="flip_deg")), tr, trf, te)

    def magnetization(self, pools, tissue, *, pd=1.0, b1=1.0, f0=0.0):
        p = unpack_tissue(pools, tissue)
        match Pools(pools):
            case Pools.ONE:
                equation = one_ssfp_finite
            case Pools.TWO:
                equation = two_ssfp_finite
            case Pools.THREE:
                equation = three_ssfp_finite
        return equation(
            self.flip, self.tr, self.trf, pd=pd, f0=f0, b1=b1, spoil=True, te=self.te, **p
        )


@dataclass(frozen=True, slots=True)
class SSFP(_Sequence):
    """Balanced SSFP with instantaneous pulses, one block per phase increment."""

    flip: Any
    tr: float
    phases: Any

    kind: ClassVar[SequenceKind] = SequenceKind.SSFP

    def __post_init__(self) -> None:
        object.__setattr__(self, "flip", _flip_angles(self.flip))
        object.__setattr__(self, "tr", _check_tr(self.tr))
        phases = as_1d_float_array(self.phases, name="phases")
        if phases.size == 0:
            raise ValueError("phases must contain at least one phase increment")
        object.__setattr__(self, "phases", phases)

    @classmethod
    def from_degrees(cls, flip_deg: ArrayLike, tr: float, phases_deg: ArrayLike) -> SSFP:
        import numpy as np

        return cls(
            np.deg2rad(as_1d_float_array(flip_deg, name="flip_deg")),
            tr,
            np.deg2rad(as_1d_float_array(phases_deg, name="phases_deg")),
        )

    @property
    def size(self) -> int:
        return int(self.flip.size * self.phases.size)

    def magnetization(self, pools, tissue, *, pd=1.0, b1=1.0, f0=0.0):
        p = unpack_tissue(pools, tissue)
        match Pools(pools):
            case Pools.ONE:
                equation = one_ssfp
            case Pools.TWO:
                equation = two_ssfp
            case Pools.THREE:
                equation = three_ssfp
        return equation(self.flip, self.tr, self.phases, pd=pd, f0=f0, b1=b1, **p)


@dataclass(frozen=True, slots=True)
class SSFPFinite(_Sequence):
    """Balanced SSFP with rectangular pulses; echo at mid free precession."""

    flip: Any
    tr: float
    trf: float
    phases: Any

    kind: ClassVar[SequenceKind] = SequenceKind.SSFP_FINITE

    def __post_init__(self) -> None:
        object.__setattr__(self, "flip", _flip_angles(self.flip))
        tr = _check_tr(self.tr)
        object.__setattr__(self, "tr", tr)
        object.__setattr__(self, "trf", _check_trf(self.trf, tr))
        phases = as_1d_float_array(self.phases, name="phases")
        if phases.size == 0:
            raise ValueError("phases must contain at least one phase increment")
        object.__setattr__(self, "phases", phases)

    @classmethod
    def from_degrees(
        cls, flip_deg: ArrayLike, tr: float, trf: float, phases_deg: ArrayLike
    ) -> SSFPFinite:
        import numpy as np

        return cls(
            np.deg2rad(as_1d_float_array(flip_deg, name="flip_deg")),
            tr,
            trf,
            np.deg2rad(as_1d_float_array(phases_deg, name="phases_deg")),
        )

    @property
    def size(self) -> int:
        return int(self.flip.size * self.phases.size)

    def magnetization(self, pools, tissue, *, pd=1.0, b1=1.0, f0=0.0):
        p = unpack_tissue(pools, tissue)
        match Pools(pools):
            case Pools.ONE:
                equation = one_ssfp_finite
            case Pools.TWO:
                equation = two_ssfp_finite
            case Pools.THREE:
                equation = three_ssfp_finite
        return equation(self.flip, self.tr, self.trf, self.phases, pd=pd, f0=f0, b1=b1, **p)


AnySequence = SPGR | SPGRFinite | SSFP | SSFPFinite


def _normalize_to_mean(signal: NDArray[Any]) -> NDArray[Any]:
    import numpy as np

    with np.errstate(divide="ignore", invalid="ignore"):
        return signal / np.mean(np.abs(signal), axis=-1, keepdims=True)


class Sequences:
    """Ordered collection of acquisitions sharing one scaling policy.

    The combined signal is the concatenation of every acquisition's signal
    in the order they were added.
    """

    def __init__(
        self,
        scaling: Scaling | str = Scaling.NORMALIZE_TO_MEAN,
        sequences: Sequence[AnySequence] = (),
    ) -> None:
        self.scaling = Scaling(scaling)
        self._sequences: list[AnySequence] = []
        for sequence in sequences:
            self.add(sequence)

    def add(self, sequence: AnySequence) -> Sequences:
        if not isinstance(sequence, _Sequence):
            raise ValueError(f"expected an SPGR/SSFP sequence, got {type(sequence).__name__}")
        self._sequences.append(sequence)
        logger.debug("added %s: %d signals, TR=%.4g s", sequence.kind.value, sequence.size, sequence.tr)
        return self

    def __len__(self) -> int:
        return len(self._sequences)

    def __iter__(self) -> Iterator[AnySequence]:
        return iter(self._sequences)

    def __getitem__(self, index: int) -> AnySequence:
        return self._sequences[index]

    @property
    def sizes(self) -> list[int]:
        return [s.size for s in self._sequences]

    @property
    def size(self) -> int:
        return sum(self.sizes)

    @property
    def offsets(self) -> list[slice]:
        out = []
        start = 0
        for n in self.sizes:
            out.append(slice(start, start + n))
            start += n
        return out

    @property
    def min_tr(self) -> float:
        if not self._sequences:
            raise ValueError("no sequences")
        return min(s.tr for s in self._sequences)

    def signal(
        self,
        pools: Pools,
        tissue: ArrayLike,
        *,
        pd: ArrayLike = 1.0,
        b1: ArrayLike = 1.0,
        f0: ArrayLike | Sequence[ArrayLike] = 0.0,
        complex_signal: bool = False,
    ) -> NDArray[Any]:
        """Concatenated theoretical signal ``(..., size)``.

        ``f0`` is either one value (or array) shared by every acquisition or
        a list with one entry per acquisition.
        """
        import numpy as np

        if isinstance(f0, (list, tuple)):
            if len(f0) != len(self._sequences):
                raise ValueError(f"f0 needs {len(self._sequences)} entries, got {len(f0)}")
            f0s = list(f0)
        else:
            f0s = [f0] * len(self._sequences)

        parts = []
        for sequence, f0_i in zip(self._sequences, f0s):
            s = sequence.signal(pools, tissue, pd=pd, b1=b1, f0=f0_i, complex_signal=complex_signal)
            if self.scaling is Scaling.NORMALIZE_TO_MEAN:
                s = _normalize_to_mean(s)
            parts.append(s)
        return np.concatenate(parts, axis=-1)

    def combine(self, signals: Sequence[ArrayLike], *, complex_signal: bool = False) -> NDArray[Any]:
        """Concatenate observed per-acquisition signals, applying the scaling policy."""
        import numpy as np

        if len(signals) != len(self._sequences):
            raise ValueError(f"expected {len(self._sequences)} signal arrays, got {len(signals)}")
        parts = []
        for i, (sequence, values) in enumerate(zip(self._sequences, signals)):
            s = np.asarray(values)
            if s.shape[-1:] != (sequence.size,):
                raise ValueError(
                    f"signal {i} ({sequence.kind.value}) must have {sequence.size} values, "
                    f"got shape={s.shape}"
                )
            if complex_signal:
                s = s.astype(np.complex128)
            elif np.iscomplexobj(s):
                s = np.abs(s)
            else:
                s = s.astype(np.float64)
            if self.scaling is Scaling.NORMALIZE_TO_MEAN:
                s = _normalize_to_mean(s)
            parts.append(s)
        return np.concatenate(parts, axis=-1)

    def split(self, values: ArrayLike) -> list[NDArray[Any]]:
        """Inverse of concatenation: one array per acquisition."""
        import numpy as np

        values = np.asarray(values)
        if values.shape[-1] != self.size:
            raise ValueError(f"expected {self.size} signals, got shape={values.shape}")
        return [values[..., sl] for sl in self.offsets]

    def load_signals(
        self,
        volumes: Sequence[ArrayLike],
        index: tuple[int, ...],
        *,
        complex_signal: bool = False,
    ) -> NDArray[Any]:
        """Observed signal vector of one voxel from per-acquisition 4D volumes."""
        return self.combine([v[tuple(index)] for v in volumes], complex_signal=complex_signal)

    def weights(self, spgr_weight: float = 1.0) -> NDArray[np.float64]:
        """Per-signal residual weights; SPGR signals get ``spgr_weight``."""
        import numpy as np

        w = np.ones(self.size)
        for sequence, sl in zip(self._sequences, self.offsets):
            if sequence.kind in (SequenceKind.SPGR, SequenceKind.SPGR_FINITE):
                w[sl] = spgr_weight
        return w

    def __repr__(self) -> str:
        inner = ", ".join(f"{s.kind.value}[{s.size}]" for s in self._sequences)
        return f"Sequences(scaling={self.scaling.value}, [{inner}])"
