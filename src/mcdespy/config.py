"""Fit settings and TOML run files.

A run file looks like::

    [fit]
    pools = 2
    scaling = "normalize"
    off_resonance = "symmetric"
    field_strength = "3T"
    samples = 5000
    retain = 50
    contract = 10
    polish = true
    seed = 42
    n_jobs = 4

    [[sequence]]
    type = "SPGR"
    path = "spgr.nii.gz"
    tr = 0.0065
    flip_deg = [3, 4, 5, 6, 7, 9, 13, 18]

    [[sequence]]
    type = "SSFP"
    path = "ssfp.nii.gz"
    tr = 0.005
    flip_deg = [12, 16, 19, 23, 27, 34, 50, 70]
    phases_deg = [180, 0]

    [maps]
    mask = "mask.nii.gz"        # or "otsu"
    b1 = "b1.nii.gz"

    [output]
    prefix = "out/mcd_"
    residuals = true

    [bounds]
    f_a = [0.0, 0.3]

Relative paths are resolved against the directory of the run file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .models.functors import DESPOT2FMFunctor, DespotFunctor, MCDespotFunctor
from .models.pools import FieldStrength, OffResMode, Pools, Scaling
from .sequences import SPGR, SSFP, SPGRFinite, SSFPFinite, Sequences

logger = logging.getLogger("mcdespy")

MODELS = ("mcdespot", "despot2fm")
MAP_NAMES = ("mask", "b1", "f0", "f0_low", "f0_high", "t1")


@dataclass(frozen=True, slots=True)
class FitConfig:
    """Model choice and Region Contraction settings for a run."""

    model: str = "mcdespot"
    pools: Pools = Pools.TWO
    finite: bool = False
    complex_fit: bool = False
    scaling: Scaling = Scaling.NORMALIZE_TO_MEAN
    off_resonance: OffResMode = OffResMode.SINGLE_SYMMETRIC
    field_strength: FieldStrength = FieldStrength.THREE
    samples: int = 5000
    retain: int = 50
    contract: int = 10
    expand: float = 0.0
    max_resample: int = 100
    polish: bool = True
    thresholds: tuple[float, ...] | None = None
    spgr_weight: float = 1.0
    seed: int | None = None
    n_jobs: int = 1
    start_slice: int = 0
    stop_slice: int | None = None
    verbose: bool = False

    def __post_init__(self) -> None:
        model = str(self.model).lower()
        if model not in MODELS:
            raise ValueError(f"model must be one of {MODELS}, got {self.model!r}")
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "pools", Pools(int(_enum_value(self.pools))))
        object.__setattr__(self, "scaling", Scaling(_enum_value(self.scaling)))
        object.__setattr__(self, "off_resonance", OffResMode(_enum_value(self.off_resonance)))
        object.__setattr__(self, "field_strength", _field_strength(self.field_strength))

        if self.samples < 1:
            raise ValueError("samples must be >= 1")
        if not 1 <= self.retain < self.samples:
            raise ValueError("retain must be >= 1 and < samples")
        if self.contract < 1:
            raise ValueError("contract must be >= 1")
        if self.expand < 0:
            raise ValueError("expand must be >= 0")
        if self.max_resample < 1:
            raise ValueError("max_resample must be >= 1")
        if self.spgr_weight <= 0:
            raise ValueError("spgr_weight must be > 0")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")
        if self.start_slice < 0:
            raise ValueError("start_slice must be >= 0")
        if self.stop_slice is not None and self.stop_slice < self.start_slice:
            raise ValueError("stop_slice must be >= start_slice")
        if self.thresholds is not None:
            thresholds = tuple(float(t) for t in self.thresholds)
            if any(t < 0 for t in thresholds):
                raise ValueError("thresholds must be >= 0")
            object.__setattr__(self, "thresholds", thresholds)

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]) -> FitConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"config format error: unknown [fit] keys {unknown}")
        return cls(**mapping)

    def build_functor(self, sequences: Sequences) -> DespotFunctor:
        """Functor for this configuration (no voxel bound yet)."""
        if sequences.scaling is not self.scaling:
            raise ValueError(
                f"sequences use scaling {sequences.scaling.value!r}, config says {self.scaling.value!r}"
            )
        if self.model == "despot2fm":
            return DESPOT2FMFunctor(
                sequences,
                off_resonance=self.off_resonance,
                complex_fit=self.complex_fit,
            )
        return MCDespotFunctor(
            sequences,
            pools=self.pools,
            off_resonance=self.off_resonance,
            complex_fit=self.complex_fit,
        )


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _field_strength(value: Any) -> FieldStrength:
    value = _enum_value(value)
    if isinstance(value, (int, float)):
        value = f"{int(value)}T"
    text = str(value).strip()
    if text.lower() == "user":
        return FieldStrength.USER
    return FieldStrength(text.upper())


@dataclass(frozen=True, slots=True)
class SequenceSpec:
    """One ``[[sequence]]`` entry: acquisition parameters plus its data file."""

    type: str
    path: Path
    tr: float
    flip_deg: tuple[float, ...]
    phases_deg: tuple[float, ...] = ()
    trf: float | None = None
    te: float | None = None

    def __post_init__(self) -> None:
        kind = str(self.type).upper()
        if kind not in ("SPGR", "SSFP"):
            raise ValueError(f"sequence type must be 'SPGR' or 'SSFP', got {self.type!r}")
        object.__setattr__(self, "type", kind)
        object.__setattr__(self, "path", Path(self.path))
        object.__setattr__(self, "flip_deg", tuple(float(f) for f in self.flip_deg))
        object.__setattr__(self, "phases_deg", tuple(float(p) for p in self.phases_deg))
        if kind == "SSFP" and not self.phases_deg:
            raise ValueError(f"SSFP sequence {self.path} needs phases_deg")

    def build(self, *, finite: bool = False) -> SPGR | SPGRFinite | SSFP | SSFPFinite:
        if self.type == "SPGR":
            if not finite:
                return SPGR.from_degrees(self.flip_deg, self.tr)
            if self.trf is None or self.te is None:
                raise ValueError(f"finite-pulse SPGR {self.path} needs trf and te")
            return SPGRFinite.from_degrees(self.flip_deg, self.tr, self.trf, self.te)
        if not finite:
            return SSFP.from_degrees(self.flip_deg, self.tr, self.phases_deg)
        if self.trf is None:
            raise ValueError(f"finite-pulse SSFP {self.path} needs trf")
        return SSFPFinite.from_degrees(self.flip_deg, self.tr, self.trf, self.phases_deg)


@dataclass(frozen=True, slots=True)
class OutputConfig:
    prefix: str = "mcd_"
    format: str = "nifti"
    residuals: bool = False
    diagnostics: bool = False

    def __post_init__(self) -> None:
        fmt = str(self.format).lower()
        if fmt not in ("nifti", "tiff"):
            raise ValueError(f"output format must be 'nifti' or 'tiff', got {self.format!r}")
        object.__setattr__(self, "format", fmt)


@dataclass(frozen=True, slots=True)
class RunConfig:
    fit: FitConfig
    sequences: tuple[SequenceSpec, ...]
    maps: dict[str, Path | str] = field(default_factory=dict)
    output: OutputConfig = field(default_factory=OutputConfig)
    bounds: dict[str, tuple[float, float]] = field(default_factory=dict)

    def build_sequences(self) -> Sequences:
        sequences = Sequences(self.fit.scaling)
        for spec in self.sequences:
            sequences.add(spec.build(finite=self.fit.finite))
        return sequences


def _read_toml(path: Path) -> dict[str, Any]:
    import tomllib

    return tomllib.loads(path.read_text(encoding="utf-8"))


def _resolve(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base / path


def _parse_sequence(entry: Any, base: Path, index: int) -> SequenceSpec:
    if not isinstance(entry, dict):
        raise ValueError(f"config format error: [[sequence]] {index} must be a table")
    for key in ("type", "path", "tr", "flip_deg"):
        if key not in entry:
            raise ValueError(f"config format error: [[sequence]] {index} is missing {key!r}")
    flip = entry["flip_deg"]
    if not isinstance(flip, list) or not all(isinstance(x, (int, float)) for x in flip):
        raise ValueError(f"config format error: sequence {index} flip_deg must be a list of numbers")
    phases = entry.get("phases_deg", [])
    if not isinstance(phases, list) or not all(isinstance(x, (int, float)) for x in phases):
        raise ValueError(f"config format error: sequence {index} phases_deg must be a list of numbers")
    return SequenceSpec(
        type=entry["type"],
        path=_resolve(base, entry["path"]),
        tr=float(entry["tr"]),
        flip_deg=tuple(flip),
        phases_deg=tuple(phases),
        trf=None if entry.get("trf") is None else float(entry["trf"]),
        te=None if entry.get("te") is None else float(entry["te"]),
    )


def _parse_bounds(table: Any) -> dict[str, tuple[float, float]]:
    if not isinstance(table, dict):
        raise ValueError("config format error: [bounds] must be a table")
    out: dict[str, tuple[float, float]] = {}
    for name, pair in table.items():
        if (
            not isinstance(pair, list)
            or len(pair) != 2
            or not all(isinstance(x, (int, float)) for x in pair)
        ):
            raise ValueError(f"config format error: bounds.{name} must be [low, high]")
        out[name] = (float(pair[0]), float(pair[1]))
    return out


def load_config(path: str | Path) -> RunConfig:
    """Parse and validate a TOML run file."""
    path = Path(path)
    if not path.is_file():
        raise ValueError(f"config file not found: {path}")
    config = _read_toml(path)
    base = path.resolve().parent

    fit_table = config.get("fit", {})
    if not isinstance(fit_table, dict):
        raise ValueError("config format error: [fit] must be a table")
    fit = FitConfig.from_mapping(fit_table)

    entries = config.get("sequence", [])
    if not isinstance(entries, list) or not entries:
        raise ValueError("config format error: at least one [[sequence]] is required")
    sequences = tuple(_parse_sequence(entry, base, i) for i, entry in enumerate(entries))

    maps_table = config.get("maps", {})
    if not isinstance(maps_table, dict):
        raise ValueError("config format error: [maps] must be a table")
    unknown = sorted(set(maps_table) - set(MAP_NAMES))
    if unknown:
        raise ValueError(f"config format error: unknown [maps] keys {unknown}")
    maps: dict[str, Path | str] = {}
    for name, value in maps_table.items():
        if name == "mask" and str(value).lower().strip() == "otsu":
            maps[name] = "otsu"
        else:
            maps[name] = _resolve(base, value)

    output_table = config.get("output", {})
    if not isinstance(output_table, dict):
        raise ValueError("config format error: [output] must be a table")
    unknown = sorted(set(output_table) - {f.name for f in fields(OutputConfig)})
    if unknown:
        raise ValueError(f"config format error: unknown [output] keys {unknown}")
    output = OutputConfig(**output_table)
    if not Path(output.prefix).is_absolute():
        output = OutputConfig(
            prefix=str(base / output.prefix),
            format=output.format,
            residuals=output.residuals,
            diagnostics=output.diagnostics,
        )

    bounds = _parse_bounds(config.get("bounds", {}))
    logger.debug("loaded %s: %d sequences, model=%s", path, len(sequences), fit.model)
    return RunConfig(fit=fit, sequences=sequences, maps=maps, output=output, bounds=bounds)
