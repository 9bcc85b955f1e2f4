from pathlib import Path

import pytest

from mcdespy.config import FitConfig, OutputConfig, SequenceSpec, load_config
from mcdespy.models import DESPOT2FMFunctor, FieldStrength, MCDespotFunctor, OffResMode, Pools, Scaling
from mcdespy.sequences import SPGRFinite, SSFP

RUN_FILE = """
[fit]
pools = 3
scaling = "global"
off_resonance = "single"
field_strength = "7t"
samples = 1000
retain = 20
seed = 7

[[sequence]]
type = "spgr"
path = "data/spgr.nii.gz"
tr = 0.0065
flip_deg = [3, 4, 5, 18]

[[sequence]]
type = "SSFP"
path = "/abs/ssfp.nii.gz"
tr = 0.005
flip_deg = [12, 70]
phases_deg = [180, 0]

[maps]
b1 = "b1.nii.gz"

[output]
prefix = "out/mcd_"
residuals = true

[bounds]
f_a = [0.0, 0.3]
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "run.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_parses_all_tables(tmp_path: Path) -> None:
    run = load_config(_write(tmp_path, RUN_FILE))

    assert run.fit.pools is Pools.THREE
    assert run.fit.scaling is Scaling.GLOBAL
    assert run.fit.off_resonance is OffResMode.SINGLE
    assert run.fit.field_strength is FieldStrength.SEVEN
    assert run.fit.samples == 1000
    assert run.fit.contract == 10

    assert [s.type for s in run.sequences] == ["SPGR", "SSFP"]
    assert run.sequences[0].path == tmp_path / "data/spgr.nii.gz"
    assert run.sequences[1].path == Path("/abs/ssfp.nii.gz")
    assert run.maps == {"b1": tmp_path / "b1.nii.gz"}
    assert run.output.prefix == str(tmp_path / "out/mcd_")
    assert run.output.residuals is True
    assert run.bounds == {"f_a": (0.0, 0.3)}

    sequences = run.build_sequences()
    assert sequences.sizes == [4, 4]
    assert isinstance(sequences[1], SSFP)

    functor = run.fit.build_functor(sequences)
    assert isinstance(functor, MCDespotFunctor)
    assert functor.pools is Pools.THREE
    bounds = functor.default_bounds(run.fit.field_strength, overrides=run.bounds)
    assert tuple(bounds[functor.names.index("f_a")]) == (0.0, 0.3)


@pytest.mark.parametrize(
    "text, match",
    [
        ("[fit]\nbogus = 1\n[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\nflip_deg=[3]\n", "unknown"),
        ("[fit]\npools = 2\n", "sequence"),
        ("[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\n", "flip_deg"),
        ("[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\nflip_deg='3'\n", "list of numbers"),
        ("[[sequence]]\ntype='SSFP'\npath='a'\ntr=0.01\nflip_deg=[3]\n", "phases_deg"),
        ("[[sequence]]\ntype='EPI'\npath='a'\ntr=0.01\nflip_deg=[3]\n", "type"),
        ("[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\nflip_deg=[3]\n[maps]\nt2='x'\n", "maps"),
        ("[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\nflip_deg=[3]\n[bounds]\nT1=[1]\n", "bounds"),
        ("[[sequence]]\ntype='SPGR'\npath='a'\ntr=0.01\nflip_deg=[3]\n[output]\nformat='png'\n", "format"),
    ],
)
def test_load_config_rejects_malformed_files(tmp_path: Path, text: str, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        load_config(_write(tmp_path, text))


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_config(tmp_path / "nope.toml")


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(model="t1"),
        dict(pools=4),
        dict(retain=5000),
        dict(samples=0),
        dict(contract=0),
        dict(expand=-1.0),
        dict(n_jobs=0),
        dict(start_slice=3, stop_slice=2),
        dict(thresholds=(0.1, -0.1)),
        dict(spgr_weight=0.0),
        dict(scaling="mean"),
    ],
)
def test_fit_config_validation(kwargs) -> None:
    with pytest.raises(ValueError):
        FitConfig(**kwargs)


def test_fit_config_coerces_enums() -> None:
    cfg = FitConfig(pools=1, scaling="none", off_resonance="map", field_strength=3)
    assert cfg.pools is Pools.ONE
    assert cfg.scaling is Scaling.NONE
    assert cfg.off_resonance is OffResMode.MAP
    assert cfg.field_strength is FieldStrength.THREE
    assert FitConfig(field_strength="user").field_strength is FieldStrength.USER


def test_build_functor_checks_scaling_and_model(tmp_path: Path) -> None:
    from mcdespy.sequences import Sequences

    seqs = Sequences(Scaling.NONE, [SSFP.from_degrees([20, 40], 0.005, [0])])
    with pytest.raises(ValueError, match="scaling"):
        FitConfig().build_functor(seqs)
    functor = FitConfig(model="DESPOT2FM", scaling="none").build_functor(seqs)
    assert isinstance(functor, DESPOT2FMFunctor)


def test_finite_sequences_need_pulse_timing() -> None:
    spec = SequenceSpec(type="SPGR", path="a", tr=0.01, flip_deg=(3.0, 10.0))
    with pytest.raises(ValueError, match="trf"):
        spec.build(finite=True)
    timed = SequenceSpec(type="SPGR", path="a", tr=0.01, flip_deg=(3.0,), trf=0.001, te=0.003)
    assert isinstance(timed.build(finite=True), SPGRFinite)


def test_output_config_format() -> None:
    assert OutputConfig(format="TIFF").format == "tiff"
    with pytest.raises(ValueError):
        OutputConfig(format="png")


def test_mask_can_be_otsu(tmp_path: Path) -> None:
    text = RUN_FILE.replace('[maps]\nb1 = "b1.nii.gz"', '[maps]\nmask = "otsu"\nb1 = "b1.nii.gz"')
    run = load_config(_write(tmp_path, text))
    assert run.maps == {"mask": "otsu", "b1": tmp_path / "b1.nii.gz"}
