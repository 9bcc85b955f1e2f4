from pathlib import Path

import numpy as np
import pytest

RUN_FILE = """
[fit]
pools = 1
off_resonance = "map"
samples = 200
retain = 10
contract = 5
seed = 3

[[sequence]]
type = "SPGR"
path = "spgr.nii.gz"
tr = 0.0065
flip_deg = [3, 6, 12, 18]

[[sequence]]
type = "SSFP"
path = "ssfp.nii.gz"
tr = 0.005
flip_deg = [15, 35, 60]
phases_deg = [180]

[maps]
mask = "mask.nii.gz"

[output]
prefix = "out/mcd_"
diagnostics = true

[bounds]
T1 = [0.1, 4.0]
"""


def _write_inputs(tmp_path: Path) -> Path:
    from mcdespy.io import save_image
    from mcdespy.models import MCDespotFunctor, OffResMode, Pools, Scaling
    from mcdespy.sequences import SPGR, SSFP, Sequences
    from mcdespy.sim import synthetic_volume

    seqs = Sequences(
        Scaling.NORMALIZE_TO_MEAN,
        [SPGR.from_degrees([3, 6, 12, 18], 0.0065), SSFP.from_degrees([15, 35, 60], 0.005, [180])],
    )
    functor = MCDespotFunctor(seqs, pools=Pools.ONE, off_resonance=OffResMode.MAP)
    params = np.zeros((2, 2, 1, 4))
    params[..., 0] = 1000.0
    params[..., 1] = 0.9
    params[..., 2] = 0.07
    spgr, ssfp = synthetic_volume(functor, params)
    save_image(tmp_path / "spgr.nii.gz", spgr)
    save_image(tmp_path / "ssfp.nii.gz", ssfp)
    mask = np.ones((2, 2, 1))
    mask[0, 0, 0] = 0
    save_image(tmp_path / "mask.nii.gz", mask)

    path = tmp_path / "run.toml"
    path.write_text(RUN_FILE, encoding="utf-8")
    return path


def test_cli_fits_volume_and_writes_maps(tmp_path: Path) -> None:
    pytest.importorskip("nibabel")
    from mcdespy.cli import main
    from mcdespy.io import load_image

    config = _write_inputs(tmp_path)
    assert main([str(config)]) == 0

    out = tmp_path / "out"
    for name in ("PD", "T1", "T2", "f0", "SoS", "n_contract", "width", "midpoint"):
        assert (out / f"mcd_{name}.nii.gz").is_file()
    t1, _ = load_image(out / "mcd_T1.nii.gz")
    assert t1[0, 0, 0] == 0.0
    np.testing.assert_allclose(t1[1:, :, 0], 0.9, rtol=0.1)


def test_cli_single_voxel(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    pytest.importorskip("nibabel")
    from mcdespy.cli import main

    config = _write_inputs(tmp_path)
    with caplog.at_level("INFO", logger="mcdespy"):
        assert main([str(config), "--voxel", "1", "1", "0"]) == 0
    assert "T1 =" in caplog.text
    assert not (tmp_path / "out").exists()
    assert main([str(config), "--voxel", "5", "0", "0"]) == 1


def test_cli_reports_config_errors(tmp_path: Path) -> None:
    from mcdespy.cli import main

    assert main([str(tmp_path / "missing.toml")]) == 1
    bad = tmp_path / "bad.toml"
    bad.write_text("[fit]\nretain = 0\n", encoding="utf-8")
    assert main([str(bad)]) == 1


def test_cli_rejects_mismatched_geometry(tmp_path: Path) -> None:
    pytest.importorskip("nibabel")
    from mcdespy.cli import main
    from mcdespy.io import save_image

    config = _write_inputs(tmp_path)
    save_image(tmp_path / "mask.nii.gz", np.ones((3, 2, 1)))
    assert main([str(config)]) == 1


def test_cli_otsu_mask_skips_background(tmp_path: Path) -> None:
    pytest.importorskip("nibabel")
    from mcdespy.cli import main
    from mcdespy.io import load_image, save_image

    config = _write_inputs(tmp_path)
    for name in ("spgr", "ssfp"):
        data, _ = load_image(tmp_path / f"{name}.nii.gz")
        data[0, 0, 0] = 0.0
        save_image(tmp_path / f"{name}.nii.gz", data)
    (tmp_path / "mask.nii.gz").unlink()
    config.write_text(RUN_FILE.replace('mask = "mask.nii.gz"', 'mask = "otsu"'), encoding="utf-8")

    assert main([str(config)]) == 0
    t1, _ = load_image(tmp_path / "out" / "mcd_T1.nii.gz")
    assert t1[0, 0, 0] == 0.0
    np.testing.assert_allclose(t1[1:, :, 0], 0.9, rtol=0.1)
