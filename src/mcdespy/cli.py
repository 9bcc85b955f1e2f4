"""Command-line entry point.

    mcdespy run.toml [-v] [--voxel I J K] [--n-jobs N]

Fits every masked voxel and writes the parameter maps, or with ``--voxel``
fits a single voxel and logs the result. Ctrl-C stops after the current
slice; finished slices are still written and the exit status is 1.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from dataclasses import replace
from typing import Any

from ._parallel import CancellationToken
from .config import RunConfig, load_config
from .core.fit_volume import fit_volume, fit_voxel
from .io import check_geometry, load_image, save_maps

logger = logging.getLogger("mcdespy")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcdespy",
        description="Multi-component DESPOT relaxometry with Region Contraction.",
    )
    parser.add_argument("config", help="TOML run file")
    parser.add_argument("-v", "--verbose", action="store_true", help="progress bars and debug logging")
    parser.add_argument(
        "--voxel",
        nargs=3,
        type=int,
        metavar=("I", "J", "K"),
        help="fit only this voxel and print the result",
    )
    parser.add_argument("--n-jobs", type=int, default=None, help="override [fit] n_jobs")
    return parser


def _load_inputs(run: RunConfig) -> tuple[list[Any], dict[str, Any], Any]:
    import numpy as np

    signals = []
    reference = None
    for spec in run.sequences:
        data, affine = load_image(spec.path)
        if data.ndim == 3:
            data = data[..., None]
        if reference is None:
            reference = (data.shape, affine)
        else:
            check_geometry(reference, (data.shape, affine), name=str(spec.path))
        signals.append(data)

    maps: dict[str, Any] = {}
    for name, path in run.maps.items():
        if path == "otsu":
            maps[name] = path
            continue
        data, affine = load_image(path)
        check_geometry(reference, (data.shape, affine), name=f"{name} map {path}")
        if data.ndim != 3:
            raise ValueError(f"{name} map {path} must be 3D, got shape={data.shape}")
        maps[name] = np.real(data).astype(np.float64)
    return signals, maps, reference[1]


def _run(args: argparse.Namespace) -> int:
    run = load_config(args.config)
    fit_cfg = run.fit
    if args.verbose:
        fit_cfg = replace(fit_cfg, verbose=True)
    if args.n_jobs is not None:
        fit_cfg = replace(fit_cfg, n_jobs=args.n_jobs)

    sequences = run.build_sequences()
    functor = fit_cfg.build_functor(sequences)
    bounds = functor.default_bounds(fit_cfg.field_strength, overrides=run.bounds)
    logger.info("%s", sequences)
    logger.info("parameters %s", functor.names)

    signals, maps, affine = _load_inputs(run)

    if args.voxel is not None:
        idx = tuple(args.voxel)
        for axis, (i, n) in enumerate(zip(idx, signals[0].shape[:3])):
            if not 0 <= i < n:
                raise ValueError(f"voxel index {i} out of range for axis {axis} of size {n}")
        priors = {name: float(maps[name][idx]) for name in ("b1", "f0", "f0_low", "f0_high", "t1") if name in maps}
        result = fit_voxel(
            functor,
            [s[idx] for s in signals],
            config=fit_cfg,
            bounds=bounds,
            **priors,
        )
        for name, value in result.params.items():
            logger.info("%s = %.6g", name, value)
        logger.info("SoS = %.6g after %d contractions (%s)", result.sos, result.contractions, result.quality["status"])
        return 0

    token = CancellationToken()

    def _handle_sigint(signum: int, frame: Any) -> None:
        logger.warning("interrupt received, finishing the current slice")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handle_sigint)
    try:
        result = fit_volume(
            functor,
            signals,
            config=fit_cfg,
            mask=maps.get("mask"),
            b1=maps.get("b1"),
            f0=maps.get("f0"),
            f0_low=maps.get("f0_low"),
            f0_high=maps.get("f0_high"),
            t1=maps.get("t1"),
            bounds=bounds,
            cancel=token,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    save_maps(
        run.output.prefix,
        result,
        affine=affine,
        fmt=run.output.format,
        residuals=run.output.residuals,
        diagnostics=run.output.diagnostics,
    )
    if result.diagnostics["interrupted"]:
        logger.error(
            "interrupted: %d slices written (%s)",
            len(result.diagnostics["completed_slices"]),
            result.diagnostics["completed_slices"],
        )
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return _run(args)
    except (ValueError, RuntimeError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
