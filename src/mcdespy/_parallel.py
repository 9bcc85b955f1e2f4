"""Parallel processing utilities for mcdespy."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Sequence, TypeVar

logger = logging.getLogger("mcdespy")

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative stop request, safe to set from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def parallel_map(
    fit_func: Callable[[T], R],
    items: Sequence[T],
    *,
    n_jobs: int = 1,
    verbose: bool = False,
    desc: str = "Fitting",
) -> list[tuple[T, R]]:
    """Run voxel-wise fitting, serially or on a thread pool.

    Parameters
    ----------
    fit_func : callable
        Function fitting one voxel, given its index.
    items : sequence
        Voxel indices to fit.
    n_jobs : int, default=1
        Number of parallel jobs. -1 uses all CPUs.
    verbose : bool, default=False
        If True, show a progress bar.
    desc : str, default="Fitting"
        Description for progress bar.

    Returns
    -------
    list of (item, result)
        Results in the order of ``items``. Nothing is written anywhere until
        every item has been fitted; exceptions from ``fit_func`` propagate.
    """
    n_items = len(items)
    if n_items == 0:
        logger.debug("%s: no voxels to fit", desc)
        return []

    iterator: Any = items
    if verbose:
        from tqdm import tqdm

        iterator = tqdm(items, desc=desc, unit="voxel", leave=False)

    if n_jobs == 1:
        return [(item, fit_func(item)) for item in iterator]

    from joblib import Parallel, delayed

    def _fit_single(item: T) -> tuple[T, R]:
        return item, fit_func(item)

    return Parallel(n_jobs=n_jobs, prefer="threads")(delayed(_fit_single)(item) for item in iterator)
