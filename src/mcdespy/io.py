"""I/O utilities for mcdespy.

NIfTI volumes are read and written with nibabel; parameter maps can also
be exported as multi-page TIFF with Pillow (one page per slice).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray
else:
    ArrayLike = Any
    NDArray = Any

logger = logging.getLogger("mcdespy")


def load_image(path: str | Path) -> tuple[NDArray[Any], NDArray[np.float64]]:
    """Load a NIfTI image as ``(data, affine)``.

    Complex-valued images keep their dtype; everything else is returned as
    float64. 3D images stay 3D; callers that need a volume axis add it.
    """
    import nibabel as nib
    import numpy as np

    path = Path(path)
    if not path.is_file():
        raise ValueError(f"image not found: {path}")
    img = nib.load(str(path))
    if np.dtype(img.get_data_dtype()).kind == "c":
        data = np.asanyarray(img.dataobj)
    else:
        data = img.get_fdata()
    logger.debug("loaded %s: shape=%s dtype=%s", path, data.shape, data.dtype)
    return data, np.asarray(img.affine, dtype=np.float64)


def check_geometry(
    reference: tuple[tuple[int, ...], NDArray[np.float64]],
    other: tuple[tuple[int, ...], NDArray[np.float64]],
    *,
    name: str,
    atol: float = 1e-4,
) -> None:
    """Raise ``ValueError`` if ``other`` is not on the reference voxel grid.

    Both arguments are ``(shape, affine)``; only the three spatial axes of
    the shapes are compared.
    """
    import numpy as np

    ref_shape, ref_affine = reference
    shape, affine = other
    if tuple(shape[:3]) != tuple(ref_shape[:3]):
        raise ValueError(f"{name} has spatial shape {tuple(shape[:3])}, expected {tuple(ref_shape[:3])}")
    if not np.allclose(affine, ref_affine, atol=atol):
        raise ValueError(f"{name} affine does not match the reference image")


def save_image(
    path: str | Path,
    data: ArrayLike,
    affine: ArrayLike | None = None,
    *,
    dtype: str | None = "float32",
) -> Path:
    """Save an array as NIfTI; ``affine=None`` writes an identity affine."""
    import nibabel as nib
    import numpy as np

    arr = np.asarray(data)
    if dtype is not None and not np.iscomplexobj(arr):
        arr = arr.astype(dtype)
    affine = np.eye(4) if affine is None else np.asarray(affine, dtype=np.float64)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    nib.save(nib.Nifti1Image(arr, affine), str(path))
    return path


def save_tiff(
    path: str | Path,
    data: ArrayLike,
    *,
    dtype: str | None = None,
) -> None:
    """Save array as uncompressed TIFF.

    Parameters
    ----------
    path : str or Path
        Output file path.
    data : array-like
        Image data to save. Can be 2D (grayscale), 3D (multi-page), or 4D
        (first two axes flattened into pages).
    dtype : str, optional
        Output dtype (e.g., 'float32', 'uint16'). If None, uses input dtype.

    Examples
    --------
    >>> import numpy as np
    >>> from mcdespy.io import save_tiff
    >>> t1_map = np.random.rand(4, 64, 64).astype(np.float32)
    >>> save_tiff("t1_map.tiff", t1_map)
    """
    import numpy as np
    from PIL import Image

    arr = np.asarray(data)
    if dtype is not None:
        arr = arr.astype(dtype)

    if arr.ndim == 2:
        Image.fromarray(arr).save(path, compression=None)
        return
    if arr.ndim == 4:
        arr = arr.reshape((arr.shape[0] * arr.shape[1],) + arr.shape[2:])
    elif arr.ndim != 3:
        raise ValueError(f"data must be 2D, 3D, or 4D, got ndim={arr.ndim}")

    pages = [Image.fromarray(arr[i]) for i in range(arr.shape[0])]
    pages[0].save(path, save_all=True, append_images=pages[1:], compression=None)


def load_tiff(path: str | Path) -> NDArray[np.floating[Any]]:
    """Load TIFF as numpy array; multi-page TIFFs are stacked along axis 0."""
    import numpy as np
    from PIL import Image, ImageSequence

    with Image.open(path) as img:
        frames = [np.asarray(frame) for frame in ImageSequence.Iterator(img)]

    if len(frames) == 1:
        return frames[0]
    return np.stack(frames, axis=0)


def _write(path_stem: str, data: NDArray[Any], affine: Any, fmt: str) -> Path:
    import numpy as np

    if fmt == "nifti":
        return save_image(f"{path_stem}.nii.gz", data, affine)
    path = Path(f"{path_stem}.tiff")
    path.parent.mkdir(parents=True, exist_ok=True)
    # slices become pages: (x, y, z) -> (z, x, y), (x, y, z, n) -> (z, n, x, y)
    if data.ndim == 3:
        pages = np.moveaxis(data, 2, 0)
    else:
        pages = np.moveaxis(data, (2, 3), (0, 1))
    save_tiff(path, np.ascontiguousarray(pages), dtype="float32")
    return path


def save_maps(
    prefix: str | Path,
    result: Any,
    *,
    affine: ArrayLike | None = None,
    fmt: str = "nifti",
    residuals: bool = False,
    diagnostics: bool = False,
) -> list[Path]:
    """Write the maps of a volume fit.

    One file per parameter (``<prefix><name>``) plus ``<prefix>SoS``;
    optionally ``<prefix>residuals`` (4D) and the optimiser diagnostics
    ``<prefix>n_contract``, ``<prefix>width`` and ``<prefix>midpoint``.

    Returns
    -------
    list of Path
        Files written.
    """
    import numpy as np

    fmt = fmt.lower()
    if fmt not in ("nifti", "tiff"):
        raise ValueError(f"fmt must be 'nifti' or 'tiff', got {fmt!r}")

    prefix = str(prefix)
    written = []
    for name, values in result.params.items():
        written.append(_write(f"{prefix}{name}", np.asarray(values), affine, fmt))
    written.append(_write(f"{prefix}SoS", np.asarray(result.quality["sos"]), affine, fmt))
    if residuals:
        written.append(_write(f"{prefix}residuals", np.asarray(result.diagnostics["residuals"]), affine, fmt))
    if diagnostics:
        for key, stem in (("contractions", "n_contract"), ("width", "width"), ("midpoint", "midpoint")):
            values = np.asarray(result.diagnostics[key], dtype=np.float64)
            written.append(_write(f"{prefix}{stem}", values, affine, fmt))
    logger.info("wrote %d files with prefix %s", len(written), prefix)
    return written
