from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class FitResult(dict[str, Any]):
    """Fitting result with param-dict compatibility and rich metadata access.

    This object behaves like a params dictionary for ergonomic access:
    ``result["T1_a"]``. Parameters keep the order of the model layout, so
    ``result.x`` rebuilds the parameter vector.
    Additional metadata is available via attributes:
    ``result.quality`` (``sos``, ``rmse``, ``n_points``, ``status``) and
    ``result.diagnostics`` (``residuals``, ``contractions``, ``width``,
    ``midpoint``, ...).

    Nested access is also supported:
    ``result["params"]``, ``result["quality"]``, ``result["diagnostics"]``.

    The same container is used for a single voxel, where each value is a
    scalar, and for a whole volume, where each value is a map.
    """

    __slots__ = ("quality", "diagnostics")

    def __init__(
        self,
        *,
        params: Mapping[str, Any] | None = None,
        quality: Mapping[str, Any] | None = None,
        diagnostics: Mapping[str, Any] | None = None,
        default_status: str = "ok",
    ) -> None:
        super().__init__(dict(params or {}))
        if quality is None:
            q = {"sos": None, "rmse": None, "n_points": None, "status": default_status}
        else:
            q = dict(quality)
            q.setdefault("sos", None)
            q.setdefault("rmse", None)
            q.setdefault("n_points", None)
            q.setdefault("status", default_status)
        self.quality: dict[str, Any] = q
        self.diagnostics: dict[str, Any] = dict(diagnostics or {})

    @property
    def params(self) -> dict[str, Any]:
        return self

    @property
    def names(self) -> list[str]:
        return list(self.keys())

    @property
    def x(self) -> Any:
        """Parameters stacked along the last axis in model order."""
        import numpy as np

        return np.stack([np.asarray(v, dtype=np.float64) for v in self.values()], axis=-1)

    @property
    def sos(self) -> Any:
        return self.quality["sos"]

    @property
    def residuals(self) -> Any:
        return self.diagnostics.get("residuals")

    @property
    def contractions(self) -> Any:
        return self.diagnostics.get("contractions")

    def __getitem__(self, key: str) -> Any:
        if key == "params":
            return self.params
        if key == "quality":
            return self.quality
        if key == "diagnostics":
            return self.diagnostics
        return super().__getitem__(key)

    def get(self, key: str, default: Any = None) -> Any:
        if key == "params":
            return self.params
        if key == "quality":
            return self.quality
        if key == "diagnostics":
            return self.diagnostics
        return super().get(key, default)

    def __contains__(self, key: object) -> bool:
        if key in {"params", "quality", "diagnostics"}:
            return True
        return super().__contains__(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "params": dict(self),
            "quality": dict(self.quality),
            "diagnostics": dict(self.diagnostics),
        }

    def copy(self) -> FitResult:
        return FitResult(
            params=self,
            quality=self.quality,
            diagnostics=self.diagnostics,
        )

    def __repr__(self) -> str:
        return (
            "FitResult("
            f"params={dict(self)!r}, "
            f"quality={self.quality!r}, "
            f"diagnostics={self.diagnostics!r}"
            ")"
        )
