from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class TilingSettings(BaseModel):
    """
    Engine parameters. Loaded from YAML (optional) then GEOTILER_* env overrides.
    """

    # Spatial index
    node_capacity: int = Field(default=8, ge=4, le=16)
    max_depth: int = Field(default=16, ge=1, le=30)
    validate_on_publish: bool = True

    # Tiles
    max_zoom: int = Field(default=22, ge=0, le=30)
    tile_extent: int = Field(default=4096, gt=0)
    line_tolerance_px: float = Field(default=1.0, ge=0.0)
    polygon_tolerance_px: float = Field(default=1.0, ge=0.0)
    coordinate_decimals: int = Field(default=6, ge=1, le=12)

    # Cache + worker pool
    cache_capacity: int = Field(default=1024, gt=0)
    max_workers: int = Field(default=4, gt=0)
    max_queue: int = Field(default=64, ge=0)
    queue_timeout_s: float = Field(default=0.5, ge=0.0)
    request_timeout_s: float | None = Field(default=10.0, gt=0.0)
    # Upper bound on tiles per bbox request, checked before any key is built.
    max_viewport_tiles: int = Field(default=256, gt=0)

    # Ingestion
    source_crs: str = "EPSG:4326"
    id_field: str = "id"
    geometry_field: str = "geometry"
    required_attributes: list[str] = Field(default_factory=list)

    # Feature/elevation sources used by the HTTP adapter
    data_dir: Path | None = None
    dataset: str | None = None


_ENV_INT = {
    "node_capacity": "GEOTILER_NODE_CAPACITY",
    "max_depth": "GEOTILER_MAX_DEPTH",
    "max_zoom": "GEOTILER_MAX_ZOOM",
    "cache_capacity": "GEOTILER_CACHE_CAPACITY",
    "max_workers": "GEOTILER_MAX_WORKERS",
    "max_queue": "GEOTILER_MAX_QUEUE",
    "max_viewport_tiles": "GEOTILER_MAX_VIEWPORT_TILES",
}
_ENV_FLOAT = {
    "queue_timeout_s": "GEOTILER_QUEUE_TIMEOUT_S",
}
_ENV_STR = {
    "source_crs": "GEOTILER_SOURCE_CRS",
    "data_dir": "GEOTILER_DATA_DIR",
    "dataset": "GEOTILER_DATASET",
}


def _env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, env in _ENV_INT.items():
        raw = (os.getenv(env) or "").strip()
        if raw:
            try:
                out[key] = int(raw)
            except Exception:
                pass
    for key, env in _ENV_FLOAT.items():
        raw = (os.getenv(env) or "").strip()
        if raw:
            try:
                out[key] = float(raw)
            except Exception:
                pass
    for key, env in _ENV_STR.items():
        raw = (os.getenv(env) or "").strip()
        if raw:
            out[key] = raw
    return out


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid settings yaml root: {path}")
    return data


def load_settings(path: Path | None = None) -> TilingSettings:
    raw_path = path or (os.getenv("GEOTILER_CONFIG") or "").strip() or None
    data: dict[str, Any] = {}
    if raw_path:
        data.update(_load_yaml(Path(raw_path)))
    data.update(_env_overrides())
    return TilingSettings.model_validate(data)


@lru_cache(maxsize=1)
def get_settings() -> TilingSettings:
    return load_settings()
