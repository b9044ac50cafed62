from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

import duckdb


class FeatureSource(Protocol):
    """
    External store of raw feature records (the relational/spatial database side).
    """

    def fetch_features(self, dataset_id: str) -> Iterable[Mapping[str, Any]]: ...


class ElevationSource(Protocol):
    def fetch_elevation(
        self, dataset_id: str
    ) -> Iterable[tuple[str, float, list[float] | None]]: ...


class GeoJSONFeatureSource:
    """
    Reads `<root>/<dataset_id>.geojson` (a FeatureCollection).
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def fetch_features(self, dataset_id: str) -> list[dict[str, Any]]:
        path = self.root / f"{dataset_id}.geojson"
        data = json.loads(path.read_text(encoding="utf-8"))
        features = data.get("features") or []

        out: list[dict[str, Any]] = []
        for i, feature in enumerate(features):
            props = (feature or {}).get("properties") or {}
            fid = (feature or {}).get("id") or props.get("id") or f"{dataset_id}-{i}"
            out.append(
                {
                    "id": str(fid),
                    "geometry": (feature or {}).get("geometry"),
                    "properties": props,
                }
            )
        return out


class GeoParquetFeatureSource:
    """
    Reads `<root>/<dataset_id>.parquet` through DuckDB.

    The geometry column holds WKB; every other column becomes an attribute.
    """

    def __init__(
        self,
        root: Path,
        *,
        id_column: str = "id",
        geometry_column: str = "geometry",
        threads: int = 2,
    ) -> None:
        self.root = Path(root)
        self.id_column = id_column
        self.geometry_column = geometry_column
        self.threads = int(threads)

    def fetch_features(self, dataset_id: str) -> list[dict[str, Any]]:
        path = self.root / f"{dataset_id}.parquet"
        conn = duckdb.connect(
            database=":memory:", read_only=False, config={"threads": self.threads}
        )
        try:
            cur = conn.execute(
                f"SELECT * FROM read_parquet(?) ORDER BY \"{self.id_column}\"", [str(path)]
            )
            cols = [d[0] for d in cur.description]
            rows = cur.fetchall()
        finally:
            conn.close()

        out: list[dict[str, Any]] = []
        for row in rows:
            rec = dict(zip(cols, row))
            if self.id_column != "id":
                rec["id"] = rec.pop(self.id_column)
            if self.geometry_column != "geometry":
                rec["geometry"] = rec.pop(self.geometry_column)
            out.append(rec)
        return out


class JSONElevationSource:
    """
    Reads `<root>/<dataset_id>.elevation.json`:
    `[{"id": ..., "height": ..., "profile": [...] | null}, ...]`.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def fetch_elevation(self, dataset_id: str) -> list[tuple[str, float, list[float] | None]]:
        path = self.root / f"{dataset_id}.elevation.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        out: list[tuple[str, float, list[float] | None]] = []
        for row in data or []:
            out.append((row.get("id"), row.get("height"), row.get("profile")))
        return out
