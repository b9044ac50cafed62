from __future__ import annotations

import time
from typing import Sequence

from engine.config import TilingSettings
from engine.encode import encode_tile
from engine.types import Fragment, Snapshot, Tile
from errors import GenerationFailure
from geo.geometry import clip
from geo.tiles import TileKey, lonlat_to_tile_local, tile_bbox_4326
from layers.types import Coord, Feature, Geometry, LineString, Polygon
from lod.simplify import quantize, simplify_line, simplify_polygon, tolerance_for_tile
from telemetry.log import get_logger

log = get_logger("engine.generator")


class TileGenerator:
    """
    Builds one tile from one snapshot.

    Pure with respect to the snapshot: for the same (key, snapshot) the output
    bytes are identical, since candidates come back from the index ordered by id
    and clipping/simplification are deterministic.
    """

    def __init__(self, settings: TilingSettings) -> None:
        self.settings = settings
        self.line_tolerance = tolerance_for_tile(
            settings.line_tolerance_px, settings.tile_extent
        )
        self.polygon_tolerance = tolerance_for_tile(
            settings.polygon_tolerance_px, settings.tile_extent
        )

    def generate(self, key: TileKey, snapshot: Snapshot) -> Tile:
        t0 = time.perf_counter()
        try:
            box = tile_bbox_4326(key.z, key.x, key.y)
            fragments: list[Fragment] = []
            candidates = snapshot.index.query(box)
            for feature in candidates:
                record = snapshot.elevation.resolve(feature.id)
                height = record.height if record is not None else None
                for part in clip(feature.geometry, box):
                    fragments.extend(self._fragments(key, feature, part, height))
            data = encode_tile(key, snapshot.version, fragments)
        except Exception as exc:
            log.error("tile_generation_failed", tile=str(key), version=snapshot.version, error=str(exc))
            raise GenerationFailure(f"tile {key} v{snapshot.version}: {exc}") from exc

        log.debug(
            "tile_generated",
            tile=str(key),
            version=snapshot.version,
            candidates=len(candidates),
            fragments=len(fragments),
            bytes=len(data),
            ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        return Tile(key=key, version=snapshot.version, fragments=tuple(fragments), data=data)

    def _fragments(
        self, key: TileKey, feature: Feature, part: Geometry, height: float | None
    ) -> list[Fragment]:
        decimals = self.settings.coordinate_decimals

        if isinstance(part, LineString):
            line = simplify_line(
                _local(key, part.points), tolerance=self.line_tolerance, decimals=decimals
            )
            if line is None:
                return []
            return [_fragment(feature, "line", tuple(line), height)]

        if isinstance(part, Polygon):
            rings = [_local(key, r) for r in part.rings]
            return [
                _fragment(feature, "polygon", tuple(tuple(r) for r in p), height)
                for p in simplify_polygon(
                    rings, tolerance=self.polygon_tolerance, decimals=decimals
                )
            ]

        pt = quantize(_local(key, [(part.lon, part.lat)]), decimals=decimals)
        return [_fragment(feature, "point", tuple(pt), height)]


def _local(key: TileKey, coords: Sequence[Coord]) -> list[Coord]:
    return [lonlat_to_tile_local(key, lon, lat) for lon, lat in coords]


def _fragment(feature: Feature, kind, coords, height: float | None) -> Fragment:
    return Fragment(
        feature_id=feature.id, kind=kind, coords=coords, props=feature.props, height=height
    )
