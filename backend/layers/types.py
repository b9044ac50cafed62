from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping, TypeAlias, Union

from errors import InvalidGeometry
from geo.aoi import BBox


GeometryKind = Literal["point", "line", "polygon"]
Coord: TypeAlias = tuple[float, float]
Scalar: TypeAlias = Union[str, int, float, bool, None]


def _coord(p: Any) -> Coord:
    try:
        lon, lat = float(p[0]), float(p[1])
    except (TypeError, ValueError, IndexError) as exc:
        raise InvalidGeometry(f"not a coordinate pair: {p!r}") from exc
    if not (math.isfinite(lon) and math.isfinite(lat)):
        raise InvalidGeometry(f"non-finite coordinate: {p!r}")
    return (lon, lat)


@dataclass(frozen=True)
class Point:
    lon: float
    lat: float
    kind: GeometryKind = field(default="point", init=False)

    def __post_init__(self) -> None:
        lon, lat = _coord((self.lon, self.lat))
        object.__setattr__(self, "lon", lon)
        object.__setattr__(self, "lat", lat)

    def coords(self) -> list[Coord]:
        return [(self.lon, self.lat)]


@dataclass(frozen=True)
class LineString:
    points: tuple[Coord, ...]  # ((lon, lat), ...)
    kind: GeometryKind = field(default="line", init=False)

    def __post_init__(self) -> None:
        pts = tuple(_coord(p) for p in self.points)
        if len(pts) < 2:
            raise InvalidGeometry(f"line needs >= 2 points, got {len(pts)}")
        object.__setattr__(self, "points", pts)

    def coords(self) -> list[Coord]:
        return list(self.points)


@dataclass(frozen=True)
class Polygon:
    rings: tuple[tuple[Coord, ...], ...]  # (exterior, *holes); each ring closed
    kind: GeometryKind = field(default="polygon", init=False)

    def __post_init__(self) -> None:
        if not self.rings:
            raise InvalidGeometry("polygon has no rings")
        rings = []
        for i, ring in enumerate(self.rings):
            pts = tuple(_coord(p) for p in ring)
            what = "exterior ring" if i == 0 else f"ring {i}"
            if len(pts) < 4:
                raise InvalidGeometry(f"{what} needs >= 4 points, got {len(pts)}")
            if pts[0] != pts[-1]:
                raise InvalidGeometry(f"{what} is not closed")
            rings.append(pts)
        object.__setattr__(self, "rings", tuple(rings))

    @property
    def exterior(self) -> tuple[Coord, ...]:
        return self.rings[0]

    def coords(self) -> list[Coord]:
        return [p for ring in self.rings for p in ring]


Geometry: TypeAlias = Union[Point, LineString, Polygon]


def bounding_box(geometry: Geometry) -> BBox:
    pts = geometry.coords()
    lons = [p[0] for p in pts]
    lats = [p[1] for p in pts]
    return BBox(min_lon=min(lons), min_lat=min(lats), max_lon=max(lons), max_lat=max(lats))


@dataclass(frozen=True)
class Feature:
    """
    An ingested feature. Owned by the spatial index; read-only everywhere else.

    `bbox` is derived from `geometry` once, at construction. `source_id` is the
    id of the raw record the feature came from; it differs from `id` only for the
    parts of a multi-part geometry.
    """

    id: str
    geometry: Geometry
    props: Mapping[str, Scalar] = field(default_factory=dict)
    source_id: str = ""
    bbox: BBox = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "props", MappingProxyType(dict(self.props)))
        object.__setattr__(self, "bbox", bounding_box(self.geometry))
        if not self.source_id:
            object.__setattr__(self, "source_id", self.id)

    @property
    def kind(self) -> GeometryKind:
        return self.geometry.kind

    def vertex_count(self) -> int:
        if isinstance(self.geometry, Polygon):
            return len(self.geometry.exterior)
        return len(self.geometry.coords())
