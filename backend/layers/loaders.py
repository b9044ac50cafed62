from __future__ import annotations

import datetime as dt
import math
from decimal import Decimal
from functools import lru_cache
from typing import Any, Mapping, Sequence

import shapely.wkb
import shapely.wkt
from pyproj import Transformer
from shapely.errors import ShapelyError
from shapely.geometry import mapping as shapely_mapping

from errors import InvalidAttribute, InvalidGeometry, MissingAttribute
from geo.aoi import WORLD
from layers.types import Feature, Geometry, LineString, Point, Polygon, Scalar


@lru_cache(maxsize=8)
def transformer_to_4326(source_crs: str) -> Transformer | None:
    """
    Transformer from `source_crs` to EPSG:4326 (lon/lat order), or None if already 4326.
    """
    if source_crs.strip().upper() in {"EPSG:4326", "WGS84", "OGC:CRS84"}:
        return None
    return Transformer.from_crs(source_crs, "EPSG:4326", always_xy=True)


def parse_record(
    record: Mapping[str, Any],
    *,
    id_field: str = "id",
    geometry_field: str = "geometry",
    required_attributes: Sequence[str] = (),
    transformer: Transformer | None = None,
) -> list[Feature]:
    """
    Normalize one raw record into features.

    Input: a mapping with an id, a geometry (GeoJSON mapping, WKT text or WKB
    bytes) and either a `properties` mapping or the remaining columns as
    attributes. Multi-part geometries yield one feature per part, with ids
    `{id}-{j}` when there is more than one part.
    """
    if not isinstance(record, Mapping):
        raise InvalidGeometry(f"record is not a mapping: {type(record).__name__}")

    raw_id = record.get(id_field)
    if raw_id is None or str(raw_id).strip() == "":
        raise MissingAttribute(f"missing required field {id_field!r}")
    fid = str(raw_id)

    raw_geom = record.get(geometry_field)
    if raw_geom is None:
        raise InvalidGeometry(f"missing geometry field {geometry_field!r}")

    props_raw = record.get("properties")
    if isinstance(props_raw, Mapping):
        attrs = dict(props_raw)
    else:
        attrs = {
            k: v
            for k, v in record.items()
            if k not in {id_field, geometry_field, "properties"}
        }
    props = {str(k): _scalar(k, v) for k, v in attrs.items()}
    for name in required_attributes:
        if props.get(name) is None:
            raise MissingAttribute(f"missing required attribute {name!r}")

    parts = parse_geometry(raw_geom, transformer=transformer)
    if len(parts) == 1:
        return [Feature(id=fid, geometry=parts[0], props=props)]
    return [
        Feature(id=f"{fid}-{j}", geometry=g, props=props, source_id=fid)
        for j, g in enumerate(parts)
    ]


def parse_geometry(raw: Any, *, transformer: Transformer | None = None) -> list[Geometry]:
    if isinstance(raw, Mapping):
        gj = raw
    elif isinstance(raw, str):
        try:
            gj = shapely_mapping(shapely.wkt.loads(raw))
        except (ShapelyError, ValueError) as exc:
            raise InvalidGeometry(f"bad WKT: {exc}") from exc
    elif isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            gj = shapely_mapping(shapely.wkb.loads(bytes(raw)))
        except (ShapelyError, ValueError) as exc:
            raise InvalidGeometry(f"bad WKB: {exc}") from exc
    else:
        raise InvalidGeometry(f"unsupported geometry value: {type(raw).__name__}")

    parts = _from_geojson(gj, transformer)
    if not parts:
        raise InvalidGeometry("empty geometry")
    for g in parts:
        for lon, lat in g.coords():
            if not WORLD.contains_point(lon, lat):
                raise InvalidGeometry(f"coordinate outside world extent: ({lon}, {lat})")
    return parts


def _from_geojson(gj: Any, transformer: Transformer | None) -> list[Geometry]:
    if not isinstance(gj, Mapping):
        raise InvalidGeometry(f"geometry is not a mapping: {type(gj).__name__}")
    try:
        return _geojson_parts(gj, transformer)
    except (TypeError, ValueError, IndexError) as exc:
        raise InvalidGeometry(f"malformed {gj.get('type')!r} geometry: {exc}") from exc


def _geojson_parts(gj: Mapping[str, Any], transformer: Transformer | None) -> list[Geometry]:
    gtype = gj.get("type")
    coords = gj.get("coordinates")
    if gtype == "GeometryCollection":
        out: list[Geometry] = []
        for g in gj.get("geometries") or []:
            out.extend(_from_geojson(g, transformer))
        return out
    if coords is None:
        raise InvalidGeometry(f"geometry without coordinates: {gtype!r}")

    if gtype == "Point":
        return [Point(*_to_coords([coords], transformer)[0])]
    if gtype == "LineString":
        return [LineString(_to_coords(coords, transformer))]
    if gtype == "Polygon":
        return [Polygon(tuple(_to_coords(r, transformer) for r in coords))]
    if gtype == "MultiPoint":
        return [Point(*p) for p in _to_coords(coords, transformer)]
    if gtype == "MultiLineString":
        return [LineString(_to_coords(line, transformer)) for line in coords]
    if gtype == "MultiPolygon":
        return [
            Polygon(tuple(_to_coords(r, transformer) for r in poly)) for poly in coords
        ]
    raise InvalidGeometry(f"unsupported geometry type: {gtype!r}")


def _to_coords(points: Any, transformer: Transformer | None) -> tuple[tuple[float, float], ...]:
    out: list[tuple[float, float]] = []
    try:
        for p in points:
            x, y = float(p[0]), float(p[1])
            if transformer is not None:
                x, y = transformer.transform(x, y)
            out.append((float(x), float(y)))
    except (TypeError, ValueError, IndexError) as exc:
        raise InvalidGeometry(f"malformed coordinates: {exc}") from exc
    return tuple(out)


def _scalar(key: Any, value: Any) -> Scalar:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, (float, Decimal)):
        f = float(value)
        if not math.isfinite(f):
            raise InvalidAttribute(f"attribute {key!r} is not finite")
        return f
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    raise InvalidAttribute(
        f"attribute {key!r} is not a scalar ({type(value).__name__})"
    )
