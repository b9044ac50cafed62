from __future__ import annotations

from typing import Any

import shapely.geometry as sg
from shapely.geometry import box as shapely_box

from errors import InvalidGeometry
from geo.aoi import BBox
from layers.types import Geometry, LineString, Point, Polygon


def to_shapely(geometry: Geometry) -> Any:
    if isinstance(geometry, Point):
        return sg.Point(geometry.lon, geometry.lat)
    if isinstance(geometry, LineString):
        return sg.LineString(geometry.points)
    poly = sg.Polygon(geometry.exterior, holes=list(geometry.rings[1:]) or None)
    if not poly.is_valid:
        # Self-intersecting rings would make GEOS overlay ops throw.
        poly = poly.buffer(0)
    return poly


def from_shapely(geom: Any) -> list[Geometry]:
    """
    Convert a shapely geometry into zero or more model geometries.

    Multi-part geometries and collections are flattened in their stored order;
    empty parts are dropped.
    """
    if geom is None or geom.is_empty:
        return []
    gtype = geom.geom_type
    if gtype == "Point":
        return [Point(geom.x, geom.y)]
    if gtype == "LineString":
        return [LineString(tuple(geom.coords))]
    if gtype == "LinearRing":
        return [LineString(tuple(geom.coords))]
    if gtype == "Polygon":
        rings = [tuple(geom.exterior.coords)]
        rings.extend(tuple(r.coords) for r in geom.interiors)
        return [Polygon(tuple(rings))]
    if hasattr(geom, "geoms"):
        out: list[Geometry] = []
        for part in geom.geoms:
            out.extend(from_shapely(part))
        return out
    raise InvalidGeometry(f"unsupported geometry type: {gtype}")


def clip(geometry: Geometry, box: BBox) -> list[Geometry]:
    """
    Portion of `geometry` inside `box` (edges inclusive).

    Returns every disjoint fragment, or an empty list. Results of a lower
    dimension than the input (a line grazing a corner, a polygon touching an
    edge) are not fragments and are dropped.
    """
    b = box.normalized()
    if isinstance(geometry, Point):
        if b.contains_point(geometry.lon, geometry.lat):
            return [geometry]
        return []

    clipper = shapely_box(b.min_lon, b.min_lat, b.max_lon, b.max_lat)
    clipped = to_shapely(geometry).intersection(clipper)
    return [g for g in from_shapely(clipped) if g.kind == geometry.kind]
