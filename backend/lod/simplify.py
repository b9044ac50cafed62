from __future__ import annotations

from typing import Sequence

from shapely.geometry import LineString, Polygon

from layers.types import Coord


Ring = list[Coord]


def tolerance_for_tile(tolerance_px: float, extent: int) -> float:
    """
    Douglas-Peucker tolerance in tile-local units ([0, 1] spans one tile).

    A fixed pixel tolerance in tile space is a world-space tolerance
    proportional to 1 / 2**zoom: coarse zooms simplify more aggressively.
    """
    return max(0.0, float(tolerance_px)) / float(extent)


def quantize(coords: Sequence[Coord], *, decimals: int) -> Ring:
    """
    Round to `decimals` and drop consecutive duplicates (which rounding can create).
    """
    out: Ring = []
    for x, y in coords:
        p = (round(float(x), decimals) + 0.0, round(float(y), decimals) + 0.0)
        if out and out[-1] == p:
            continue
        out.append(p)
    return out


def simplify_line(coords: Sequence[Coord], *, tolerance: float, decimals: int) -> Ring | None:
    """
    Simplified line, or None if it degenerates (fewer than 2 points or zero length).
    """
    pts = list(coords)
    if len(pts) < 2:
        return None
    if tolerance > 0:
        simp = LineString(pts).simplify(tolerance, preserve_topology=False)
        if simp.is_empty:
            return None
        pts = list(simp.coords)
    out = quantize(pts, decimals=decimals)
    if len(out) < 2:
        return None
    return out


def simplify_polygon(
    rings: Sequence[Sequence[Coord]], *, tolerance: float, decimals: int
) -> list[list[Ring]]:
    """
    Simplified polygon as a list of parts (each `[exterior, *holes]`).

    Simplification can split a polygon; parts and holes that collapse to zero
    area are dropped, so the result may be empty.
    """
    if not rings or len(rings[0]) < 4:
        return []
    try:
        poly = Polygon(rings[0], holes=[r for r in rings[1:] if len(r) >= 4] or None)
    except ValueError:
        return []
    if tolerance > 0:
        poly = poly.simplify(tolerance, preserve_topology=True)
    if poly.is_empty:
        return []

    # Simplify can yield MultiPolygon; keep one part per polygon.
    geoms = list(poly.geoms) if hasattr(poly, "geoms") else [poly]
    parts: list[list[Ring]] = []
    for g in geoms:
        if g.is_empty or g.geom_type != "Polygon":
            continue
        exterior = _closed_ring(g.exterior.coords, decimals=decimals)
        if exterior is None:
            continue
        holes = []
        for interior in g.interiors:
            hole = _closed_ring(interior.coords, decimals=decimals)
            if hole is not None:
                holes.append(hole)
        parts.append([exterior, *holes])
    return parts


def ring_area(ring: Sequence[Coord]) -> float:
    # Shoelace; sign depends on winding.
    s = 0.0
    for (x0, y0), (x1, y1) in zip(ring, ring[1:]):
        s += x0 * y1 - x1 * y0
    return s / 2.0


def _closed_ring(coords: Sequence[Coord], *, decimals: int) -> Ring | None:
    ring = quantize(coords, decimals=decimals)
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    if len(ring) < 4 or ring_area(ring) == 0.0:
        return None
    return ring
