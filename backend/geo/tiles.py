from __future__ import annotations

import math
from dataclasses import dataclass

from errors import TileOutOfRange
from geo.aoi import BBox


_MAX_MERCATOR_LAT = 85.05112878


@dataclass(frozen=True, order=True)
class TileKey:
    z: int
    x: int
    y: int

    @classmethod
    def checked(cls, z: int, x: int, y: int, *, max_zoom: int) -> "TileKey":
        """
        Build a key, refusing coordinates outside the valid range for `z`.
        """
        z, x, y = int(z), int(x), int(y)
        if z < 0 or z > max_zoom:
            raise TileOutOfRange(f"zoom {z} outside [0, {max_zoom}]")
        n = 2**z
        if not (0 <= x < n and 0 <= y < n):
            raise TileOutOfRange(f"tile {z}/{x}/{y} outside [0, {n}) at zoom {z}")
        return cls(z=z, x=x, y=y)

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


def tile_zoom_for_view_zoom(view_zoom: float, *, max_zoom: int) -> int:
    """
    Choose a stable slippy-tile zoom for caching.

    We don't need the tile zoom to equal the visual zoom exactly; we want cache stability
    while panning/zooming.
    """
    z = int(round(float(view_zoom)))
    return max(0, min(max_zoom, z))


def _mercator_fraction(lon: float, lat: float) -> tuple[float, float]:
    # World-relative Web Mercator position in [0, 1] x [0, 1], y pointing down.
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    lat_rad = math.radians(lat)
    fx = (float(lon) + 180.0) / 360.0
    fy = (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi) / 2.0
    return fx, fy


def lonlat_to_tile(zoom: int, lon: float, lat: float) -> tuple[int, int]:
    """
    Convert lon/lat in EPSG:4326 to slippy tile (x, y) at zoom.
    """
    n = 2 ** int(zoom)
    fx, fy = _mercator_fraction(lon, lat)
    x = int(math.floor(fx * n))
    y = int(math.floor(fy * n))
    # Clamp indices to valid tile range.
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def lonlat_to_tile_local(key: TileKey, lon: float, lat: float) -> tuple[float, float]:
    """
    Position of lon/lat inside tile `key`, normalized to [0, 1] x [0, 1].

    Origin is the tile's north-west corner; y grows southwards. Points just
    outside the tile (float noise from clipping) are clamped onto its edge.
    """
    n = 2**key.z
    fx, fy = _mercator_fraction(lon, lat)
    tx = fx * n - key.x
    ty = fy * n - key.y
    return max(0.0, min(1.0, tx)), max(0.0, min(1.0, ty))


def tile_bbox_4326(zoom: int, x: int, y: int) -> BBox:
    """
    Slippy tile (z/x/y) bounds as a WGS84 lon/lat bbox.
    """
    z = int(zoom)
    n = 2**z
    x = int(x)
    y = int(y)

    lon_left = x / n * 360.0 - 180.0
    lon_right = (x + 1) / n * 360.0 - 180.0

    def lat_from_tile_y(tile_y: int) -> float:
        # https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames
        t = math.pi * (1.0 - 2.0 * tile_y / n)
        return math.degrees(math.atan(math.sinh(t)))

    lat_top = lat_from_tile_y(y)
    lat_bottom = lat_from_tile_y(y + 1)

    return BBox(
        min_lon=lon_left, min_lat=lat_bottom, max_lon=lon_right, max_lat=lat_top
    ).normalized()


def _tile_range(zoom: int, aoi: BBox) -> tuple[int, int, int, int]:
    b = aoi.normalized()
    x0, y0 = lonlat_to_tile(zoom, b.min_lon, b.max_lat)  # top-left
    x1, y1 = lonlat_to_tile(zoom, b.max_lon, b.min_lat)  # bottom-right
    return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)


def tile_count_for_bbox(zoom: int, aoi: BBox) -> int:
    """
    Number of tiles `tiles_for_bbox` would return, computed without listing them.
    """
    min_x, min_y, max_x, max_y = _tile_range(int(zoom), aoi)
    return (max_x - min_x + 1) * (max_y - min_y + 1)


def tiles_for_bbox(zoom: int, aoi: BBox) -> list[TileKey]:
    """
    List of slippy tiles covering the AOI bbox, ordered by (x, y).
    """
    z = int(zoom)
    min_x, min_y, max_x, max_y = _tile_range(z, aoi)

    out: list[TileKey] = []
    for x in range(min_x, max_x + 1):
        for y in range(min_y, max_y + 1):
            out.append(TileKey(z=z, x=x, y=y))
    return out
