from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    - edges are inclusive (a box touching another box intersects it)
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def intersects(self, other: "BBox") -> bool:
        return (
            self.min_lon <= other.max_lon
            and other.min_lon <= self.max_lon
            and self.min_lat <= other.max_lat
            and other.min_lat <= self.max_lat
        )

    def contains(self, other: "BBox") -> bool:
        return (
            self.min_lon <= other.min_lon
            and other.max_lon <= self.max_lon
            and self.min_lat <= other.min_lat
            and other.max_lat <= self.max_lat
        )

    def contains_point(self, lon: float, lat: float) -> bool:
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat

    def quadrants(self) -> tuple["BBox", "BBox", "BBox", "BBox"]:
        """
        Split at the spatial midpoint: (south-west, south-east, north-west, north-east).
        """
        mid_lon = (self.min_lon + self.max_lon) / 2.0
        mid_lat = (self.min_lat + self.max_lat) / 2.0
        return (
            BBox(self.min_lon, self.min_lat, mid_lon, mid_lat),
            BBox(mid_lon, self.min_lat, self.max_lon, mid_lat),
            BBox(self.min_lon, mid_lat, mid_lon, self.max_lat),
            BBox(mid_lon, mid_lat, self.max_lon, self.max_lat),
        )


WORLD = BBox(min_lon=-180.0, min_lat=-90.0, max_lon=180.0, max_lat=90.0)
