from __future__ import annotations

import math

import pytest

from errors import InvalidGeometry
from geo.aoi import BBox
from geo.geometry import clip
from layers.types import Feature, LineString, Point, Polygon, bounding_box


def _square(x0: float, y0: float, x1: float, y1: float):
    return ((x0, y0), (x1, y0), (x1, y1), (x0, y1), (x0, y0))


def test_line_needs_two_points():
    with pytest.raises(InvalidGeometry):
        LineString(((1.0, 1.0),))


def test_polygon_ring_must_be_closed():
    with pytest.raises(InvalidGeometry, match="not closed"):
        Polygon((((0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)),))


def test_polygon_ring_needs_four_points():
    with pytest.raises(InvalidGeometry):
        Polygon((((0.0, 0.0), (1.0, 0.0), (0.0, 0.0)),))


def test_hole_rings_follow_the_same_rules():
    with pytest.raises(InvalidGeometry, match="ring 1"):
        Polygon((_square(0, 0, 4, 4), ((1.0, 1.0), (2.0, 1.0), (2.0, 2.0), (1.0, 2.0))))


def test_non_finite_coordinates_are_rejected():
    with pytest.raises(InvalidGeometry):
        Point(math.nan, 1.0)
    with pytest.raises(InvalidGeometry):
        LineString(((0.0, 0.0), (math.inf, 1.0)))


def test_bounding_box_contains_every_coordinate():
    geoms = [
        Point(3.5, -2.0),
        LineString(((-10.0, 5.0), (4.0, 7.5), (2.0, -3.0))),
        Polygon((_square(-5, -5, 5, 5), _square(-1, -1, 1, 1))),
    ]
    for g in geoms:
        b = bounding_box(g)
        for lon, lat in g.coords():
            assert b.contains_point(lon, lat)
        # Tight: every edge of the bbox is touched by some coordinate.
        assert min(p[0] for p in g.coords()) == b.min_lon
        assert max(p[1] for p in g.coords()) == b.max_lat


def test_feature_bbox_is_computed_once_and_props_are_read_only():
    f = Feature(id="a", geometry=LineString(((0.0, 0.0), (2.0, 3.0))), props={"k": 1})
    assert f.bbox == BBox(0.0, 0.0, 2.0, 3.0)
    with pytest.raises(TypeError):
        f.props["k"] = 2  # type: ignore[index]


def test_clip_polygon_into_disjoint_fragments():
    # A "U" whose two arms cross the top edge of the clip box separately.
    u = Polygon(
        (
            (
                (0.0, 0.0),
                (3.0, 0.0),
                (3.0, 3.0),
                (2.0, 3.0),
                (2.0, 1.0),
                (1.0, 1.0),
                (1.0, 3.0),
                (0.0, 3.0),
                (0.0, 0.0),
            ),
        )
    )
    parts = clip(u, BBox(-1.0, 2.0, 4.0, 4.0))
    assert len(parts) == 2
    assert all(p.kind == "polygon" for p in parts)
    for p in parts:
        b = bounding_box(p)
        assert b.min_lat >= 2.0 and b.max_lat <= 3.0


def test_clip_outside_box_is_empty():
    poly = Polygon((_square(0, 0, 1, 1),))
    assert clip(poly, BBox(5.0, 5.0, 6.0, 6.0)) == []


def test_clip_drops_lower_dimensional_touches():
    # Shares only an edge with the box.
    poly = Polygon((_square(0, 0, 1, 1),))
    assert clip(poly, BBox(1.0, 0.0, 2.0, 1.0)) == []


def test_clip_line_keeps_inside_segment():
    line = LineString(((-1.0, 0.5), (2.0, 0.5)))
    parts = clip(line, BBox(0.0, 0.0, 1.0, 1.0))
    assert len(parts) == 1
    assert isinstance(parts[0], LineString)
    assert parts[0].points[0][0] == pytest.approx(0.0)
    assert parts[0].points[-1][0] == pytest.approx(1.0)


def test_clip_point_on_box_edge_is_inside():
    assert clip(Point(1.0, 0.5), BBox(0.0, 0.0, 1.0, 1.0)) == [Point(1.0, 0.5)]
    assert clip(Point(1.5, 0.5), BBox(0.0, 0.0, 1.0, 1.0)) == []


def test_clip_repairs_self_intersecting_polygon():
    bowtie = Polygon((((0.0, 0.0), (2.0, 2.0), (2.0, 0.0), (0.0, 2.0), (0.0, 0.0)),))
    parts = clip(bowtie, BBox(-1.0, -1.0, 3.0, 3.0))
    assert parts
    assert all(p.kind == "polygon" for p in parts)
