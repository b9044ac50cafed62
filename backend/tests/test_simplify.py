from __future__ import annotations

from lod.simplify import (
    quantize,
    ring_area,
    simplify_line,
    simplify_polygon,
    tolerance_for_tile,
)


def test_tolerance_is_pixels_over_extent():
    assert tolerance_for_tile(1.0, 4096) == 1.0 / 4096
    assert tolerance_for_tile(-3.0, 4096) == 0.0


def test_line_simplification_removes_near_collinear_points():
    coords = [(i / 100.0, 0.5 + (1e-6 if i % 2 else 0.0)) for i in range(101)]
    out = simplify_line(coords, tolerance=1.0 / 4096, decimals=6)
    assert out is not None
    assert out[0] == (0.0, 0.5)
    assert out[-1] == (1.0, 0.5)
    assert len(out) < len(coords)


def test_zero_length_line_is_degenerate():
    assert simplify_line([(0.3, 0.3), (0.3, 0.3)], tolerance=0.0, decimals=6) is None
    # Collapses once rounded.
    assert simplify_line([(0.3, 0.3), (0.3000000001, 0.3)], tolerance=0.0, decimals=6) is None


def test_sliver_polygon_is_dropped():
    sliver = [(0.1, 0.1), (0.9, 0.1), (0.9, 0.1000001), (0.1, 0.1000001), (0.1, 0.1)]
    assert simplify_polygon([sliver], tolerance=1.0 / 4096, decimals=6) == []


def test_polygon_keeps_shape_and_closes_rings():
    square = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0), (0.0, 0.0)]
    hole = [(0.4, 0.4), (0.6, 0.4), (0.6, 0.6), (0.4, 0.6), (0.4, 0.4)]
    parts = simplify_polygon([square, hole], tolerance=1.0 / 4096, decimals=6)
    assert len(parts) == 1
    exterior, *holes = parts[0]
    assert exterior[0] == exterior[-1]
    assert abs(ring_area(exterior)) == 1.0
    assert len(holes) == 1


def test_quantize_rounds_and_dedupes():
    assert quantize([(0.1234567, -0.0000001), (0.1234568, 0.0)], decimals=6) == [(0.123457, 0.0)]
