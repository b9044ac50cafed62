from __future__ import annotations

import pytest

from errors import FeatureNotFound, IndexCorruption
from geo.aoi import BBox
from geo.index import SpatialIndex
from layers.types import Feature, LineString, Point


def _pt(fid: str, lon: float, lat: float) -> Feature:
    return Feature(id=fid, geometry=Point(lon, lat), props={})


def _grid(n: int) -> list[Feature]:
    # n*n points spread over central Europe-ish.
    return [
        _pt(f"p{i:03d}-{j:03d}", 10.0 + i * 0.5, 45.0 + j * 0.25)
        for i in range(n)
        for j in range(n)
    ]


def test_insert_then_query_own_bbox_returns_feature():
    idx = SpatialIndex()
    f = Feature(id="l", geometry=LineString(((1.0, 1.0), (2.0, 3.0))), props={})
    idx.insert(f)
    assert "l" in {x.id for x in idx.query(f.bbox)}


def test_query_is_exact_on_bbox_intersection():
    idx = SpatialIndex(node_capacity=4)
    feats = _grid(12)
    for f in feats:
        idx.insert(f)
    box = BBox(11.0, 46.0, 13.0, 47.0)

    got = [f.id for f in idx.query(box)]
    expected = sorted(f.id for f in feats if f.bbox.intersects(box))
    assert got == expected
    assert got  # sanity: the box does cover some points


def test_query_results_are_ordered_by_id():
    idx = SpatialIndex(node_capacity=4)
    for f in reversed(_grid(6)):
        idx.insert(f)
    ids = [f.id for f in idx.query(BBox(-180, -90, 180, 90))]
    assert ids == sorted(ids)


def test_overflow_splits_and_structure_stays_valid():
    idx = SpatialIndex(node_capacity=4, max_depth=12)
    for f in _grid(10):
        idx.insert(f)
    stats = idx.stats()
    assert stats.features == 100
    assert stats.depth > 1
    idx.validate()


def test_straddling_feature_stays_in_one_node():
    idx = SpatialIndex(node_capacity=4)
    for f in _grid(5):
        idx.insert(f)
    # Crosses the prime meridian and the equator: fits in no quadrant of the root.
    wide = Feature(id="wide", geometry=LineString(((-10.0, -10.0), (10.0, 10.0))), props={})
    idx.insert(wide)
    idx.validate()
    assert [f.id for f in idx.query(BBox(-1.0, -1.0, 1.0, 1.0))] == ["wide"]


def test_remove_then_query_never_returns_id():
    idx = SpatialIndex(node_capacity=4)
    feats = _grid(8)
    for f in feats:
        idx.insert(f)
    victim = feats[17]
    removed = idx.remove(victim.id)
    assert removed.id == victim.id
    assert victim.id not in idx
    assert victim.id not in {f.id for f in idx.query(victim.bbox)}
    assert victim.id not in {f.id for f in idx.query(BBox(-180, -90, 180, 90))}
    idx.validate()


def test_remove_unknown_raises_and_changes_nothing():
    idx = SpatialIndex()
    idx.insert(_pt("a", 1.0, 1.0))
    before = idx.stats()
    with pytest.raises(FeatureNotFound):
        idx.remove("nope")
    assert idx.stats() == before
    assert len(idx) == 1


def test_removing_everything_collapses_to_root():
    idx = SpatialIndex(node_capacity=4)
    feats = _grid(9)
    for f in feats:
        idx.insert(f)
    assert idx.stats().nodes > 1
    for f in feats:
        idx.remove(f.id)
        idx.validate()
    stats = idx.stats()
    assert stats.features == 0
    assert stats.nodes == 1


def test_insert_same_id_replaces():
    idx = SpatialIndex()
    idx.insert(_pt("a", 1.0, 1.0))
    idx.insert(_pt("a", 50.0, 50.0))
    assert len(idx) == 1
    assert idx.query(BBox(0.5, 0.5, 1.5, 1.5)) == []
    assert [f.id for f in idx.query(BBox(49.0, 49.0, 51.0, 51.0))] == ["a"]


def test_copy_is_independent():
    idx = SpatialIndex(node_capacity=4)
    for f in _grid(6):
        idx.insert(f)
    clone = idx.copy()
    clone.remove("p000-000")
    clone.insert(_pt("new", 0.0, 0.0))

    assert "p000-000" in idx
    assert "new" not in idx
    assert len(idx) == 36
    assert len(clone) == 36
    idx.validate()
    clone.validate()


def test_validate_detects_corruption():
    idx = SpatialIndex(node_capacity=4)
    for f in _grid(5):
        idx.insert(f)
    # Point the id map at the wrong node.
    idx._where["p000-000"] = idx._root
    with pytest.raises(IndexCorruption):
        idx.validate()


@pytest.mark.parametrize("capacity", [3, 17])
def test_node_capacity_bounds(capacity):
    with pytest.raises(ValueError):
        SpatialIndex(node_capacity=capacity)


def test_source_parts_follow_inserts_and_removals():
    idx = SpatialIndex()
    idx.insert(Feature(id="m-0", geometry=Point(1.0, 1.0), source_id="m"))
    idx.insert(Feature(id="m-1", geometry=Point(2.0, 2.0), source_id="m"))
    idx.insert(_pt("solo", 3.0, 3.0))
    assert idx.source_parts("m") == ["m-0", "m-1"]
    assert idx.source_parts("solo") == ["solo"]

    clone = idx.copy()
    clone.remove("m-0")
    assert clone.source_parts("m") == ["m-1"]
    assert idx.source_parts("m") == ["m-0", "m-1"]
    idx.validate()
    clone.validate()


def test_validate_detects_stale_source_map():
    idx = SpatialIndex()
    idx.insert(_pt("a", 1.0, 1.0))
    idx._sources["ghost"] = {"a"}
    with pytest.raises(IndexCorruption):
        idx.validate()
