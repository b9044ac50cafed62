from __future__ import annotations

import pytest

from elevation.resolver import ElevationResolver, ElevationSourceRow, resample
from engine.config import TilingSettings
from engine.ingest import IngestionPipeline
from engine.store import DatasetStore


def _line(fid: str, n: int) -> dict:
    return {
        "id": fid,
        "geometry": {"type": "LineString", "coordinates": [[i, 0.0] for i in range(n)]},
    }


def test_resample_keeps_endpoints_and_interpolates():
    assert resample([0.0, 10.0], 3) == (0.0, 5.0, 10.0)
    assert resample([0.0, 10.0, 0.0], 5) == (0.0, 5.0, 10.0, 5.0, 0.0)
    assert resample([4.0], 3) == (4.0, 4.0, 4.0)
    assert resample([1.0, 2.0], 0) == ()


def test_resolve_is_none_without_elevation_data():
    assert ElevationResolver().resolve("nope") is None


def test_row_for_unknown_feature_waits_for_the_feature():
    p = IngestionPipeline(DatasetStore(TilingSettings()))
    p.ingest_elevation([("later", 30.0, [0.0, 6.0])])
    assert p.store.snapshot().elevation.resolve("later") is None

    p.ingest([_line("later", 4)])
    rec = p.store.snapshot().elevation.resolve("later")
    assert rec is not None
    assert rec.height == 30.0
    assert rec.profile == (0.0, 2.0, 4.0, 6.0)


def test_record_is_recomputed_when_geometry_changes():
    p = IngestionPipeline(DatasetStore(TilingSettings()))
    p.ingest([_line("road", 3)])
    p.ingest_elevation([{"id": "road", "height": 5.0, "profile": [0.0, 10.0]}])
    assert p.store.snapshot().elevation.resolve("road").profile == (0.0, 5.0, 10.0)

    p.ingest([_line("road", 5)])
    assert p.store.snapshot().elevation.resolve("road").profile == (0.0, 2.5, 5.0, 7.5, 10.0)


def test_removal_discards_elevation():
    p = IngestionPipeline(DatasetStore(TilingSettings()))
    p.ingest([_line("gone", 2)])
    p.ingest_elevation([("gone", 3.0, None)])
    p.remove("gone")
    assert p.store.snapshot().elevation.resolve("gone") is None


def test_bad_rows_are_rejected_and_good_rows_bump_version():
    p = IngestionPipeline(DatasetStore(TilingSettings()))
    result = p.ingest_elevation(
        [
            ("a", "tall", None),
            ("b", float("nan"), None),
            ("", 1.0, None),
            ("c", 2.0, None),
        ]
    )
    assert result.accepted_count == 1
    assert [r.index for r in result.rejected] == [0, 1, 2]
    assert p.store.version == 1


def test_elevation_copy_is_independent():
    r = ElevationResolver()
    r.register(ElevationSourceRow(feature_id="x", height=1.0), None)
    c = r.copy()
    c.discard("x")
    assert "x" in r._sources
    assert "x" not in c._sources


@pytest.mark.parametrize("n", [2, 7])
def test_resample_length(n):
    assert len(resample([1.0, 2.0, 3.0], n)) == n
