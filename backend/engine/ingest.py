from __future__ import annotations

import math
import time
from typing import Any, Iterable, Mapping

from elevation.resolver import ElevationResolver, ElevationSourceRow
from engine.store import DatasetStore
from engine.types import IngestResult, RejectedRecord
from errors import FeatureNotFound, InvalidRecord, TilingError
from geo.index import SpatialIndex
from layers.loaders import parse_record, transformer_to_4326
from layers.sources import ElevationSource, FeatureSource
from layers.types import Feature
from telemetry.log import get_logger

log = get_logger("engine.ingest")


class IngestionPipeline:
    """
    The only writer of dataset state.

    Each batch is applied to copies of the current index/elevation data and
    published as one new snapshot, so tile generation sees either all of a batch
    or none of it. Bad records are collected, never fatal to the batch.
    """

    def __init__(self, store: DatasetStore) -> None:
        self.store = store
        self.settings = store.settings

    def ingest(self, records: Iterable[Mapping[str, Any]]) -> IngestResult:
        return self._ingest(records, fresh=False)

    def load(self, source: FeatureSource, dataset_id: str) -> IngestResult:
        return self.ingest(source.fetch_features(dataset_id))

    def reload(self, source: FeatureSource, dataset_id: str) -> IngestResult:
        """
        Replace the whole dataset with a fresh index built from `source`.

        This is the recovery path after `IndexCorruption`. Elevation source rows
        survive and are re-derived against the new features.
        """
        return self._ingest(source.fetch_features(dataset_id), fresh=True)

    def remove(self, feature_id: str) -> int:
        """
        Remove a feature, or every part of a multi-part record ingested under
        `feature_id`; returns the new dataset version.

        Raises `FeatureNotFound` (and changes nothing) for an unknown id.
        """
        with self.store.writer() as current:
            targets = set(current.index.source_parts(feature_id))
            if feature_id in current.index:
                targets.add(feature_id)
            if not targets:
                log.warning("remove_unknown_feature", feature_id=feature_id)
                raise FeatureNotFound(feature_id)
            index = current.index.copy()
            elevation = current.elevation.copy()
            for fid in sorted(targets):
                index.remove(fid)
                elevation.discard(fid)
            return self.store.publish(index, elevation).version

    def ingest_elevation(self, rows: Iterable[Any]) -> IngestResult:
        """
        Register elevation source rows: `(feature_id, height, profile)` tuples or mappings.
        """
        rejected: list[RejectedRecord] = []
        accepted = 0
        with self.store.writer() as current:
            elevation = current.elevation.copy()
            for i, raw in enumerate(rows):
                try:
                    row = _elevation_row(raw)
                except InvalidRecord as exc:
                    rejected.append(_rejected(i, _raw_id(raw), exc))
                    continue
                elevation.register(row, current.index.get(row.feature_id))
                accepted += 1

            version = current.version
            if accepted:
                version = self.store.publish(current.index, elevation).version

        log.info(
            "elevation_ingested", accepted=accepted, rejected=len(rejected), version=version
        )
        return IngestResult(accepted_count=accepted, rejected=rejected, version=version)

    def load_elevation(self, source: ElevationSource, dataset_id: str) -> IngestResult:
        return self.ingest_elevation(source.fetch_elevation(dataset_id))

    def _ingest(self, records: Iterable[Mapping[str, Any]], *, fresh: bool) -> IngestResult:
        t0 = time.perf_counter()
        transformer = transformer_to_4326(self.settings.source_crs)

        groups: list[list[Feature]] = []
        rejected: list[RejectedRecord] = []
        for i, record in enumerate(records):
            try:
                groups.append(
                    parse_record(
                        record,
                        id_field=self.settings.id_field,
                        geometry_field=self.settings.geometry_field,
                        required_attributes=self.settings.required_attributes,
                        transformer=transformer,
                    )
                )
            except TilingError as exc:
                rejected.append(_rejected(i, _raw_id(record, self.settings.id_field), exc))

        with self.store.writer() as current:
            version = current.version
            if groups or fresh:
                index = self.store.empty_index() if fresh else current.index.copy()
                elevation = current.elevation.copy()
                _apply(index, elevation, groups)
                if fresh:
                    elevation = elevation.rederived(index.features())
                version = self.store.publish(index, elevation).version

        if rejected:
            log.warning(
                "records_rejected",
                count=len(rejected),
                first=f"{rejected[0].error}: {rejected[0].reason}",
            )
        log.info(
            "batch_ingested",
            accepted=len(groups),
            rejected=len(rejected),
            version=version,
            fresh=fresh,
            ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        return IngestResult(accepted_count=len(groups), rejected=rejected, version=version)


def _apply(
    index: SpatialIndex, elevation: ElevationResolver, groups: list[list[Feature]]
) -> None:
    # One group per record. A record replaces every part previously ingested
    # under its id, and later records win over earlier ones (replace-by-id).
    for parts in groups:
        keep = {f.id for f in parts}
        for fid in index.source_parts(parts[0].source_id):
            if fid not in keep:
                index.remove(fid)
                elevation.discard(fid)
        for feature in parts:
            index.insert(feature)
            elevation.recompute(feature)


def _elevation_row(raw: Any) -> ElevationSourceRow:
    if isinstance(raw, Mapping):
        fid = raw.get("id", raw.get("feature_id"))
        height = raw.get("height")
        profile = raw.get("profile")
    else:
        try:
            fid, height, profile = raw
        except (TypeError, ValueError) as exc:
            raise InvalidRecord(f"expected (feature_id, height, profile): {raw!r}") from exc

    if fid is None or str(fid).strip() == "":
        raise InvalidRecord("elevation row without feature id")
    try:
        h = float(height)
        prof = tuple(float(v) for v in profile) if profile else None
    except (TypeError, ValueError) as exc:
        raise InvalidRecord(f"non-numeric elevation data: {exc}") from exc
    if not math.isfinite(h) or (prof and not all(math.isfinite(v) for v in prof)):
        raise InvalidRecord("elevation values must be finite")
    return ElevationSourceRow(feature_id=str(fid), height=h, profile=prof)


def _raw_id(raw: Any, id_field: str = "id") -> str | None:
    if isinstance(raw, Mapping):
        v = raw.get(id_field, raw.get("feature_id"))
    elif isinstance(raw, (tuple, list)) and raw:
        v = raw[0]
    else:
        v = None
    return None if v is None else str(v)


def _rejected(i: int, record_id: str | None, exc: Exception) -> RejectedRecord:
    return RejectedRecord(
        index=i, record_id=record_id, error=type(exc).__name__, reason=str(exc)
    )
