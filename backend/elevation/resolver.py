from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from layers.types import Feature


@dataclass(frozen=True)
class ElevationRecord:
    feature_id: str
    height: float
    # One height per vertex of the feature (exterior ring for polygons), or None.
    profile: tuple[float, ...] | None = None


@dataclass(frozen=True)
class ElevationSourceRow:
    feature_id: str
    height: float
    profile: tuple[float, ...] | None = None


class ElevationResolver:
    """
    Derived 3D data keyed by feature id.

    Source rows and derived records are kept apart: a record exists only while
    both a source row and the feature exist, and is rebuilt from the row
    whenever the feature's geometry changes. Tile requests only call `resolve`.
    """

    def __init__(self) -> None:
        self._sources: dict[str, ElevationSourceRow] = {}
        self._records: dict[str, ElevationRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def resolve(self, feature_id: str) -> ElevationRecord | None:
        return self._records.get(feature_id)

    def register(self, row: ElevationSourceRow, feature: Feature | None) -> None:
        self._sources[row.feature_id] = row
        if feature is not None:
            self.recompute(feature)

    def recompute(self, feature: Feature) -> None:
        row = self._sources.get(feature.id)
        if row is None:
            self._records.pop(feature.id, None)
            return
        profile = None
        if row.profile:
            profile = resample(row.profile, feature.vertex_count())
        self._records[feature.id] = ElevationRecord(
            feature_id=feature.id, height=row.height, profile=profile
        )

    def discard(self, feature_id: str) -> None:
        self._sources.pop(feature_id, None)
        self._records.pop(feature_id, None)

    def rederived(self, features: Iterable[Feature]) -> "ElevationResolver":
        """
        Same source rows, records rebuilt for exactly `features`.
        """
        clone = ElevationResolver()
        clone._sources = dict(self._sources)
        for feature in features:
            clone.recompute(feature)
        return clone

    def copy(self) -> "ElevationResolver":
        clone = ElevationResolver()
        clone._sources = dict(self._sources)
        clone._records = dict(self._records)
        return clone


def resample(values: Sequence[float], n: int) -> tuple[float, ...]:
    """
    Linearly resample `values` to `n` evenly spaced samples (endpoints kept).
    """
    vals = [float(v) for v in values]
    if n <= 0 or not vals:
        return ()
    if len(vals) == 1 or n == 1:
        return tuple([vals[0]] * n)
    if len(vals) == n:
        return tuple(vals)

    # Position i * span / (n - 1) kept as an integer fraction so that samples
    # landing on source vertices are exact.
    out: list[float] = []
    span = len(vals) - 1
    den = n - 1
    for i in range(n):
        num = i * span
        lo = min(num // den, span - 1)
        rem = num - lo * den
        out.append(vals[lo] + (vals[lo + 1] - vals[lo]) * rem / den)
    return tuple(out)
