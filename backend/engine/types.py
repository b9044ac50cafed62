from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from elevation.resolver import ElevationResolver
from geo.index import SpatialIndex
from geo.tiles import TileKey
from layers.types import GeometryKind, Scalar


@dataclass(frozen=True)
class Snapshot:
    """
    One consistent published state of the dataset.

    Never mutated after publish: writers build new index/elevation copies and
    swap in a new Snapshot.
    """

    version: int
    index: SpatialIndex
    elevation: ElevationResolver


@dataclass(frozen=True)
class Fragment:
    """
    A clipped + simplified piece of one feature in tile-local [0, 1] coordinates.

    `coords` shape depends on `kind`:
    - point: [(x, y)]
    - line: [(x, y), ...]
    - polygon: [exterior, *holes], each ring [(x, y), ...] closed
    """

    feature_id: str
    kind: GeometryKind
    coords: tuple[Any, ...]
    props: Mapping[str, Scalar]
    height: float | None = None


@dataclass(frozen=True)
class Tile:
    key: TileKey
    version: int
    fragments: tuple[Fragment, ...]
    # Encoded payload; fixed at construction like everything else here.
    data: bytes = field(repr=False)

    @property
    def is_empty(self) -> bool:
        return not self.fragments


@dataclass(frozen=True)
class RejectedRecord:
    index: int  # position in the input batch
    record_id: str | None
    error: str  # error class name, e.g. "InvalidGeometry"
    reason: str


@dataclass(frozen=True)
class IngestResult:
    accepted_count: int
    rejected: list[RejectedRecord]
    version: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "acceptedCount": self.accepted_count,
            "rejectedRecords": [
                {
                    "index": r.index,
                    "recordId": r.record_id,
                    "error": r.error,
                    "reason": r.reason,
                }
                for r in self.rejected
            ],
            "version": self.version,
        }
