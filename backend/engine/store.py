from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from elevation.resolver import ElevationResolver
from engine.config import TilingSettings
from engine.types import Snapshot
from geo.index import SpatialIndex
from telemetry.log import get_logger

log = get_logger("engine.store")


class DatasetStore:
    """
    Holds the current `Snapshot` and serializes writers.

    Readers call `snapshot()` and keep using the returned object; they never take
    a lock. Writers enter `writer()`, build modified copies of the current
    index/elevation data, and `publish()` them as the next version.
    """

    def __init__(self, settings: TilingSettings) -> None:
        self.settings = settings
        self._write_lock = threading.Lock()
        self._writer: int | None = None
        self._listeners: list[Callable[[int], None]] = []
        self._snapshot = Snapshot(
            version=0, index=self.empty_index(), elevation=ElevationResolver()
        )

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> Snapshot:
        return self._snapshot

    def empty_index(self) -> SpatialIndex:
        return SpatialIndex(
            node_capacity=self.settings.node_capacity,
            max_depth=self.settings.max_depth,
        )

    def on_publish(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    @contextmanager
    def writer(self) -> Iterator[Snapshot]:
        with self._write_lock:
            self._writer = threading.get_ident()
            try:
                yield self._snapshot
            finally:
                self._writer = None

    def publish(self, index: SpatialIndex, elevation: ElevationResolver) -> Snapshot:
        """
        Swap in a new snapshot at version + 1. Must be called inside `writer()`.
        """
        if self._writer != threading.get_ident():
            raise RuntimeError("publish() outside of writer()")
        if self.settings.validate_on_publish:
            index.validate()
        snap = Snapshot(
            version=self._snapshot.version + 1, index=index, elevation=elevation
        )
        self._snapshot = snap
        log.info(
            "snapshot_published",
            version=snap.version,
            features=len(index),
            elevations=len(elevation),
        )
        for listener in self._listeners:
            listener(snap.version)
        return snap
