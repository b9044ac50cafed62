from __future__ import annotations

import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable

from engine.types import Tile
from errors import GenerationFailure
from geo.tiles import TileKey
from telemetry.log import get_logger

log = get_logger("engine.cache")

CacheKey = tuple[TileKey, int]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    generations: int = 0
    evictions: int = 0
    failures: int = 0


class TileCache:
    """
    Bounded LRU of tiles keyed by (TileKey, dataset version).

    Notes:
    - Entries older than the current dataset version always miss; `advance()`
      (called on every publish) also purges them.
    - `get_or_generate` coalesces concurrent misses: one generation per key,
      every caller waits on the same future.
    """

    def __init__(self, capacity: int) -> None:
        if int(capacity) <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self.capacity = int(capacity)
        self.stats = CacheStats()
        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, Tile] = OrderedDict()
        self._inflight: dict[CacheKey, Future] = {}
        self._current_version = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def current_version(self) -> int:
        return self._current_version

    def get(self, key: TileKey, version: int) -> Tile | None:
        with self._lock:
            return self._get_locked(key, version)

    def put(self, key: TileKey, version: int, tile: Tile) -> None:
        with self._lock:
            self._put_locked(key, version, tile)

    def advance(self, version: int) -> None:
        """
        Mark `version` as current and drop every entry built for an older one.
        """
        with self._lock:
            if version <= self._current_version:
                return
            self._current_version = version
            stale = [k for k in self._entries if k[1] < version]
            for k in stale:
                del self._entries[k]
        if stale:
            log.debug("cache_purged_stale", version=version, purged=len(stale))

    def get_or_generate(
        self,
        key: TileKey,
        version: int,
        generate: Callable[[], Tile],
        *,
        submit: Callable[[Callable[[], None]], object] | None = None,
        timeout: float | None = None,
    ) -> Tile:
        """
        Cached tile for (key, version), generating it at most once across callers.

        A caller whose wait times out gets `concurrent.futures.TimeoutError`;
        the generation still completes and fills the cache for everyone else.
        """
        return self.request(key, version, generate, submit=submit).result(timeout=timeout)

    def request(
        self,
        key: TileKey,
        version: int,
        generate: Callable[[], Tile],
        *,
        submit: Callable[[Callable[[], None]], object] | None = None,
    ) -> Future:
        """
        Future for the tile at (key, version); already resolved on a cache hit.

        `submit` hands the generation to a worker pool; without it the first
        caller generates inline.
        """
        ck = (key, version)
        with self._lock:
            hit = self._get_locked(key, version)
            if hit is not None:
                done: Future = Future()
                done.set_result(hit)
                return done
            fut = self._inflight.get(ck)
            leader = fut is None
            if leader:
                fut = Future()
                fut.set_running_or_notify_cancel()
                self._inflight[ck] = fut
                self.stats.generations += 1

        if leader:
            def job() -> None:
                self._run(ck, generate, fut)

            if submit is None:
                job()
            else:
                try:
                    submit(job)
                except BaseException as exc:
                    with self._lock:
                        self._inflight.pop(ck, None)
                    fut.set_exception(exc)
                    raise
        return fut

    def _run(self, ck: CacheKey, generate: Callable[[], Tile], fut: Future) -> None:
        try:
            tile = generate()
        except BaseException as exc:
            err = exc if isinstance(exc, GenerationFailure) else GenerationFailure(str(exc))
            if err is not exc:
                err.__cause__ = exc
            with self._lock:
                self._inflight.pop(ck, None)
                self.stats.failures += 1
            fut.set_exception(err)
            return
        with self._lock:
            self._put_locked(ck[0], ck[1], tile)
            self._inflight.pop(ck, None)
        fut.set_result(tile)

    def _get_locked(self, key: TileKey, version: int) -> Tile | None:
        ck = (key, version)
        tile = None
        if version >= self._current_version:
            tile = self._entries.get(ck)
        if tile is None:
            self.stats.misses += 1
            return None
        self._entries.move_to_end(ck)
        self.stats.hits += 1
        return tile

    def _put_locked(self, key: TileKey, version: int, tile: Tile) -> None:
        if version < self._current_version:
            return
        ck = (key, version)
        self._entries[ck] = tile
        self._entries.move_to_end(ck)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.stats.evictions += 1
