from __future__ import annotations

from concurrent.futures import Future

from elevation.resolver import ElevationRecord
from engine.cache import TileCache
from engine.config import TilingSettings
from engine.generator import TileGenerator
from engine.ingest import IngestionPipeline
from engine.pool import TilePool
from engine.store import DatasetStore
from engine.types import Tile
from errors import ViewportTooLarge
from geo.aoi import BBox
from geo.tiles import TileKey, tile_count_for_bbox, tiles_for_bbox


class TileService:
    """
    Tile-serving interface for the HTTP layer.

    `get_tile` validates the address, pins the current snapshot, and goes
    through the cache; misses are generated on the worker pool, coalesced per
    (TileKey, version).
    """

    def __init__(self, settings: TilingSettings) -> None:
        self.settings = settings
        self.store = DatasetStore(settings)
        self.pipeline = IngestionPipeline(self.store)
        self.cache = TileCache(settings.cache_capacity)
        self.generator = TileGenerator(settings)
        self.pool = TilePool(
            max_workers=settings.max_workers,
            max_queue=settings.max_queue,
            acquire_timeout_s=settings.queue_timeout_s,
        )
        self.store.on_publish(self.cache.advance)

    @property
    def version(self) -> int:
        return self.store.version

    def tile(self, z: int, x: int, y: int, *, timeout: float | None = None) -> Tile:
        key = TileKey.checked(z, x, y, max_zoom=self.settings.max_zoom)
        snapshot = self.store.snapshot()
        return self.cache.get_or_generate(
            key,
            snapshot.version,
            lambda: self.generator.generate(key, snapshot),
            submit=self.pool.submit,
            timeout=self._timeout(timeout),
        )

    def get_tile(self, z: int, x: int, y: int, *, timeout: float | None = None) -> bytes | None:
        """
        Encoded tile bytes, or None (not found) when no feature reaches the tile.

        Raises `TileOutOfRange` before any work for an invalid address.
        """
        t = self.tile(z, x, y, timeout=timeout)
        return None if t.is_empty else t.data

    def get_tiles_for_bbox(
        self, aoi: BBox, zoom: int, *, timeout: float | None = None
    ) -> dict[TileKey, bytes]:
        """
        Non-empty tiles covering `aoi` at `zoom`, generated concurrently.

        Raises `ViewportTooLarge` when more than `max_viewport_tiles` tiles would
        be needed.
        """
        TileKey.checked(zoom, 0, 0, max_zoom=self.settings.max_zoom)
        count = tile_count_for_bbox(zoom, aoi)
        if count > self.settings.max_viewport_tiles:
            raise ViewportTooLarge(
                f"{count} tiles at zoom {zoom}, limit {self.settings.max_viewport_tiles}"
            )
        futures: list[tuple[TileKey, Future]] = [
            (key, self._request(key)) for key in tiles_for_bbox(zoom, aoi)
        ]
        out: dict[TileKey, bytes] = {}
        for key, fut in futures:
            t = fut.result(timeout=self._timeout(timeout))
            if not t.is_empty:
                out[key] = t.data
        return out

    def elevation(self, feature_id: str) -> ElevationRecord | None:
        return self.store.snapshot().elevation.resolve(feature_id)

    def close(self) -> None:
        self.pool.shutdown(wait=True)

    def _request(self, key: TileKey) -> Future:
        snapshot = self.store.snapshot()
        return self.cache.request(
            key,
            snapshot.version,
            lambda: self.generator.generate(key, snapshot),
            submit=self.pool.submit,
        )

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.settings.request_timeout_s
