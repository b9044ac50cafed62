from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from errors import TileQueueFull
from telemetry.log import get_logger

log = get_logger("engine.pool")


class TilePool:
    """
    Thread pool with a bounded backlog.

    At most `max_workers + max_queue` jobs are admitted (running or waiting).
    `submit` waits up to `acquire_timeout_s` for a slot, then raises
    `TileQueueFull` instead of buffering more work.
    """

    def __init__(self, *, max_workers: int, max_queue: int, acquire_timeout_s: float) -> None:
        self.max_workers = int(max_workers)
        self.max_queue = int(max_queue)
        self.acquire_timeout_s = float(acquire_timeout_s)
        self._slots = threading.BoundedSemaphore(self.max_workers + self.max_queue)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="tile-worker"
        )

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        if not self._slots.acquire(timeout=self.acquire_timeout_s):
            log.warning("tile_queue_full", capacity=self.max_workers + self.max_queue)
            raise TileQueueFull(
                f"no free slot within {self.acquire_timeout_s}s "
                f"({self.max_workers} workers, {self.max_queue} queued)"
            )
        try:
            fut = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        fut.add_done_callback(lambda _f: self._slots.release())
        return fut

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
