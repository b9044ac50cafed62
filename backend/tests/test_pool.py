from __future__ import annotations

import threading

import pytest

from engine.pool import TilePool
from errors import TileQueueFull


def test_pool_applies_backpressure_instead_of_buffering():
    pool = TilePool(max_workers=1, max_queue=1, acquire_timeout_s=0.05)
    release = threading.Event()
    try:
        running = pool.submit(release.wait, 5)
        queued = pool.submit(lambda: "queued")
        with pytest.raises(TileQueueFull):
            pool.submit(lambda: "overflow")

        release.set()
        assert running.result(timeout=5) is True
        assert queued.result(timeout=5) == "queued"
    finally:
        release.set()
        pool.shutdown()


def test_slots_are_returned_after_jobs_finish():
    pool = TilePool(max_workers=1, max_queue=0, acquire_timeout_s=1.0)
    try:
        for i in range(5):
            assert pool.submit(lambda v=i: v * 2).result(timeout=5) == i * 2
    finally:
        pool.shutdown()
