from __future__ import annotations

import threading

import pytest

from engine.config import TilingSettings
from engine.store import DatasetStore


def test_publish_outside_writer_is_refused():
    store = DatasetStore(TilingSettings())
    snap = store.snapshot()
    with pytest.raises(RuntimeError):
        store.publish(snap.index, snap.elevation)
    assert store.version == 0


def test_publish_from_another_thread_while_writer_is_held_is_refused():
    store = DatasetStore(TilingSettings())
    errors: list[BaseException] = []

    def intruder(snap):
        try:
            store.publish(snap.index, snap.elevation)
        except RuntimeError as exc:
            errors.append(exc)

    with store.writer() as current:
        t = threading.Thread(target=intruder, args=(current,))
        t.start()
        t.join(5)
        assert store.publish(current.index.copy(), current.elevation.copy()).version == 1

    assert len(errors) == 1
    assert store.version == 1


def test_listeners_see_each_published_version():
    store = DatasetStore(TilingSettings())
    seen: list[int] = []
    store.on_publish(seen.append)
    for _ in range(2):
        with store.writer() as current:
            store.publish(current.index.copy(), current.elevation.copy())
    assert seen == [1, 2]
