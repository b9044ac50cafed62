from __future__ import annotations

import json
from typing import Any, Iterable

from engine.types import Fragment
from geo.tiles import TileKey


# Bump when the payload layout changes; cached bytes are only comparable within one format.
PAYLOAD_FORMAT = 1

_TYPE_TAGS = {"point": "Point", "line": "LineString", "polygon": "Polygon"}


def encode_tile(key: TileKey, version: int, fragments: Iterable[Fragment]) -> bytes:
    """
    Stable JSON encoding: sorted keys, compact separators, no NaN/inf.
    """
    features: list[dict[str, Any]] = []
    for f in fragments:
        item: dict[str, Any] = {
            "id": f.feature_id,
            "type": _TYPE_TAGS[f.kind],
            "coords": _plain(f.coords),
            "props": dict(f.props),
        }
        if f.height is not None:
            item["height"] = f.height
        features.append(item)

    payload = {
        "fmt": PAYLOAD_FORMAT,
        "v": int(version),
        "z": key.z,
        "x": key.x,
        "y": key.y,
        "features": features,
    }
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), allow_nan=False
    ).encode("utf-8")


def decode_tile(data: bytes) -> dict[str, Any]:
    return json.loads(data.decode("utf-8"))


def _plain(v: Any) -> Any:
    if isinstance(v, (list, tuple)):
        return [_plain(x) for x in v]
    return v
