"""
Tiling engine.

The ingestion pipeline publishes immutable dataset snapshots; tiles are
generated from one pinned snapshot, cached per (TileKey, version) and built on a
bounded worker pool.
"""
