from __future__ import annotations


class TilingError(Exception):
    """Base class for every error raised by the tiling engine."""


class InvalidGeometry(TilingError):
    pass


class InvalidRecord(TilingError):
    """A raw record could not be turned into a feature (besides bad geometry)."""


class MissingAttribute(InvalidRecord):
    pass


class InvalidAttribute(InvalidRecord):
    pass


class FeatureNotFound(TilingError, KeyError):
    def __init__(self, feature_id: str):
        super().__init__(feature_id)
        self.feature_id = feature_id

    def __str__(self) -> str:
        return f"feature not found: {self.feature_id!r}"


class TileOutOfRange(TilingError, ValueError):
    pass


class GenerationFailure(TilingError):
    """
    Unexpected fault while clipping/simplifying/encoding a tile.

    Nothing is cached when this is raised; callers may retry.
    """


class IndexCorruption(TilingError):
    """
    The spatial index violated one of its invariants.

    Never recovered locally: the surrounding service must rebuild the index
    from the feature source (see `IngestionPipeline.reload`).
    """


class TileQueueFull(TilingError):
    """The worker pool has no free slot; the request was not queued."""


class ViewportTooLarge(TilingError, ValueError):
    """A bbox request covers more tiles than `max_viewport_tiles` allows."""
