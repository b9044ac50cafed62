from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from errors import FeatureNotFound, IndexCorruption
from geo.aoi import WORLD, BBox
from layers.types import Feature


@dataclass(eq=False)
class _Node:
    bounds: BBox
    depth: int
    parent: "_Node | None" = field(default=None, repr=False)
    items: dict[str, Feature] = field(default_factory=dict, repr=False)
    children: list["_Node"] | None = field(default=None, repr=False)
    # Features stored in this node and all of its descendants.
    count: int = 0


@dataclass(frozen=True)
class IndexStats:
    features: int
    nodes: int
    leaves: int
    depth: int


class SpatialIndex:
    """
    Loose quadtree mapping feature bboxes to features.

    Notes:
    - Each feature is stored in the deepest node whose bounds fully contain its
      bbox, so it is reachable from exactly one path.
    - Leaves split at the spatial midpoint once they hold more than
      `node_capacity` features (unless at `max_depth`).
    - After a removal, the highest subtree holding <= `node_capacity` features is
      collapsed back into a single node, so emptied branches do not linger.
    - Features are immutable and shared between copies; only the node structure
      is cloned by `copy()`.
    """

    def __init__(
        self, *, extent: BBox = WORLD, node_capacity: int = 8, max_depth: int = 16
    ) -> None:
        if not 4 <= int(node_capacity) <= 16:
            raise ValueError(f"node_capacity must be in [4, 16], got {node_capacity}")
        if int(max_depth) < 1:
            raise ValueError(f"max_depth must be >= 1, got {max_depth}")
        self.extent = extent.normalized()
        self.node_capacity = int(node_capacity)
        self.max_depth = int(max_depth)
        self._root = _Node(bounds=self.extent, depth=0)
        self._where: dict[str, _Node] = {}
        # source_id -> ids of the features (parts) that came from it
        self._sources: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._where)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._where

    def get(self, feature_id: str) -> Feature | None:
        node = self._where.get(feature_id)
        if node is None:
            return None
        return node.items.get(feature_id)

    def features(self) -> list[Feature]:
        return [self._where[fid].items[fid] for fid in sorted(self._where)]

    def insert(self, feature: Feature) -> None:
        """
        Add `feature`, replacing any feature already stored under the same id.
        """
        if feature.id in self._where:
            self.remove(feature.id)

        node = self._descend(feature.bbox)
        node.items[feature.id] = feature
        self._where[feature.id] = node
        self._sources.setdefault(feature.source_id, set()).add(feature.id)
        self._bump(node, +1)
        if node.children is None and len(node.items) > self.node_capacity:
            self._split(node)

    def remove(self, feature_id: str) -> Feature:
        node = self._where.pop(feature_id, None)
        if node is None:
            raise FeatureNotFound(feature_id)
        feature = node.items.pop(feature_id)
        parts = self._sources[feature.source_id]
        parts.discard(feature_id)
        if not parts:
            del self._sources[feature.source_id]
        self._bump(node, -1)
        self._compact(node)
        return feature

    def source_parts(self, source_id: str) -> list[str]:
        """
        Ids of every feature ingested from the record `source_id`, sorted.
        """
        return sorted(self._sources.get(source_id, ()))

    def query(self, box: BBox) -> list[Feature]:
        """
        Features whose bbox intersects `box` (edges inclusive), ordered by id.

        Exact with respect to bboxes; callers filter by real geometry.
        """
        b = box.normalized()
        out: list[Feature] = []
        stack = [self._root]
        while stack:
            node = stack.pop()
            for f in node.items.values():
                if f.bbox.intersects(b):
                    out.append(f)
            if node.children is not None:
                stack.extend(
                    c for c in node.children if c.count and c.bounds.intersects(b)
                )
        out.sort(key=lambda f: f.id)
        return out

    def copy(self) -> "SpatialIndex":
        clone = SpatialIndex(
            extent=self.extent,
            node_capacity=self.node_capacity,
            max_depth=self.max_depth,
        )
        clone._root = _copy_node(self._root, None, clone._where)
        clone._sources = {k: set(v) for k, v in self._sources.items()}
        return clone

    def stats(self) -> IndexStats:
        nodes = leaves = depth = 0
        for node in self._walk():
            nodes += 1
            depth = max(depth, node.depth)
            if node.children is None:
                leaves += 1
        return IndexStats(features=len(self), nodes=nodes, leaves=leaves, depth=depth)

    def validate(self) -> None:
        """
        Check every structural invariant; raise `IndexCorruption` on the first violation.
        """
        seen: set[str] = set()
        for node in self._walk():
            for fid, f in node.items.items():
                if fid != f.id:
                    raise IndexCorruption(f"feature {f.id!r} stored under key {fid!r}")
                if fid in seen:
                    raise IndexCorruption(f"feature {fid!r} reachable twice")
                seen.add(fid)
                if self._where.get(fid) is not node:
                    raise IndexCorruption(f"id map disagrees on location of {fid!r}")
                if node.parent is not None and not node.bounds.contains(f.bbox):
                    raise IndexCorruption(f"feature {fid!r} bbox escapes its node")

            expected = len(node.items)
            if node.children is not None:
                if len(node.children) != 4:
                    raise IndexCorruption("internal node without four children")
                for child in node.children:
                    if child.parent is not node or child.depth != node.depth + 1:
                        raise IndexCorruption("broken parent link")
                    if not node.bounds.contains(child.bounds):
                        raise IndexCorruption("child bounds escape parent")
                    expected += child.count
                if node.count <= self.node_capacity:
                    raise IndexCorruption(
                        f"uncompacted subtree at depth {node.depth} ({node.count} features)"
                    )
            if node.count != expected:
                raise IndexCorruption(
                    f"count mismatch at depth {node.depth}: {node.count} != {expected}"
                )

        if len(seen) != len(self._where):
            raise IndexCorruption(
                f"id map holds {len(self._where)} ids, tree holds {len(seen)}"
            )

        sources: dict[str, set[str]] = {}
        for fid, node in self._where.items():
            sources.setdefault(node.items[fid].source_id, set()).add(fid)
        if sources != self._sources:
            raise IndexCorruption("source map disagrees with stored features")

    def _walk(self) -> Iterator[_Node]:
        stack = [self._root]
        while stack:
            node = stack.pop()
            yield node
            if node.children is not None:
                stack.extend(node.children)

    def _descend(self, bbox: BBox) -> _Node:
        node = self._root
        while node.children is not None:
            child = _child_containing(node, bbox)
            if child is None:
                break
            node = child
        return node

    def _bump(self, node: _Node | None, delta: int) -> None:
        while node is not None:
            node.count += delta
            node = node.parent

    def _split(self, node: _Node) -> None:
        if node.depth >= self.max_depth:
            return
        node.children = [
            _Node(bounds=q, depth=node.depth + 1, parent=node)
            for q in node.bounds.quadrants()
        ]
        keep: dict[str, Feature] = {}
        for fid, f in node.items.items():
            child = _child_containing(node, f.bbox)
            if child is None:
                keep[fid] = f
                continue
            child.items[fid] = f
            child.count += 1
            self._where[fid] = child
        node.items = keep
        for child in node.children:
            if len(child.items) > self.node_capacity:
                self._split(child)

    def _compact(self, node: _Node) -> None:
        # Subtree counts only grow towards the root, so the highest node that
        # fits is found by walking up until one does not.
        target = None
        cur: _Node | None = node
        while cur is not None and cur.count <= self.node_capacity:
            target = cur
            cur = cur.parent
        if target is None or target.children is None:
            return

        stack = list(target.children)
        while stack:
            n = stack.pop()
            for fid, f in n.items.items():
                target.items[fid] = f
                self._where[fid] = target
            if n.children is not None:
                stack.extend(n.children)
        target.children = None


def _child_containing(node: _Node, bbox: BBox) -> _Node | None:
    for child in node.children or ():
        if child.bounds.contains(bbox):
            return child
    return None


def _copy_node(node: _Node, parent: _Node | None, where: dict[str, _Node]) -> _Node:
    out = _Node(
        bounds=node.bounds,
        depth=node.depth,
        parent=parent,
        items=dict(node.items),
        count=node.count,
    )
    for fid in out.items:
        where[fid] = out
    if node.children is not None:
        out.children = [_copy_node(c, out, where) for c in node.children]
    return out
