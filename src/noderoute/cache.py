"""
Memoization table for committed connection paths.

Entries are keyed by connection structure, mode and variant; node positions
are not part of the key, so the owner must call ``invalidate_for`` (or
``clear``) whenever the node or connection list changes.  Paths computed with
live drag overrides are never stored here.

Growth is bounded in two steps: above ``max_size`` a sampled share of entries
is dropped (the share grows with the overflow), and above ``hard_limit`` the
oldest entries are dropped deterministically.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Optional

from noderoute.config import CacheConfig
from noderoute.models import Connection, ConnectionPath, NodeVariant, RenderMode

logger = logging.getLogger("noderoute.cache")


def cache_key(
    connection: Connection,
    mode: RenderMode = RenderMode.WORKFLOW,
    variant: NodeVariant = NodeVariant.STANDARD,
) -> str:
    """Key covering every structural input that affects a connection's path."""
    return (
        f"{connection.id}-{connection.source_node_id}-{connection.source_port_id}"
        f"-{connection.target_node_id}-{connection.target_port_id}"
        f"-{variant.value}-{mode.value}"
    )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate, 4),
        }


class PathCache:
    """Insertion-ordered path cache with probabilistic and hard-limit pruning.

    The random source is injectable so pruning is reproducible in tests.
    Access is guarded by a lock so one router can be shared between threads.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or CacheConfig()
        self._rng = rng or random.Random()
        self._entries: dict[str, ConnectionPath] = {}
        self._lock = threading.Lock()
        self._identity: Optional[tuple] = None
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[ConnectionPath]:
        with self._lock:
            path = self._entries.get(key)
            if path is None:
                self.stats.misses += 1
            else:
                self.stats.hits += 1
            return path

    def put(self, key: str, path: ConnectionPath) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._entries[key] = path
            self._prune_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def prune(self) -> int:
        """Apply the size limits now; returns the number of entries removed."""
        with self._lock:
            return self._prune_locked()

    def _prune_locked(self) -> int:
        cfg = self.config
        size = len(self._entries)
        if size <= cfg.max_size:
            return 0

        over_by = size - cfg.max_size
        pressure = min(1.0, over_by / max(cfg.max_size * 0.5, 1))
        sample_rate = cfg.min_sample_rate + pressure * (cfg.max_sample_rate - cfg.min_sample_rate)
        soft_target = int(cfg.max_size * cfg.soft_target_ratio)

        removed = 0
        for key in list(self._entries):
            if len(self._entries) <= soft_target:
                break
            if self._rng.random() < sample_rate:
                del self._entries[key]
                removed += 1

        if len(self._entries) > cfg.hard_limit:
            extra = len(self._entries) - cfg.hard_limit
            for key in list(self._entries)[:extra]:
                del self._entries[key]
            removed += extra

        if removed:
            self.stats.evictions += removed
            logger.debug("Path cache pruned by %d (size now %d)", removed, len(self._entries))
        return removed

    def invalidate_for(
        self,
        nodes: Any,
        connections: Any,
        mode: RenderMode,
        variant: NodeVariant,
    ) -> bool:
        """Clear the cache if the graph identity, mode or variant changed.

        Lists are compared by identity, not contents: callers replace the list
        object whenever they change it.
        """
        with self._lock:
            previous = self._identity
            changed = (
                previous is None
                or previous[0] is not nodes
                or previous[1] is not connections
                or previous[2] is not mode
                or previous[3] is not variant
            )
            if changed:
                if self._entries:
                    self.stats.invalidations += 1
                self._entries.clear()
                self._identity = (nodes, connections, mode, variant)
            return changed

    def to_dict(self) -> dict[str, Any]:
        data = self.stats.to_dict()
        data.update({
            "size": len(self._entries),
            "max_size": self.config.max_size,
            "hard_limit": self.config.hard_limit,
            "enabled": self.config.enabled,
        })
        return data
