"""Bounded, thread-safe memo of generated member solids.

Entries are keyed by ``family[k:v|...]@L<length>`` with parameters sorted
by name and rounded to 0.01 mm, so structurally identical members share one
solid regardless of how their dimension dictionaries were built. Eviction is
least-recently-used among entries whose reference count is at most 1.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import numpy as np

from member_geometry.config import CacheConfig

logger = logging.getLogger(__name__)


def cache_key(family: str, params: Mapping[str, Any], length: float) -> str:
    parts = []
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        if isinstance(value, (int, float, np.number)) and not isinstance(value, bool):
            parts.append(f"{name}:{float(value):.2f}")
        else:
            parts.append(f"{name}:{value}")
    return f"{family}[{'|'.join(parts)}]@L{float(length):.0f}"


def estimate_size(value: Any, minimum: int = 1024) -> int:
    """Approximate bytes held by a solid (vertex + face arrays)."""
    total = 0
    for attr in ("vertices", "faces"):
        array = getattr(value, attr, None)
        if array is not None:
            total += int(np.asarray(array).nbytes)
    return max(total, minimum)


@dataclass
class CacheEntry:
    value: Any
    size: int
    ref_count: int
    last_access: float
    hits: int = 0


class GeometryCache:
    """LRU cache with entry and byte ceilings.

    Construct one per model (or per session) and pass it to the
    orchestrator; there is no module-level instance.
    """

    def __init__(self, config: Optional[CacheConfig] = None):
        self.config = config or CacheConfig()
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._total_size = 0
        self._enabled = self.config.enabled
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ─── Lookup / insert ────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        if not self._enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            entry.hits += 1
            entry.ref_count += 1
            entry.last_access = time.monotonic()
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> Any:
        """Store ``value`` under ``key`` and return the cached object."""
        if not self._enabled:
            return value
        size = estimate_size(value, self.config.min_entry_bytes)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                existing.ref_count += 1
                existing.last_access = time.monotonic()
                return existing.value

            if len(self._entries) >= self.config.max_entries:
                self._evict_lru(need_entries=True)
            while self._total_size + size > self.config.max_bytes:
                if not self._evict_lru(need_entries=False):
                    break

            self._entries[key] = CacheEntry(
                value=value, size=size, ref_count=1, last_access=time.monotonic()
            )
            self._total_size += size
            return value

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
        """Cached value for ``key``, calling ``factory`` on a miss.

        ``factory`` runs outside the lock; when two threads race on the same
        key the first insert wins and both receive that object.
        """
        value = self.get(key)
        if value is not None:
            return value
        return self.set(key, factory())

    def release(self, key: Optional[str]) -> None:
        """Drop one reference to ``key``; trims back under the ceilings."""
        if key is None:
            return
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.ref_count > 0:
                entry.ref_count -= 1
            self._trim()

    def release_result(self, result: Any) -> None:
        """Release every solid a built member holds (main body and secondaries)."""
        self.release(getattr(result, "cache_key", None))
        for secondary in getattr(result, "secondary_profiles", ()):
            self.release(secondary.cache_key)

    def _trim(self) -> None:
        while len(self._entries) > self.config.max_entries:
            if not self._evict_lru(need_entries=False):
                return
        while self._total_size > self.config.max_bytes:
            if not self._evict_lru(need_entries=False):
                return

    def _evict_lru(self, need_entries: bool) -> bool:
        candidates = [(e.last_access, k) for k, e in self._entries.items() if e.ref_count <= 1]
        if not candidates:
            if need_entries:
                logger.warning(
                    "Geometry cache full (%d entries) and every entry is shared; growing past limit",
                    len(self._entries),
                )
            return False
        _, key = min(candidates)
        entry = self._entries.pop(key)
        self._total_size -= entry.size
        self._evictions += 1
        logger.debug("Evicted %s (%d bytes)", key, entry.size)
        return True

    # ─── Management ─────────────────────────────────────────────────────

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        if not self._enabled:
            self.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "total_bytes": self._total_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
                "enabled": self._enabled,
            }
