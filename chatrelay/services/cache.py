"""
In-process response cache.

Advisory only: a miss never changes the answer, it just costs a provider
call. Entries carry their own TTL chosen from the query classification.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from chatrelay.config import CacheTTLs
from chatrelay.core import metrics
from chatrelay.services.classifier import QueryKind

_OWNER_SCOPED = {QueryKind.PERSONAL, QueryKind.TEMPORAL}


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl


def normalize_query(text: str) -> str:
    return " ".join(text.lower().split())


def build_cache_key(
    message: str,
    kind: QueryKind,
    chat_type: str,
    memory_fingerprint: str,
    owner_id: str | None = None,
    *,
    owner_scoped: bool = False,
) -> str:
    """Hash the normalized query with everything that can change the answer.

    Personal and temporal answers are always scoped to the owner. Callers pass
    ``owner_scoped`` when the answer was shaped by the owner's memory.
    """
    parts = [normalize_query(message), kind.value, chat_type, memory_fingerprint]
    if owner_scoped or kind in _OWNER_SCOPED:
        parts.append(owner_id or "")
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


class ResponseCache:
    """Bounded TTL cache; expired entries are evicted first, then the oldest."""

    def __init__(
        self,
        ttls: CacheTTLs | None = None,
        *,
        max_entries: int = 1000,
        skip_kinds: frozenset[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttls = ttls or CacheTTLs()
        self.max_entries = max_entries
        self.skip_kinds = skip_kinds or frozenset()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def ttl_for(self, kind: QueryKind) -> float:
        return self.ttls.for_kind(kind.value)

    def should_cache(self, kind: QueryKind) -> bool:
        return kind.value not in self.skip_kinds

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        metrics.increment("cache_hits_total" if entry else "cache_misses_total")
        return entry.value if entry else None

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = CacheEntry(key=key, value=value, created_at=now, ttl=ttl)

    def _evict(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        # dict preserves insertion order, so the first key is the oldest
        while len(self._entries) >= self.max_entries:
            del self._entries[next(iter(self._entries))]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 4) if total else 0.0,
            }
