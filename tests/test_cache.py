"""Tests for the response cache and cache keys."""

from __future__ import annotations

from chatrelay.config import CacheTTLs
from chatrelay.services.cache import ResponseCache, build_cache_key
from chatrelay.services.classifier import QueryKind


class TickClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_set_then_get_returns_value_unchanged() -> None:
    cache = ResponseCache()
    payload = {"content": "hello", "provider": "groq", "memory_references": ["a"]}
    cache.set("k", payload, 60)
    assert cache.get("k") is payload


def test_expired_entries_are_never_returned() -> None:
    clock = TickClock()
    cache = ResponseCache(clock=clock)
    cache.set("k", "v", 10)
    clock.now += 9
    assert cache.get("k") == "v"
    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_ttl_by_classification() -> None:
    cache = ResponseCache(CacheTTLs(temporal=300, personal=120, general=3600))
    assert cache.ttl_for(QueryKind.TEMPORAL) == 300
    assert cache.ttl_for(QueryKind.PERSONAL) == 120
    assert cache.ttl_for(QueryKind.GENERAL) == 3600


def test_skip_policy() -> None:
    cache = ResponseCache(skip_kinds=frozenset({"personal"}))
    assert not cache.should_cache(QueryKind.PERSONAL)
    assert cache.should_cache(QueryKind.GENERAL)


def test_eviction_prefers_expired_then_oldest() -> None:
    clock = TickClock()
    cache = ResponseCache(max_entries=3, clock=clock)
    cache.set("short", 1, 5)
    cache.set("old", 2, 100)
    cache.set("newer", 3, 100)
    clock.now += 10

    cache.set("fresh", 4, 100)
    assert cache.get("short") is None
    assert cache.get("old") == 2

    cache.set("fresher", 5, 100)
    assert cache.get("old") is None
    assert cache.get("newer") == 3
    assert len(cache) == 3


def test_stats_track_hits_and_misses() -> None:
    cache = ResponseCache()
    cache.set("k", "v", 60)
    cache.get("k")
    cache.get("missing")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


def test_key_normalizes_query_text() -> None:
    a = build_cache_key("  What is   Photosynthesis? ", QueryKind.GENERAL, "general", "none")
    b = build_cache_key("what is photosynthesis?", QueryKind.GENERAL, "general", "none")
    assert a == b


def test_key_changes_with_memory_fingerprint() -> None:
    a = build_cache_key("what is my name", QueryKind.PERSONAL, "general", "abc", owner_id="u1")
    b = build_cache_key("what is my name", QueryKind.PERSONAL, "general", "def", owner_id="u1")
    assert a != b


def test_personal_and_temporal_keys_are_owner_scoped() -> None:
    for kind in (QueryKind.PERSONAL, QueryKind.TEMPORAL):
        a = build_cache_key("same text", kind, "general", "none", owner_id="u1")
        b = build_cache_key("same text", kind, "general", "none", owner_id="u2")
        assert a != b
    general_a = build_cache_key("same text", QueryKind.GENERAL, "general", "none", owner_id="u1")
    general_b = build_cache_key("same text", QueryKind.GENERAL, "general", "none", owner_id="u2")
    assert general_a == general_b


def test_memory_shaped_general_keys_are_owner_scoped() -> None:
    a = build_cache_key("same text", QueryKind.GENERAL, "general", "none", owner_id="u1", owner_scoped=True)
    b = build_cache_key("same text", QueryKind.GENERAL, "general", "none", owner_id="u2", owner_scoped=True)
    assert a != b
