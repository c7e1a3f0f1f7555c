"""Tests for memory storage, ranking, extraction and maintenance."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.core import EmbeddingError, MemoryRetrievalError, ValidationError
from chatrelay.core.metrics import metrics
from chatrelay.main import purge_memory_periodically
from chatrelay.services import (
    ContextLevel,
    Embedder,
    HashingEmbedder,
    MemoryService,
    extract_personal_facts,
)


class BrokenEmbedder(Embedder):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingError("embedding backend down")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("the user's name is kunal", {"name": "Kunal"}),
        ("Hi, my name is priya and I like maths", {"name": "Priya"}),
        ("I'm 17 years old", {"age": "17"}),
        ("I live in new delhi.", {"location": "New Delhi"}),
        ("I am preparing for the JEE exam", {"exam": "JEE"}),
        ("My favourite subject is physics", {"favorite_subject": "Physics"}),
        ("What is photosynthesis?", {}),
    ],
)
def test_extract_personal_facts(text, expected) -> None:
    assert extract_personal_facts(text) == expected


@pytest.mark.asyncio
async def test_name_recall_for_personal_query(memory_service) -> None:
    await memory_service.store_memory("u1", "User's name is Kunal", tags=["name"], importance=5)
    await memory_service.store_memory("u1", "Photosynthesis happens in chloroplasts", tags=["biology"])

    context = await memory_service.retrieve_relevant(
        "u1", "what is my name?", context_level=ContextLevel.COMPREHENSIVE
    )

    assert context.hits
    assert context.hits[0].content == "User's name is Kunal"
    assert context.hits[0].forced is True
    assert "Kunal" in context.context_text
    assert context.references[0] == context.hits[0].id


@pytest.mark.asyncio
async def test_memories_are_owner_scoped(memory_service) -> None:
    await memory_service.store_memory("u1", "User's name is Kunal", tags=["name"], importance=5)

    context = await memory_service.retrieve_relevant("u2", "what is my name?")

    assert context.hits == []
    assert context.context_text == ""


@pytest.mark.asyncio
async def test_unrelated_general_query_gets_nothing(memory_service) -> None:
    await memory_service.store_memory("u1", "User's name is Kunal", tags=["name"], importance=5)

    context = await memory_service.retrieve_relevant("u1", "explain plate tectonics")

    assert context.hits == []


@pytest.mark.asyncio
async def test_expired_records_are_excluded(memory_service, clock) -> None:
    await memory_service.store_memory("u1", "Photosynthesis notes", tags=["biology"])
    clock.advance(days=200)

    context = await memory_service.retrieve_relevant("u1", "photosynthesis notes")

    assert context.hits == []


@pytest.mark.asyncio
async def test_light_level_caps_hits(memory_service) -> None:
    for suffix in ("alpha", "beta", "gamma", "delta"):
        await memory_service.store_memory("u1", f"Photosynthesis notes {suffix}", tags=[suffix])

    context = await memory_service.retrieve_relevant(
        "u1", "photosynthesis notes", context_level=ContextLevel.LIGHT
    )

    assert len(context.hits) == 2
    assert context.summaries == []


@pytest.mark.asyncio
async def test_balanced_level_prefers_distinct_tags(memory_service) -> None:
    for suffix in ("one", "two", "three", "four"):
        await memory_service.store_memory(
            "u1", f"Photosynthesis notes {suffix}", tags=["biology"], importance=5
        )
    await memory_service.store_memory("u1", "Photosynthesis notes five", tags=["chemistry"], importance=1)
    await memory_service.store_memory("u1", "Photosynthesis notes six", tags=["physics"], importance=1)

    context = await memory_service.retrieve_relevant(
        "u1", "photosynthesis notes", limit=5, context_level="balanced"
    )

    assert len(context.hits) == 4
    leads = [hit.tags[0] for hit in context.hits]
    assert {"biology", "chemistry", "physics"} <= set(leads)
    assert leads.count("biology") == 2


@pytest.mark.asyncio
async def test_newer_facts_supersede_older_ones(memory_service) -> None:
    await memory_service.remember_exchange("u1", "My name is Kunal", "Nice to meet you")
    stored = await memory_service.remember_exchange("u1", "Actually, call me Ravi", "Sure")

    assert [record.content for record in stored] == ["User's name is Ravi"]
    assert stored[0].tags == ["name", "personal"]
    assert stored[0].importance == 5

    context = await memory_service.retrieve_relevant("u1", "what is my name?")
    contents = [hit.content for hit in context.hits]
    assert "User's name is Ravi" in contents
    assert "User's name is Kunal" not in contents


@pytest.mark.asyncio
async def test_remember_exchange_stores_exchange_record(session_factory, embedder, clock) -> None:
    service = MemoryService(session_factory, embedder, store_exchanges=True, clock=clock)

    stored = await service.remember_exchange(
        "u1", "How do plants make food?", "Through photosynthesis.", conversation_id="c1"
    )

    assert len(stored) == 1
    assert stored[0].kind == "exchange"
    assert stored[0].tags == ["exchange"]
    assert stored[0].source_conversation_id == "c1"
    assert "Through photosynthesis." in stored[0].content


@pytest.mark.asyncio
async def test_fingerprint_tracks_facts_only(session_factory, embedder, clock) -> None:
    service = MemoryService(session_factory, embedder, clock=clock)
    assert service.fingerprint("u1") == "none"

    await service.store_memory("u1", "User lives in Pune", tags=["location"])
    first = service.fingerprint("u1")
    assert first != "none"

    await service.store_memory("u1", "User asked: hi", tags=["exchange"], kind="exchange")
    assert service.fingerprint("u1") == first

    await service.remember_exchange("u1", "I live in Mumbai", "Great city")
    assert service.fingerprint("u1") not in (first, "none")


@pytest.mark.asyncio
async def test_store_memory_validation(memory_service) -> None:
    with pytest.raises(ValidationError):
        await memory_service.store_memory("u1", "   ")
    with pytest.raises(ValidationError):
        await memory_service.store_memory("u1", "Valid content", importance=6)

    record = await memory_service.store_memory("u1", "  Tagged  ", tags=["B", "a", "b"])
    assert record.content == "Tagged"
    assert record.tags == ["a", "b"]


@pytest.mark.asyncio
async def test_retrieval_failure_is_reported(session_factory, clock, metrics_before) -> None:
    writer = MemoryService(session_factory, HashingEmbedder(), clock=clock)
    await writer.store_memory("u1", "User's name is Kunal", tags=["name"])
    reader = MemoryService(session_factory, BrokenEmbedder(), clock=clock)

    with pytest.raises(MemoryRetrievalError):
        await reader.retrieve_relevant("u1", "what is my name?")

    after = metrics.snapshot()["counters"]
    assert after["memory_failures_total"] == metrics_before["memory_failures_total"] + 1


@pytest.mark.asyncio
async def test_records_with_other_dimensions_are_reembedded(session_factory, clock) -> None:
    old = MemoryService(session_factory, HashingEmbedder(dimensions=64), clock=clock)
    await old.store_memory("u1", "Photosynthesis notes", tags=["biology"])
    new = MemoryService(session_factory, HashingEmbedder(dimensions=256), clock=clock)

    context = await new.retrieve_relevant("u1", "photosynthesis notes")

    assert [hit.content for hit in context.hits] == ["Photosynthesis notes"]
    assert context.hits[0].similarity == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_weekly_summary_and_comprehensive_context(memory_service) -> None:
    await memory_service.store_memory("u1", "User's name is Kunal", tags=["name"], importance=5)
    await memory_service.store_memory("u1", "User is preparing for JEE", tags=["exam"], importance=4)

    summary = await memory_service.summarize_period("u1", "weekly")

    assert summary is not None
    assert summary.content.startswith("Week of 2025-03-10: User's name is Kunal")
    assert summary.record_count == 2

    again = await memory_service.summarize_period("u1", "weekly")
    assert again.id == summary.id

    context = await memory_service.retrieve_relevant(
        "u1", "what is my name?", context_level=ContextLevel.COMPREHENSIVE
    )
    assert context.summaries == [summary.content]
    assert "Earlier context summaries:" in context.context_text


@pytest.mark.asyncio
async def test_summary_period_validation(memory_service) -> None:
    assert await memory_service.summarize_period("u1", "monthly") is None
    with pytest.raises(ValidationError):
        await memory_service.summarize_period("u1", "yearly")


@pytest.mark.asyncio
async def test_purge_expired(memory_service, clock) -> None:
    await memory_service.store_memory("u1", "Photosynthesis notes", tags=["biology"])
    await memory_service.summarize_period("u1", "monthly")
    clock.advance(days=215)

    assert memory_service.purge_expired() == {"records": 1, "summaries": 1}
    assert memory_service.purge_expired() == {"records": 0, "summaries": 0}


@pytest.mark.asyncio
async def test_forget_deactivates_only_owned_records(memory_service) -> None:
    record = await memory_service.store_memory("u1", "User's name is Kunal", tags=["name"])

    assert memory_service.forget("u2", record.id) is False
    assert memory_service.forget("u1", record.id) is True
    assert memory_service.forget("u1", record.id) is False

    context = await memory_service.retrieve_relevant("u1", "what is my name?")
    assert context.hits == []


@pytest.mark.asyncio
async def test_periodic_purge_runs_on_start(memory_service, clock) -> None:
    await memory_service.store_memory("u1", "Photosynthesis notes", tags=["biology"])
    clock.advance(days=215)

    task = asyncio.create_task(purge_memory_periodically(memory_service, 3600))
    await asyncio.sleep(0)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert memory_service.purge_expired() == {"records": 0, "summaries": 0}
