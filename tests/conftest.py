"""Shared fixtures: in-memory SQLite, embedder and memory service."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from chatrelay.core.metrics import metrics
from chatrelay.db import build_session_factory, create_tables
from chatrelay.services import HashingEmbedder, MemoryService

from tests.support import FakeClock


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder(dimensions=256)


@pytest.fixture
def memory_service(session_factory, embedder, clock) -> MemoryService:
    return MemoryService(session_factory, embedder, store_exchanges=False, clock=clock)


@pytest.fixture
def metrics_before():
    """Counter snapshot taken before the test body runs."""
    return metrics.snapshot()["counters"]
