"""Shared test doubles and builders."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from chatrelay.config import ProviderConfig, ProviderKind, RoutingConfig
from chatrelay.providers import (
    BaseProvider,
    ChatMessage,
    ProviderPool,
    ProviderResult,
    SendParams,
)
from chatrelay.services import (
    ChatOrchestrator,
    FallbackRouter,
    HashingEmbedder,
    MemoryService,
    RateLimitTracker,
    ResponseCache,
)


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 10, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class StubProvider(BaseProvider):
    """Adapter double returning scripted results or raising scripted errors."""

    kind = ProviderKind.OPENAI_COMPAT

    def __init__(
        self,
        provider_id: str,
        steps: list[ProviderResult | BaseException | str] | None = None,
        delay: float = 0.0,
    ):
        self.provider_id = provider_id
        self.model = f"{provider_id}-model"
        self.display_name = provider_id
        self.steps = list(steps or [f"answer from {provider_id}"])
        self.delay = delay
        self.calls: list[list[ChatMessage]] = []
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True

    async def send(self, messages: list[ChatMessage], params: SendParams) -> ProviderResult:
        self.calls.append(list(messages))
        step = self.steps[min(len(self.calls) - 1, len(self.steps) - 1)]
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, str):
            return ProviderResult(text=step, model=self.model, tokens_used=12, latency_ms=1.0)
        return step


def provider_config(
    provider_id: str,
    tier: int,
    *,
    rpm: int = 30,
    per_month: int | None = None,
    enabled: bool = True,
    **extra: Any,
) -> ProviderConfig:
    return ProviderConfig(
        id=provider_id,
        base_url=f"http://{provider_id}.test/v1",
        model=f"{provider_id}-model",
        api_key="test-key",
        tier=tier,
        requests_per_minute=rpm,
        requests_per_month=per_month,
        enabled=enabled,
        **extra,
    )


def routing_config(*configs: ProviderConfig, **overrides: Any) -> RoutingConfig:
    return RoutingConfig(providers=tuple(configs), **overrides)


def build_router(
    configs: list[ProviderConfig],
    providers: list[BaseProvider],
    *,
    clock: Callable[[], datetime] | None = None,
    timeout_seconds: float = 5.0,
    **routing_overrides: Any,
) -> FallbackRouter:
    routing = routing_config(*configs, **routing_overrides)
    pool = ProviderPool.from_adapters(
        configs, [p for p in providers if p.provider_id in {c.id for c in configs if c.enabled}]
    )
    tracker = (
        RateLimitTracker.from_routing(routing, clock=clock)
        if clock
        else RateLimitTracker.from_routing(routing)
    )
    return FallbackRouter(pool, tracker, timeout_seconds=timeout_seconds)


def build_orchestrator(
    session_factory: sessionmaker[Session],
    configs: list[ProviderConfig],
    providers: list[BaseProvider],
    *,
    memory: MemoryService | None = None,
    **routing_overrides: Any,
) -> ChatOrchestrator:
    routing = routing_config(*configs, **routing_overrides)
    router = build_router(configs, providers, **routing_overrides)
    cache = ResponseCache(routing.cache_ttls, skip_kinds=routing.cache_skip_kinds)
    memory = memory or MemoryService.from_routing(
        session_factory, HashingEmbedder(dimensions=256), routing
    )
    return ChatOrchestrator(router, cache, memory, session_factory, routing)
