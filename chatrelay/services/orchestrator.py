"""Chat request orchestration: cache, memory, fallback routing and persistence."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.config import RoutingConfig, Settings
from chatrelay.core import (
    ConfigurationError,
    MemoryRetrievalError,
    ValidationError,
    get_logger,
    metrics,
    owner_id_ctx,
)
from chatrelay.db.repositories import (
    create_message,
    get_or_create_conversation,
    get_owner_conversation,
    get_recent_messages,
)
from chatrelay.providers import ChatMessage, ProviderPool, SendParams
from chatrelay.services.cache import ResponseCache, build_cache_key
from chatrelay.services.classifier import Classification, QueryKind, classify_query
from chatrelay.services.embeddings import Embedder, build_embedder
from chatrelay.services.fallback import FallbackRouter, RouteResult
from chatrelay.services.memory import ContextLevel, MemoryContext, MemoryService
from chatrelay.services.rate_limits import RateLimitTracker

logger = get_logger(__name__)

MEMORY_LIMIT = 8
MAX_MESSAGE_CHARS = 8000
SUMMARY_PERIODS = ("weekly", "monthly")


class RequestState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    MEMORY_RETRIEVED = "memory_retrieved"
    PROVIDER_ATTEMPT = "provider_attempt"
    EXHAUSTED = "exhausted"
    RESPONDED = "responded"
    DEGRADED_RESPONDED = "degraded_responded"


@dataclass
class ChatResult:
    content: str
    provider: str
    model: str
    tokens_used: int
    latency_ms: float
    cached: bool
    memory_references: list[str]
    conversation_id: str
    classification: Classification
    degraded: bool = False
    attempts: int = 0
    states: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "latency_ms": round(self.latency_ms, 2),
            "cached": self.cached,
            "memory_references": list(self.memory_references),
            "conversation_id": self.conversation_id,
            "degraded": self.degraded,
            "attempts": self.attempts,
            "query_type": self.classification.kind.value,
            "states": list(self.states),
        }


def context_level_for(classification: Classification, chat_type: str) -> ContextLevel:
    if classification.kind is QueryKind.PERSONAL:
        return ContextLevel.COMPREHENSIVE
    if chat_type == "study_assistant":
        return ContextLevel.BALANCED
    return ContextLevel.LIGHT


class ChatOrchestrator:
    """Runs one chat request end to end and owns the background memory tasks."""

    def __init__(
        self,
        router: FallbackRouter,
        cache: ResponseCache,
        memory: MemoryService,
        session_factory: sessionmaker[Session],
        routing: RoutingConfig,
    ):
        self.router = router
        self.cache = cache
        self.memory = memory
        self.session_factory = session_factory
        self.routing = routing
        self._tasks: set[asyncio.Task] = set()

    # Background work

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        metrics.set_gauge("background_tasks", float(len(self._tasks)))

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            metrics.set_gauge("background_tasks", float(len(self._tasks)))

        task.add_done_callback(_done)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background memory work, cancelling whatever outlives ``timeout``."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled unfinished background tasks", data={"count": len(still_running)})
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _remember(self, owner_id: str, conversation_id: str, message: str, response: str) -> None:
        try:
            stored = await self.memory.remember_exchange(
                owner_id, message, response, conversation_id=conversation_id
            )
            if stored:
                for period in SUMMARY_PERIODS:
                    await self.memory.summarize_period(owner_id, period)
        except Exception as exc:
            metrics.increment("memory_failures_total")
            logger.warning(
                "Background memory extraction failed",
                data={"owner_id": owner_id, "error": type(exc).__name__},
            )
            return
        if stored:
            logger.debug(
                "Background memory extraction stored records",
                data={"owner_id": owner_id, "count": len(stored)},
            )

    # Persistence

    def _load_history(self, owner_id: str, conversation_id: str, limit: int) -> list[ChatMessage]:
        try:
            with self.session_factory() as db:
                if not get_owner_conversation(db, owner_id, conversation_id):
                    return []
                rows = get_recent_messages(db, conversation_id, limit)
        except SQLAlchemyError as exc:
            logger.warning("Failed to load chat history", data={"error": type(exc).__name__})
            return []
        return [ChatMessage(role=row.role, content=row.content) for row in rows]

    def _persist(
        self,
        owner_id: str,
        conversation_id: str,
        chat_type: str,
        message: str,
        result: ChatResult,
    ) -> None:
        try:
            with self.session_factory() as db:
                get_or_create_conversation(
                    db, owner_id, conversation_id, chat_type=chat_type, title=message[:60]
                )
                create_message(db, conversation_id, "user", message)
                create_message(
                    db,
                    conversation_id,
                    "assistant",
                    result.content,
                    provider=result.provider,
                    model=result.model,
                    total_tokens=result.tokens_used,
                    latency_ms=int(result.latency_ms),
                    meta={
                        "cached": result.cached,
                        "degraded": result.degraded,
                        "query_type": result.classification.kind.value,
                        "memory_references": result.memory_references,
                    },
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "Failed to persist chat history",
                data={"conversation_id": conversation_id, "error": type(exc).__name__},
            )

    # Request flow

    def _fingerprint(self, owner_id: str, memory_enabled: bool) -> str:
        if not memory_enabled:
            return "off"
        try:
            return self.memory.fingerprint(owner_id)
        except SQLAlchemyError as exc:
            logger.warning("Memory fingerprint unavailable", data={"error": type(exc).__name__})
            return "unavailable"

    def _cache_enabled(self, kind: QueryKind, config: RoutingConfig) -> bool:
        return kind.value not in config.cache_skip_kinds and self.cache.should_cache(kind)

    @staticmethod
    def _build_prompt(
        config: RoutingConfig,
        memory: MemoryContext | None,
        history: list[ChatMessage],
        message: str,
    ) -> list[ChatMessage]:
        system = config.system_prompt
        if memory and memory.context_text:
            system = f"{system}\n\n{memory.context_text}"
        return [ChatMessage(role="system", content=system), *history, ChatMessage(role="user", content=message)]

    async def handle_chat_request(
        self,
        owner_id: str,
        conversation_id: str,
        message: str,
        chat_type: str = "general",
        *,
        config: RoutingConfig | None = None,
        is_personal_query: bool = False,
        is_time_sensitive: bool = False,
    ) -> ChatResult:
        """Answer one chat message.

        Always resolves to either a provider answer or a labeled degraded
        answer. Raises ValidationError for bad input and ConfigurationError
        when no providers are configured.

        A per-call ``config`` shapes the request (timeout, cache policy, memory
        scope, prompt and history). Provider tiers and limits come from the
        pool and tracker built at startup; ``router.tracker.reload()`` clears
        auth disables.
        """
        cfg = config or self.routing
        started = time.perf_counter()
        states = [RequestState.RECEIVED.value]

        message = (message or "").strip()
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner_id is required")
        if not conversation_id or not conversation_id.strip():
            raise ValidationError("conversation_id is required")
        if not message:
            raise ValidationError("Message must not be empty")
        if len(message) > MAX_MESSAGE_CHARS:
            raise ValidationError(
                "Message is too long", details={"max_chars": MAX_MESSAGE_CHARS}
            )
        if not cfg.providers:
            logger.error("Chat request with no providers configured")
            raise ConfigurationError("No providers configured")

        owner_id_ctx.set(owner_id)
        classification = classify_query(
            message, is_personal_query=is_personal_query, is_time_sensitive=is_time_sensitive
        )
        states.append(RequestState.CLASSIFIED.value)
        memory_enabled = chat_type in cfg.memory_chat_types

        cache_key: str | None = None
        if self._cache_enabled(classification.kind, cfg):
            cache_key = build_cache_key(
                message,
                classification.kind,
                chat_type,
                self._fingerprint(owner_id, memory_enabled),
                owner_id=owner_id,
                owner_scoped=memory_enabled,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                states.extend([RequestState.CACHE_HIT.value, RequestState.RESPONDED.value])
                logger.info(
                    "Cache hit",
                    data={"query_type": classification.kind.value, "provider": cached["provider"]},
                )
                result = ChatResult(
                    content=cached["content"],
                    provider=cached["provider"],
                    model=cached["model"],
                    tokens_used=cached["tokens_used"],
                    latency_ms=(time.perf_counter() - started) * 1000,
                    cached=True,
                    memory_references=list(cached["memory_references"]),
                    conversation_id=conversation_id,
                    classification=classification,
                    states=states,
                )
                self._persist(owner_id, conversation_id, chat_type, message, result)
                return result
        else:
            logger.debug("Cache skipped by policy", data={"query_type": classification.kind.value})
        states.append(RequestState.CACHE_MISS.value)

        memory_context: MemoryContext | None = None
        if memory_enabled:
            try:
                memory_context = await self.memory.retrieve_relevant(
                    owner_id,
                    message,
                    limit=MEMORY_LIMIT,
                    context_level=context_level_for(classification, chat_type),
                    personal=classification.is_personal,
                )
                states.append(RequestState.MEMORY_RETRIEVED.value)
            except MemoryRetrievalError as exc:
                logger.warning(
                    "Continuing without memory context",
                    data={"owner_id": owner_id, "details": exc.details},
                )

        history = self._load_history(owner_id, conversation_id, cfg.history_limit)
        prompt = self._build_prompt(cfg, memory_context, history, message)

        route: RouteResult = await self.router.route(
            prompt,
            SendParams(temperature=cfg.temperature, max_tokens=cfg.max_tokens),
            timeout_seconds=cfg.provider_timeout_seconds,
        )
        states.extend(f"{RequestState.PROVIDER_ATTEMPT.value}:{i}" for i in range(1, route.attempts + 1))
        if route.degraded:
            states.extend([RequestState.EXHAUSTED.value, RequestState.DEGRADED_RESPONDED.value])
        else:
            states.append(RequestState.RESPONDED.value)

        references = memory_context.references if memory_context else []
        result = ChatResult(
            content=route.text,
            provider=route.provider_id,
            model=route.model,
            tokens_used=route.tokens_used,
            latency_ms=(time.perf_counter() - started) * 1000,
            cached=False,
            memory_references=references,
            conversation_id=conversation_id,
            classification=classification,
            degraded=route.degraded,
            attempts=route.attempts,
            states=states,
        )

        if not route.degraded:
            if cache_key is not None:
                self.cache.set(
                    cache_key,
                    {
                        "content": result.content,
                        "provider": result.provider,
                        "model": result.model,
                        "tokens_used": result.tokens_used,
                        "memory_references": references,
                    },
                    cfg.cache_ttls.for_kind(classification.kind.value),
                )
            if memory_enabled:
                self._spawn(
                    self._remember(owner_id, conversation_id, message, result.content),
                    name=f"remember:{conversation_id}",
                )

        self._persist(owner_id, conversation_id, chat_type, message, result)
        logger.info(
            "Chat request completed",
            data={
                "provider": result.provider,
                "query_type": classification.kind.value,
                "attempts": result.attempts,
                "degraded": result.degraded,
                "latency_ms": round(result.latency_ms, 2),
            },
        )
        return result

    async def aclose(self, drain_timeout: float | None = 10.0) -> None:
        await self.drain(timeout=drain_timeout)
        await self.router.pool.aclose()
        await self.memory.embedder.aclose()


def build_orchestrator(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    routing: RoutingConfig | None = None,
    pool: ProviderPool | None = None,
    embedder: Embedder | None = None,
    transport_overrides: dict[str, httpx.AsyncBaseTransport] | None = None,
) -> ChatOrchestrator:
    """Wire the tracker, pool, router, cache and memory service from settings."""
    routing = routing or settings.routing_config()
    if not routing.providers:
        raise ConfigurationError("No providers configured")
    pool = pool or ProviderPool.from_settings(
        settings, transport_overrides=transport_overrides, configs=routing.providers
    )
    tracker = RateLimitTracker.from_routing(routing)
    router = FallbackRouter(pool, tracker, timeout_seconds=routing.provider_timeout_seconds)
    cache = ResponseCache(
        routing.cache_ttls,
        max_entries=settings.cache_max_entries,
        skip_kinds=routing.cache_skip_kinds,
    )
    memory = MemoryService.from_routing(
        session_factory,
        embedder or build_embedder(settings),
        routing,
        store_exchanges=settings.memory_store_exchanges,
    )
    return ChatOrchestrator(router, cache, memory, session_factory, routing)
