"""
Tiered provider fallback.

One attempt per tier, lowest rank first. Inside a tier the first eligible
provider is called; providers that are disabled, cooling down or out of
quota are skipped and recorded. When every tier is spent the router returns
a labeled degraded response instead of raising.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from chatrelay.core import AppError, ProviderTimeoutError, get_logger, metrics
from chatrelay.core.time import utcnow
from chatrelay.providers import (
    ChatMessage,
    FailureKind,
    ProviderPool,
    ProviderResult,
    SendParams,
    classify_failure,
)
from chatrelay.services.rate_limits import ProviderState, RateLimitTracker

logger = get_logger(__name__)

DEGRADED_PROVIDER = "degraded"
DEGRADED_MODEL = "graceful_degradation"
DEGRADED_TEXT = (
    "[Degraded response] I'm experiencing high demand right now and none of the "
    "language model providers could answer. Please try again in a few moments."
)


class FallbackOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_COOLDOWN = "skipped_cooldown"
    SKIPPED_RATE_LIMITED = "skipped_rate_limited"
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    TRANSIENT_ERROR = "transient_error"
    INVALID_RESPONSE = "invalid_response"


_FAILURE_OUTCOMES = {
    FailureKind.RATE_LIMITED: FallbackOutcome.RATE_LIMITED,
    FailureKind.AUTH_ERROR: FallbackOutcome.AUTH_ERROR,
    FailureKind.TRANSIENT_ERROR: FallbackOutcome.TRANSIENT_ERROR,
    FailureKind.INVALID_RESPONSE: FallbackOutcome.INVALID_RESPONSE,
}

_SKIP_OUTCOMES = {
    "disabled": FallbackOutcome.SKIPPED_DISABLED,
    "cooldown": FallbackOutcome.SKIPPED_COOLDOWN,
}


@dataclass
class FallbackEvent:
    """One provider decision during routing. Observability only."""

    provider_id: str
    tier: int
    outcome: FallbackOutcome
    latency_ms: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)
    detail: str | None = None

    @property
    def skipped(self) -> bool:
        return self.outcome.value.startswith("skipped_")

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "tier": self.tier,
            "outcome": self.outcome.value,
            "latency_ms": round(self.latency_ms, 2),
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }


@dataclass
class RouteResult:
    text: str
    provider_id: str
    model: str
    tier: int | None
    tokens_used: int = 0
    latency_ms: float = 0.0
    attempts: int = 0
    degraded: bool = False
    events: list[FallbackEvent] = field(default_factory=list)


class FallbackRouter:
    """Walks provider tiers through the rate limit tracker."""

    def __init__(
        self,
        pool: ProviderPool,
        tracker: RateLimitTracker,
        *,
        timeout_seconds: float = 30.0,
        history_size: int = 200,
    ):
        self.pool = pool
        self.tracker = tracker
        self.timeout_seconds = timeout_seconds
        self._history: deque[FallbackEvent] = deque(maxlen=history_size)

    @property
    def tier_count(self) -> int:
        return len(self.pool.tiers())

    def _order(self, provider_ids: list[str]) -> list[str]:
        """Providers near their quota go behind healthy tier-mates; sort is stable."""

        def key(provider_id: str) -> int:
            state = self.tracker.status(provider_id).state
            return 1 if state is ProviderState.APPROACHING else 0

        return sorted(provider_ids, key=key)

    def _record(self, events: list[FallbackEvent], event: FallbackEvent) -> None:
        events.append(event)
        self._history.append(event)
        if event.outcome is FallbackOutcome.SUCCESS:
            logger.info("Provider answered", data=event.to_dict())
            return
        metrics.increment("fallback_events_total")
        if event.skipped:
            logger.info("Provider skipped", data=event.to_dict())
        else:
            logger.warning("Provider attempt failed", data=event.to_dict())

    def _skip_reason(self, provider_id: str) -> FallbackOutcome | None:
        if not self.pool.has_adapter(provider_id):
            return FallbackOutcome.SKIPPED_DISABLED
        reason = self.tracker.unavailable_reason(provider_id)
        if reason is not None:
            return _SKIP_OUTCOMES[reason]
        if not self.tracker.try_consume(provider_id):
            return FallbackOutcome.SKIPPED_RATE_LIMITED
        return None

    async def _send(
        self,
        provider_id: str,
        messages: list[ChatMessage],
        params: SendParams,
        timeout: float,
    ) -> ProviderResult:
        adapter = self.pool.get(provider_id)
        try:
            return await asyncio.wait_for(adapter.send(messages, params), timeout)
        except TimeoutError as exc:
            raise ProviderTimeoutError(details={"timeout_seconds": timeout}) from exc

    async def route(
        self,
        messages: list[ChatMessage],
        params: SendParams | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> RouteResult:
        """Try each tier once and return the first successful answer.

        Never raises for provider failures. ``CancelledError`` propagates;
        quota consumed for an in-flight call stays consumed.
        """
        params = params or SendParams()
        timeout = timeout_seconds or self.timeout_seconds
        events: list[FallbackEvent] = []
        attempts = 0
        started = time.perf_counter()

        for rank, provider_ids in self.pool.tiers():
            attempts += 1
            for provider_id in self._order(provider_ids):
                skip = self._skip_reason(provider_id)
                if skip is not None:
                    self._record(events, FallbackEvent(provider_id, rank, skip))
                    continue

                metrics.increment("provider_attempts_total")
                call_started = time.perf_counter()
                try:
                    result = await self._send(provider_id, messages, params, timeout)
                except AppError as exc:
                    kind = classify_failure(exc)
                    detail = f"{exc.code.value}: {exc.message}"
                except Exception as exc:
                    logger.exception(
                        "Unexpected provider failure", exc_info=exc, data={"provider": provider_id}
                    )
                    kind = FailureKind.TRANSIENT_ERROR
                    detail = type(exc).__name__
                else:
                    self.tracker.record_success(provider_id)
                    latency_ms = (time.perf_counter() - call_started) * 1000
                    self._record(
                        events,
                        FallbackEvent(provider_id, rank, FallbackOutcome.SUCCESS, latency_ms),
                    )
                    return RouteResult(
                        text=result.text,
                        provider_id=provider_id,
                        model=result.model,
                        tier=rank,
                        tokens_used=result.tokens_used,
                        latency_ms=latency_ms,
                        attempts=attempts,
                        events=events,
                    )

                latency_ms = (time.perf_counter() - call_started) * 1000
                if kind is FailureKind.AUTH_ERROR:
                    self.tracker.disable(provider_id, reason="auth_error")
                else:
                    self.tracker.record_failure(provider_id)
                self._record(
                    events,
                    FallbackEvent(provider_id, rank, _FAILURE_OUTCOMES[kind], latency_ms, detail=detail),
                )
                break

        metrics.increment("degraded_responses_total")
        logger.error(
            "All providers exhausted; returning degraded response",
            data={
                "attempts": attempts,
                "events": [event.to_dict() for event in events],
            },
        )
        return RouteResult(
            text=DEGRADED_TEXT,
            provider_id=DEGRADED_PROVIDER,
            model=DEGRADED_MODEL,
            tier=None,
            latency_ms=(time.perf_counter() - started) * 1000,
            attempts=attempts,
            degraded=True,
            events=events,
        )

    def recent_events(self, limit: int = 50) -> list[FallbackEvent]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def status(self, event_limit: int = 50) -> dict[str, Any]:
        providers = []
        for config in self.pool.configs():
            entry = self.tracker.status(config.id).to_dict()
            entry.update(
                {
                    "name": config.display_name or config.id,
                    "kind": config.kind.value,
                    "model": config.model,
                    "tier": config.tier,
                }
            )
            providers.append(entry)
        return {
            "tiers": [{"rank": rank, "providers": ids} for rank, ids in self.pool.tiers()],
            "providers": providers,
            "recent_events": [event.to_dict() for event in self.recent_events(event_limit)],
        }
