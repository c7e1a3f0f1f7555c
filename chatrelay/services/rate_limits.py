"""
Per-provider quota, cooldown and disable state.

Each provider has its own lock; no lock spans more than one provider, so
concurrent requests only contend when they target the same provider.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from chatrelay.config import ProviderConfig, RoutingConfig
from chatrelay.core import NotFoundError, RateLimitError, get_logger
from chatrelay.core.time import month_key, utcnow

logger = get_logger(__name__)

MINUTE = timedelta(minutes=1)


class ProviderState(str, Enum):
    HEALTHY = "healthy"
    APPROACHING = "approaching"
    BLOCKED = "blocked"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"


@dataclass
class ProviderStatus:
    """Point-in-time view of one provider's usage."""

    provider_id: str
    state: ProviderState
    minute_used: int
    minute_limit: int
    month_used: int
    month_limit: int | None
    consecutive_failures: int
    cooldown_until: datetime | None
    disabled_reason: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "state": self.state.value,
            "minute_used": self.minute_used,
            "minute_limit": self.minute_limit,
            "month_used": self.month_used,
            "month_limit": self.month_limit,
            "consecutive_failures": self.consecutive_failures,
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
            "disabled_reason": self.disabled_reason,
        }


@dataclass
class _Usage:
    config: ProviderConfig
    lock: threading.Lock = field(default_factory=threading.Lock)
    minute: deque[datetime] = field(default_factory=deque)
    month: tuple[int, int] | None = None
    month_count: int = 0
    consecutive_failures: int = 0
    cooldown_until: datetime | None = None
    disabled_reason: str | None = None


class RateLimitTracker:
    """Sliding-window quota tracker with failure cooldown and auth disable."""

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        *,
        cooldown_seconds: float = 60.0,
        failure_threshold: int = 3,
        soft_limit_ratio: float = 0.8,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.failure_threshold = failure_threshold
        self.soft_limit_ratio = soft_limit_ratio
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._usage: dict[str, _Usage] = {}
        self._apply_configs(configs)

    @classmethod
    def from_routing(
        cls, routing: RoutingConfig, clock: Callable[[], datetime] = utcnow
    ) -> "RateLimitTracker":
        return cls(
            routing.providers,
            cooldown_seconds=routing.cooldown_seconds,
            failure_threshold=routing.failure_threshold,
            soft_limit_ratio=routing.soft_limit_ratio,
            clock=clock,
        )

    def _apply_configs(self, configs: Iterable[ProviderConfig]) -> None:
        with self._registry_lock:
            current = self._usage
            fresh: dict[str, _Usage] = {}
            for config in configs:
                usage = current.get(config.id)
                if usage is None:
                    usage = _Usage(config=config)
                else:
                    with usage.lock:
                        usage.config = config
                        usage.disabled_reason = None
                fresh[config.id] = usage
            self._usage = fresh

    def _get(self, provider_id: str) -> _Usage:
        usage = self._usage.get(provider_id)
        if usage is None:
            raise NotFoundError(f"Provider '{provider_id}' not tracked")
        return usage

    # Callers must hold usage.lock for everything below until the public API.

    def _prune(self, usage: _Usage, now: datetime) -> None:
        cutoff = now - MINUTE
        while usage.minute and usage.minute[0] <= cutoff:
            usage.minute.popleft()
        bucket = month_key(now)
        if usage.month != bucket:
            usage.month = bucket
            usage.month_count = 0

    def _unavailable_reason(self, usage: _Usage, now: datetime) -> str | None:
        if usage.disabled_reason or not usage.config.enabled:
            return "disabled"
        cooldown_until = usage.cooldown_until
        configured = usage.config.cooldown_until
        if configured and (cooldown_until is None or configured > cooldown_until):
            cooldown_until = configured
        if cooldown_until and cooldown_until > now:
            return "cooldown"
        return None

    def _has_quota(self, usage: _Usage) -> bool:
        config = usage.config
        if len(usage.minute) >= config.requests_per_minute:
            return False
        if config.requests_per_month is not None and usage.month_count >= config.requests_per_month:
            return False
        return True

    def _quota_state(self, usage: _Usage) -> ProviderState:
        if not self._has_quota(usage):
            return ProviderState.BLOCKED
        config = usage.config
        ratios = [len(usage.minute) / config.requests_per_minute]
        if config.requests_per_month is not None:
            ratios.append(usage.month_count / config.requests_per_month)
        if max(ratios) >= self.soft_limit_ratio:
            return ProviderState.APPROACHING
        return ProviderState.HEALTHY

    # Public API

    def unavailable_reason(self, provider_id: str) -> str | None:
        """``"disabled"`` or ``"cooldown"`` when the provider must be skipped."""
        usage = self._get(provider_id)
        with usage.lock:
            return self._unavailable_reason(usage, self._clock())

    def can_consume(self, provider_id: str) -> bool:
        usage = self._get(provider_id)
        with usage.lock:
            now = self._clock()
            self._prune(usage, now)
            return self._unavailable_reason(usage, now) is None and self._has_quota(usage)

    def try_consume(self, provider_id: str) -> bool:
        """Atomically check availability and count one request."""
        usage = self._get(provider_id)
        with usage.lock:
            now = self._clock()
            self._prune(usage, now)
            if self._unavailable_reason(usage, now) is not None or not self._has_quota(usage):
                return False
            usage.minute.append(now)
            usage.month_count += 1
            return True

    def consume(self, provider_id: str) -> None:
        """Count one request or raise RateLimitError when none is available."""
        if not self.try_consume(provider_id):
            raise RateLimitError(
                "Provider quota exhausted", details={"provider": provider_id}
            )

    def reset_window(self, provider_id: str) -> None:
        usage = self._get(provider_id)
        with usage.lock:
            usage.minute.clear()
            usage.month = month_key(self._clock())
            usage.month_count = 0

    def record_success(self, provider_id: str) -> None:
        usage = self._get(provider_id)
        with usage.lock:
            usage.consecutive_failures = 0

    def record_failure(self, provider_id: str) -> bool:
        """Count a failure; returns True when this failure started a cooldown."""
        usage = self._get(provider_id)
        with usage.lock:
            usage.consecutive_failures += 1
            if usage.consecutive_failures < self.failure_threshold:
                return False
            usage.consecutive_failures = 0
            usage.cooldown_until = self._clock() + self.cooldown
            until = usage.cooldown_until
        logger.warning(
            "Provider entering cooldown",
            data={"provider": provider_id, "until": until.isoformat()},
        )
        return True

    def disable(self, provider_id: str, reason: str = "auth_error") -> None:
        """Disable a provider until the next reload()."""
        usage = self._get(provider_id)
        with usage.lock:
            usage.disabled_reason = reason
        logger.warning("Provider disabled", data={"provider": provider_id, "reason": reason})

    def reload(self, configs: Iterable[ProviderConfig] | None = None) -> None:
        """Re-apply configuration and clear disable flags; usage counters survive."""
        if configs is None:
            configs = [usage.config for usage in self._usage.values()]
        self._apply_configs(configs)
        logger.info("Rate limit tracker reloaded", data={"providers": list(self._usage)})

    def status(self, provider_id: str) -> ProviderStatus:
        usage = self._get(provider_id)
        with usage.lock:
            now = self._clock()
            self._prune(usage, now)
            reason = self._unavailable_reason(usage, now)
            if reason == "disabled":
                state = ProviderState.DISABLED
            elif reason == "cooldown":
                state = ProviderState.COOLDOWN
            else:
                state = self._quota_state(usage)
            cooldown_until = usage.cooldown_until
            if cooldown_until is not None and cooldown_until <= now:
                cooldown_until = None
            return ProviderStatus(
                provider_id=provider_id,
                state=state,
                minute_used=len(usage.minute),
                minute_limit=usage.config.requests_per_minute,
                month_used=usage.month_count,
                month_limit=usage.config.requests_per_month,
                consecutive_failures=usage.consecutive_failures,
                cooldown_until=cooldown_until,
                disabled_reason=usage.disabled_reason
                or (None if usage.config.enabled else "not_configured"),
            )

    def snapshot(self) -> list[dict[str, Any]]:
        return [self.status(provider_id).to_dict() for provider_id in list(self._usage)]
