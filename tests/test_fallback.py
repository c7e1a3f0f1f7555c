"""Tests for the tiered fallback router."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.core import (
    ErrorCode,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderUnavailableError,
    RateLimitError,
)
from chatrelay.core.metrics import metrics
from chatrelay.providers import ChatMessage
from chatrelay.services import FallbackOutcome, ProviderState
from chatrelay.services.fallback import DEGRADED_MODEL, DEGRADED_PROVIDER

from tests.support import FakeClock, StubProvider, build_router, provider_config

PROMPT = [ChatMessage(role="user", content="Explain photosynthesis")]


def outcomes(result) -> list[tuple[str, FallbackOutcome]]:
    return [(event.provider_id, event.outcome) for event in result.events]


@pytest.mark.asyncio
async def test_skips_disabled_and_rate_limited_within_tier() -> None:
    configs = [
        provider_config("a", 0, enabled=False),
        provider_config("b", 0, rpm=1),
        provider_config("c", 0),
    ]
    a, b, c = StubProvider("a"), StubProvider("b"), StubProvider("c")
    router = build_router(configs, [a, b, c])
    assert router.tracker.try_consume("b")

    result = await router.route(PROMPT)

    assert result.provider_id == "c"
    assert result.text == "answer from c"
    assert result.degraded is False
    assert result.attempts == 1
    assert outcomes(result) == [
        ("a", FallbackOutcome.SKIPPED_DISABLED),
        ("b", FallbackOutcome.SKIPPED_RATE_LIMITED),
        ("c", FallbackOutcome.SUCCESS),
    ]
    assert a.calls == [] and b.calls == []


@pytest.mark.asyncio
async def test_failure_moves_to_next_tier_not_next_provider() -> None:
    configs = [provider_config("a", 0), provider_config("b", 0), provider_config("c", 1)]
    a = StubProvider("a", [ProviderUnavailableError()])
    b = StubProvider("b")
    c = StubProvider("c")
    router = build_router(configs, [a, b, c])

    result = await router.route(PROMPT)

    assert result.provider_id == "c"
    assert result.tier == 1
    assert result.attempts == 2
    assert b.calls == []
    assert outcomes(result) == [
        ("a", FallbackOutcome.TRANSIENT_ERROR),
        ("c", FallbackOutcome.SUCCESS),
    ]


@pytest.mark.asyncio
async def test_all_tiers_failing_returns_degraded(metrics_before) -> None:
    configs = [provider_config("a", 0), provider_config("b", 1), provider_config("c", 2)]
    providers = [StubProvider(pid, [ProviderUnavailableError()]) for pid in ("a", "b", "c")]
    router = build_router(configs, providers)

    result = await router.route(PROMPT)

    assert result.degraded is True
    assert result.provider_id == DEGRADED_PROVIDER
    assert result.model == DEGRADED_MODEL
    assert result.text.startswith("[Degraded response]")
    assert result.tier is None
    assert result.attempts == router.tier_count == 3
    assert all(len(p.calls) == 1 for p in providers)
    after = metrics.snapshot()["counters"]
    assert after["degraded_responses_total"] == metrics_before["degraded_responses_total"] + 1
    assert after["fallback_events_total"] == metrics_before["fallback_events_total"] + 3


@pytest.mark.asyncio
async def test_all_providers_disabled_returns_degraded_without_calls(metrics_before) -> None:
    configs = [
        provider_config("a", 0, enabled=False),
        provider_config("b", 0, enabled=False),
        provider_config("c", 1, enabled=False),
    ]
    providers = [StubProvider(pid) for pid in ("a", "b", "c")]
    router = build_router(configs, providers)

    result = await router.route(PROMPT)

    assert result.degraded is True
    assert result.provider_id == DEGRADED_PROVIDER
    assert result.attempts == router.tier_count == 2
    assert outcomes(result) == [
        ("a", FallbackOutcome.SKIPPED_DISABLED),
        ("b", FallbackOutcome.SKIPPED_DISABLED),
        ("c", FallbackOutcome.SKIPPED_DISABLED),
    ]
    assert all(p.calls == [] for p in providers)
    after = metrics.snapshot()["counters"]
    assert after["degraded_responses_total"] == metrics_before["degraded_responses_total"] + 1


@pytest.mark.asyncio
async def test_providers_disabled_after_auth_errors_degrade_next_request() -> None:
    configs = [provider_config("a", 0), provider_config("b", 1)]
    providers = [StubProvider(pid, [ProviderAuthError()]) for pid in ("a", "b")]
    router = build_router(configs, providers)

    first = await router.route(PROMPT)
    second = await router.route(PROMPT)

    assert first.degraded is True
    assert outcomes(first) == [("a", FallbackOutcome.AUTH_ERROR), ("b", FallbackOutcome.AUTH_ERROR)]
    assert second.degraded is True
    assert second.attempts == router.tier_count == 2
    assert outcomes(second) == [
        ("a", FallbackOutcome.SKIPPED_DISABLED),
        ("b", FallbackOutcome.SKIPPED_DISABLED),
    ]
    assert all(len(p.calls) == 1 for p in providers)


@pytest.mark.asyncio
async def test_auth_error_disables_provider_until_reload() -> None:
    configs = [provider_config("a", 0), provider_config("b", 1)]
    a = StubProvider("a", [ProviderAuthError(), "recovered"])
    b = StubProvider("b")
    router = build_router(configs, [a, b])

    first = await router.route(PROMPT)
    assert first.provider_id == "b"
    assert outcomes(first)[0] == ("a", FallbackOutcome.AUTH_ERROR)
    status = router.tracker.status("a")
    assert status.state is ProviderState.DISABLED
    assert status.disabled_reason == "auth_error"

    second = await router.route(PROMPT)
    assert outcomes(second)[0] == ("a", FallbackOutcome.SKIPPED_DISABLED)
    assert len(a.calls) == 1

    router.tracker.reload()
    third = await router.route(PROMPT)
    assert third.provider_id == "a"
    assert third.text == "recovered"


@pytest.mark.asyncio
async def test_provider_rate_limit_response_falls_back_without_disabling() -> None:
    configs = [provider_config("a", 0), provider_config("b", 1)]
    router = build_router(configs, [StubProvider("a", [RateLimitError()]), StubProvider("b")])

    result = await router.route(PROMPT)

    assert result.provider_id == "b"
    assert outcomes(result)[0] == ("a", FallbackOutcome.RATE_LIMITED)
    assert router.tracker.status("a").state is not ProviderState.DISABLED
    assert router.tracker.status("a").consecutive_failures == 1


@pytest.mark.asyncio
async def test_invalid_and_unexpected_failures_are_categorized() -> None:
    configs = [provider_config("a", 0), provider_config("b", 1), provider_config("c", 2)]
    providers = [
        StubProvider("a", [ProviderBadResponseError()]),
        StubProvider("b", [RuntimeError("boom")]),
        StubProvider("c"),
    ]
    router = build_router(configs, providers)

    result = await router.route(PROMPT)

    assert result.provider_id == "c"
    assert outcomes(result)[:2] == [
        ("a", FallbackOutcome.INVALID_RESPONSE),
        ("b", FallbackOutcome.TRANSIENT_ERROR),
    ]
    assert result.events[1].detail == "RuntimeError"


@pytest.mark.asyncio
async def test_slow_provider_times_out_and_falls_back() -> None:
    configs = [provider_config("slow", 0), provider_config("fast", 1)]
    slow = StubProvider("slow", delay=1.0)
    router = build_router(configs, [slow, StubProvider("fast")], timeout_seconds=0.05)

    result = await router.route(PROMPT)

    assert result.provider_id == "fast"
    event = result.events[0]
    assert event.outcome is FallbackOutcome.TRANSIENT_ERROR
    assert event.detail.startswith(ErrorCode.PROVIDER_TIMEOUT.value)
    assert router.tracker.status("slow").consecutive_failures == 1


@pytest.mark.asyncio
async def test_per_call_timeout_overrides_default() -> None:
    configs = [provider_config("slow", 0)]
    router = build_router(configs, [StubProvider("slow", delay=0.5)], timeout_seconds=5.0)

    result = await router.route(PROMPT, timeout_seconds=0.05)

    assert result.degraded is True


@pytest.mark.asyncio
async def test_approaching_provider_is_tried_after_healthy_peer() -> None:
    configs = [provider_config("a", 0, rpm=5), provider_config("b", 0, rpm=5)]
    a, b = StubProvider("a"), StubProvider("b")
    router = build_router(configs, [a, b])
    for _ in range(4):
        assert router.tracker.try_consume("a")
    assert router.tracker.status("a").state is ProviderState.APPROACHING

    result = await router.route(PROMPT)

    assert result.provider_id == "b"
    assert a.calls == []


@pytest.mark.asyncio
async def test_repeated_failures_trigger_cooldown() -> None:
    clock = FakeClock()
    configs = [provider_config("a", 0), provider_config("b", 1)]
    a = StubProvider("a", [ProviderUnavailableError()])
    router = build_router(
        configs,
        [a, StubProvider("b")],
        clock=clock,
        failure_threshold=3,
        cooldown_seconds=60,
    )

    for _ in range(3):
        result = await router.route(PROMPT)
        assert result.provider_id == "b"
    assert router.tracker.status("a").state is ProviderState.COOLDOWN

    cooled = await router.route(PROMPT)
    assert outcomes(cooled)[0] == ("a", FallbackOutcome.SKIPPED_COOLDOWN)
    assert len(a.calls) == 3

    clock.advance(seconds=61)
    await router.route(PROMPT)
    assert len(a.calls) == 4


@pytest.mark.asyncio
async def test_cancellation_propagates_and_keeps_consumed_quota() -> None:
    configs = [provider_config("a", 0)]
    router = build_router(configs, [StubProvider("a", delay=10.0)])

    task = asyncio.create_task(router.route(PROMPT))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert router.tracker.status("a").minute_used == 1


@pytest.mark.asyncio
async def test_status_reports_tiers_providers_and_events() -> None:
    configs = [provider_config("a", 0, enabled=False), provider_config("b", 1)]
    router = build_router(configs, [StubProvider("a"), StubProvider("b")])
    await router.route(PROMPT)

    status = router.status(event_limit=10)

    assert status["tiers"] == [{"rank": 0, "providers": ["a"]}, {"rank": 1, "providers": ["b"]}]
    by_id = {entry["provider_id"]: entry for entry in status["providers"]}
    assert by_id["a"]["state"] == "disabled"
    assert by_id["a"]["disabled_reason"] == "not_configured"
    assert by_id["b"]["state"] == "healthy"
    assert by_id["b"]["minute_used"] == 1
    assert [e["outcome"] for e in status["recent_events"]] == ["skipped_disabled", "success"]
    assert router.recent_events(0) == []
