"""Provider status and reload endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from chatrelay.api.deps import get_orchestrator
from chatrelay.core import metrics
from chatrelay.services.orchestrator import ChatOrchestrator

router = APIRouter(tags=["providers"])


@router.get("/providers/status")
async def providers_status(
    events: int = 50,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Per-provider quota state, tier layout and recent fallback events."""
    status = orchestrator.router.status(event_limit=max(0, min(events, 200)))
    status["cache"] = orchestrator.cache.stats()
    status["metrics"] = metrics.snapshot()
    return status


@router.post("/providers/reload")
async def reload_providers(
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Clear auth disables; usage counters and cooldowns are kept."""
    orchestrator.router.tracker.reload()
    return {"providers": orchestrator.router.tracker.snapshot()}
