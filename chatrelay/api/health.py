"""
Health check endpoint.

Used by load balancers and monitoring systems.
"""

from typing import Any

from fastapi import APIRouter, Request

from chatrelay import __version__
from chatrelay.core.time import utcnow
from chatrelay.db import verify_database_connection

router = APIRouter(tags=["health"])


@router.get("/health")
async def healthcheck(request: Request) -> dict[str, Any]:
    """Liveness plus a shallow view of the database and provider pool."""
    engine = getattr(request.app.state, "engine", None)
    orchestrator = getattr(request.app.state, "orchestrator", None)
    database_ok = verify_database_connection(engine)
    return {
        "status": "ok" if database_ok and orchestrator is not None else "degraded",
        "version": __version__,
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": database_ok,
            "providers": orchestrator.router.tier_count if orchestrator else 0,
            "background_tasks": orchestrator.pending_tasks if orchestrator else 0,
        },
    }
