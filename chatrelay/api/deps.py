"""Shared FastAPI dependencies."""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from chatrelay.core import ConfigurationError
from chatrelay.services.orchestrator import ChatOrchestrator


def get_orchestrator(request: Request) -> ChatOrchestrator:
    """Resolve the orchestrator built during application startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ConfigurationError(
            "Chat orchestrator is not initialized",
            details={"reason": getattr(request.app.state, "startup_error", None)},
        )
    return orchestrator


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Provide a database session bound to the application's engine.

    Yields a session and ensures it's closed after the request.
    """
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise ConfigurationError("Database is not initialized")
    session = factory()
    try:
        yield session
    finally:
        session.close()
