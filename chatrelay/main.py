"""
chatrelay application.

FastAPI application with structured logging, error handling and the chat
orchestrator wired in during lifespan startup.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatrelay import __version__
from chatrelay.api import (
    chat_router,
    conversations_router,
    health_router,
    memory_router,
    providers_router,
)
from chatrelay.config import Settings, get_settings
from chatrelay.core import AppError, ConfigurationError, get_logger, setup_logging
from chatrelay.core.middleware import RequestContextMiddleware, setup_exception_handlers
from chatrelay.core.time import utcnow
from chatrelay.db import build_engine, build_session_factory, create_tables
from chatrelay.services.memory import MemoryService
from chatrelay.services.orchestrator import build_orchestrator

logger = get_logger(__name__)


async def purge_memory_periodically(memory: MemoryService, interval_seconds: float) -> None:
    """Purge expired memory now and then every ``interval_seconds`` until cancelled."""
    while True:
        try:
            memory.purge_expired()
        except AppError as exc:
            logger.warning("Memory purge failed", data={"details": exc.details})
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings

    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting chatrelay",
        data={
            "environment": settings.environment,
            "providers": settings.providers_enabled_list,
            "embeddings": settings.embeddings_provider,
        },
    )
    app.state.start_time = utcnow()

    # Tests may hand in a ready orchestrator and engine.
    engine_created = False
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings)
        engine_created = True
    create_tables(app.state.engine)
    if getattr(app.state, "session_factory", None) is None:
        app.state.session_factory = build_session_factory(app.state.engine)

    orchestrator_created = False
    if getattr(app.state, "orchestrator", None) is None:
        try:
            app.state.orchestrator = build_orchestrator(settings, app.state.session_factory)
            orchestrator_created = True
        except ConfigurationError as exc:
            # Keep serving /health; chat endpoints answer with a generic 503.
            logger.error(
                f"Configuration error: {exc.message}",
                data={"code": exc.code.value, "details": exc.details},
            )
            app.state.orchestrator = None
            app.state.startup_error = exc.message

    purge_task: asyncio.Task | None = None
    if app.state.orchestrator is not None and settings.memory_purge_interval_seconds > 0:
        purge_task = asyncio.create_task(
            purge_memory_periodically(
                app.state.orchestrator.memory, settings.memory_purge_interval_seconds
            ),
            name="memory-purge",
        )

    yield

    logger.info("Shutting down chatrelay")
    if purge_task is not None:
        purge_task.cancel()
        await asyncio.gather(purge_task, return_exceptions=True)
    orchestrator = app.state.orchestrator
    if orchestrator is not None:
        if orchestrator_created:
            await orchestrator.aclose()
        else:
            await orchestrator.drain(timeout=10.0)
    if engine_created:
        app.state.engine.dispose()


def create_app(settings: Settings | None = None, **state) -> FastAPI:
    """Create and configure the FastAPI application.

    Extra keyword arguments (``orchestrator``, ``engine``, ``session_factory``) are placed on
    ``app.state`` before startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="chatrelay",
        description="Multi-provider chat routing with fallback, caching and long-term memory",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.orchestrator = None
    app.state.engine = None
    app.state.session_factory = None
    app.state.startup_error = None
    for key, value in state.items():
        setattr(app.state, key, value)

    setup_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(memory_router)
    app.include_router(providers_router)

    return app


# Create application instance (uvicorn chatrelay.main:app)
app = create_app()
