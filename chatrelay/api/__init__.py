"""API routers."""

from chatrelay.api.chat import router as chat_router
from chatrelay.api.conversations import router as conversations_router
from chatrelay.api.health import router as health_router
from chatrelay.api.memory import router as memory_router
from chatrelay.api.providers import router as providers_router

__all__ = [
    "chat_router",
    "conversations_router",
    "health_router",
    "memory_router",
    "providers_router",
]
