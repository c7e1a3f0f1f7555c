"""Database models, engine, and session management."""

from chatrelay.db.base import Base, TimestampMixin
from chatrelay.db.engine import build_engine, create_tables, verify_database_connection
from chatrelay.db.models import Conversation, MemoryRecord, MemorySummary, Message
from chatrelay.db.session import build_session_factory

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Engine
    "build_engine",
    "create_tables",
    "verify_database_connection",
    # Session
    "build_session_factory",
    # Models
    "Conversation",
    "MemoryRecord",
    "MemorySummary",
    "Message",
]
