"""Repository helpers for conversations and messages."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatrelay.db.models import Conversation, Message


def get_owner_conversation(
    db: Session, owner_id: str, conversation_id: str
) -> Conversation | None:
    """Fetch conversation owned by owner_id."""
    stmt = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.owner_id == owner_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def get_or_create_conversation(
    db: Session,
    owner_id: str,
    conversation_id: str,
    chat_type: str = "general",
    title: str | None = None,
) -> Conversation:
    """Return the owner's conversation, creating it with the caller's id if missing."""
    conversation = get_owner_conversation(db, owner_id, conversation_id)
    if conversation:
        return conversation
    conversation = Conversation(
        id=conversation_id,
        owner_id=owner_id,
        chat_type=chat_type,
        title=title.strip()[:255] if title and title.strip() else "New Chat",
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def list_owner_conversations(db: Session, owner_id: str) -> list[Conversation]:
    stmt = (
        select(Conversation)
        .where(Conversation.owner_id == owner_id)
        .order_by(Conversation.updated_at.desc())
    )
    return list(db.execute(stmt).scalars().all())


def create_message(
    db: Session,
    conversation_id: str,
    role: str,
    content: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    total_tokens: int | None = None,
    latency_ms: int | None = None,
    meta: dict[str, Any] | None = None,
) -> Message:
    """Insert a chat message."""
    message = Message(
        conversation_id=conversation_id,
        role=role,
        content=content,
        provider=provider,
        model=model,
        total_tokens=total_tokens,
        latency_ms=latency_ms,
        meta=meta,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def get_conversation_messages(db: Session, conversation_id: str) -> list[Message]:
    """Get all messages for a conversation ordered by creation time."""
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def get_recent_messages(db: Session, conversation_id: str, limit: int) -> list[Message]:
    """The last ``limit`` messages, oldest first."""
    if limit <= 0:
        return []
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    return list(reversed(db.execute(stmt).scalars().all()))
