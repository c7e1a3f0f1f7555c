"""Conversation history endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from chatrelay.api.deps import get_db
from chatrelay.core import NotFoundError
from chatrelay.db.repositories import (
    get_conversation_messages,
    get_owner_conversation,
    list_owner_conversations,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])


class ConversationResponse(BaseModel):
    id: str
    title: str
    chat_type: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    provider: str | None
    model: str | None
    total_tokens: int | None
    latency_ms: int | None
    meta: dict[str, Any] | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    owner_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
):
    """List the owner's conversations, most recently updated first."""
    return [ConversationResponse.model_validate(c) for c in list_owner_conversations(db, owner_id)]


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: str,
    owner_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
):
    if not get_owner_conversation(db, owner_id, conversation_id):
        raise NotFoundError("Conversation not found")
    return [MessageResponse.model_validate(m) for m in get_conversation_messages(db, conversation_id)]
