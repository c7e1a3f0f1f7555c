"""Chat endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chatrelay.api.deps import get_orchestrator
from chatrelay.services.orchestrator import ChatOrchestrator

router = APIRouter(tags=["chat"])


class ChatRequestBody(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    conversation_id: str = Field(..., min_length=1, max_length=64)
    message: str = Field(..., max_length=8000)
    chat_type: str = Field("general", max_length=32)
    is_personal_query: bool = False
    is_time_sensitive: bool = False


class ChatResponse(BaseModel):
    content: str
    provider: str
    model: str
    tokens_used: int
    latency_ms: float
    cached: bool
    memory_references: list[str]
    conversation_id: str
    degraded: bool
    attempts: int
    query_type: str
    states: list[str]


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequestBody,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Answer a chat message through cache, memory and provider fallback."""
    result = await orchestrator.handle_chat_request(
        body.owner_id,
        body.conversation_id,
        body.message,
        body.chat_type,
        is_personal_query=body.is_personal_query,
        is_time_sensitive=body.is_time_sensitive,
    )
    return result.to_dict()
