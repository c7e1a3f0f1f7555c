"""Memory API endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.api.deps import get_orchestrator
from chatrelay.core import NotFoundError
from chatrelay.services.memory import ContextLevel
from chatrelay.services.orchestrator import ChatOrchestrator

router = APIRouter(prefix="/memory", tags=["memory"])


class MemoryCreateRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    content: str = Field(..., min_length=1, max_length=4000)
    tags: list[str] = Field(default_factory=list)
    importance: int = Field(3, ge=1, le=5)


class MemoryRecordResponse(BaseModel):
    id: str
    owner_id: str
    content: str
    tags: list[str]
    importance: int
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemorySearchRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    context_level: ContextLevel = ContextLevel.COMPREHENSIVE


class MemorySearchHit(BaseModel):
    id: str
    content: str
    tags: list[str]
    importance: int
    created_at: str
    similarity: float
    score: float
    forced: bool


class MemorySearchResponse(BaseModel):
    results: list[MemorySearchHit]
    summaries: list[str]
    context: str


@router.post("", response_model=MemoryRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_memory(
    request: MemoryCreateRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.memory.store_memory(
        request.owner_id, request.content, tags=request.tags, importance=request.importance
    )
    return MemoryRecordResponse.model_validate(record)


@router.post("/search", response_model=MemorySearchResponse)
async def search_memory(
    request: MemorySearchRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Rank the owner's memories against a query."""
    context = await orchestrator.memory.retrieve_relevant(
        request.owner_id,
        request.query.strip(),
        limit=request.limit,
        context_level=request.context_level,
    )
    return {
        "results": [hit.to_dict() for hit in context.hits],
        "summaries": context.summaries,
        "context": context.context_text,
    }


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_memory(
    record_id: str,
    owner_id: str = Query(..., min_length=1, max_length=64),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Response:
    if not orchestrator.memory.forget(owner_id, record_id):
        raise NotFoundError("Memory record not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/purge")
async def purge_memory(
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, int]:
    """Deactivate expired records and drop expired summaries."""
    return orchestrator.memory.purge_expired()
