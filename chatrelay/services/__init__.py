"""Business logic services."""

from chatrelay.services.cache import ResponseCache, build_cache_key
from chatrelay.services.classifier import Classification, QueryKind, classify_query
from chatrelay.services.embeddings import (
    Embedder,
    HashingEmbedder,
    OpenAICompatEmbedder,
    build_embedder,
    cosine_similarity,
)
from chatrelay.services.fallback import (
    FallbackEvent,
    FallbackOutcome,
    FallbackRouter,
    RouteResult,
)
from chatrelay.services.memory import (
    ContextLevel,
    MemoryContext,
    MemoryHit,
    MemoryService,
    extract_personal_facts,
)
from chatrelay.services.orchestrator import (
    ChatOrchestrator,
    ChatResult,
    RequestState,
    build_orchestrator,
)
from chatrelay.services.rate_limits import ProviderState, ProviderStatus, RateLimitTracker

__all__ = [
    "ChatOrchestrator",
    "ChatResult",
    "Classification",
    "ContextLevel",
    "Embedder",
    "FallbackEvent",
    "FallbackOutcome",
    "FallbackRouter",
    "HashingEmbedder",
    "MemoryContext",
    "MemoryHit",
    "MemoryService",
    "OpenAICompatEmbedder",
    "ProviderState",
    "ProviderStatus",
    "QueryKind",
    "RateLimitTracker",
    "RequestState",
    "ResponseCache",
    "RouteResult",
    "build_cache_key",
    "build_embedder",
    "build_orchestrator",
    "classify_query",
    "cosine_similarity",
    "extract_personal_facts",
]
