"""Core utilities: errors, logging, metrics, middleware."""

from chatrelay.core.errors import (
    AppError,
    ConfigurationError,
    EmbeddingError,
    ErrorCode,
    ErrorResponse,
    MemoryRetrievalError,
    MemoryStoreError,
    NotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ValidationError,
)
from chatrelay.core.logging import (
    get_logger,
    owner_id_ctx,
    request_id_ctx,
    setup_logging,
)
from chatrelay.core.metrics import metrics

__all__ = [
    # Errors
    "AppError",
    "ConfigurationError",
    "EmbeddingError",
    "ErrorCode",
    "ErrorResponse",
    "MemoryRetrievalError",
    "MemoryStoreError",
    "NotFoundError",
    "ProviderAuthError",
    "ProviderBadResponseError",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "RateLimitError",
    "ValidationError",
    # Logging
    "get_logger",
    "owner_id_ctx",
    "request_id_ctx",
    "setup_logging",
    # Metrics
    "metrics",
]
