"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    RATE_LIMITED = "E1005"
    CONFIGURATION_ERROR = "E1006"

    # Provider errors (4xxx)
    PROVIDER_UNAVAILABLE = "E4000"
    PROVIDER_ERROR = "E4001"
    PROVIDER_TIMEOUT = "E4002"
    PROVIDER_BAD_RESPONSE = "E4004"
    PROVIDER_AUTH_FAILED = "E4005"
    PROVIDERS_EXHAUSTED = "E4006"

    # Memory errors (6xxx)
    MEMORY_RETRIEVAL_FAILED = "E6000"
    MEMORY_STORE_FAILED = "E6001"
    EMBEDDING_FAILED = "E6002"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


# Convenience error classes
class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400, details)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(ErrorCode.NOT_FOUND, message, 404)


class ConfigurationError(AppError):
    """Operator-facing configuration problem (503).

    The message is meant for logs; HTTP handlers replace it with a generic one.
    """

    def __init__(
        self, message: str = "Invalid configuration", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, 503, details)


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str = "Rate limit exceeded", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, details)


class ProviderError(AppError):
    """Provider error (502)."""

    def __init__(
        self, message: str = "Provider error", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_ERROR, message, 502, details)


class ProviderUnavailableError(AppError):
    """Provider unavailable (503)."""

    def __init__(
        self, message: str = "Provider unavailable", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_UNAVAILABLE, message, 503, details)


class ProviderTimeoutError(AppError):
    """Provider did not answer within the configured timeout (504)."""

    def __init__(
        self, message: str = "Provider timed out", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_TIMEOUT, message, 504, details)


class ProviderBadResponseError(AppError):
    """Provider returned malformed response (502)."""

    def __init__(
        self, message: str = "Provider returned invalid response", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_BAD_RESPONSE, message, 502, details)


class ProviderAuthError(AppError):
    """Provider authentication failed (401/403)."""

    def __init__(
        self,
        message: str = "Provider authentication failed",
        status_code: int = 401,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.PROVIDER_AUTH_FAILED, message, status_code, details)


class MemoryRetrievalError(AppError):
    """Memory lookup failed; callers continue without memory context."""

    def __init__(
        self, message: str = "Memory retrieval failed", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.MEMORY_RETRIEVAL_FAILED, message, 500, details)


class MemoryStoreError(AppError):
    """Persisting a memory record failed."""

    def __init__(
        self, message: str = "Memory store failed", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.MEMORY_STORE_FAILED, message, 500, details)


class EmbeddingError(AppError):
    """Embedding adapter failed to produce vectors."""

    def __init__(
        self, message: str = "Embedding generation failed", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.EMBEDDING_FAILED, message, 502, details)
