"""
Base provider interface.

Defines the contract that all AI providers must implement, plus the
categorized failure kinds the fallback router works with.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from chatrelay.config import ProviderKind
from chatrelay.core import (
    ProviderAuthError,
    ProviderBadResponseError,
    RateLimitError,
)


@dataclass
class ChatMessage:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass(frozen=True)
class SendParams:
    """Generation parameters shared by every provider."""

    temperature: float = 0.7
    max_tokens: int | None = None


@dataclass
class ProviderResult:
    """Successful provider response."""

    text: str
    model: str
    tokens_used: int = 0
    latency_ms: float = 0.0
    finish_reason: str | None = None


class FailureKind(str, Enum):
    """Categorized provider failure outcomes."""

    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    TRANSIENT_ERROR = "transient_error"
    INVALID_RESPONSE = "invalid_response"


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an adapter exception onto a failure category.

    Anything not explicitly recognised is treated as transient so the
    router moves on to the next tier.
    """
    if isinstance(exc, RateLimitError):
        return FailureKind.RATE_LIMITED
    if isinstance(exc, ProviderAuthError):
        return FailureKind.AUTH_ERROR
    if isinstance(exc, ProviderBadResponseError):
        return FailureKind.INVALID_RESPONSE
    return FailureKind.TRANSIENT_ERROR


class BaseProvider(ABC):
    """
    Abstract base class for AI providers.

    All providers must implement this interface so the router can treat
    Groq, Gemini, Cohere and any OpenAI-compatible endpoint the same way.
    """

    provider_id: str
    kind: ProviderKind
    model: str
    display_name: str

    async def aclose(self) -> None:
        """Close any underlying resources (optional)."""
        return None

    @abstractmethod
    async def send(self, messages: list[ChatMessage], params: SendParams) -> ProviderResult:
        """
        Send a chat request and wait for the complete response.

        Args:
            messages: Prompt as an ordered list of chat messages
            params: Temperature and token limits

        Returns:
            ProviderResult with text, token usage and latency

        Raises:
            RateLimitError: The provider rejected the call for quota reasons
            ProviderAuthError: Credentials were rejected
            ProviderBadResponseError: The response could not be parsed
            ProviderUnavailableError: Network failure or 5xx
            ProviderTimeoutError: The provider did not answer in time
        """
        ...
