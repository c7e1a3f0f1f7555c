"""Provider adapters and the tiered provider pool."""

from chatrelay.providers.base import (
    BaseProvider,
    ChatMessage,
    FailureKind,
    ProviderResult,
    SendParams,
    classify_failure,
)
from chatrelay.providers.cohere import CohereProvider
from chatrelay.providers.gemini import GeminiProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider
from chatrelay.providers.pool import ADAPTERS, ProviderPool

__all__ = [
    "ADAPTERS",
    "BaseProvider",
    "ChatMessage",
    "CohereProvider",
    "FailureKind",
    "GeminiProvider",
    "OpenAICompatProvider",
    "ProviderPool",
    "ProviderResult",
    "SendParams",
    "classify_failure",
]
