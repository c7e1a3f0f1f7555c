"""OpenAI-compatible chat completions adapter (Groq, Cerebras, Mistral, OpenRouter)."""

from __future__ import annotations

import time
from typing import Any

import httpx

from chatrelay.config import ProviderKind
from chatrelay.core import ProviderBadResponseError
from chatrelay.providers.base import BaseProvider, ChatMessage, ProviderResult, SendParams
from chatrelay.providers.http_client import (
    create_http_client,
    parse_json,
    raise_for_status,
    request_with_retries,
    require_mapping,
)


class OpenAICompatProvider(BaseProvider):
    """Adapter for any endpoint exposing ``POST /chat/completions``."""

    kind = ProviderKind.OPENAI_COMPAT

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        model: str,
        timeout: float,
        max_retries: int,
        api_key: str | None = None,
        display_name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider_id = provider_id
        self.model = model
        self.display_name = display_name or provider_id
        self.max_retries = max_retries
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = create_http_client(
            base_url=base_url,
            timeout_seconds=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def send(self, messages: list[ChatMessage], params: SendParams) -> ProviderResult:
        """Send a single non-streaming chat completion."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "temperature": params.temperature,
            "stream": False,
        }
        if params.max_tokens is not None:
            payload["max_tokens"] = params.max_tokens

        started = time.perf_counter()
        response = await request_with_retries(
            self.client,
            "POST",
            "/chat/completions",
            json=payload,
            max_retries=self.max_retries,
        )
        raise_for_status(response)
        data = require_mapping(parse_json(response))
        latency_ms = (time.perf_counter() - started) * 1000

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderBadResponseError(
                "Provider returned no choices", details={"provider": self.provider_id}
            )
        first = choices[0] if isinstance(choices[0], dict) else {}
        content = (first.get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderBadResponseError(
                "Provider returned empty content", details={"provider": self.provider_id}
            )

        return ProviderResult(
            text=content,
            model=data.get("model") or self.model,
            tokens_used=_total_tokens(data.get("usage")),
            latency_ms=latency_ms,
            finish_reason=first.get("finish_reason"),
        )


def _total_tokens(usage: Any) -> int:
    if not isinstance(usage, dict):
        return 0
    total = usage.get("total_tokens")
    if isinstance(total, int):
        return total
    prompt = usage.get("prompt_tokens") or 0
    completion = usage.get("completion_tokens") or 0
    return int(prompt) + int(completion)
