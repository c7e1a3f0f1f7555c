"""
Google Gemini provider adapter.

Talks to the ``generateContent`` REST endpoint. Gemini has no system role in
``contents``; system messages are folded into ``systemInstruction``.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from chatrelay.config import ProviderKind
from chatrelay.core import ProviderAuthError, ProviderBadResponseError
from chatrelay.providers.base import BaseProvider, ChatMessage, ProviderResult, SendParams
from chatrelay.providers.http_client import (
    _safe_error_details,
    create_http_client,
    parse_json,
    raise_for_status,
    request_with_retries,
    require_mapping,
)


class GeminiProvider(BaseProvider):
    """Gemini generateContent adapter."""

    kind = ProviderKind.GEMINI

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
            headers["x-goog-api-key"] = api_key
        self.client = create_http_client(
            base_url=base_url,
            timeout_seconds=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def _build_payload(self, messages: list[ChatMessage], params: SendParams) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != "system"
        ]
        generation: dict[str, Any] = {"temperature": params.temperature}
        if params.max_tokens is not None:
            generation["maxOutputTokens"] = params.max_tokens

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation}
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        return payload

    async def send(self, messages: list[ChatMessage], params: SendParams) -> ProviderResult:
        started = time.perf_counter()
        response = await request_with_retries(
            self.client,
            "POST",
            f"/models/{self.model}:generateContent",
            json=self._build_payload(messages, params),
            max_retries=self.max_retries,
        )
        # Gemini reports a bad key as 400 rather than 401.
        if response.status_code == 400 and "API_KEY_INVALID" in response.text:
            raise ProviderAuthError(details=_safe_error_details(response))
        raise_for_status(response)
        data = require_mapping(parse_json(response))
        latency_ms = (time.perf_counter() - started) * 1000

        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ProviderBadResponseError(
                "Provider returned no candidates", details={"provider": self.provider_id}
            )
        first = candidates[0] if isinstance(candidates[0], dict) else {}
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(
            part.get("text", "") for part in parts if isinstance(part, dict)
        )
        if not text.strip():
            raise ProviderBadResponseError(
                "Provider returned empty content", details={"provider": self.provider_id}
            )

        usage = data.get("usageMetadata") or {}
        tokens = usage.get("totalTokenCount") if isinstance(usage, dict) else None

        return ProviderResult(
            text=text,
            model=data.get("modelVersion") or self.model,
            tokens_used=int(tokens or 0),
            latency_ms=latency_ms,
            finish_reason=first.get("finishReason"),
        )
