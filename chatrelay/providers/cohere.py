"""Cohere v2 chat adapter."""

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


class CohereProvider(BaseProvider):
    kind = ProviderKind.COHERE

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
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
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
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": params.temperature,
            "stream": False,
        }
        if params.max_tokens is not None:
            payload["max_tokens"] = params.max_tokens

        started = time.perf_counter()
        response = await request_with_retries(
            self.client, "POST", "/chat", json=payload, max_retries=self.max_retries
        )
        raise_for_status(response)
        data = require_mapping(parse_json(response))
        latency_ms = (time.perf_counter() - started) * 1000

        message = data.get("message") or {}
        blocks = message.get("content") if isinstance(message, dict) else None
        if not isinstance(blocks, list):
            raise ProviderBadResponseError(
                "Provider returned no message content", details={"provider": self.provider_id}
            )
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        if not text.strip():
            raise ProviderBadResponseError(
                "Provider returned empty content", details={"provider": self.provider_id}
            )

        return ProviderResult(
            text=text,
            model=self.model,
            tokens_used=_usage_tokens(data.get("usage")),
            latency_ms=latency_ms,
            finish_reason=data.get("finish_reason"),
        )


def _usage_tokens(usage: Any) -> int:
    if not isinstance(usage, dict):
        return 0
    tokens = usage.get("tokens") or usage.get("billed_units") or {}
    if not isinstance(tokens, dict):
        return 0
    return int(tokens.get("input_tokens") or 0) + int(tokens.get("output_tokens") or 0)
