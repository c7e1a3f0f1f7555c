"""Embedding adapters (local hashing + OpenAI-compatible HTTP) and cosine similarity."""

from __future__ import annotations

import hashlib
import math
import re
import threading
from abc import ABC, abstractmethod

import httpx

from chatrelay.config import Settings
from chatrelay.core import AppError, EmbeddingError, get_logger
from chatrelay.providers.http_client import (
    create_http_client,
    parse_json,
    raise_for_status,
    request_with_retries,
    require_mapping,
)

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "did", "do", "does",
        "for", "from", "has", "have", "how", "i", "in", "is", "it", "me", "my", "of",
        "on", "or", "so", "that", "the", "this", "to", "was", "we", "what", "when",
        "where", "which", "who", "why", "will", "with", "you", "your",
    }
)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens with possessives stripped and stopwords removed."""
    tokens = []
    for raw in _TOKEN_RE.findall(text.lower()):
        token = raw[:-2] if raw.endswith("'s") else raw
        if token and token not in STOPWORDS:
            tokens.append(token)
    return tokens


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += float(x) * float(y)
        na += float(x) * float(x)
        nb += float(y) * float(y)
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return dot / (math.sqrt(na) * math.sqrt(nb))


class Embedder(ABC):
    """Turns texts into fixed-size vectors."""

    name: str = "embedder"

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        ...

    async def aclose(self) -> None:
        return None


class HashingEmbedder(Embedder):
    """
    Deterministic feature-hashing embedder.

    No network, no model download. Lexical rather than semantic, which is
    enough for recalling stored facts by their key words.
    """

    name = "hashing"

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions

    def embed_one(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in tokenize(text):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            index = value % self.dimensions
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vector[index] += sign
        norm = math.sqrt(sum(x * x for x in vector))
        if norm > 0:
            vector = [x / norm for x in vector]
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_one(text) for text in texts]


class OpenAICompatEmbedder(Embedder):
    """``POST /embeddings`` client with a small in-process vector cache."""

    name = "openai_compat"

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 0,
        cache_size: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self.max_retries = max_retries
        self.cache_size = cache_size
        self._cache: dict[str, list[float]] = {}
        self._cache_lock = threading.Lock()
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = create_http_client(
            base_url=base_url, timeout_seconds=timeout, headers=headers, transport=transport
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def _remember(self, text: str, vector: list[float]) -> None:
        with self._cache_lock:
            if len(self._cache) >= self.cache_size:
                # Drop the older half in one go.
                for key in list(self._cache)[: self.cache_size // 2 or 1]:
                    del self._cache[key]
            self._cache[text] = vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        with self._cache_lock:
            missing = [t for t in dict.fromkeys(texts) if t not in self._cache]
        if missing:
            try:
                vectors = await self._fetch(missing)
            except AppError as exc:
                raise EmbeddingError(details={"code": exc.code.value, "reason": exc.message}) from exc
            for text, vector in zip(missing, vectors):
                self._remember(text, vector)
        with self._cache_lock:
            return [list(self._cache[t]) for t in texts]

    async def _fetch(self, texts: list[str]) -> list[list[float]]:
        response = await request_with_retries(
            self.client,
            "POST",
            "/embeddings",
            json={"model": self.model, "input": texts},
            max_retries=self.max_retries,
        )
        raise_for_status(response)
        data = require_mapping(parse_json(response)).get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise EmbeddingError("Embedding response did not match input size")
        ordered = sorted(data, key=lambda item: item.get("index", 0) if isinstance(item, dict) else 0)
        vectors: list[list[float]] = []
        for item in ordered:
            vector = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(vector, list) or not vector:
                raise EmbeddingError("Embedding response missing vector")
            vectors.append([float(x) for x in vector])
        return vectors


def build_embedder(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> Embedder:
    """Choose the embedding adapter from settings."""
    if settings.embeddings_provider == "openai_compat":
        logger.info(
            "Using remote embeddings",
            data={"base_url": settings.embeddings_base_url, "model": settings.embeddings_model},
        )
        return OpenAICompatEmbedder(
            base_url=settings.embeddings_base_url,
            model=settings.embeddings_model or "text-embedding-3-small",
            api_key=settings.embeddings_api_key or None,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )
    return HashingEmbedder(dimensions=settings.embeddings_dimensions)
