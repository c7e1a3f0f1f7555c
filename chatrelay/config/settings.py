"""Application settings using Pydantic BaseSettings."""

from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderKind(str, Enum):
    """Wire protocol spoken by a provider adapter."""

    OPENAI_COMPAT = "openai_compat"
    GEMINI = "gemini"
    COHERE = "cohere"


# Defaults for the providers we know how to talk to. Tier follows the
# position in PROVIDERS_ENABLED unless overridden.
PROVIDER_CATALOG: dict[str, dict[str, Any]] = {
    "groq": {
        "kind": ProviderKind.OPENAI_COMPAT,
        "display_name": "Groq",
        "base_url": "https://api.groq.com/openai/v1",
        "model": "llama-3.1-8b-instant",
        "requests_per_minute": 30,
        "requests_per_month": 300000,
    },
    "gemini": {
        "kind": ProviderKind.GEMINI,
        "display_name": "Google Gemini",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-1.5-flash",
        "requests_per_minute": 15,
        "requests_per_month": 60000,
    },
    "cerebras": {
        "kind": ProviderKind.OPENAI_COMPAT,
        "display_name": "Cerebras",
        "base_url": "https://api.cerebras.ai/v1",
        "model": "llama3.1-8b",
        "requests_per_minute": 25,
        "requests_per_month": 450000,
    },
    "mistral": {
        "kind": ProviderKind.OPENAI_COMPAT,
        "display_name": "Mistral",
        "base_url": "https://api.mistral.ai/v1",
        "model": "mistral-small-latest",
        "requests_per_minute": 10,
        "requests_per_month": 15000,
    },
    "cohere": {
        "kind": ProviderKind.COHERE,
        "display_name": "Cohere",
        "base_url": "https://api.cohere.com/v2",
        "model": "command-r",
        "requests_per_minute": 20,
        "requests_per_month": 1000,
    },
    "openrouter": {
        "kind": ProviderKind.OPENAI_COMPAT,
        "display_name": "OpenRouter",
        "base_url": "https://openrouter.ai/api/v1",
        "model": "meta-llama/llama-3.1-8b-instruct:free",
        "requests_per_minute": 10,
        "requests_per_month": 150000,
    },
}


class ProviderConfig(BaseModel):
    """One configured provider slot."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ProviderKind = ProviderKind.OPENAI_COMPAT
    base_url: str
    model: str
    api_key: str | None = None
    display_name: str | None = None
    tier: int = 0
    requests_per_minute: int = Field(default=30, ge=1)
    requests_per_month: int | None = Field(default=None, ge=1)
    enabled: bool = True
    cooldown_until: datetime | None = None


class RankingWeights(BaseModel):
    """Blend weights for memory ranking."""

    model_config = ConfigDict(frozen=True)

    similarity: float = Field(default=0.6, ge=0.0)
    importance: float = Field(default=0.25, ge=0.0)
    recency: float = Field(default=0.15, ge=0.0)

    @model_validator(mode="after")
    def validate_not_all_zero(self) -> "RankingWeights":
        if self.similarity + self.importance + self.recency <= 0:
            raise ValueError("At least one ranking weight must be positive")
        return self


class CacheTTLs(BaseModel):
    """Response cache lifetime per query classification, in seconds."""

    model_config = ConfigDict(frozen=True)

    temporal: float = Field(default=300.0, gt=0)
    personal: float = Field(default=120.0, gt=0)
    general: float = Field(default=3600.0, gt=0)

    def for_kind(self, kind: str) -> float:
        return float(getattr(self, kind, self.general))


class RoutingConfig(BaseModel):
    """Read-only configuration handed to the orchestrator per call."""

    model_config = ConfigDict(frozen=True)

    providers: tuple[ProviderConfig, ...]
    provider_timeout_seconds: float = 30.0
    cooldown_seconds: float = 60.0
    failure_threshold: int = 3
    soft_limit_ratio: float = 0.8

    cache_ttls: CacheTTLs = CacheTTLs()
    cache_skip_kinds: frozenset[str] = frozenset()

    memory_retention_months: int = 6
    memory_chat_types: frozenset[str] = frozenset({"general", "study_assistant"})
    ranking_weights: RankingWeights = RankingWeights()
    min_similarity: float = 0.35
    personal_min_similarity: float = 0.1
    recency_half_life_days: float = 30.0
    summary_token_budget: int = 600

    history_limit: int = 10
    temperature: float = 0.7
    max_tokens: int = 1024
    system_prompt: str = "You are a helpful study assistant."

    @property
    def tier_ranks(self) -> list[int]:
        """Distinct tier ranks in ascending order."""
        return sorted({provider.tier for provider in self.providers})

    @property
    def tier_count(self) -> int:
        return len(self.tier_ranks)

    def provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)

    # Database
    database_url: str = Field(default="sqlite:///./data/chatrelay.db")

    # Providers
    providers_enabled: str = Field(default="groq,gemini,cerebras,mistral,cohere,openrouter")
    provider_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    provider_max_retries: int = Field(default=0, ge=0)
    provider_cooldown_seconds: float = Field(default=60.0, ge=0)
    provider_failure_threshold: int = Field(default=3, ge=1)
    provider_soft_limit_ratio: float = Field(default=0.8, gt=0, le=1)

    groq_api_key: str = Field(default="")
    gemini_api_key: str = Field(default="")
    cerebras_api_key: str = Field(default="")
    mistral_api_key: str = Field(default="")
    cohere_api_key: str = Field(default="")
    openrouter_api_key: str = Field(default="")

    # Response cache
    cache_ttl_temporal_seconds: float = Field(default=300.0, gt=0)
    cache_ttl_personal_seconds: float = Field(default=120.0, gt=0)
    cache_ttl_general_seconds: float = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_skip_kinds: str = Field(default="")

    # Memory
    memory_retention_months: int = Field(default=6, ge=1)
    memory_chat_types: str = Field(default="general,study_assistant")
    memory_weight_similarity: float = Field(default=0.6, ge=0)
    memory_weight_importance: float = Field(default=0.25, ge=0)
    memory_weight_recency: float = Field(default=0.15, ge=0)
    memory_min_similarity: float = Field(default=0.35, ge=0, le=1)
    memory_personal_min_similarity: float = Field(default=0.1, ge=0, le=1)
    memory_recency_half_life_days: float = Field(default=30.0, gt=0)
    memory_summary_token_budget: int = Field(default=600, ge=0)
    memory_store_exchanges: bool = Field(default=True)
    memory_purge_interval_seconds: float = Field(default=3600.0, ge=0)

    # Embeddings
    embeddings_provider: str = Field(default="hashing")
    embeddings_dimensions: int = Field(default=256, ge=16)
    embeddings_base_url: str = Field(default="")
    embeddings_api_key: str = Field(default="")
    embeddings_model: str = Field(default="")

    # Chat
    chat_history_limit: int = Field(default=10, ge=0)
    chat_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    chat_max_tokens: int = Field(default=1024, gt=0)
    chat_system_prompt: str = Field(
        default=(
            "You are a helpful study assistant. Use the provided memory about the "
            "user when it is relevant, and never invent personal details."
        )
    )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def providers_enabled_list(self) -> list[str]:
        """Parse enabled providers from comma-separated string."""
        return _split_csv(self.providers_enabled)

    @property
    def memory_chat_types_list(self) -> list[str]:
        return _split_csv(self.memory_chat_types)

    @property
    def cache_skip_kinds_list(self) -> list[str]:
        return _split_csv(self.cache_skip_kinds)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("embeddings_provider")
    @classmethod
    def validate_embeddings_provider(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"hashing", "openai_compat"}:
            raise ValueError("EMBEDDINGS_PROVIDER must be one of: hashing, openai_compat")
        return vv

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "Settings":
        if self.memory_personal_min_similarity > self.memory_min_similarity:
            raise ValueError(
                "MEMORY_PERSONAL_MIN_SIMILARITY must not exceed MEMORY_MIN_SIMILARITY"
            )
        if self.embeddings_provider == "openai_compat" and not self.embeddings_base_url:
            raise ValueError("EMBEDDINGS_BASE_URL is required for openai_compat embeddings")
        return self

    def provider_configs(self) -> tuple[ProviderConfig, ...]:
        """Resolve enabled provider ids into full provider configs.

        Unknown ids need a ``base_url`` and ``model`` in PROVIDER_OVERRIDES;
        otherwise they are ignored. Providers without an API key stay in the
        tier list but are marked disabled.
        """
        configs: list[ProviderConfig] = []
        for index, provider_id in enumerate(self.providers_enabled_list):
            data: dict[str, Any] = {"tier": index}
            data.update(PROVIDER_CATALOG.get(provider_id, {}))
            data.update(self.provider_overrides.get(provider_id, {}))
            data.pop("id", None)
            if "base_url" not in data or "model" not in data:
                continue
            if not data.get("api_key"):
                data["api_key"] = getattr(self, f"{provider_id}_api_key", "") or None
            if not data.get("api_key"):
                data["enabled"] = False
            configs.append(ProviderConfig(id=provider_id, **data))
        return tuple(configs)

    def routing_config(self) -> RoutingConfig:
        """Snapshot the routing-relevant settings into a frozen config object."""
        return RoutingConfig(
            providers=self.provider_configs(),
            provider_timeout_seconds=self.provider_timeout_seconds,
            cooldown_seconds=self.provider_cooldown_seconds,
            failure_threshold=self.provider_failure_threshold,
            soft_limit_ratio=self.provider_soft_limit_ratio,
            cache_ttls=CacheTTLs(
                temporal=self.cache_ttl_temporal_seconds,
                personal=self.cache_ttl_personal_seconds,
                general=self.cache_ttl_general_seconds,
            ),
            cache_skip_kinds=frozenset(self.cache_skip_kinds_list),
            memory_retention_months=self.memory_retention_months,
            memory_chat_types=frozenset(self.memory_chat_types_list),
            ranking_weights=RankingWeights(
                similarity=self.memory_weight_similarity,
                importance=self.memory_weight_importance,
                recency=self.memory_weight_recency,
            ),
            min_similarity=self.memory_min_similarity,
            personal_min_similarity=self.memory_personal_min_similarity,
            recency_half_life_days=self.memory_recency_half_life_days,
            summary_token_budget=self.memory_summary_token_budget,
            history_limit=self.chat_history_limit,
            temperature=self.chat_temperature,
            max_tokens=self.chat_max_tokens,
            system_prompt=self.chat_system_prompt,
        )


def _split_csv(value: str) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
