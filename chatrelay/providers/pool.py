"""Provider pool: configured adapters grouped by tier."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

import httpx

from chatrelay.config import ProviderConfig, ProviderKind, Settings
from chatrelay.core import ConfigurationError, NotFoundError, get_logger
from chatrelay.providers.base import BaseProvider
from chatrelay.providers.cohere import CohereProvider
from chatrelay.providers.gemini import GeminiProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider

logger = get_logger(__name__)

ADAPTERS: dict[ProviderKind, type[BaseProvider]] = {
    ProviderKind.OPENAI_COMPAT: OpenAICompatProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.COHERE: CohereProvider,
}


class ProviderPool:
    """
    Hold one adapter per enabled provider and expose them grouped by tier.

    The pool has no routing logic; ordering within a tier is configuration
    order and the fallback router decides what to call.
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        adapters: Mapping[str, BaseProvider],
    ):
        self._configs: dict[str, ProviderConfig] = {}
        for config in configs:
            if config.id in self._configs:
                raise ConfigurationError(
                    "Duplicate provider id in configuration", details={"provider": config.id}
                )
            self._configs[config.id] = config
        if not self._configs:
            raise ConfigurationError("No providers configured")
        self.providers: dict[str, BaseProvider] = dict(adapters)

        logger.info(
            "Provider pool initialized",
            data={
                "configured": list(self._configs),
                "active": list(self.providers),
                "tiers": [rank for rank, _ in self.tiers()],
            },
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport_overrides: dict[str, httpx.AsyncBaseTransport] | None = None,
        configs: Iterable[ProviderConfig] | None = None,
    ) -> "ProviderPool":
        """Build adapters for every enabled provider config."""
        overrides = transport_overrides or {}
        resolved = tuple(configs) if configs is not None else settings.provider_configs()
        adapters: dict[str, BaseProvider] = {}
        for config in resolved:
            if not config.enabled:
                logger.warning(
                    "Provider disabled in configuration; skipping adapter",
                    data={"provider": config.id},
                )
                continue
            adapter_cls = ADAPTERS.get(config.kind)
            if adapter_cls is None:
                logger.warning("Unknown provider kind", data={"provider": config.id})
                continue
            adapters[config.id] = adapter_cls(
                provider_id=config.id,
                base_url=config.base_url,
                model=config.model,
                api_key=config.api_key,
                display_name=config.display_name,
                timeout=settings.provider_timeout_seconds,
                max_retries=settings.provider_max_retries,
                transport=overrides.get(config.id),
            )
        return cls(resolved, adapters)

    @classmethod
    def from_adapters(
        cls,
        configs: Iterable[ProviderConfig],
        adapters: Iterable[BaseProvider],
    ) -> "ProviderPool":
        return cls(configs, {adapter.provider_id: adapter for adapter in adapters})

    def tiers(self) -> list[tuple[int, list[str]]]:
        """Configured provider ids per tier, ascending by rank."""
        grouped: dict[int, list[str]] = {}
        for config in self._configs.values():
            grouped.setdefault(config.tier, []).append(config.id)
        return sorted(grouped.items())

    def config(self, provider_id: str) -> ProviderConfig:
        config = self._configs.get(provider_id)
        if config is None:
            raise NotFoundError(f"Provider '{provider_id}' not found")
        return config

    def configs(self) -> list[ProviderConfig]:
        return list(self._configs.values())

    def has_adapter(self, provider_id: str) -> bool:
        return provider_id in self.providers

    def get(self, provider_id: str) -> BaseProvider:
        """Resolve a provider by ID or raise NotFoundError."""
        provider = self.providers.get(provider_id)
        if not provider:
            raise NotFoundError(f"Provider '{provider_id}' not found")
        return provider

    async def aclose(self) -> None:
        """Close all provider clients."""
        for provider_id, provider in self.providers.items():
            try:
                await provider.aclose()
            except Exception:  # pragma: no cover
                logger.warning("Error closing provider client", data={"provider": provider_id})
