"""Configuration module."""

from chatrelay.config.settings import (
    PROVIDER_CATALOG,
    CacheTTLs,
    ProviderConfig,
    ProviderKind,
    RankingWeights,
    RoutingConfig,
    Settings,
    get_settings,
)

__all__ = [
    "PROVIDER_CATALOG",
    "CacheTTLs",
    "ProviderConfig",
    "ProviderKind",
    "RankingWeights",
    "RoutingConfig",
    "Settings",
    "get_settings",
]
