"""Application configuration helpers."""

from __future__ import annotations

from .bitskins import BitSkinsConfig, get_bitskins_config
from .env import optional_env, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import (
    CacheConfig,
    ProxyPool,
    RateLimit,
    ResilienceConfig,
    RetryablePayloadError,
    RetryPolicy,
    get_proxy_pool,
)
from .logging import configure_logging
from .steam import SteamConfig, get_steam_config
from .storage import StorageConfig, get_storage_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "BitSkinsConfig",
    "CacheConfig",
    "ConfigurationError",
    "MissingConfigurationError",
    "ProxyPool",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "RetryablePayloadError",
    "SteamConfig",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "get_bitskins_config",
    "get_proxy_pool",
    "get_steam_config",
    "get_storage_config",
    "get_sync_config",
    "optional_env",
    "require_env_vars",
]
