"""Steam (inventory provider) configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import require_env_vars
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig

STEAM_COMMUNITY_URL = "https://steamcommunity.com"
STEAM_API_URL = "https://api.steampowered.com"
STEAM_TIMEOUT_SECONDS = 30.0
INVENTORY_CACHE_SECONDS = 10.0
CS2_APP_ID = 730
CS2_CONTEXT_ID = 2


@dataclass(frozen=True)
class SteamConfig:
    """Holds Steam account credentials.

    ``cookie`` is the web session cookie string; the ``sessionid`` value inside
    it signs trade offer confirmations.
    """

    steam_id: str
    api_key: str
    cookie: str
    resilience: ResilienceConfig

    @property
    def session_id(self) -> str | None:
        for part in self.cookie.split(";"):
            name, _, value = part.strip().partition("=")
            if name == "sessionid" and value:
                return value
        return None


def is_complete_inventory(payload: object) -> bool:
    """Only successful inventory pages are worth caching."""
    return isinstance(payload, dict) and payload.get("success") == 1 and "assets" in payload


def default_steam_resilience() -> ResilienceConfig:
    # Steam is reached directly; proxies are for marketplace rate limits.
    return ResilienceConfig(
        name="steam",
        base_url=STEAM_COMMUNITY_URL,
        timeout_seconds=STEAM_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=1, per_seconds=3.0),
        cache=CacheConfig(
            backend="memory",
            default_ttl_seconds=INVENTORY_CACHE_SECONDS,
            should_cache=is_complete_inventory,
        ),
    )


def get_steam_config(*, resilience: ResilienceConfig | None = None) -> SteamConfig:
    values = require_env_vars(("STEAM_ID", "STEAM_API_KEY", "STEAM_COOKIE"))
    return SteamConfig(
        steam_id=values["STEAM_ID"],
        api_key=values["STEAM_API_KEY"],
        cookie=values["STEAM_COOKIE"],
        resilience=resilience or default_steam_resilience(),
    )
