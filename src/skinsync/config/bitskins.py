"""BitSkins marketplace configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from .env import optional_env, require_env_vars
from .http_resilience import (
    ProxyPool,
    RateLimit,
    ResilienceConfig,
    RetryablePayloadError,
    get_proxy_pool,
)

if TYPE_CHECKING:
    import httpx

BITSKINS_BASE_URL = "https://api.bitskins.com"
BITSKINS_TIMEOUT_SECONDS = 15.0
# Seller fee applied to sale-statistics averages.
BITSKINS_SALE_COMMISSION = Decimal("0.12")


@dataclass(frozen=True)
class BitSkinsConfig:
    """``api_key`` trades on the account; ``scrape_api_key`` only reads prices."""

    api_key: str
    resilience: ResilienceConfig
    scrape_api_key: str | None = None
    commission: Decimal = BITSKINS_SALE_COMMISSION

    @property
    def pricing_key(self) -> str:
        return self.scrape_api_key or self.api_key


async def reject_html_challenge(response: httpx.Response) -> None:
    """BitSkins answers bot checks with an HTML page and status 200."""
    if response.status_code == 200 and "text/html" in response.headers.get("content-type", ""):
        raise RetryablePayloadError("BitSkins answered with an HTML challenge", response=response)


def default_bitskins_resilience(*, proxies: ProxyPool | None = None) -> ResilienceConfig:
    return ResilienceConfig(
        name="bitskins",
        base_url=BITSKINS_BASE_URL,
        timeout_seconds=BITSKINS_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
        proxies=proxies,
        response_hooks=(reject_html_challenge,),
        default_headers={"content-type": "application/json"},
    )


def get_bitskins_config(*, resilience: ResilienceConfig | None = None) -> BitSkinsConfig:
    values = require_env_vars(("BITSKINS_API_KEY",))
    return BitSkinsConfig(
        api_key=values["BITSKINS_API_KEY"],
        scrape_api_key=optional_env("BITSKINS_SCRAPE_API_KEY"),
        resilience=resilience or default_bitskins_resilience(proxies=get_proxy_pool()),
    )
