"""Relist pricing from BitSkins sale statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from skinsync.adapters.http_resilience import ResilientClient
from skinsync.config.steam import CS2_APP_ID
from skinsync.domain.model import EventKind, Market

from .client import BitSkinsAPIError, checked_json
from .schema import SaleStat, SaleStatsResponse
from .translator import weekly_sale_price

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from decimal import Decimal

    from skinsync.config.bitskins import BitSkinsConfig
    from skinsync.config.http_resilience import ResilienceConfig
    from skinsync.domain.model import ItemRecord, ObservedEvent
    from skinsync.domain.ports import Pricer

log = getLogger(__name__)

STATS_WINDOW = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def skin_id_of(history: Sequence[ObservedEvent]) -> int | None:
    for event in reversed(history):
        if event.kind is EventKind.LISTED and event.market is Market.BITSKINS:
            value = event.text("skin_id")
            if value is not None:
                return int(value)
    return None


@dataclass(slots=True)
class BitSkinsSalePricer:
    """Prices a relist at last week's average BitSkins sale, net of commission.

    Items BitSkins has no skin id for yet fall through to ``fallback``.
    """

    config: BitSkinsConfig
    fallback: Pricer | None = None
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    clock: Callable[[], datetime] = field(default=_utcnow)
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def price_for(
        self, record: ItemRecord, history: Sequence[ObservedEvent]
    ) -> tuple[Market, Decimal] | None:
        skin_id = skin_id_of(history)
        if skin_id is not None:
            try:
                stats = await self.fetch_sale_stats(skin_id)
            except BitSkinsAPIError as exc:
                log.warning("No BitSkins sale stats for %s: %s", record.key, exc)
            else:
                today = self.clock().date()
                price = weekly_sale_price(stats, today=today, commission=self.config.commission)
                if price is not None:
                    log.info("Priced %s at %s from BitSkins sales", record.key, price)
                    return Market.BITSKINS, price
        if self.fallback is None:
            return None
        return await self.fallback.price_for(record, history)

    async def fetch_sale_stats(self, skin_id: int) -> list[SaleStat]:
        today = self.clock().date()
        body = {
            "app_id": CS2_APP_ID,
            "skin_id": skin_id,
            "date_from": (today - STATS_WINDOW).isoformat(),
            "date_to": today.isoformat(),
        }
        response = await self.client.post(
            "/market/pricing/summary",
            json=body,
            headers={"x-apikey": self.config.pricing_key},
        )
        return SaleStatsResponse.model_validate(checked_json(response, "sale stats")).root
