"""BitSkins marketplace adapter: listings, sales and listing management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

from skinsync.adapters.http_resilience import ResilientClient
from skinsync.config.bitskins import BitSkinsConfig, get_bitskins_config
from skinsync.config.steam import CS2_APP_ID
from skinsync.domain.errors import ItemNotFoundError, RetryableDispatchError, SkinSyncError
from skinsync.domain.model import (
    ActionKind,
    DispatchOutcome,
    EventKind,
    Market,
    ObservedEvent,
)

from .schema import (
    ActionResult,
    ActiveTradePayload,
    ActiveTradesResponse,
    ListingPayload,
    ListingsResponse,
    from_price,
)
from .translator import diff_market, listing_identity, trade_identity

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import httpx

    from skinsync.config.http_resilience import ResilienceConfig
    from skinsync.domain.model import Action, ItemIdentity
    from skinsync.domain.ports import LedgerReader

log = getLogger(__name__)

BITSKINS_SOURCE = Market.BITSKINS.value
LISTINGS_PAGE_SIZE = 500
ACTIVE_TRADES_LIMIT = 100
_AUTH_FAILURE_CODES = frozenset({401, 403})
_REJECTED_CODES = frozenset({400, 404, 409, 422})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class BitSkinsAPIError(SkinSyncError):
    """Raised when BitSkins rejects a read or answers with an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def checked_json(response: httpx.Response, what: str) -> object:
    if response.status_code in _AUTH_FAILURE_CODES:
        log.error("BitSkins refused the API key while fetching %s", what)
        raise BitSkinsAPIError(f"BitSkins refused {what}", status_code=response.status_code)
    if response.is_error:
        raise BitSkinsAPIError(
            f"BitSkins answered {response.status_code} for {what}",
            status_code=response.status_code,
        )
    return response.json()


@dataclass(slots=True)
class BitSkinsMarketAdapter:
    """Source adapter for the seller account on BitSkins.

    BitSkins has no event feed, so every poll compares the account's listings
    and active trades with the previous poll.
    """

    ledger: LedgerReader
    config: BitSkinsConfig = field(default_factory=get_bitskins_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    clock: Callable[[], datetime] = field(default=_utcnow)
    _client: ResilientClient | None = field(default=None, init=False, repr=False)
    _listings: dict[str, ListingPayload] = field(default_factory=dict, init=False, repr=False)
    _trades: dict[str, ActiveTradePayload] = field(default_factory=dict, init=False, repr=False)
    _sequence: int = field(default=-1, init=False, repr=False)

    @property
    def source_id(self) -> str:
        return BITSKINS_SOURCE

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # events --------------------------------------------------------------

    async def events(self, since: int) -> AsyncIterator[ObservedEvent]:
        self._sequence = max(self._sequence, since)
        now = self.clock()
        listings = await self.fetch_listings()
        trades = await self.fetch_active_trades()
        changes = diff_market(self._listings, listings, self._trades, trades)
        self._listings = {listing.asset_id: listing for listing in listings}
        self._trades = {trade.id: trade for trade in trades}

        for trade, item, listing in changes.sold:
            identity = trade_identity(item)
            sale: dict[str, Any] = {"trade_id": trade.id}
            if listing is not None:
                sale["listing_id"] = listing.id
                sale["price"] = listing.price_usd
            log.info("BitSkins sold asset %s (trade %s)", item.asset_id, trade.id)
            yield self._event(EventKind.SOLD, identity, now, sale)
            offer: dict[str, Any] = {"offer_id": trade.id}
            if trade.tradeofferid is not None:
                offer["steam_trade_offer_id"] = trade.tradeofferid
            yield self._event(EventKind.TRADE_OFFER_CREATED, identity, now, offer)

        for trade, item in changes.bound:
            yield self._event(
                EventKind.TRADE_OFFER_CREATED,
                trade_identity(item),
                now,
                {"offer_id": trade.id, "steam_trade_offer_id": trade.tradeofferid},
            )

        for listing in [*changes.listed, *changes.repriced]:
            payload: dict[str, Any] = {
                "listing_id": listing.id,
                "price": listing.price_usd,
                "name": listing.name,
            }
            if listing.skin_id is not None:
                payload["skin_id"] = listing.skin_id
            yield self._event(EventKind.LISTED, listing_identity(listing), now, payload)

        for listing in changes.withdrawn:
            yield self._event(
                EventKind.WITHDRAWN, listing_identity(listing), now, {"listing_id": listing.id}
            )

    def _event(
        self,
        kind: EventKind,
        identity: ItemIdentity,
        now: datetime,
        payload: dict[str, Any],
    ) -> ObservedEvent:
        self._sequence += 1
        return ObservedEvent(
            source=BITSKINS_SOURCE,
            identity=identity,
            kind=kind,
            observed_at=now,
            sequence=self._sequence,
            market=Market.BITSKINS,
            payload=payload,
        )

    # requests ------------------------------------------------------------

    @property
    def _auth(self) -> dict[str, str]:
        return {"x-apikey": self.config.api_key}

    async def fetch_listings(self) -> list[ListingPayload]:
        listings: list[ListingPayload] = []
        offset = 0
        while True:
            body = {
                "offset": offset,
                "limit": LISTINGS_PAGE_SIZE,
                "order": [{"field": "bumped_at", "order": "DESC"}],
            }
            response = await self.client.post(
                f"/market/search/mine/{CS2_APP_ID}", json=body, headers=self._auth
            )
            page = ListingsResponse.model_validate(checked_json(response, "listings"))
            listings.extend(page.listings)
            if len(page.listings) < LISTINGS_PAGE_SIZE:
                return listings
            offset += LISTINGS_PAGE_SIZE

    async def fetch_active_trades(self) -> list[ActiveTradePayload]:
        response = await self.client.post(
            "/steam/trade/active", json={"limit": ACTIVE_TRADES_LIMIT}, headers=self._auth
        )
        return ActiveTradesResponse.model_validate(checked_json(response, "active trades")).trades

    # actions -------------------------------------------------------------

    def _listing_id(self, item_key: str, asset_id: str | None) -> str | None:
        if asset_id is not None and asset_id in self._listings:
            return self._listings[asset_id].id
        for event in reversed(self.ledger.history_of(item_key, current_cycle=True)):
            if event.market is Market.BITSKINS and event.kind is EventKind.LISTED:
                return event.text("listing_id")
        return None

    async def execute(self, action: Action) -> DispatchOutcome:
        try:
            record = self.ledger.snapshot(action.item_key)
        except ItemNotFoundError:
            log.error("BitSkins got %s for unknown item %s", action.kind, action.item_key)
            return DispatchOutcome.PERMANENT_FAILURE
        asset_id = record.identity.asset_id
        listing_id = self._listing_id(action.item_key, asset_id)

        if action.kind is ActionKind.WITHDRAW_LISTING:
            if listing_id is None:
                log.debug("Nothing listed on BitSkins for %s", action.item_key)
                return DispatchOutcome.SUCCEEDED
            response = await self.client.post(
                "/market/delist/single",
                json={"app_id": CS2_APP_ID, "id": listing_id},
                headers=self._auth,
            )
        elif action.kind is ActionKind.RELIST_AT:
            if action.price is None:
                log.error("Relist of %s on BitSkins without a price", action.item_key)
                return DispatchOutcome.PERMANENT_FAILURE
            price = from_price(action.price)
            if listing_id is not None:
                response = await self.client.post(
                    "/market/relist/single",
                    json={"app_id": CS2_APP_ID, "id": listing_id, "price": price},
                    headers=self._auth,
                )
            elif asset_id is not None:
                response = await self.client.post(
                    "/steam/deposit/many",
                    json={"items": [{"app_id": CS2_APP_ID, "asset_id": asset_id, "price": price}]},
                    headers=self._auth,
                )
            else:
                log.error("Cannot list %s on BitSkins without an asset id", action.item_key)
                return DispatchOutcome.PERMANENT_FAILURE
        else:
            log.error("BitSkins does not handle %s", action.kind)
            return DispatchOutcome.PERMANENT_FAILURE

        return self._outcome(action, response)

    def _outcome(self, action: Action, response: httpx.Response) -> DispatchOutcome:
        if response.status_code in _AUTH_FAILURE_CODES:
            raise RetryableDispatchError(action, f"bitskins answered {response.status_code}")
        if response.status_code in _REJECTED_CODES:
            log.warning(
                "BitSkins rejected %s for %s: %s %s",
                action.kind,
                action.item_key,
                response.status_code,
                response.text,
            )
            return DispatchOutcome.PERMANENT_FAILURE
        if response.is_error:
            raise RetryableDispatchError(action, f"bitskins answered {response.status_code}")

        payload = response.json()
        results = payload if isinstance(payload, list) else [payload]
        if all(ActionResult.model_validate(result).success for result in results):
            log.info("BitSkins %s done for %s", action.kind, action.item_key)
            return DispatchOutcome.SUCCEEDED
        log.warning("BitSkins refused %s for %s: %s", action.kind, action.item_key, payload)
        return DispatchOutcome.PERMANENT_FAILURE
