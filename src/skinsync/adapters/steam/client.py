"""Steam inventory provider: inventory diffs, trade offer states and confirmations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Any

from skinsync.adapters.http_resilience import ResilientClient
from skinsync.config.steam import (
    CS2_APP_ID,
    CS2_CONTEXT_ID,
    STEAM_API_URL,
    STEAM_COMMUNITY_URL,
    SteamConfig,
    get_steam_config,
)
from skinsync.domain.errors import RetryableDispatchError, SkinSyncError
from skinsync.domain.model import (
    ActionKind,
    DispatchOutcome,
    EventKind,
    LifecycleState,
    ObservedEvent,
)

from .schema import InventoryResponse, TradeOfferState, TradeOffersResponse
from .translator import (
    InventoryItem,
    diff_inventory,
    offer_event,
    offer_identities,
    parse_inventory,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    import httpx

    from skinsync.config.http_resilience import ResilienceConfig
    from skinsync.domain.model import Action, ItemIdentity, ItemRecord
    from skinsync.domain.ports import SourceAdapter

    from .schema import TradeOfferPayload

log = getLogger(__name__)

STEAM_SOURCE = "steam"
INVENTORY_PAGE_SIZE = 1000
_AUTH_FAILURE_CODES = frozenset({401, 403})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class SteamAPIError(SkinSyncError):
    """Raised when Steam rejects a request or answers with an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class SteamInventoryAdapter:
    """Source adapter for the Steam account that holds the items.

    Steam pushes nothing, so each ``events`` call polls the inventory and the
    trade offers and turns differences against the previous poll into events.
    """

    config: SteamConfig = field(default_factory=get_steam_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    clock: Callable[[], datetime] = field(default=_utcnow)
    offer_lookback: timedelta = timedelta(hours=24)
    _client: ResilientClient | None = field(default=None, init=False, repr=False)
    _inventory: dict[str, InventoryItem] = field(default_factory=dict, init=False, repr=False)
    _offer_states: dict[str, TradeOfferState] = field(default_factory=dict, init=False, repr=False)
    _sequence: int = field(default=-1, init=False, repr=False)
    _polled_at: datetime | None = field(default=None, init=False, repr=False)

    @property
    def source_id(self) -> str:
        return STEAM_SOURCE

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    def seed(self, records: Iterable[ItemRecord]) -> None:
        """Items believed to be in the inventory, so offline departures are noticed."""
        for record in records:
            identity = record.identity
            if not identity.asset_id:
                continue
            held = record.state is LifecycleState.TRADE_HOLD and not record.listing_eligible
            self._inventory[identity.asset_id] = InventoryItem(
                identity=identity,
                name="",
                tradable=not held,
                hold_until=record.hold_until if held else None,
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # events --------------------------------------------------------------

    async def events(self, since: int) -> AsyncIterator[ObservedEvent]:
        self._sequence = max(self._sequence, since)
        now = self.clock()

        # Offer outcomes first: a departure caused by an accepted trade is then
        # already explained when the inventory diff reports it.
        for offer in await self.fetch_trade_offers(now):
            if not offer.items_to_give:
                continue
            previous = self._offer_states.get(offer.tradeofferid)
            self._offer_states[offer.tradeofferid] = offer.trade_offer_state
            mapped = offer_event(offer.trade_offer_state)
            if mapped is None or previous == offer.trade_offer_state:
                continue
            kind, reason = mapped
            before = offer_event(previous) if previous is not None else None
            if before is not None and before[0] is kind:
                continue
            payload: dict[str, Any] = {"steam_trade_offer_id": offer.tradeofferid}
            if reason is not None:
                payload["reason"] = reason
            if kind is EventKind.TRADE_OFFER_CREATED and offer.expiration_time:
                payload["confirmation_deadline"] = datetime.fromtimestamp(
                    offer.expiration_time, UTC
                )
            for identity in offer_identities(offer):
                yield self._event(kind, identity, now, payload)

        current = await self.fetch_inventory()
        changes = diff_inventory(self._inventory, current, now=now, since=self._polled_at)
        self._inventory = {item.asset_id: item for item in current}
        self._polled_at = now
        if changes:
            log.info(
                "Steam inventory: %s arrived, %s departed, %s unlocked",
                len(changes.arrived),
                len(changes.departed),
                len(changes.unlocked),
            )
        for item in changes.arrived:
            payload = {"name": item.name}
            if item.on_hold(now):
                payload["hold_until"] = item.hold_until or now + timedelta(days=7)
            yield self._event(EventKind.INVENTORY_ARRIVED, item.identity, now, payload)
        for item in changes.unlocked:
            yield self._event(EventKind.HOLD_EXPIRED, item.identity, now, {"name": item.name})
        for item in changes.departed:
            yield self._event(EventKind.INVENTORY_DEPARTED, item.identity, now, {})

    def _event(
        self,
        kind: EventKind,
        identity: ItemIdentity,
        now: datetime,
        payload: dict[str, Any],
    ) -> ObservedEvent:
        self._sequence += 1
        return ObservedEvent(
            source=STEAM_SOURCE,
            identity=identity,
            kind=kind,
            observed_at=now,
            sequence=self._sequence,
            payload=payload,
        )

    # requests ------------------------------------------------------------

    def _session_headers(self, *, referer: str | None = None) -> dict[str, str]:
        headers = {"Cookie": self.config.cookie}
        if referer is not None:
            headers["Referer"] = referer
        return headers

    async def fetch_inventory(self) -> list[InventoryItem]:
        items: list[InventoryItem] = []
        start_assetid: str | None = None
        path = f"/inventory/{self.config.steam_id}/{CS2_APP_ID}/{CS2_CONTEXT_ID}"
        while True:
            params: dict[str, str | int] = {"l": "english", "count": INVENTORY_PAGE_SIZE}
            if start_assetid is not None:
                params["start_assetid"] = start_assetid
            response = await self.client.get(path, params=params, headers=self._session_headers())
            page = InventoryResponse.model_validate(_checked_json(response, "inventory"))
            if not page.success:
                raise SteamAPIError("Steam inventory request was not successful")
            items.extend(parse_inventory(page))
            if not page.more_items or not page.last_assetid:
                return items
            start_assetid = page.last_assetid

    async def fetch_trade_offers(self, now: datetime) -> list[TradeOfferPayload]:
        cutoff = now - self.offer_lookback
        params: dict[str, str | int] = {
            "key": self.config.api_key,
            "get_sent_offers": 1,
            "get_received_offers": 1,
            "active_only": 1,
            "time_historical_cutoff": int(cutoff.timestamp()),
        }
        response = await self.client.get(
            f"{STEAM_API_URL}/IEconService/GetTradeOffers/v1/", params=params
        )
        return TradeOffersResponse.model_validate(
            _checked_json(response, "trade offers")
        ).response.offers()

    # actions -------------------------------------------------------------

    async def execute(self, action: Action) -> DispatchOutcome:
        offer = action.offer
        if offer is None or offer.steam_trade_offer_id is None:
            log.error("Steam cannot execute %s without a steam trade offer", action.kind)
            return DispatchOutcome.PERMANENT_FAILURE
        offer_id = offer.steam_trade_offer_id

        if action.kind is ActionKind.CONFIRM_TRADE:
            referer = f"{STEAM_COMMUNITY_URL}/tradeoffer/{offer_id}/"
            response = await self.client.post(
                f"/tradeoffer/{offer_id}/accept",
                data={
                    "sessionid": self.config.session_id or "",
                    "serverid": "1",
                    "tradeofferid": offer_id,
                    "captcha": "",
                },
                headers=self._session_headers(referer=referer),
            )
        elif action.kind is ActionKind.CANCEL_TRADE:
            response = await self.client.post(
                f"{STEAM_API_URL}/IEconService/CancelTradeOffer/v1/",
                data={"key": self.config.api_key, "tradeofferid": offer_id},
            )
        else:
            log.error("Steam does not handle %s", action.kind)
            return DispatchOutcome.PERMANENT_FAILURE

        if response.status_code in _AUTH_FAILURE_CODES:
            log.error("Steam rejected the session for offer %s; refresh STEAM_COOKIE", offer_id)
            raise RetryableDispatchError(action, f"steam answered {response.status_code}")
        if response.is_error:
            log.warning(
                "Steam refused %s for offer %s: %s", action.kind, offer_id, response.status_code
            )
            return DispatchOutcome.PERMANENT_FAILURE
        log.info("Steam %s done for offer %s", action.kind, offer_id)
        return DispatchOutcome.SUCCEEDED


def _checked_json(response: httpx.Response, what: str) -> object:
    if response.status_code in _AUTH_FAILURE_CODES:
        log.error("Steam rejected the session while fetching %s; refresh STEAM_COOKIE", what)
        raise SteamAPIError(f"Steam refused {what}", status_code=response.status_code)
    if response.is_error:
        raise SteamAPIError(
            f"Steam answered {response.status_code} for {what}", status_code=response.status_code
        )
    return response.json()


if TYPE_CHECKING:
    _adapter_check: SourceAdapter = SteamInventoryAdapter()
