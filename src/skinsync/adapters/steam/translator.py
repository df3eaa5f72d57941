"""Translate Steam inventory snapshots and trade offers into observed facts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from skinsync.domain.model import EventKind, ItemIdentity

from .schema import InventoryResponse, TradeOfferPayload, TradeOfferState

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

log = getLogger(__name__)

# Account items that can never be traded or listed.
IGNORED_NAMES = (
    "Loyalty Badge",
    "5 Year Veteran Coin",
    "Music Kit",
    "Graffiti |",
    "Global Offensive Badge",
)

EXPIRED_REASON = "expired"

_OFFER_EVENTS: dict[TradeOfferState, tuple[EventKind, str | None]] = {
    TradeOfferState.ACTIVE: (EventKind.TRADE_OFFER_CREATED, None),
    TradeOfferState.CREATED_NEEDS_CONFIRMATION: (EventKind.TRADE_OFFER_CREATED, None),
    TradeOfferState.ACCEPTED: (EventKind.TRADE_ACCEPTED, None),
    TradeOfferState.DECLINED: (EventKind.TRADE_DECLINED, None),
    TradeOfferState.COUNTERED: (EventKind.TRADE_DECLINED, "countered"),
    TradeOfferState.CANCELED: (EventKind.TRADE_CANCELLED, None),
    TradeOfferState.CANCELED_BY_SECOND_FACTOR: (EventKind.TRADE_CANCELLED, "second factor"),
    TradeOfferState.INVALID_ITEMS: (EventKind.TRADE_CANCELLED, "invalid items"),
    TradeOfferState.INVALID: (EventKind.TRADE_CANCELLED, "invalid"),
    TradeOfferState.EXPIRED: (EventKind.TRADE_CANCELLED, EXPIRED_REASON),
}


@dataclass(frozen=True, slots=True)
class InventoryItem:
    identity: ItemIdentity
    name: str
    tradable: bool
    hold_until: datetime | None = None

    @property
    def asset_id(self) -> str:
        return self.identity.asset_id or ""

    def on_hold(self, now: datetime) -> bool:
        if self.hold_until is not None:
            return self.hold_until > now
        return not self.tradable


@dataclass(slots=True)
class InventoryChanges:
    arrived: list[InventoryItem] = field(default_factory=list)
    departed: list[InventoryItem] = field(default_factory=list)
    unlocked: list[InventoryItem] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.arrived or self.departed or self.unlocked)


def is_ignored(name: str) -> bool:
    return any(marker in name for marker in IGNORED_NAMES)


def parse_inventory(page: InventoryResponse) -> list[InventoryItem]:
    """Join assets with their descriptions; unknown descriptions are skipped."""

    descriptions = {(desc.classid, desc.instanceid): desc for desc in page.descriptions}
    patterns = {props.assetid: props.pattern for props in page.asset_properties}
    items: list[InventoryItem] = []
    for asset in page.assets:
        description = descriptions.get((asset.classid, asset.instanceid))
        if description is None:
            log.warning("Steam asset %s has no description, skipped", asset.assetid)
            continue
        if is_ignored(description.name):
            continue
        hold_until = description.cache_expiration
        if hold_until is not None and hold_until.tzinfo is None:
            hold_until = hold_until.replace(tzinfo=UTC)
        items.append(
            InventoryItem(
                identity=ItemIdentity(
                    class_id=asset.classid,
                    instance_id=asset.instanceid,
                    pattern=patterns.get(asset.assetid),
                    asset_id=asset.assetid,
                ),
                name=description.name,
                tradable=bool(description.tradable),
                hold_until=hold_until,
            )
        )
    return items


def diff_inventory(
    previous: Mapping[str, InventoryItem],
    current: Iterable[InventoryItem],
    *,
    now: datetime,
    since: datetime | None = None,
) -> InventoryChanges:
    """Compare two inventory snapshots keyed by asset id.

    ``since`` is when ``previous`` was taken; a hold that ran out in between
    still counts as unlocked.
    """

    changes = InventoryChanges()
    seen: set[str] = set()
    for item in current:
        seen.add(item.asset_id)
        before = previous.get(item.asset_id)
        if before is None:
            changes.arrived.append(item)
        elif (before.on_hold(since or now) or not before.tradable) and not item.on_hold(now):
            changes.unlocked.append(item)
    changes.departed.extend(item for asset_id, item in previous.items() if asset_id not in seen)
    return changes


def offer_event(state: TradeOfferState) -> tuple[EventKind, str | None] | None:
    """Event kind and reason for an offer state; ``None`` for states to wait on."""
    return _OFFER_EVENTS.get(state)


def offer_identities(offer: TradeOfferPayload) -> list[ItemIdentity]:
    return [
        ItemIdentity(class_id=asset.classid, instance_id=asset.instanceid, asset_id=asset.assetid)
        for asset in offer.items_to_give
    ]
