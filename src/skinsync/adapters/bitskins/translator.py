"""Turn BitSkins listings, trades and sale statistics into domain values."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING

from skinsync.domain.model import ItemIdentity

from .schema import to_price

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import date

    from .schema import ActiveTradePayload, ListingPayload, SaleStat, TradeItem

WEEK = timedelta(days=7)
CENT = Decimal("0.01")


def listing_identity(listing: ListingPayload) -> ItemIdentity:
    return ItemIdentity(
        class_id=listing.class_id,
        instance_id=listing.instance_id,
        asset_id=listing.asset_id,
    )


def trade_identity(item: TradeItem) -> ItemIdentity:
    return ItemIdentity(class_id=item.class_id, instance_id=item.instance_id, asset_id=item.asset_id)


@dataclass(slots=True)
class MarketChanges:
    """What changed between two polls of the account's listings and trades."""

    listed: list[ListingPayload] = field(default_factory=list)
    repriced: list[ListingPayload] = field(default_factory=list)
    withdrawn: list[ListingPayload] = field(default_factory=list)
    # (trade, item, listing the sale closed, if it was known)
    sold: list[tuple[ActiveTradePayload, TradeItem, ListingPayload | None]] = field(
        default_factory=list
    )
    bound: list[tuple[ActiveTradePayload, TradeItem]] = field(default_factory=list)


def diff_market(
    listings_before: Mapping[str, ListingPayload],
    listings_now: Iterable[ListingPayload],
    trades_before: Mapping[str, ActiveTradePayload],
    trades_now: Iterable[ActiveTradePayload],
) -> MarketChanges:
    """Listings and trades are keyed by asset id and trade id respectively.

    A listing that disappears while a trade for the same asset shows up was
    sold; one that disappears without a trade was withdrawn.
    """

    changes = MarketChanges()
    current = {listing.asset_id: listing for listing in listings_now}
    traded: set[str] = set()

    for trade in trades_now:
        before = trades_before.get(trade.id)
        for item in trade.items:
            traded.add(item.asset_id)
            if before is None:
                changes.sold.append((trade, item, listings_before.get(item.asset_id)))
            elif before.tradeofferid is None and trade.tradeofferid is not None:
                changes.bound.append((trade, item))

    for asset_id, listing in current.items():
        previous = listings_before.get(asset_id)
        if previous is None or previous.id != listing.id:
            changes.listed.append(listing)
        elif previous.price != listing.price:
            changes.repriced.append(listing)

    for asset_id, listing in listings_before.items():
        if asset_id not in current and asset_id not in traded:
            changes.withdrawn.append(listing)
    return changes


def weekly_sale_price(
    stats: Iterable[SaleStat], *, today: date, commission: Decimal
) -> Decimal | None:
    """Volume-weighted minimum sale price over the last week, net of commission.

    Rounded up to the cent; ``None`` when nothing sold that week.
    """

    cutoff = today - WEEK
    total = Decimal(0)
    count = 0
    for stat in stats:
        if stat.date <= cutoff or stat.counter <= 0:
            continue
        total += to_price(stat.price_min) * stat.counter
        count += stat.counter
    if count == 0:
        return None
    average = total / count
    net = average * (1 - commission)
    return net.quantize(CENT, rounding=ROUND_CEILING)

