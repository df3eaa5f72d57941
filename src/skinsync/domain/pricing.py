"""History-based pricer: put an item back where and at what it last listed."""

from __future__ import annotations

from typing import TYPE_CHECKING

from skinsync.domain.model import EventKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal

    from skinsync.domain.model import ItemRecord, Market, ObservedEvent


class HistoryPricer:
    """Reuses the last listing of the current lifecycle.

    Only events of the current lifecycle are considered: an item that comes
    back after a sale starts without a price until a fresh quote exists.
    """

    def __init__(self, default_market: Market | None = None) -> None:
        self.default_market = default_market

    async def price_for(
        self, record: ItemRecord, history: Sequence[ObservedEvent]
    ) -> tuple[Market, Decimal] | None:
        for event in reversed(history):
            if event.kind is not EventKind.LISTED or event.market is None:
                continue
            price = event.price()
            if price is not None:
                return event.market, price
        if record.listing_price is not None and self.default_market is not None:
            return self.default_market, record.listing_price
        return None
