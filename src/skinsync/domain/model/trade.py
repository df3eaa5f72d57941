"""Trade offer references bound to an item while a sale is being settled."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from .enums import Market


@dataclass(frozen=True, slots=True, kw_only=True)
class TradeOfferRef:
    market: Market
    external_offer_id: str
    created_at: datetime
    confirmation_deadline: datetime
    steam_trade_offer_id: str | None = None

    @property
    def is_bound(self) -> bool:
        """Whether the Steam-side trade offer is known and can be confirmed."""
        return self.steam_trade_offer_id is not None

    def bind(self, steam_trade_offer_id: str) -> TradeOfferRef:
        return replace(self, steam_trade_offer_id=steam_trade_offer_id)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.confirmation_deadline

    def matches(self, offer_id: str | None) -> bool:
        """Match either the marketplace or the Steam offer id; ``None`` matches any."""
        if offer_id is None:
            return True
        return offer_id in {self.external_offer_id, self.steam_trade_offer_id}
