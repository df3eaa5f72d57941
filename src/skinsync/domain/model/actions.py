"""Commands emitted by reconciliation and consumed by the dispatcher."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .enums import ActionKind, Market
from .trade import TradeOfferRef

type ActionKey = tuple[str, ActionKind, str, int]


@dataclass(frozen=True, slots=True, kw_only=True)
class Action:
    """One required side effect.

    ``version`` is the record version the action was emitted at; together with
    the item key, kind and target it forms the de-duplication key.
    """

    kind: ActionKind
    item_key: str
    version: int
    market: Market | None = None
    offer: TradeOfferRef | None = None
    price: Decimal | None = None
    reason: str = ""

    @property
    def target(self) -> str:
        """Id of the source adapter that must execute the action."""
        if self.kind in {ActionKind.CONFIRM_TRADE, ActionKind.CANCEL_TRADE}:
            return Market.STEAM.value
        return self.market.value if self.market is not None else "pricing"

    @property
    def key(self) -> ActionKey:
        return (self.item_key, self.kind, self.target, self.version)

    @property
    def is_deferred(self) -> bool:
        """A relist whose market or price is still to be chosen by pricing."""
        return self.kind is ActionKind.RELIST_AT and (self.market is None or self.price is None)


def withdraw_listing(item_key: str, version: int, market: Market, *, reason: str) -> Action:
    return Action(
        kind=ActionKind.WITHDRAW_LISTING,
        item_key=item_key,
        version=version,
        market=market,
        reason=reason,
    )


def confirm_trade(item_key: str, version: int, offer: TradeOfferRef) -> Action:
    return Action(
        kind=ActionKind.CONFIRM_TRADE,
        item_key=item_key,
        version=version,
        market=offer.market,
        offer=offer,
        reason="trade offer bound",
    )


def cancel_trade(item_key: str, version: int, offer: TradeOfferRef, *, reason: str) -> Action:
    return Action(
        kind=ActionKind.CANCEL_TRADE,
        item_key=item_key,
        version=version,
        market=offer.market,
        offer=offer,
        reason=reason,
    )


def relist_at(
    item_key: str,
    version: int,
    *,
    market: Market | None = None,
    price: Decimal | None = None,
    reason: str,
) -> Action:
    return Action(
        kind=ActionKind.RELIST_AT,
        item_key=item_key,
        version=version,
        market=market,
        price=price,
        reason=reason,
    )
