"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class Market(StrEnum):
    STEAM = "steam"
    BITSKINS = "bitskins"
    DMARKET = "dmarket"
    MARKETCSGO = "marketcsgo"
    CSFLOAT = "csfloat"
    CSMONEY = "csmoney"
    WAXPEER = "waxpeer"
    LISSKINS = "lisskins"
    BUFF = "buff"

    @property
    def is_marketplace(self) -> bool:
        return self is not Market.STEAM


class EventKind(StrEnum):
    LISTED = "listed"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"
    TRADE_OFFER_CREATED = "trade_offer_created"
    TRADE_ACCEPTED = "trade_accepted"
    TRADE_DECLINED = "trade_declined"
    TRADE_CANCELLED = "trade_cancelled"
    HOLD_EXPIRED = "hold_expired"
    INVENTORY_ARRIVED = "inventory_arrived"
    INVENTORY_DEPARTED = "inventory_departed"

    # Written by the dispatcher, never by a provider.
    DISPATCH_FAILED = "dispatch_failed"


class LifecycleState(StrEnum):
    """Canonical per-item state, see ``PRECEDENCE`` for the commitment order."""

    UNKNOWN = "unknown"
    IN_INVENTORY = "in_inventory"
    WITHDRAWN = "withdrawn"
    LISTED = "listed"
    OFFER_PENDING = "offer_pending"
    TRADE_HOLD = "trade_hold"
    PENDING_TRADE_CONFIRMATION = "pending_trade_confirmation"
    SOLD = "sold"
    LOST = "lost"

    @property
    def precedence(self) -> int:
        return PRECEDENCE[self]

    @property
    def is_terminal(self) -> bool:
        return self in {LifecycleState.SOLD, LifecycleState.LOST}

    @property
    def is_claimed(self) -> bool:
        """Whether some marketplace holds an irrevocable claim on the item."""
        return self in {
            LifecycleState.OFFER_PENDING,
            LifecycleState.PENDING_TRADE_CONFIRMATION,
            LifecycleState.SOLD,
        }


PRECEDENCE: dict[LifecycleState, int] = {
    LifecycleState.UNKNOWN: 0,
    LifecycleState.IN_INVENTORY: 1,
    LifecycleState.WITHDRAWN: 1,
    LifecycleState.LISTED: 2,
    LifecycleState.OFFER_PENDING: 3,
    LifecycleState.TRADE_HOLD: 4,
    LifecycleState.PENDING_TRADE_CONFIRMATION: 5,
    LifecycleState.SOLD: 6,
    LifecycleState.LOST: 6,
}


class ActionKind(StrEnum):
    WITHDRAW_LISTING = "withdraw_listing"
    CONFIRM_TRADE = "confirm_trade"
    CANCEL_TRADE = "cancel_trade"
    RELIST_AT = "relist_at"


class ConflictKind(StrEnum):
    SECOND_LISTING = "second_listing"
    SALE_AFTER_WITHDRAWAL = "sale_after_withdrawal"
    COMPETING_SALE = "competing_sale"
    COMPETING_OFFER = "competing_offer"


class TradeStatus(StrEnum):
    CREATED = "created"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self not in {TradeStatus.CREATED, TradeStatus.AWAITING_CONFIRMATION}


class ApplyOutcome(StrEnum):
    """How the ledger treated one event."""

    APPLIED = "applied"
    CONFLICT = "conflict"
    STALE = "stale"
    DUPLICATE = "duplicate"


class DispatchOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"
    SUPERSEDED = "superseded"
    DUPLICATE = "duplicate"

    @property
    def is_settled(self) -> bool:
        """Whether the action needs no further attempt."""
        return self is not DispatchOutcome.RETRYABLE_FAILURE
