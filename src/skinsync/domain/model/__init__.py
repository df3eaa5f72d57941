"""Public domain model surface."""

from __future__ import annotations

from skinsync.domain.model.actions import (
    Action,
    ActionKey,
    cancel_trade,
    confirm_trade,
    relist_at,
    withdraw_listing,
)
from skinsync.domain.model.enums import (
    PRECEDENCE,
    ActionKind,
    ApplyOutcome,
    ConflictKind,
    DispatchOutcome,
    EventKind,
    LifecycleState,
    Market,
    TradeStatus,
)
from skinsync.domain.model.events import DISPATCHER_SOURCE, TRADE_TIMER_SOURCE, ObservedEvent
from skinsync.domain.model.identity import DescriptorKey, ItemIdentity
from skinsync.domain.model.record import (
    ConflictRecord,
    DispatchFailureRecord,
    ItemRecord,
    new_record,
)
from skinsync.domain.model.trade import TradeOfferRef

__all__ = [  # noqa: RUF022
    # enums
    "PRECEDENCE",
    "ActionKind",
    "ApplyOutcome",
    "ConflictKind",
    "DispatchOutcome",
    "EventKind",
    "LifecycleState",
    "Market",
    "TradeStatus",
    # values
    "Action",
    "ActionKey",
    "ConflictRecord",
    "DescriptorKey",
    "DispatchFailureRecord",
    "ItemIdentity",
    "ItemRecord",
    "ObservedEvent",
    "TradeOfferRef",
    # sources
    "DISPATCHER_SOURCE",
    "TRADE_TIMER_SOURCE",
    # factories
    "cancel_trade",
    "confirm_trade",
    "new_record",
    "relist_at",
    "withdraw_listing",
]
