"""The item lifecycle state machine.

``transition`` is a pure function of ``(record, event, context)``: no clock, no
I/O. That keeps the ledger replayable (the same log always rebuilds the same
records) and lets every rule be tested without adapters.

Precedence (see ``LifecycleState.precedence``) decides staleness for events that
would move a record backwards. Only two events may lower it: a declined or
cancelled trade (explicit revert to ``in_inventory``) and an inventory arrival
after a terminal state, which starts a new lifecycle.

Cross-market safety is reactive. There is no lock spanning marketplaces, so the
first confirmed claim (a sale, an accepted trade or a trade offer) wins and every
other marketplace not yet pulled receives a ``WithdrawListing``. ``pulled`` on the
record remembers which marketplaces were already ordered to withdraw in the
current lifecycle so each one is told exactly once.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from skinsync.domain.model import (
    ActionKind,
    ApplyOutcome,
    ConflictKind,
    ConflictRecord,
    DispatchFailureRecord,
    EventKind,
    LifecycleState,
    TradeOfferRef,
    cancel_trade,
    confirm_trade,
    relist_at,
    withdraw_listing,
)

from .contracts import Transition

if TYPE_CHECKING:
    from skinsync.domain.model import Action, ItemRecord, Market, ObservedEvent

    from .contracts import TransitionContext

type Handler = Callable[[ItemRecord, ObservedEvent, TransitionContext], Transition]

EXPIRED_REASON = "expired"


def transition(record: ItemRecord, event: ObservedEvent, context: TransitionContext) -> Transition:
    """Feed ``event`` to ``record``; watermark and version are already advanced."""

    handler = _HANDLERS[event.kind]
    return handler(record, event, context)


# Helpers ---------------------------------------------------------------------


def _stale(record: ItemRecord, reason: str) -> Transition:
    return Transition(record=record, outcome=ApplyOutcome.STALE, reason=reason)


def _applied(
    record: ItemRecord,
    actions: list[Action] | None = None,
    *,
    conflict: ConflictRecord | None = None,
) -> Transition:
    return Transition(
        record=record,
        outcome=ApplyOutcome.CONFLICT if conflict is not None else ApplyOutcome.APPLIED,
        actions=tuple(actions or ()),
        conflict=conflict,
    )


def _flag(
    record: ItemRecord,
    event: ObservedEvent,
    kind: ConflictKind,
    detail: str,
) -> tuple[ItemRecord, ConflictRecord]:
    conflict = ConflictRecord(
        kind=kind,
        market=event.market,
        source=event.source,
        sequence=event.sequence,
        cycle=record.cycle,
        observed_at=event.observed_at,
        detail=detail,
    )
    return record.evolve(conflicts=(*record.conflicts, conflict)), conflict


def _withdraw_everywhere(
    record: ItemRecord,
    context: TransitionContext,
    *,
    keep: Market | None,
    reason: str,
) -> tuple[ItemRecord, list[Action]]:
    """Order every marketplace except ``keep`` to drop its listing, once per lifecycle."""

    candidates = set(context.marketplaces)
    if record.market is not None:
        candidates.add(record.market)
    targets = sorted(candidates - {keep} - record.pulled)
    actions = [withdraw_listing(record.key, record.version, market, reason=reason) for market in targets]
    if not targets:
        return record, actions
    return record.evolve(pulled=record.pulled | frozenset(targets)), actions


def _new_offer(
    event: ObservedEvent, offer_id: str, market: Market, context: TransitionContext
) -> TradeOfferRef:
    deadline = event.timestamp("confirmation_deadline")
    return TradeOfferRef(
        market=market,
        external_offer_id=offer_id,
        steam_trade_offer_id=event.text("steam_trade_offer_id"),
        created_at=event.observed_at,
        confirmation_deadline=deadline or event.observed_at + context.confirmation_window,
    )


# Inventory -------------------------------------------------------------------


def _on_inventory_arrived(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del context
    identity = record.identity.merged(event.identity)
    hold_until = event.timestamp("hold_until")
    on_hold = hold_until is not None and hold_until > event.observed_at
    state = record.state

    if state.is_terminal:
        record = record.evolve(
            cycle=record.cycle + 1,
            market=None,
            trade_offer=None,
            listing_price=None,
            pulled=frozenset(),
        )
    elif state is LifecycleState.IN_INVENTORY:
        if not on_hold and identity.asset_id == record.identity.asset_id:
            return _stale(record, "item already in inventory")
    elif state not in {LifecycleState.UNKNOWN, LifecycleState.WITHDRAWN}:
        return _stale(record, f"item already tracked as {state}")

    if on_hold:
        record = record.evolve(
            identity=identity,
            state=LifecycleState.TRADE_HOLD,
            market=event.market,
            hold_until=hold_until,
            listing_eligible=False,
        )
    else:
        record = record.evolve(
            identity=identity,
            state=LifecycleState.IN_INVENTORY,
            market=None,
            hold_until=None,
            listing_eligible=True,
        )
    return _applied(record)


def _on_inventory_departed(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del event, context
    state = record.state
    if state in {LifecycleState.UNKNOWN, LifecycleState.SOLD, LifecycleState.LOST}:
        return _stale(record, f"departure of an item in {state}")
    if state.is_claimed or record.trade_offer is not None:
        return _stale(record, "departure expected by the trade in flight")

    actions: list[Action] = []
    pulled = record.pulled
    if state is LifecycleState.LISTED and record.market is not None:
        if record.market not in pulled:
            actions.append(
                withdraw_listing(record.key, record.version, record.market, reason="item lost")
            )
            pulled = pulled | {record.market}
    record = record.evolve(state=LifecycleState.LOST, market=None, pulled=pulled)
    return _applied(record, actions)


def _on_hold_expired(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del event, context
    if record.state is not LifecycleState.TRADE_HOLD:
        return _stale(record, f"no trade hold in {record.state}")
    if record.listing_eligible:
        return _stale(record, "trade hold already lifted")
    record = record.evolve(listing_eligible=True)
    return _applied(
        record,
        [relist_at(record.key, record.version, reason="trade hold expired")],
    )


# Listings --------------------------------------------------------------------


def _on_listed(record: ItemRecord, event: ObservedEvent, context: TransitionContext) -> Transition:
    del context
    market = event.market
    if market is None:
        return _stale(record, "listing without marketplace")
    state = record.state
    price = event.price()

    if state in {
        LifecycleState.UNKNOWN,
        LifecycleState.IN_INVENTORY,
        LifecycleState.WITHDRAWN,
        LifecycleState.TRADE_HOLD,
    }:
        record = record.evolve(
            state=LifecycleState.LISTED,
            market=market,
            listing_price=price if price is not None else record.listing_price,
            pulled=record.pulled - {market},
        )
        return _applied(record)

    if market == record.market:
        if state is LifecycleState.LISTED and price is not None and price != record.listing_price:
            return _applied(record.evolve(listing_price=price))
        return _stale(record, "listing already known")

    if market in record.pulled:
        return _stale(record, f"listing on {market} already ordered withdrawn")

    holder = record.market.value if record.market else state.value
    record, conflict = _flag(
        record,
        event,
        ConflictKind.SECOND_LISTING,
        f"listed on {market} while held by {holder}",
    )
    record = record.evolve(pulled=record.pulled | {market})
    action = withdraw_listing(record.key, record.version, market, reason="second listing")
    return _applied(record, [action], conflict=conflict)


def _on_withdrawn(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del context
    market = event.market
    if market is None:
        return _stale(record, "withdrawal without marketplace")
    if record.state is LifecycleState.LISTED and market == record.market:
        record = record.evolve(
            state=LifecycleState.WITHDRAWN,
            market=None,
            pulled=record.pulled | {market},
        )
        return _applied(record)
    if market == record.market:
        return _stale(record, "listing closed by the claim")
    if market in record.pulled:
        return _stale(record, "withdrawal already known")
    return _applied(record.evolve(pulled=record.pulled | {market}))


def _on_sold(record: ItemRecord, event: ObservedEvent, context: TransitionContext) -> Transition:
    market = event.market
    if market is None:
        return _stale(record, "sale without marketplace")
    state = record.state

    if state is LifecycleState.OFFER_PENDING and market == record.market:
        record = record.evolve(
            state=LifecycleState.PENDING_TRADE_CONFIRMATION,
            listing_price=event.price() or record.listing_price,
        )
        record, actions = _withdraw_everywhere(record, context, keep=market, reason="sold")
        return _applied(record, actions)

    if state.is_claimed or state is LifecycleState.LOST:
        if market == record.market:
            return _stale(record, "sale already recorded")
        holder = record.market.value if record.market else state.value
        record, conflict = _flag(
            record,
            event,
            ConflictKind.COMPETING_SALE,
            f"sold on {market} after {holder} claimed the item",
        )
        record, actions = _withdraw_everywhere(
            record, context, keep=record.market, reason="competing sale"
        )
        return _applied(record, actions, conflict=conflict)

    conflict: ConflictRecord | None = None
    if market in record.pulled:
        record, conflict = _flag(
            record,
            event,
            ConflictKind.SALE_AFTER_WITHDRAWAL,
            f"sold on {market} after its listing was withdrawn",
        )
    record = record.evolve(
        state=LifecycleState.PENDING_TRADE_CONFIRMATION,
        market=market,
        listing_price=event.price() or record.listing_price,
    )
    record, actions = _withdraw_everywhere(record, context, keep=market, reason="sold")
    return _applied(record, actions, conflict=conflict)


# Trades ----------------------------------------------------------------------


def _on_trade_offer_created(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    offer_id = event.text("offer_id")
    steam_id = event.text("steam_trade_offer_id")
    existing = record.trade_offer
    if offer_id is None:
        if steam_id is None:
            return _stale(record, "trade offer without offer id")
        if existing is not None:
            return _bind_steam_offer(record, existing, steam_id)
        # A Steam offer nobody announced yet stands for itself.
        offer_id = steam_id

    market = event.market or record.market
    if market is None:
        return _stale(record, "trade offer without marketplace")
    state = record.state
    offer = _new_offer(event, offer_id, market, context)

    if state is LifecycleState.LOST or (state is LifecycleState.SOLD and market == record.market):
        return _stale(record, f"no trade possible in {state}")

    if existing is not None and existing.market == market:
        if existing.external_offer_id == offer.external_offer_id:
            if offer.is_bound and not existing.is_bound and offer.steam_trade_offer_id:
                bound = existing.bind(offer.steam_trade_offer_id)
                record = record.evolve(trade_offer=bound)
                return _applied(record, [confirm_trade(record.key, record.version, bound)])
            return _stale(record, "trade offer already known")
        # The marketplace re-issued the offer; the previous one must not complete.
        actions: list[Action] = []
        if existing.is_bound:
            actions.append(
                cancel_trade(record.key, record.version, existing, reason="offer replaced")
            )
        record = record.evolve(trade_offer=offer)
        if offer.is_bound:
            actions.append(confirm_trade(record.key, record.version, offer))
        return _applied(record, actions)

    claimed_elsewhere = record.market is not None and record.market != market
    if claimed_elsewhere and (existing is not None or state.is_claimed):
        holder = record.market.value if record.market else state.value
        record, conflict = _flag(
            record,
            event,
            ConflictKind.COMPETING_OFFER,
            f"trade offer from {market} while {holder} holds the claim",
        )
        cancel: list[Action] = []
        if offer.is_bound:
            cancel.append(
                cancel_trade(record.key, record.version, offer, reason="competing offer")
            )
        return _applied(record, cancel, conflict=conflict)

    conflict: ConflictRecord | None = None
    if market in record.pulled:
        record, conflict = _flag(
            record,
            event,
            ConflictKind.SALE_AFTER_WITHDRAWAL,
            f"trade offer from {market} after its listing was withdrawn",
        )
    next_state = (
        LifecycleState.PENDING_TRADE_CONFIRMATION
        if state is LifecycleState.PENDING_TRADE_CONFIRMATION
        else LifecycleState.OFFER_PENDING
    )
    record = record.evolve(state=next_state, market=market, trade_offer=offer)
    record, actions = _withdraw_everywhere(record, context, keep=market, reason="trade offer")
    if offer.is_bound:
        actions.append(confirm_trade(record.key, record.version, offer))
    return _applied(record, actions, conflict=conflict)


def _bind_steam_offer(record: ItemRecord, existing: TradeOfferRef, steam_id: str) -> Transition:
    if existing.steam_trade_offer_id == steam_id:
        return _stale(record, "steam trade offer already bound")
    if existing.is_bound:
        return _stale(record, f"offer already bound to steam offer {existing.steam_trade_offer_id}")
    bound = existing.bind(steam_id)
    record = record.evolve(trade_offer=bound)
    return _applied(record, [confirm_trade(record.key, record.version, bound)])


def _same_offer(existing: TradeOfferRef, event: ObservedEvent) -> bool:
    offer_id = event.text("offer_id")
    if offer_id is not None:
        return existing.matches(offer_id)
    steam_id = event.text("steam_trade_offer_id")
    # Steam reports only its own id; an unbound offer is the only candidate.
    return steam_id is None or existing.steam_trade_offer_id in {None, steam_id}


def _on_trade_accepted(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    offer_id = event.text("offer_id") or event.text("steam_trade_offer_id")
    existing = record.trade_offer
    market = event.market or (existing.market if existing else None) or record.market
    state = record.state

    if market is None:
        return _stale(record, "accepted trade without marketplace")
    if state is LifecycleState.LOST:
        return _stale(record, "accepted trade for a lost item")
    if state is LifecycleState.SOLD:
        if market == record.market:
            return _stale(record, "trade already accepted")
        record, conflict = _flag(
            record,
            event,
            ConflictKind.COMPETING_SALE,
            f"trade for {market} accepted after the item was sold on {record.market}",
        )
        return _applied(record, conflict=conflict)

    if existing is not None and not _same_offer(existing, event):
        record, conflict = _flag(
            record,
            event,
            ConflictKind.COMPETING_OFFER,
            f"offer {offer_id} accepted while {existing.external_offer_id} was active",
        )
        return _applied(record, conflict=conflict)

    if existing is None and state.is_claimed and record.market != market:
        record, conflict = _flag(
            record,
            event,
            ConflictKind.COMPETING_SALE,
            f"trade for {market} accepted while {record.market} holds the claim",
        )
        return _applied(record, conflict=conflict)

    conflict: ConflictRecord | None = None
    if market in record.pulled and market != record.market:
        record, conflict = _flag(
            record,
            event,
            ConflictKind.SALE_AFTER_WITHDRAWAL,
            f"trade for {market} accepted after its listing was withdrawn",
        )
    record = record.evolve(state=LifecycleState.SOLD, market=market, trade_offer=None)
    record, actions = _withdraw_everywhere(record, context, keep=market, reason="trade accepted")
    return _applied(record, actions, conflict=conflict)


def _on_trade_ended(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del context
    state = record.state
    if state not in {LifecycleState.OFFER_PENDING, LifecycleState.PENDING_TRADE_CONFIRMATION}:
        return _stale(record, f"no trade in flight in {state}")
    existing = record.trade_offer
    steam_id = event.text("steam_trade_offer_id")
    if event.text("offer_id") is None and steam_id is not None:
        # Steam only names its own offer; it may belong to an older trade.
        if existing is None or existing.steam_trade_offer_id != steam_id:
            return _stale(record, f"steam offer {steam_id} is not bound to the trade in flight")
    if existing is not None and not _same_offer(existing, event):
        return _stale(record, "outcome of a superseded trade offer")
    if existing is None and event.market is not None and event.market != record.market:
        return _stale(record, f"cancellation from {event.market} for a sale on {record.market}")

    expired = event.text("reason") == EXPIRED_REASON
    reason = "trade offer expired" if expired else f"trade {event.kind.removeprefix('trade_')}"
    previous_market = record.market
    record = record.evolve(
        state=LifecycleState.IN_INVENTORY,
        market=None,
        trade_offer=None,
        pulled=frozenset(),
    )
    actions: list[Action] = []
    if expired and existing is not None and existing.is_bound:
        actions.append(
            cancel_trade(record.key, record.version, existing, reason="confirmation deadline passed")
        )
    actions.append(relist_at(record.key, record.version, market=previous_market, reason=reason))
    return _applied(record, actions)


# Bookkeeping -----------------------------------------------------------------


def _on_dispatch_failed(
    record: ItemRecord, event: ObservedEvent, context: TransitionContext
) -> Transition:
    del context
    kind = event.text("action_kind")
    target = event.text("target")
    if kind is None or target is None:
        return _stale(record, "dispatch failure without action")
    failure = DispatchFailureRecord(
        action_kind=ActionKind(kind),
        target=target,
        permanent=bool(event.payload.get("permanent")),
        observed_at=event.observed_at,
        reason=event.text("reason") or "",
    )
    return _applied(record.evolve(failures=(*record.failures, failure)))


_HANDLERS: dict[EventKind, Handler] = {
    EventKind.INVENTORY_ARRIVED: _on_inventory_arrived,
    EventKind.INVENTORY_DEPARTED: _on_inventory_departed,
    EventKind.HOLD_EXPIRED: _on_hold_expired,
    EventKind.LISTED: _on_listed,
    EventKind.WITHDRAWN: _on_withdrawn,
    EventKind.SOLD: _on_sold,
    EventKind.TRADE_OFFER_CREATED: _on_trade_offer_created,
    EventKind.TRADE_ACCEPTED: _on_trade_accepted,
    EventKind.TRADE_DECLINED: _on_trade_ended,
    EventKind.TRADE_CANCELLED: _on_trade_ended,
    EventKind.DISPATCH_FAILED: _on_dispatch_failed,
}
