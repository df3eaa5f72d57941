"""Order-independence and safety properties of the ledger and state machine."""

from __future__ import annotations

import itertools
import threading
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from skinsync.domain.errors import ItemNotFoundError, JournalWriteError
from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import (
    ActionKind,
    ApplyOutcome,
    EventKind,
    LifecycleState,
    Market,
)
from tests.helpers.fakes import MemoryJournal
from tests.helpers.items import T0, EventFeed, make_event, make_identity

if TYPE_CHECKING:
    from collections.abc import Sequence

    from skinsync.domain.model import Action, ObservedEvent
    from skinsync.domain.reconciliation import TransitionContext

A = Market.BITSKINS
B = Market.DMARKET


def _run(
    context: TransitionContext, events: Sequence[ObservedEvent]
) -> tuple[ItemLedger, list[Action]]:
    ledger = ItemLedger(context)
    actions: list[Action] = []
    for event in events:
        actions.extend(ledger.apply(event).actions)
    return ledger, actions


def _base_events() -> tuple[ObservedEvent, list[ObservedEvent]]:
    feed = EventFeed()
    arrived = feed.arrived()
    listed_a = feed.listed(A)
    sold_a = feed.sold(A)
    listed_b = feed.listed(B)
    return arrived, [listed_a, listed_b, sold_a]


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_conflict_round_trip_in_every_order(
    context: TransitionContext, order: tuple[int, ...]
) -> None:
    arrived, events = _base_events()

    ledger, actions = _run(context, [arrived, *(events[i] for i in order)])

    record = ledger.get(arrived.identity)
    assert record.state is LifecycleState.PENDING_TRADE_CONFIRMATION
    assert record.market is A
    assert B in record.pulled
    withdraw_b = [
        a for a in actions if a.kind is ActionKind.WITHDRAW_LISTING and a.market is B
    ]
    assert len(withdraw_b) == 1


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_no_item_is_sold_twice(context: TransitionContext, order: tuple[int, ...]) -> None:
    feed = EventFeed()
    arrived = feed.arrived()
    events = [feed.listed(A), feed.sold(A), feed.listed(B), feed.sold(B)]
    ordered = [events[i] for i in order]

    ledger = ItemLedger(context)
    ledger.apply(arrived)
    winner: Market | None = None
    for event in ordered:
        result = ledger.apply(event)
        if event.kind is EventKind.SOLD and winner is None:
            winner = event.market
        if winner is not None:
            assert not any(
                a.kind is ActionKind.WITHDRAW_LISTING and a.market is winner
                for a in result.actions
                if event.kind is not EventKind.SOLD or event.market is not winner
            )

    record = ledger.get(arrived.identity)
    assert record.state is LifecycleState.PENDING_TRADE_CONFIRMATION
    assert record.market is winner
    assert record.flagged


def test_duplicate_delivery_is_a_no_op(ledger: ItemLedger, feed: EventFeed) -> None:
    ledger.apply(feed.arrived())
    listed = feed.listed(A)
    first = ledger.apply(listed)

    again = ledger.apply(listed)

    assert again.outcome is ApplyOutcome.DUPLICATE
    assert again.snapshot is first.snapshot
    assert again.actions == ()
    history = ledger.history_of(listed.identity)
    assert len(history) == 2
    assert history[-1] is listed


def test_older_sequence_from_same_source_is_duplicate(ledger: ItemLedger) -> None:
    arrived = make_event(EventKind.INVENTORY_ARRIVED, sequence=0)
    listed_new = make_event(EventKind.LISTED, source="bitskins", sequence=5, price="10")
    listed_old = make_event(EventKind.LISTED, source="bitskins", sequence=4, price="12")

    ledger.apply(arrived)
    ledger.apply(listed_new)
    result = ledger.apply(listed_old)

    assert result.outcome is ApplyOutcome.DUPLICATE
    assert ledger.get(arrived.identity).watermark("bitskins") == 5


def test_stale_events_never_lower_precedence(ledger: ItemLedger, feed: EventFeed) -> None:
    events = [
        feed.arrived(),
        feed.listed(A),
        feed.sold(A),
        feed.listed(A),
        feed.withdrawn(A),
        feed.arrived(),
        feed.hold_expired(),
        feed.listed(B),
        feed.withdrawn(B),
    ]
    highest = -1
    for event in events:
        result = ledger.apply(event)
        precedence = result.snapshot.state.precedence
        if result.outcome is ApplyOutcome.STALE:
            assert result.previous is not None
            assert result.snapshot.state is result.previous.state
        assert precedence >= highest
        highest = precedence


def test_replay_rebuilds_identical_records(context: TransitionContext) -> None:
    feed = EventFeed()
    other = EventFeed(make_identity("7007", pattern="88/0.0101", class_id="4100"))
    delivered = [
        feed.arrived(),
        other.arrived(),
        feed.listed(A),
        other.listed(B, "3.10"),
        feed.sold(A),
        feed.offer(A, "T1", steam_trade_offer_id="5550001"),
        other.withdrawn(B),
        feed.declined(A, "T1"),
    ]
    delivered.append(delivered[2])

    live, _ = _run(context, delivered)
    journal = [
        event
        for record in live.records()
        for event in live.history_of(record.key)
    ]
    journal.sort(key=lambda event: event.observed_at)
    rebuilt = ItemLedger(context)
    rebuilt.replay(journal)

    assert rebuilt.records() == live.records()
    assert rebuilt.source_watermark("bitskins") == live.source_watermark("bitskins")


def test_replay_requires_empty_ledger(ledger: ItemLedger, feed: EventFeed) -> None:
    ledger.apply(feed.arrived())

    with pytest.raises(RuntimeError, match="empty ledger"):
        ledger.replay([feed.listed(A)])


def test_identity_resolution_follows_asset_then_descriptor(ledger: ItemLedger) -> None:
    steam = make_identity("1001")
    listing = make_identity("1001", pattern=None)
    after_trade = make_identity("2002")

    ledger.apply(make_event(EventKind.INVENTORY_ARRIVED, identity=steam))
    ledger.apply(make_event(EventKind.LISTED, source="bitskins", identity=listing, price="1"))
    ledger.apply(make_event(EventKind.INVENTORY_ARRIVED, sequence=1, identity=after_trade))

    assert len(ledger) == 1
    assert ledger.key_of(listing) == steam.canonical_key
    assert ledger.key_of(after_trade) == steam.canonical_key


def test_fungible_copies_stay_separate(ledger: ItemLedger) -> None:
    first = make_identity("5005", pattern=None, class_id="1293508920", instance_id="0")
    second = make_identity("5006", pattern=None, class_id="1293508920", instance_id="0")

    ledger.apply(make_event(EventKind.INVENTORY_ARRIVED, identity=first))
    ledger.apply(make_event(EventKind.INVENTORY_ARRIVED, sequence=1, identity=second))

    assert len(ledger) == 2
    assert ledger.key_of(first) != ledger.key_of(second)


def test_unknown_identity_raises(ledger: ItemLedger) -> None:
    with pytest.raises(ItemNotFoundError):
        ledger.get(make_identity("9999"))
    assert ledger.find("item:missing") is None
    assert make_identity("9999") not in ledger


def test_concurrent_applies_serialize_per_item(context: TransitionContext) -> None:
    ledger = ItemLedger(context)
    identities = [make_identity(str(3000 + n), pattern=f"{n}/0.5") for n in range(8)]
    for identity in identities:
        ledger.apply(make_event(EventKind.INVENTORY_ARRIVED, identity=identity))
    markets = [Market.BITSKINS, Market.DMARKET, Market.CSFLOAT]
    barrier = threading.Barrier(len(markets))
    errors: list[BaseException] = []

    def sell_everything(market: Market) -> None:
        try:
            barrier.wait()
            for sequence, identity in enumerate(identities):
                ledger.apply(
                    make_event(
                        EventKind.SOLD,
                        source=market.value,
                        sequence=sequence,
                        identity=identity,
                        observed_at=T0 + timedelta(seconds=sequence),
                    )
                )
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=sell_everything, args=(m,)) for m in markets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    for identity in identities:
        record = ledger.get(identity)
        assert record.state is LifecycleState.PENDING_TRADE_CONFIRMATION
        assert record.market in markets
        assert len(record.conflicts) == 2
        assert record.version == 4


def test_failed_journal_write_leaves_the_sale_for_redelivery(context: TransitionContext) -> None:
    journal = MemoryJournal(EventKind.SOLD)
    ledger = ItemLedger(context, journal=journal)
    feed = EventFeed()
    ledger.apply(feed.arrived())
    ledger.apply(feed.listed(A))
    before = ledger.get(feed.identity)
    sold = feed.sold(A)

    with pytest.raises(JournalWriteError):
        ledger.apply(sold)

    assert ledger.get(feed.identity) == before
    assert ledger.source_watermark("bitskins") == 0
    assert len(ledger.history_of(feed.identity)) == 2

    redelivered = ledger.apply(sold)

    assert redelivered.outcome is ApplyOutcome.APPLIED
    assert redelivered.snapshot.state is LifecycleState.PENDING_TRADE_CONFIRMATION
    assert {(a.kind, a.market) for a in redelivered.actions} == {
        (ActionKind.WITHDRAW_LISTING, Market.DMARKET),
        (ActionKind.WITHDRAW_LISTING, Market.CSFLOAT),
    }
    assert [event.kind for event in journal.load_events()] == [
        EventKind.INVENTORY_ARRIVED,
        EventKind.LISTED,
        EventKind.SOLD,
    ]


def test_stale_event_moves_only_the_cursor(ledger: ItemLedger, feed: EventFeed) -> None:
    ledger.apply(feed.arrived())
    ledger.apply(feed.listed(A))
    before = ledger.apply(feed.sold(A)).snapshot

    result = ledger.apply(feed.listed(A, price="12.00"))

    assert result.outcome is ApplyOutcome.STALE
    assert result.snapshot.version == before.version
    assert result.snapshot.updated_at == before.updated_at
    assert result.snapshot.state is before.state
    assert result.snapshot.watermark("bitskins") == 2
    assert ledger.source_watermark("bitskins") == 2
