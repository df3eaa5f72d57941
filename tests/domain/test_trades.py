from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import (
    TRADE_TIMER_SOURCE,
    ActionKind,
    EventKind,
    LifecycleState,
    Market,
    TradeStatus,
)
from skinsync.domain.reconciliation import ReconciliationEngine
from skinsync.domain.trades import TradeTracker
from tests.helpers.fakes import MemoryJournal
from tests.helpers.items import EventFeed, make_identity

if TYPE_CHECKING:
    from skinsync.domain.model import ObservedEvent
    from skinsync.domain.reconciliation import TransitionContext

A = Market.BITSKINS
B = Market.DMARKET


def _open_offer(engine: ReconciliationEngine, feed: EventFeed) -> ObservedEvent:
    engine.ingest(feed.arrived())
    engine.ingest(feed.listed(A))
    offer = feed.offer(A, "T1")
    engine.ingest(offer)
    return offer


def test_offer_opens_a_lifecycle(engine: ReconciliationEngine, feed: EventFeed) -> None:
    offer = _open_offer(engine, feed)

    lifecycle = engine.tracker.get(engine.ledger.key_of(offer.identity))

    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.CREATED
    assert lifecycle.offer.external_offer_id == "T1"
    assert lifecycle.offer.confirmation_deadline == offer.observed_at + timedelta(hours=12)


def test_binding_the_steam_offer_awaits_confirmation(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    offer = _open_offer(engine, feed)

    engine.ingest(feed.steam_offer("5550001"))

    lifecycle = engine.tracker.get(engine.ledger.key_of(offer.identity))
    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.AWAITING_CONFIRMATION
    assert lifecycle.offer.steam_trade_offer_id == "5550001"


def test_no_expiry_before_the_deadline(engine: ReconciliationEngine, feed: EventFeed) -> None:
    offer = _open_offer(engine, feed)

    results = engine.expire_due(offer.observed_at + timedelta(hours=11, minutes=59))

    assert results == []
    assert len(engine.tracker) == 1


def test_overdue_offer_expires_exactly_once(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    offer = _open_offer(engine, feed)
    key = engine.ledger.key_of(offer.identity)
    lifecycle = engine.tracker.get(key)
    deadline = offer.observed_at + timedelta(hours=12)

    results = engine.expire_due(deadline)

    assert len(results) == 1
    (result,) = results
    assert result.event.source == TRADE_TIMER_SOURCE
    assert result.event.kind is EventKind.TRADE_CANCELLED
    assert result.event.market is A
    assert result.snapshot.state is LifecycleState.IN_INVENTORY
    assert [a.kind for a in result.actions] == [ActionKind.RELIST_AT]
    assert result.actions[0].market is A
    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.EXPIRED
    assert engine.tracker.get(key) is None
    assert engine.expire_due(deadline + timedelta(hours=1)) == []


def test_expiry_is_emitted_once_even_if_the_offer_stays_open(ledger: ItemLedger) -> None:
    feed = EventFeed()
    ledger.apply(feed.arrived())
    offer = feed.offer(A, "T1")
    ledger.apply(offer)
    tracker = TradeTracker.rebuild(ledger.records(), last_sequence=7)
    late = offer.observed_at + timedelta(days=1)

    first = tracker.expire_due(late)
    second = tracker.expire_due(late + timedelta(hours=1))

    assert [event.sequence for event in first] == [8]
    assert first[0].payload["offer_id"] == "T1"
    assert first[0].payload["reason"] == "expired"
    assert second == []
    assert len(tracker) == 1


def test_rebuild_skips_records_without_offer(ledger: ItemLedger, feed: EventFeed) -> None:
    ledger.apply(feed.arrived())
    ledger.apply(feed.listed(B))

    assert len(TradeTracker.rebuild(ledger.records())) == 0


def test_accepted_trade_closes_lifecycle(engine: ReconciliationEngine, feed: EventFeed) -> None:
    offer = _open_offer(engine, feed)
    key = engine.ledger.key_of(offer.identity)
    engine.ingest(feed.steam_offer("5550001"))
    lifecycle = engine.tracker.get(key)

    engine.ingest(feed.steam_accepted("5550001"))

    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.ACCEPTED
    assert engine.tracker.get(key) is None
    assert engine.ledger.get(key).state is LifecycleState.SOLD


def test_declined_trade_closes_lifecycle(engine: ReconciliationEngine, feed: EventFeed) -> None:
    offer = _open_offer(engine, feed)
    lifecycle = engine.tracker.get(engine.ledger.key_of(offer.identity))

    engine.ingest(feed.declined(A, "T1"))

    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.DECLINED
    assert len(engine.tracker) == 0


def test_replaced_offer_cancels_previous_lifecycle(
    ledger: ItemLedger, tracker: TradeTracker, feed: EventFeed
) -> None:
    ledger.apply(feed.arrived())
    tracker.observe(ledger.apply(feed.offer(A, "T1")))
    first = tracker.open_lifecycles()[0]

    closed = tracker.observe(ledger.apply(feed.offer(A, "T2")))

    assert closed is first
    assert first.status is TradeStatus.CANCELLED
    (current,) = tracker.open_lifecycles()
    assert current.offer.external_offer_id == "T2"
    assert current.status is TradeStatus.CREATED


def test_terminal_lifecycle_cannot_advance(
    ledger: ItemLedger, tracker: TradeTracker, feed: EventFeed
) -> None:
    ledger.apply(feed.arrived())
    tracker.observe(ledger.apply(feed.offer(A, "T1")))
    lifecycle = tracker.open_lifecycles()[0]
    lifecycle.advance(TradeStatus.DECLINED)

    with pytest.raises(ValueError, match="already declined"):
        lifecycle.advance(TradeStatus.ACCEPTED)


def test_failed_expiry_is_retried_without_blocking_other_offers(
    context: TransitionContext, caplog: pytest.LogCaptureFixture
) -> None:
    ledger = ItemLedger(context, journal=MemoryJournal(EventKind.TRADE_CANCELLED))
    engine = ReconciliationEngine(ledger, TradeTracker())
    feeds = [EventFeed(), EventFeed(make_identity("1002", pattern="9/0.1"))]
    for offer_id, feed in zip(("T1", "T2"), feeds, strict=True):
        engine.ingest(feed.arrived())
        engine.ingest(feed.listed(A))
        engine.ingest(feed.offer(A, offer_id))
    overdue = feeds[0].now + timedelta(hours=13)

    first = engine.expire_due(overdue)

    assert [result.event.payload["offer_id"] for result in first] == ["T2"]
    assert [ledger.get(feed.identity).state for feed in feeds] == [
        LifecycleState.OFFER_PENDING,
        LifecycleState.IN_INVENTORY,
    ]
    assert "Could not expire trade offer T1" in caplog.text

    second = engine.expire_due(overdue + timedelta(hours=1))

    assert [result.event.payload["offer_id"] for result in second] == ["T1"]
    assert [ledger.get(feed.identity).state for feed in feeds] == [
        LifecycleState.IN_INVENTORY,
        LifecycleState.IN_INVENTORY,
    ]
    assert len(engine.tracker) == 0
    assert engine.expire_due(overdue + timedelta(days=5)) == []
