from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from skinsync.domain.dispatch import ActionDispatcher
from skinsync.domain.errors import TransientSourceError
from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import ActionKind, EventKind, ItemIdentity, LifecycleState, Market
from skinsync.domain.reconciliation import ReconciliationEngine
from skinsync.domain.service import SynchronizationService
from skinsync.domain.trades import TradeTracker
from tests.helpers.fakes import FakeSource, MemoryJournal, RecordingSleep
from tests.helpers.items import T0, make_event

if TYPE_CHECKING:
    from datetime import datetime

    from skinsync.domain.reconciliation import TransitionContext
    from skinsync.domain.service import SyncRoundResult
    from tests.helpers.items import EventFeed

A = Market.BITSKINS
B = Market.DMARKET


class Clock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now


def _sources() -> dict[str, FakeSource]:
    return {name: FakeSource(name) for name in ("steam", "bitskins", "dmarket", "csfloat")}


def _service(
    engine: ReconciliationEngine,
    sources: dict[str, FakeSource],
    clock: Clock | None = None,
    **kwargs: float,
) -> SynchronizationService:
    clock = clock or Clock()
    dispatcher = ActionDispatcher(
        engine.ledger, sources, engine=engine, clock=clock, sleep=RecordingSleep()
    )
    return SynchronizationService(
        engine, dispatcher, list(sources.values()), clock=clock, **kwargs
    )


def test_sale_on_one_market_withdraws_the_others(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    sources = _sources()
    service = _service(engine, sources)
    sources["steam"].pending = [feed.arrived()]
    sources["bitskins"].pending = [feed.listed(A)]

    async def scenario() -> tuple[SyncRoundResult, SyncRoundResult]:
        first = await service.run_once()
        sources["bitskins"].pending = [feed.sold(A)]
        return first, await service.run_once()

    first, second = asyncio.run(scenario())

    assert (first.observed, first.applied, first.actions) == (2, 2, 0)
    assert (second.observed, second.applied, second.actions) == (1, 1, 2)
    assert second.failed_sources == []
    withdrawn = [*sources["dmarket"].executed, *sources["csfloat"].executed]
    assert {(a.kind, a.market) for a in withdrawn} == {
        (ActionKind.WITHDRAW_LISTING, Market.DMARKET),
        (ActionKind.WITHDRAW_LISTING, Market.CSFLOAT),
    }
    assert sources["bitskins"].executed == []
    (record,) = engine.ledger.records()
    assert record.state is LifecycleState.PENDING_TRADE_CONFIRMATION
    assert record.market is A


def test_polls_resume_from_the_source_watermark(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    sources = _sources()
    service = _service(engine, sources)
    sources["steam"].pending = [feed.arrived(), feed.hold_expired()]

    async def scenario() -> None:
        await service.run_once()
        await service.run_once()

    asyncio.run(scenario())

    assert sources["steam"].polls == [-1, 1]
    assert sources["bitskins"].polls == [-1, -1]


def test_failing_source_does_not_stop_the_round(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    sources = _sources()
    sources["dmarket"].failure = TransientSourceError("dmarket is down", source="dmarket")
    sources["csfloat"].failure = RuntimeError("unexpected payload")
    sources["steam"].pending = [feed.arrived()]
    sources["bitskins"].pending = [feed.listed(A)]

    result = asyncio.run(_service(engine, sources).run_once())

    assert result.failed_sources == ["dmarket", "csfloat"]
    assert result.applied == 2
    assert engine.ledger.records()[0].state is LifecycleState.LISTED


def test_malformed_event_is_skipped(
    engine: ReconciliationEngine, feed: EventFeed, caplog: pytest.LogCaptureFixture
) -> None:
    sources = _sources()
    nameless = make_event(
        EventKind.INVENTORY_ARRIVED,
        identity=ItemIdentity(class_id="1293508920", instance_id="0"),
    )
    sources["steam"].pending = [nameless, feed.next(EventKind.INVENTORY_ARRIVED)]

    result = asyncio.run(_service(engine, sources).run_once())

    assert result.observed == 2
    assert result.applied == 1
    assert result.failed_sources == []
    assert "Could not apply" in caplog.text


def test_stale_and_conflicting_events_are_counted(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    sources = _sources()
    sources["steam"].pending = [feed.arrived()]
    sources["bitskins"].pending = [feed.listed(A), feed.sold(A)]
    sources["dmarket"].pending = [feed.sold(B), feed.withdrawn(B)]

    result = asyncio.run(_service(engine, sources).run_once())

    assert result.conflicts == 1
    assert result.stale == 1
    assert result.observed == 5


def test_round_expires_overdue_offers(engine: ReconciliationEngine, feed: EventFeed) -> None:
    clock = Clock()
    sources = _sources()
    service = _service(engine, sources, clock)
    sources["steam"].pending = [feed.arrived()]
    sources["bitskins"].pending = [feed.listed(A), feed.offer(A, "T1")]

    async def scenario() -> tuple[SyncRoundResult, SyncRoundResult]:
        first = await service.run_once()
        clock.now = feed.now + timedelta(hours=13)
        return first, await service.run_once()

    first, second = asyncio.run(scenario())

    assert first.expired == 0
    assert second.expired == 1
    assert second.actions == 1
    (record,) = engine.ledger.records()
    assert record.state is LifecycleState.IN_INVENTORY
    assert record.trade_offer is None


def test_run_until_stopped_then_close_adapters(
    engine: ReconciliationEngine, feed: EventFeed
) -> None:
    sources = _sources()
    sources["steam"].pending = [feed.arrived()]
    service = _service(engine, sources, poll_interval=0.01, expiry_interval=0.01, workers=2)

    async def scenario() -> None:
        task = asyncio.create_task(service.run())
        while not sources["steam"].polls:
            await asyncio.sleep(0.01)
        service.stop()
        await task

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert all(source.closed for source in sources.values())
    assert len(engine.ledger) == 1


def test_at_least_one_worker_is_required(engine: ReconciliationEngine) -> None:
    with pytest.raises(ValueError, match="dispatch worker"):
        _service(engine, _sources(), workers=0)


def test_unjournaled_sale_is_polled_again(context: TransitionContext, feed: EventFeed) -> None:
    journal = MemoryJournal(EventKind.SOLD)
    engine = ReconciliationEngine(ItemLedger(context, journal=journal), TradeTracker())
    sources = _sources()
    service = _service(engine, sources)
    sold = feed.sold(A)
    sources["steam"].pending = [feed.arrived()]
    sources["bitskins"].pending = [feed.listed(A), sold]

    async def scenario() -> tuple[SyncRoundResult, SyncRoundResult]:
        first = await service.run_once()
        sources["bitskins"].pending = [sold]
        return first, await service.run_once()

    first, second = asyncio.run(scenario())

    assert first.failed_sources == ["bitskins"]
    assert first.actions == 0
    assert sources["bitskins"].polls == [-1, 0]
    assert second.failed_sources == []
    assert (second.applied, second.actions) == (1, 2)
    assert [a.market for a in sources["dmarket"].executed] == [Market.DMARKET]
    assert [a.market for a in sources["csfloat"].executed] == [Market.CSFLOAT]
    assert [event.kind for event in journal.load_events()] == [
        EventKind.INVENTORY_ARRIVED,
        EventKind.LISTED,
        EventKind.SOLD,
    ]
