from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from skinsync.adapters.sqlalchemy.unit_of_work import SqlAlchemyEventJournal, shutdown, startup
from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import Market
from skinsync.domain.reconciliation import ReconciliationEngine, TransitionContext
from skinsync.domain.trades import TradeTracker
from tests.helpers.fakes import RecordingReporter
from tests.helpers.items import EventFeed

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

MARKETPLACES = frozenset({Market.BITSKINS, Market.DMARKET, Market.CSFLOAT})


@pytest.fixture
def context() -> TransitionContext:
    return TransitionContext(marketplaces=MARKETPLACES)


@pytest.fixture
def ledger(context: TransitionContext) -> ItemLedger:
    return ItemLedger(context)


@pytest.fixture
def tracker() -> TradeTracker:
    return TradeTracker()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def engine(
    ledger: ItemLedger, tracker: TradeTracker, reporter: RecordingReporter
) -> ReconciliationEngine:
    return ReconciliationEngine(ledger, tracker, reporter=reporter)


@pytest.fixture
def feed() -> EventFeed:
    return EventFeed()


@pytest.fixture
def sqlite_journal() -> Iterator[SqlAlchemyEventJournal]:
    startup(database_uri="sqlite+pysqlite:///:memory:", force=True)
    try:
        yield SqlAlchemyEventJournal()
    finally:
        shutdown()
