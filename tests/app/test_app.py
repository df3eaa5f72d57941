from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest

from skinsync.adapters.sqlalchemy.unit_of_work import shutdown
from skinsync.app import (
    LoggingConflictReporter,
    build_app,
    build_context,
    list_snapshots,
    replay_journal,
    run_sync,
    start_journal,
)
from skinsync.config import MissingConfigurationError, StorageConfig, SyncConfig
from skinsync.domain.errors import ConflictDetected, PermanentDispatchError
from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import LifecycleState, Market, TradeStatus, withdraw_listing
from skinsync.domain.service import SyncRoundResult
from tests.helpers.items import EventFeed

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

A = Market.BITSKINS


@pytest.fixture
def credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STEAM_ID", "76561198000000001")
    monkeypatch.setenv("STEAM_API_KEY", "STEAMKEY")
    monkeypatch.setenv("STEAM_COOKIE", "sessionid=abc123")
    monkeypatch.setenv("BITSKINS_API_KEY", "BSKEY")
    monkeypatch.delenv("BITSKINS_SCRAPE_API_KEY", raising=False)
    monkeypatch.delenv("SKINSYNC_PROXIES", raising=False)


@pytest.fixture
def storage(tmp_path: Path) -> Iterator[StorageConfig]:
    shutdown()
    yield StorageConfig(data_dir=tmp_path, database_uri="sqlite+pysqlite:///:memory:")
    shutdown()


def _journal_offer(storage: StorageConfig, feed: EventFeed) -> str:
    ledger = ItemLedger(build_context(SyncConfig()), journal=start_journal(storage))
    ledger.apply(feed.arrived())
    ledger.apply(feed.listed(A))
    ledger.apply(feed.offer(A, "T1"))
    return ledger.key_of(feed.identity)


@pytest.mark.usefixtures("credentials")
def test_build_app_wires_steam_and_bitskins(storage: StorageConfig) -> None:
    app = build_app(sync=SyncConfig(dispatch_workers=2), storage=storage)

    assert set(app.dispatcher.adapters) == {"steam", "bitskins"}
    assert [adapter.source_id for adapter in app.service.adapters] == ["steam", "bitskins"]
    assert app.service.workers == 2
    assert app.engine.ledger is app.ledger
    assert app.dispatcher.pricer is app.pricer
    assert app.ledger.context.marketplaces == frozenset({A})
    assert len(app.ledger) == 0


@pytest.mark.usefixtures("credentials")
def test_build_app_recovers_the_journal(storage: StorageConfig) -> None:
    feed = EventFeed()
    key = _journal_offer(storage, feed)

    app = build_app(sync=SyncConfig(), storage=storage)

    assert app.ledger.get(key).state is LifecycleState.OFFER_PENDING
    lifecycle = app.tracker.get(key)
    assert lifecycle is not None
    assert lifecycle.status is TradeStatus.CREATED


def test_build_app_requires_credentials(
    monkeypatch: pytest.MonkeyPatch, storage: StorageConfig
) -> None:
    for name in ("STEAM_ID", "STEAM_API_KEY", "STEAM_COOKIE"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(MissingConfigurationError, match="STEAM_API_KEY, STEAM_COOKIE, STEAM_ID"):
        build_app(sync=SyncConfig(), storage=storage)


def test_replay_and_snapshots_read_the_journal(storage: StorageConfig) -> None:
    feed = EventFeed()
    key = _journal_offer(storage, feed)

    ledger = replay_journal(sync=SyncConfig(), storage=storage)
    rows = list_snapshots(state="offer_pending", storage=storage)

    assert ledger.get(key).trade_offer is not None
    assert [row["item_key"] for row in rows] == [key]
    assert rows[0]["trade_offer_id"] == "T1"
    assert list_snapshots(flagged=True, storage=storage) == []


class _OneRound:
    def __init__(self) -> None:
        self.closed = False

    async def run_once(self) -> SyncRoundResult:
        return SyncRoundResult(observed=1, applied=1)

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.usefixtures("credentials")
def test_run_sync_once_closes_every_client(storage: StorageConfig) -> None:
    app = build_app(sync=SyncConfig(), storage=storage)
    service = _OneRound()
    app.service = service  # type: ignore[assignment]

    result = asyncio.run(run_sync(app, once=True))

    assert result == SyncRoundResult(observed=1, applied=1)
    assert service.closed


def test_reporter_logs_what_needs_attention(caplog: pytest.LogCaptureFixture) -> None:
    ledger = ItemLedger(build_context(SyncConfig()))
    feed = EventFeed()
    ledger.apply(feed.arrived())
    ledger.apply(feed.listed(A))
    result = ledger.apply(feed.listed(Market.DMARKET))
    assert isinstance(result.error, ConflictDetected)
    reporter = LoggingConflictReporter()
    failure = PermanentDispatchError(
        withdraw_listing(result.snapshot.key, 3, Market.DMARKET, reason="second listing"),
        "listing not found",
    )

    with caplog.at_level(logging.WARNING, logger="skinsync.operator"):
        reporter.conflict(result.snapshot, result.error)
        reporter.dispatch_failure(None, failure)

    assert f"Needs attention: {result.snapshot.key} is listed on bitskins" in caplog.text
    assert "could not be updated" in caplog.text
    assert "listing not found" in caplog.text
