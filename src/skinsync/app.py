"""Application wiring: configuration, journal recovery and the sync service."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from skinsync.adapters.bitskins import BitSkinsMarketAdapter, BitSkinsSalePricer
from skinsync.adapters.http_resilience import ResilientClient
from skinsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyEventJournal,
    get_unit_of_work,
    is_started,
    startup,
)
from skinsync.adapters.steam import SteamInventoryAdapter
from skinsync.config import (
    get_bitskins_config,
    get_steam_config,
    get_storage_config,
    get_sync_config,
)
from skinsync.domain.dispatch import ActionDispatcher
from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import TRADE_TIMER_SOURCE, LifecycleState, Market
from skinsync.domain.pricing import HistoryPricer
from skinsync.domain.reconciliation import ReconciliationEngine, TransitionContext
from skinsync.domain.service import SynchronizationService
from skinsync.domain.trades import TradeTracker

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from typing import Any

    from skinsync.config import ResilienceConfig, StorageConfig, SyncConfig
    from skinsync.domain.errors import ActionDispatchFailure, ConflictDetected
    from skinsync.domain.model import ItemRecord
    from skinsync.domain.ports import EventJournal
    from skinsync.domain.service import SyncRoundResult

log = getLogger(__name__)

MARKETPLACES = frozenset({Market.BITSKINS})

# States in which the item should still sit in the Steam inventory.
_HELD_STATES = frozenset(
    {
        LifecycleState.IN_INVENTORY,
        LifecycleState.TRADE_HOLD,
        LifecycleState.LISTED,
        LifecycleState.WITHDRAWN,
        LifecycleState.OFFER_PENDING,
        LifecycleState.PENDING_TRADE_CONFIRMATION,
    }
)


class LoggingConflictReporter:
    """Reports conflicts and failed actions through the application log."""

    def __init__(self, logger_name: str = "skinsync.operator") -> None:
        self._log = getLogger(logger_name)

    def conflict(self, record: ItemRecord, error: ConflictDetected) -> None:
        self._log.warning(
            "Needs attention: %s is %s on %s; %s",
            record.key,
            record.state,
            record.market or "-",
            error.conflict.detail,
        )

    def dispatch_failure(self, record: ItemRecord | None, error: ActionDispatchFailure) -> None:
        key = record.key if record is not None else error.action.item_key
        self._log.error("Needs attention: %s could not be updated: %s", key, error)


@dataclass(slots=True)
class Recovered:
    ledger: ItemLedger
    tracker: TradeTracker
    replayed: int


@dataclass(slots=True)
class SkinSyncApp:
    ledger: ItemLedger
    tracker: TradeTracker
    engine: ReconciliationEngine
    dispatcher: ActionDispatcher
    service: SynchronizationService
    pricer: BitSkinsSalePricer


def build_context(sync: SyncConfig) -> TransitionContext:
    return TransitionContext(
        marketplaces=MARKETPLACES,
        confirmation_window=sync.confirmation_window,
    )


def recover(context: TransitionContext, journal: EventJournal | None) -> Recovered:
    """Rebuild ledger and open trades from the journal, then journal new events."""

    ledger = ItemLedger(context, journal=journal)
    replayed = ledger.replay(journal.load_events()) if journal is not None else 0
    tracker = TradeTracker.rebuild(
        ledger.records(), last_sequence=ledger.source_watermark(TRADE_TIMER_SOURCE)
    )
    log.info(
        "Recovered %s items (%s open trades) from %s events",
        len(ledger),
        len(tracker),
        replayed,
    )
    return Recovered(ledger=ledger, tracker=tracker, replayed=replayed)


def start_journal(storage: StorageConfig | None = None) -> SqlAlchemyEventJournal:
    if not is_started():
        storage = storage or get_storage_config()
        startup(database_uri=storage.journal_uri())
    return SqlAlchemyEventJournal()


def _client_factory(storage: StorageConfig) -> Callable[[ResilienceConfig], ResilientClient]:
    cache_path = str(storage.http_cache_path())

    def factory(config: ResilienceConfig) -> ResilientClient:
        return ResilientClient(config, cache_path=cache_path)

    return factory


def build_app(
    *,
    sync: SyncConfig | None = None,
    storage: StorageConfig | None = None,
) -> SkinSyncApp:
    """Assemble the service from environment configuration."""

    sync = sync or get_sync_config()
    storage = storage or get_storage_config()
    context = build_context(sync)
    recovered = recover(context, start_journal(storage))
    ledger = recovered.ledger
    reporter = LoggingConflictReporter()
    engine = ReconciliationEngine(ledger, recovered.tracker, reporter=reporter)
    client_factory = _client_factory(storage)

    steam = SteamInventoryAdapter(config=get_steam_config(), client_factory=client_factory)
    steam.seed(record for record in ledger.records() if record.state in _HELD_STATES)
    bitskins_config = get_bitskins_config()
    bitskins = BitSkinsMarketAdapter(
        ledger=ledger, config=bitskins_config, client_factory=client_factory
    )
    pricer = BitSkinsSalePricer(
        config=bitskins_config,
        fallback=HistoryPricer(default_market=Market.BITSKINS),
        client_factory=client_factory,
    )
    dispatcher = ActionDispatcher(
        ledger,
        {steam.source_id: steam, bitskins.source_id: bitskins},
        engine=engine,
        pricer=pricer,
        reporter=reporter,
        max_attempts=sync.dispatch_max_attempts,
        backoff_seconds=sync.dispatch_backoff_seconds,
    )
    service = SynchronizationService(
        engine,
        dispatcher,
        [steam, bitskins],
        poll_interval=sync.poll_interval_seconds,
        expiry_interval=sync.expiry_check_seconds,
        workers=sync.dispatch_workers,
    )
    return SkinSyncApp(
        ledger=ledger,
        tracker=recovered.tracker,
        engine=engine,
        dispatcher=dispatcher,
        service=service,
        pricer=pricer,
    )


async def run_sync(app: SkinSyncApp, *, once: bool = False) -> SyncRoundResult | None:
    try:
        if once:
            return await app.service.run_once()
        await app.service.run()
        return None
    finally:
        await app.service.aclose()
        await app.pricer.aclose()


def replay_journal(
    *,
    sync: SyncConfig | None = None,
    storage: StorageConfig | None = None,
) -> ItemLedger:
    """Rebuild the ledger from the journal without contacting any provider."""

    context = build_context(sync or get_sync_config())
    return recover(context, start_journal(storage)).ledger


def list_snapshots(
    *,
    state: str | None = None,
    flagged: bool | None = None,
    storage: StorageConfig | None = None,
) -> list[Mapping[str, Any]]:
    """Persisted item snapshots, as last written by the running service."""

    start_journal(storage)
    with get_unit_of_work() as uow:
        return uow.repositories.snapshots.query(state=state, flagged=flagged)
