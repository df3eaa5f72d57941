"""Reconciliation façade: one entry point for provider and timer events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from skinsync.domain.errors import ConflictDetected, TradeOfferExpired
from skinsync.domain.model import ApplyOutcome, EventKind, LifecycleState

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from skinsync.domain.ledger import ItemLedger
    from skinsync.domain.model import ObservedEvent
    from skinsync.domain.ports import ConflictReporter
    from skinsync.domain.trades import TradeTracker

    from .contracts import ApplyResult

log = logging.getLogger(__name__)


class ReconciliationEngine:
    """Applies events through the ledger and surfaces what operators must see.

    Conflicts are logged at warning level and handed to the reporter; they
    never stop the pipeline. Items that drop out of inventory without a trade
    are logged once and not retried.
    """

    def __init__(
        self,
        ledger: ItemLedger,
        tracker: TradeTracker,
        *,
        reporter: ConflictReporter | None = None,
    ) -> None:
        self.ledger = ledger
        self.tracker = tracker
        self.reporter = reporter

    def ingest(self, event: ObservedEvent) -> ApplyResult:
        result = self.ledger.apply(event)
        if result.outcome is ApplyOutcome.DUPLICATE:
            return result
        self.tracker.observe(result)

        if isinstance(result.error, ConflictDetected):
            log.warning("%s (item %s)", result.error, result.snapshot.key)
            if self.reporter is not None:
                self.reporter.conflict(result.snapshot, result.error)
        if (
            event.kind is EventKind.INVENTORY_DEPARTED
            and result.snapshot.state is LifecycleState.LOST
            and result.changed_state
        ):
            log.warning("Item %s left the inventory without a trade", result.snapshot.key)
        elif result.changed_state:
            log.info(
                "%s: %s -> %s%s",
                result.snapshot.key,
                result.previous.state if result.previous else LifecycleState.UNKNOWN,
                result.snapshot.state,
                f"({result.snapshot.market})" if result.snapshot.market else "",
            )
        return result

    def ingest_all(self, events: Iterable[ObservedEvent]) -> list[ApplyResult]:
        return [self.ingest(event) for event in events]

    def expire_due(self, now: datetime) -> list[ApplyResult]:
        """Feed one synthetic cancellation per overdue trade offer.

        An offer whose cancellation fails to apply is re-armed for the next
        sweep; the other overdue offers are still processed.
        """

        results: list[ApplyResult] = []
        for event in self.tracker.expire_due(now):
            log.info(
                "%s",
                TradeOfferExpired(
                    f"Trade offer {event.text('offer_id')} on {event.market} expired"
                ),
            )
            try:
                results.append(self.ingest(event))
            except Exception:
                log.exception("Could not expire trade offer %s", event.text("offer_id"))
                self.tracker.rearm(event)
        return results

