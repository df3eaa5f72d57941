"""Trade offer lifecycles and their time-driven expiry.

Marketplaces do not reliably push terminal trade states, so every open offer
is re-checked against its confirmation deadline. An overdue offer becomes a
synthetic ``TRADE_CANCELLED`` event fed through the same ``apply`` pipeline as
provider events; the item can never stay stuck in ``offer_pending``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from skinsync.domain.model import (
    TRADE_TIMER_SOURCE,
    EventKind,
    ObservedEvent,
    TradeStatus,
)
from skinsync.domain.reconciliation.transitions import EXPIRED_REASON

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from skinsync.domain.model import ItemRecord, TradeOfferRef
    from skinsync.domain.reconciliation.contracts import ApplyResult

log = logging.getLogger(__name__)

_CLOSING_STATUS = {
    EventKind.TRADE_ACCEPTED: TradeStatus.ACCEPTED,
    EventKind.TRADE_DECLINED: TradeStatus.DECLINED,
    EventKind.TRADE_CANCELLED: TradeStatus.CANCELLED,
}


@dataclass(slots=True)
class TradeLifecycle:
    """``created -> awaiting_confirmation -> accepted | declined | cancelled | expired``."""

    record: ItemRecord
    offer: TradeOfferRef
    status: TradeStatus = TradeStatus.CREATED
    expiry_emitted: bool = False

    @property
    def item_key(self) -> str:
        return self.record.key

    def advance(self, status: TradeStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Trade {self.offer.external_offer_id} already {self.status}")
        self.status = status

    def bind(self, record: ItemRecord, offer: TradeOfferRef) -> None:
        self.record = record
        self.offer = offer
        if offer.is_bound and self.status is TradeStatus.CREATED:
            self.status = TradeStatus.AWAITING_CONFIRMATION


class TradeTracker:
    """Open trade lifecycles, one per item, driven by ledger results."""

    def __init__(self, *, last_sequence: int = -1) -> None:
        self._guard = threading.Lock()
        self._open: dict[str, TradeLifecycle] = {}
        self._sequence = last_sequence

    @classmethod
    def rebuild(cls, records: Iterable[ItemRecord], *, last_sequence: int = -1) -> TradeTracker:
        tracker = cls(last_sequence=last_sequence)
        for record in records:
            if record.trade_offer is not None:
                tracker._open_lifecycle(record, record.trade_offer)
        return tracker

    def __len__(self) -> int:
        with self._guard:
            return len(self._open)

    def get(self, item_key: str) -> TradeLifecycle | None:
        with self._guard:
            return self._open.get(item_key)

    def open_lifecycles(self) -> list[TradeLifecycle]:
        with self._guard:
            return list(self._open.values())

    def observe(self, result: ApplyResult) -> TradeLifecycle | None:
        """Open, update or close the item's lifecycle after one ``apply``.

        Returns the lifecycle that was closed, if any.
        """

        snapshot = result.snapshot
        offer = snapshot.trade_offer
        with self._guard:
            current = self._open.get(snapshot.key)
            if offer is not None:
                if current is None or current.offer.external_offer_id != offer.external_offer_id:
                    if current is not None:
                        current.advance(TradeStatus.CANCELLED)
                    self._open_lifecycle(snapshot, offer)
                else:
                    current.bind(snapshot, offer)
                return current if current is not None and current.status.is_terminal else None
            if current is None:
                return None
            del self._open[snapshot.key]
        current.advance(self._closing_status(result.event))
        log.info(
            "Trade %s for %s ended %s",
            current.offer.external_offer_id,
            snapshot.key,
            current.status,
        )
        return current

    def expire_due(self, now: datetime) -> list[ObservedEvent]:
        """Synthetic cancellations for offers past their deadline, once per offer."""

        events: list[ObservedEvent] = []
        with self._guard:
            for lifecycle in self._open.values():
                if lifecycle.expiry_emitted or not lifecycle.offer.is_expired(now):
                    continue
                lifecycle.expiry_emitted = True
                self._sequence += 1
                events.append(
                    ObservedEvent(
                        source=TRADE_TIMER_SOURCE,
                        identity=lifecycle.record.identity,
                        kind=EventKind.TRADE_CANCELLED,
                        observed_at=now,
                        sequence=self._sequence,
                        market=lifecycle.offer.market,
                        payload={
                            "offer_id": lifecycle.offer.external_offer_id,
                            "reason": EXPIRED_REASON,
                        },
                    )
                )
        return events

    def rearm(self, event: ObservedEvent) -> None:
        """Let the next sweep emit the expiry again after ``event`` failed to apply."""

        with self._guard:
            for lifecycle in self._open.values():
                if (
                    lifecycle.record.identity == event.identity
                    and lifecycle.offer.external_offer_id == event.text("offer_id")
                ):
                    lifecycle.expiry_emitted = False

    def _open_lifecycle(self, record: ItemRecord, offer: TradeOfferRef) -> None:
        lifecycle = TradeLifecycle(record=record, offer=offer)
        lifecycle.bind(record, offer)
        self._open[record.key] = lifecycle

    @staticmethod
    def _closing_status(event: ObservedEvent) -> TradeStatus:
        if event.text("reason") == EXPIRED_REASON:
            return TradeStatus.EXPIRED
        return _CLOSING_STATUS.get(event.kind, TradeStatus.CANCELLED)
