"""Turns emitted actions into calls against source adapters."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from skinsync.domain.errors import (
    ActionDispatchFailure,
    PermanentDispatchError,
    RetryableDispatchError,
    TransientSourceError,
    UnknownSourceError,
)
from skinsync.domain.model import (
    DISPATCHER_SOURCE,
    ActionKind,
    DispatchOutcome,
    EventKind,
    LifecycleState,
    ObservedEvent,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence

    from skinsync.domain.ledger import ItemLedger
    from skinsync.domain.model import Action, ActionKey, ItemRecord, Market
    from skinsync.domain.ports import ConflictReporter, Pricer, SourceAdapter
    from skinsync.domain.reconciliation import ReconciliationEngine

log = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _listing_closed(history: Sequence[ObservedEvent], market: Market | None) -> bool:
    """Whether the marketplace confirmed the withdrawal after its last listing."""

    closed = False
    for event in history:
        if event.market != market:
            continue
        if event.kind is EventKind.LISTED:
            closed = False
        elif event.kind is EventKind.WITHDRAWN:
            closed = True
    return closed


def superseded_reason(action: Action, record: ItemRecord, history: Sequence[ObservedEvent]) -> str | None:
    """Why the current snapshot makes ``action`` pointless, or ``None``."""

    match action.kind:
        case ActionKind.WITHDRAW_LISTING:
            if action.market not in record.pulled:
                return f"listing on {action.market} is live again"
            if _listing_closed(history, action.market):
                return f"{action.market} already confirmed the withdrawal"
        case ActionKind.CONFIRM_TRADE:
            offer = record.trade_offer
            if offer is None or action.offer is None:
                return "no trade offer awaiting confirmation"
            if offer.external_offer_id != action.offer.external_offer_id:
                return f"offer {action.offer.external_offer_id} was replaced"
        case ActionKind.CANCEL_TRADE:
            offer = record.trade_offer
            if (
                offer is not None
                and action.offer is not None
                and offer.market == action.offer.market
                and offer.external_offer_id == action.offer.external_offer_id
            ):
                return "offer is the active claim"
            if record.state is LifecycleState.SOLD and action.offer is not None:
                if record.market == action.offer.market:
                    return "trade already settled"
        case ActionKind.RELIST_AT:
            if not record.is_listable:
                return f"item is {record.state}"
    return None


class ActionDispatcher:
    """Executes actions exactly once per ``(item, kind, target, version)``.

    A permanent failure counts as done (the provider state already matches or
    never will) but is recorded on the item; exhausted retries are recorded the
    same way. Cancelling the calling task cancels pending retries immediately.

    Keys are remembered per item only until the item's version moves past
    them; older actions are left to the supersession check.
    """

    def __init__(
        self,
        ledger: ItemLedger,
        adapters: Mapping[str, SourceAdapter],
        *,
        engine: ReconciliationEngine | None = None,
        pricer: Pricer | None = None,
        reporter: ConflictReporter | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.ledger = ledger
        self.adapters = dict(adapters)
        self.engine = engine
        self.pricer = pricer
        self.reporter = reporter
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._seen: dict[str, set[ActionKey]] = {}
        self._in_flight: set[ActionKey] = set()
        self._sequence = itertools.count(ledger.source_watermark(DISPATCHER_SOURCE) + 1)
        self.queue: asyncio.Queue[Action] = asyncio.Queue()

    # queueing ------------------------------------------------------------

    def submit(self, actions: Iterable[Action]) -> int:
        submitted = 0
        for action in actions:
            self.queue.put_nowait(action)
            submitted += 1
        return submitted

    async def worker(self) -> None:
        """Drain the queue until cancelled; one action's failure never stops the loop."""

        while True:
            action = await self.queue.get()
            try:
                await self.dispatch(action)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Dispatching %s for %s failed", action.kind, action.item_key)
            finally:
                self.queue.task_done()

    # dispatch ------------------------------------------------------------

    @property
    def remembered(self) -> int:
        """Number of action keys currently held for de-duplication."""
        return sum(len(keys) for keys in self._seen.values())

    async def dispatch(self, action: Action) -> DispatchOutcome:
        seen = self._seen.setdefault(action.item_key, set())
        if action.key in seen:
            log.debug("Skipping duplicate %s for %s", action.kind, action.item_key)
            return DispatchOutcome.DUPLICATE
        seen.add(action.key)
        self._in_flight.add(action.key)
        try:
            return await self._dispatch(action)
        finally:
            self._in_flight.discard(action.key)
            self._forget_settled(action.item_key)

    def _forget_settled(self, item_key: str) -> None:
        """Drop finished keys emitted before the item's current version."""

        seen = self._seen.get(item_key)
        if seen is None:
            return
        record = self.ledger.find(item_key)
        floor = record.version if record is not None else 0
        seen.difference_update(
            [key for key in seen if key not in self._in_flight and key[3] < floor]
        )
        if not seen:
            del self._seen[item_key]

    async def _dispatch(self, action: Action) -> DispatchOutcome:
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            record = self.ledger.get(action.item_key)
            history = self.ledger.history_of(action.item_key, current_cycle=True)
            reason = superseded_reason(action, record, history)
            if reason is not None:
                log.info("%s for %s superseded: %s", action.kind, action.item_key, reason)
                return DispatchOutcome.SUPERSEDED

            try:
                outcome = await self._execute(action, record, history)
            except (TransientSourceError, RetryableDispatchError) as exc:
                outcome = DispatchOutcome.RETRYABLE_FAILURE
                last_error = str(exc)
            except PermanentDispatchError as exc:
                self._record_failure(record, exc, permanent=True)
                return DispatchOutcome.PERMANENT_FAILURE
            except UnknownSourceError as exc:
                self._record_failure(record, PermanentDispatchError(action, str(exc)), permanent=True)
                return DispatchOutcome.PERMANENT_FAILURE

            if outcome is DispatchOutcome.PERMANENT_FAILURE:
                self._record_failure(
                    record, PermanentDispatchError(action, "rejected by provider"), permanent=True
                )
                return outcome
            if outcome.is_settled:
                log.info("%s for %s on %s: %s", action.kind, action.item_key, action.target, outcome)
                return outcome

            if attempt < self.max_attempts:
                delay = self._backoff(attempt)
                log.debug(
                    "%s for %s failed (attempt %s/%s), retrying in %.1fs",
                    action.kind,
                    action.item_key,
                    attempt,
                    self.max_attempts,
                    delay,
                )
                await self._sleep(delay)

        record = self.ledger.get(action.item_key)
        self._record_failure(
            record,
            RetryableDispatchError(action, last_error or "retries exhausted"),
            permanent=False,
        )
        return DispatchOutcome.RETRYABLE_FAILURE

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_seconds * 2 ** (attempt - 1), self.max_backoff_seconds)

    async def _execute(
        self, action: Action, record: ItemRecord, history: Sequence[ObservedEvent]
    ) -> DispatchOutcome:
        if action.is_deferred:
            if self.pricer is None:
                log.info("No pricer configured, relist of %s left to the operator", record.key)
                return DispatchOutcome.SUPERSEDED
            quote = await self.pricer.price_for(record, history)
            if quote is None:
                log.info("No price quote for %s yet", record.key)
                return DispatchOutcome.SUPERSEDED
            market, price = quote
            action = replace(action, market=action.market or market, price=price)

        adapter = self.adapters.get(action.target)
        if adapter is None:
            raise UnknownSourceError(f"No adapter registered for {action.target}")
        return await adapter.execute(action)

    def _record_failure(
        self, record: ItemRecord, error: ActionDispatchFailure, *, permanent: bool
    ) -> None:
        action = error.action
        if permanent:
            log.warning("%s (item %s)", error, record.key)
        else:
            log.error("%s (item %s)", error, record.key)
        if self.reporter is not None:
            self.reporter.dispatch_failure(record, error)
        if self.engine is None:
            return
        self.engine.ingest(
            ObservedEvent(
                source=DISPATCHER_SOURCE,
                identity=record.identity,
                kind=EventKind.DISPATCH_FAILED,
                observed_at=self._clock(),
                sequence=next(self._sequence),
                market=action.market,
                payload={
                    "action_kind": action.kind.value,
                    "target": action.target,
                    "permanent": permanent,
                    "reason": str(error),
                },
            )
        )
