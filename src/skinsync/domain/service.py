"""Long-running synchronization: pollers, the expiry timer and dispatch workers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from skinsync.domain.errors import JournalWriteError, TransientSourceError
from skinsync.domain.model import ApplyOutcome

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence
    from typing import Any

    from skinsync.domain.dispatch import ActionDispatcher
    from skinsync.domain.ports import SourceAdapter
    from skinsync.domain.reconciliation import ReconciliationEngine

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_EXPIRY_INTERVAL_SECONDS = 15.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class SyncRoundResult:
    """Outcome of one polling round across every source."""

    observed: int = 0
    applied: int = 0
    stale: int = 0
    conflicts: int = 0
    expired: int = 0
    actions: int = 0
    failed_sources: list[str] = field(default_factory=list)


class SynchronizationService:
    """Feeds every source into the engine and every action into the dispatcher.

    Sources run independently: one failing poll is logged and retried on the
    next interval without holding up the others. ``stop`` ends ``run`` after
    the in-flight ``apply`` calls have finished.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        dispatcher: ActionDispatcher,
        adapters: Sequence[SourceAdapter],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        expiry_interval: float = DEFAULT_EXPIRY_INTERVAL_SECONDS,
        workers: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if workers < 1:
            raise ValueError("At least one dispatch worker is needed")
        self.engine = engine
        self.dispatcher = dispatcher
        self.adapters = list(adapters)
        self.poll_interval = poll_interval
        self.expiry_interval = expiry_interval
        self.workers = workers
        self._clock = clock
        self._stopping = asyncio.Event()

    # single steps --------------------------------------------------------

    async def poll_source(self, adapter: SourceAdapter, result: SyncRoundResult) -> None:
        since = self.engine.ledger.source_watermark(adapter.source_id)
        async for event in adapter.events(since):
            result.observed += 1
            try:
                applied = self.engine.ingest(event)
            except JournalWriteError:
                # The source cursor stays before this event; the next poll resends it.
                raise
            except Exception:
                # One malformed event must not stall the item stream of a source.
                log.exception(
                    "Could not apply %s from %s#%s", event.kind, event.source, event.sequence
                )
                continue
            match applied.outcome:
                case ApplyOutcome.APPLIED:
                    result.applied += 1
                case ApplyOutcome.CONFLICT:
                    result.applied += 1
                    result.conflicts += 1
                case ApplyOutcome.STALE:
                    result.stale += 1
                case _:
                    pass
            result.actions += self.dispatcher.submit(applied.actions)

    def expire_due(self, result: SyncRoundResult) -> None:
        for applied in self.engine.expire_due(self._clock()):
            result.expired += 1
            result.actions += self.dispatcher.submit(applied.actions)

    async def run_once(self) -> SyncRoundResult:
        """Poll every source once, expire overdue offers and drain the dispatch queue."""

        result = SyncRoundResult()
        for adapter in self.adapters:
            if not await self._guarded_poll(adapter, result):
                result.failed_sources.append(adapter.source_id)
        self.expire_due(result)

        workers = [
            asyncio.create_task(self.dispatcher.worker(), name=f"dispatch-{index}")
            for index in range(self.workers)
        ]
        try:
            await self.dispatcher.queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        log.info(
            "Sync round: observed=%s applied=%s stale=%s conflicts=%s expired=%s actions=%s",
            result.observed,
            result.applied,
            result.stale,
            result.conflicts,
            result.expired,
            result.actions,
        )
        return result

    # service loop --------------------------------------------------------

    async def run(self) -> None:
        self._stopping.clear()
        tasks = [
            self._spawn(self._poll_loop(adapter), f"poll-{adapter.source_id}")
            for adapter in self.adapters
        ]
        tasks.append(self._spawn(self._expiry_loop(), "expiry"))
        tasks.extend(
            self._spawn(self.dispatcher.worker(), f"dispatch-{index}")
            for index in range(self.workers)
        )
        log.info(
            "Synchronizing %s sources with %s dispatch workers",
            len(self.adapters),
            self.workers,
        )
        try:
            await self._stopping.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.aclose()
            log.info("Synchronization stopped (%s actions left queued)", self.dispatcher.queue.qsize())

    def stop(self) -> None:
        self._stopping.set()

    async def aclose(self) -> None:
        for adapter in self.adapters:
            try:
                await adapter.aclose()
            except Exception:
                log.exception("Closing %s failed", adapter.source_id)

    @staticmethod
    def _spawn(coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        return asyncio.create_task(coro, name=name)

    async def _guarded_poll(self, adapter: SourceAdapter, result: SyncRoundResult) -> bool:
        try:
            await self.poll_source(adapter, result)
        except TransientSourceError as exc:
            log.warning("Polling %s failed: %s", adapter.source_id, exc)
            return False
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Polling %s failed", adapter.source_id)
            return False
        return True

    async def _poll_loop(self, adapter: SourceAdapter) -> None:
        while not self._stopping.is_set():
            await self._guarded_poll(adapter, SyncRoundResult())
            await asyncio.sleep(self.poll_interval)

    async def _expiry_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                self.expire_due(SyncRoundResult())
            except Exception:
                log.exception("Trade offer expiry check failed")
            await asyncio.sleep(self.expiry_interval)
