"""Authoritative map from item identity to its canonical record and history."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import TYPE_CHECKING

from skinsync.domain.errors import (
    ConflictDetected,
    ItemNotFoundError,
    JournalWriteError,
    StaleEvent,
)
from skinsync.domain.model import ApplyOutcome, ItemIdentity, new_record
from skinsync.domain.reconciliation.contracts import ApplyResult
from skinsync.domain.reconciliation.transitions import transition

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from skinsync.domain.model import ItemRecord, ObservedEvent
    from skinsync.domain.ports import EventJournal
    from skinsync.domain.reconciliation.contracts import TransitionContext

log = logging.getLogger(__name__)


class KeyedLocks:
    """One lock per item key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.lock_for(key):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class IdentityIndex:
    """Resolves asset and descriptor keys to the record key they belong to.

    Resolution order is asset id first (the live inventory slot), then the
    descriptor. A key is reserved the moment it is first resolved so two
    concurrent first sightings of one item land on the same record.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._keys: dict[str, str] = {}

    def resolve(self, identity: ItemIdentity) -> str | None:
        with self._guard:
            return self._lookup(identity)

    def resolve_or_reserve(self, identity: ItemIdentity) -> str:
        with self._guard:
            key = self._lookup(identity)
            if key is None:
                key = identity.canonical_key
                self._bind(identity, key)
            return key

    def bind(self, identity: ItemIdentity, key: str) -> None:
        with self._guard:
            self._bind(identity, key)

    def _lookup(self, identity: ItemIdentity) -> str | None:
        for candidate in identity.priority_keys:
            key = self._keys.get(candidate)
            if key is not None:
                return key
        return None

    def _bind(self, identity: ItemIdentity, key: str) -> None:
        self._keys[key] = key
        for candidate in identity.priority_keys:
            # A descriptor keeps pointing at its first record; asset slots move.
            if candidate.startswith("asset:"):
                self._keys[candidate] = key
            else:
                self._keys.setdefault(candidate, key)


class ItemLedger:
    """In-memory ledger; ``apply`` is its only mutator.

    ``apply`` is serialized per item key, never globally, and never awaits, so
    an in-flight call always completes even when the calling task is cancelled.
    Reads return immutable snapshots and take no item lock.
    """

    def __init__(self, context: TransitionContext, *, journal: EventJournal | None = None) -> None:
        self.context = context
        self._journal = journal
        self._locks = KeyedLocks()
        self._index = IdentityIndex()
        self._records: dict[str, ItemRecord] = {}
        self._history: defaultdict[str, list[tuple[int, ObservedEvent]]] = defaultdict(list)
        self._cursor_guard = threading.Lock()
        self._cursors: dict[str, int] = {}

    # reads ---------------------------------------------------------------

    def key_of(self, identity: ItemIdentity | str) -> str:
        if isinstance(identity, str):
            if identity in self._records:
                return identity
            raise ItemNotFoundError(identity)
        key = self._index.resolve(identity)
        if key is None or key not in self._records:
            raise ItemNotFoundError(identity)
        return key

    def get(self, identity: ItemIdentity | str) -> ItemRecord:
        return self._records[self.key_of(identity)]

    def snapshot(self, identity: ItemIdentity | str) -> ItemRecord:
        return self.get(identity)

    def find(self, identity: ItemIdentity | str) -> ItemRecord | None:
        try:
            return self.get(identity)
        except ItemNotFoundError:
            return None

    def history_of(
        self, identity: ItemIdentity | str, *, current_cycle: bool = False
    ) -> tuple[ObservedEvent, ...]:
        """Every non-duplicate event of the item, in application order."""

        key = self.key_of(identity)
        entries = tuple(self._history[key])
        if not current_cycle:
            return tuple(event for _, event in entries)
        cycle = self._records[key].cycle
        return tuple(event for event_cycle, event in entries if event_cycle == cycle)

    def records(self) -> list[ItemRecord]:
        return sorted(self._records.values(), key=lambda record: record.key)

    def source_watermark(self, source: str) -> int:
        """Highest sequence applied from ``source`` across all items, ``-1`` if none."""
        with self._cursor_guard:
            return self._cursors.get(source, -1)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, (ItemIdentity, str)):
            return False
        return self.find(identity) is not None

    # mutation ------------------------------------------------------------

    def apply(self, event: ObservedEvent) -> ApplyResult:
        key = self._index.resolve_or_reserve(event.identity)
        with self._locks.hold(key):
            return self._apply_locked(key, event, journal=self._journal)

    def replay(self, events: Iterable[ObservedEvent]) -> int:
        """Rebuild an empty ledger from a journaled log without journaling again."""

        if self._records:
            raise RuntimeError("replay needs an empty ledger")
        applied = 0
        for event in events:
            key = self._index.resolve_or_reserve(event.identity)
            with self._locks.hold(key):
                result = self._apply_locked(key, event, journal=None)
            if result.outcome is not ApplyOutcome.DUPLICATE:
                applied += 1
        log.info("Replayed %s events into %s records", applied, len(self._records))
        return applied

    def _apply_locked(
        self, key: str, event: ObservedEvent, *, journal: EventJournal | None
    ) -> ApplyResult:
        previous = self._records.get(key)
        current = previous or new_record(event.identity, key=key)

        if event.sequence <= current.watermark(event.source):
            log.debug("Duplicate %s#%s for %s", event.source, event.sequence, key)
            return ApplyResult(
                event=event,
                snapshot=current,
                previous=previous,
                outcome=ApplyOutcome.DUPLICATE,
            )

        base = current.advanced(event.source, event.sequence, event.observed_at)
        step = transition(base, event, self.context)

        error: StaleEvent | ConflictDetected | None = None
        if step.outcome is ApplyOutcome.STALE:
            # Only the cursors move; the state and its version stay put.
            snapshot = base.evolve(version=current.version, updated_at=current.updated_at)
            error = StaleEvent(event, step.reason)
            log.debug("%s", error)
        else:
            snapshot = step.record
            if step.conflict is not None:
                error = ConflictDetected(event, step.conflict)

        # Nothing is published until the journal holds the event, so a failed
        # write leaves the record as it was and redelivery runs it again.
        if journal is not None:
            try:
                journal.record(event, snapshot, outcome=step.outcome)
            except Exception as exc:
                raise JournalWriteError(event) from exc

        self._records[key] = snapshot
        self._history[key].append((snapshot.cycle, event))
        self._index.bind(snapshot.identity, key)
        self._index.bind(event.identity, key)
        with self._cursor_guard:
            if event.sequence > self._cursors.get(event.source, -1):
                self._cursors[event.source] = event.sequence

        return ApplyResult(
            event=event,
            snapshot=snapshot,
            previous=previous,
            outcome=step.outcome,
            actions=step.actions if step.outcome is not ApplyOutcome.STALE else (),
            error=error,
        )
