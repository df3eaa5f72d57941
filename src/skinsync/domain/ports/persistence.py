"""Ports for persisting the event log and ledger snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from skinsync.domain.model import ApplyOutcome, ItemRecord, ObservedEvent


@runtime_checkable
class EventJournal(Protocol):
    """Append-only event log plus the materialized snapshot table.

    The log is the source of truth; snapshots only serve operator tooling and
    are rebuilt by replaying the log after a restart.
    """

    def record(
        self, event: ObservedEvent, snapshot: ItemRecord, *, outcome: ApplyOutcome
    ) -> None: ...

    def load_events(self) -> Iterable[ObservedEvent]: ...


@runtime_checkable
class EventLogRepository(Protocol):
    """Persistence contract for journaled events."""

    def add(self, event: ObservedEvent, *, item_key: str, outcome: ApplyOutcome) -> None: ...

    def ordered(self) -> Sequence[ObservedEvent]: ...


@runtime_checkable
class SnapshotRepository(Protocol):
    """Persistence contract for materialized item snapshots."""

    def upsert(self, record: ItemRecord) -> None: ...

    def get(self, item_key: str) -> Mapping[str, Any] | None: ...

    def query(
        self, *, state: str | None = None, flagged: bool | None = None
    ) -> Sequence[Mapping[str, Any]]: ...


__all__ = ["EventJournal", "EventLogRepository", "SnapshotRepository"]
