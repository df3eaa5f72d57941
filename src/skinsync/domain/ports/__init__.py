"""Domain port definitions for adapters."""

from __future__ import annotations

from .persistence import EventJournal, EventLogRepository, SnapshotRepository
from .pricing import LedgerReader, Pricer
from .reporting import ConflictReporter
from .sources import SourceAdapter
from .unit_of_work import (
    JournalRepositories,
    JournalUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "ConflictReporter",
    "EventJournal",
    "EventLogRepository",
    "JournalRepositories",
    "JournalUnitOfWork",
    "LedgerReader",
    "Pricer",
    "RepositoryCollection",
    "SnapshotRepository",
    "SourceAdapter",
    "UnitOfWork",
]
