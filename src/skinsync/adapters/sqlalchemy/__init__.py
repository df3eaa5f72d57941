"""SQLAlchemy adapter package for skinsync."""

from __future__ import annotations

from .mappings import (
    create_all_tables,
    item_snapshot_table,
    metadata,
    observed_event_table,
)
from .repositories import SqlAlchemyEventLogRepository, SqlAlchemySnapshotRepository
from .unit_of_work import (
    SqlAlchemyEventJournal,
    SqlAlchemyJournalUnitOfWork,
    StartupError,
    get_unit_of_work,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyEventJournal",
    "SqlAlchemyEventLogRepository",
    "SqlAlchemyJournalUnitOfWork",
    "SqlAlchemySnapshotRepository",
    "StartupError",
    "create_all_tables",
    "get_unit_of_work",
    "item_snapshot_table",
    "metadata",
    "observed_event_table",
    "shutdown",
    "startup",
]
