"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update

from skinsync.adapters.sqlalchemy.mappings import (
    event_to_row,
    item_snapshot_table,
    observed_event_table,
    row_to_event,
    snapshot_to_row,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.orm import Session

    from skinsync.domain.model import ApplyOutcome, ItemRecord, ObservedEvent


class SqlAlchemyEventLogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, event: ObservedEvent, *, item_key: str, outcome: ApplyOutcome) -> None:
        row = event_to_row(event, item_key=item_key, outcome=outcome)
        self.session.execute(insert(observed_event_table).values(**row))

    def ordered(self) -> list[ObservedEvent]:
        stmt = select(observed_event_table).order_by(observed_event_table.c.id)
        return [row_to_event(row) for row in self.session.execute(stmt).mappings()]


class SqlAlchemySnapshotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, record: ItemRecord) -> None:
        row = snapshot_to_row(record)
        table = item_snapshot_table
        result = self.session.execute(
            update(table).where(table.c.item_key == record.key).values(**row)
        )
        if result.rowcount == 0:  # pyright: ignore[reportAttributeAccessIssue]
            self.session.execute(insert(table).values(**row))

    def get(self, item_key: str) -> Mapping[str, Any] | None:
        stmt = select(item_snapshot_table).where(item_snapshot_table.c.item_key == item_key)
        return self.session.execute(stmt).mappings().one_or_none()

    def query(
        self, *, state: str | None = None, flagged: bool | None = None
    ) -> list[Mapping[str, Any]]:
        table = item_snapshot_table
        stmt = select(table).order_by(table.c.item_key)
        if state is not None:
            stmt = stmt.where(table.c.state == state)
        if flagged is not None:
            stmt = stmt.where(table.c.flagged == flagged)
        return list(self.session.execute(stmt).mappings())
