"""SQLAlchemy-backed unit of work and the event journal built on it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from skinsync.adapters.sqlalchemy.mappings import create_all_tables
from skinsync.adapters.sqlalchemy.repositories import (
    SqlAlchemyEventLogRepository,
    SqlAlchemySnapshotRepository,
)
from skinsync.domain.ports.unit_of_work import JournalRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

    from skinsync.domain.model import ApplyOutcome, ItemRecord, ObservedEvent


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call skinsync.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def _is_memory_sqlite(database_uri: str) -> bool:
    if not database_uri.startswith("sqlite"):
        return False
    return ":memory:" in database_uri or database_uri.rstrip("/").endswith(":")


def _create_engine(database_uri: str) -> Engine:
    if _is_memory_sqlite(database_uri):
        # One shared connection, usable from dispatcher threads.
        return create_engine(
            database_uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_uri)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the SQLAlchemy engine, the journal tables, and the session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )
    if engine is None and database_uri is None:
        raise StartupError("startup() needs an engine or a database URI")

    resolved_engine = engine or _create_engine(database_uri or "")
    create_all_tables(resolved_engine)
    if _STATE.engine is not None and _STATE.engine is not resolved_engine:
        _STATE.engine.dispose()
    _STATE.engine = resolved_engine
    return resolved_engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class SqlAlchemyJournalUnitOfWork:
    """Unit of work over the event log and snapshot repositories."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None
        self._repositories: JournalRepositories | None = None

    def __enter__(self) -> SqlAlchemyJournalUnitOfWork:
        self.session = self.session_factory()
        self._repositories = JournalRepositories(
            events=SqlAlchemyEventLogRepository(self.session),
            snapshots=SqlAlchemySnapshotRepository(self.session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self.session = None
        self._repositories = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> JournalRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


def get_unit_of_work() -> SqlAlchemyJournalUnitOfWork:
    return SqlAlchemyJournalUnitOfWork()


class SqlAlchemyEventJournal:
    """``EventJournal`` committing every event together with the snapshot it produced."""

    def record(
        self, event: ObservedEvent, snapshot: ItemRecord, *, outcome: ApplyOutcome
    ) -> None:
        with get_unit_of_work() as uow:
            uow.repositories.events.add(event, item_key=snapshot.key, outcome=outcome)
            uow.repositories.snapshots.upsert(snapshot)
            uow.commit()

    def load_events(self) -> list[ObservedEvent]:
        with get_unit_of_work() as uow:
            return uow.repositories.events.ordered()
