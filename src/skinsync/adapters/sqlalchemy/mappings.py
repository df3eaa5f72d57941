"""SQLAlchemy table metadata for the event journal and ledger snapshots."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Integer,
    MetaData,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
)

from skinsync.domain.model import (
    ApplyOutcome,
    EventKind,
    ItemIdentity,
    ItemRecord,
    Market,
    ObservedEvent,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine, RowMapping

log = logging.getLogger(__name__)

metadata = MetaData()


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


# Append-only; the ledger is rebuilt by replaying it in ``id`` order.
observed_event_table = Table(
    "observed_event",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("item_key", String(160), nullable=False, index=True),
    Column("source", String(64), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("kind", String(32), nullable=False),
    Column("market", String(32), nullable=True),
    Column("observed_at", UTCDateTime(), nullable=False),
    Column("class_id", String(64), nullable=False),
    Column("instance_id", String(64), nullable=False),
    Column("pattern", String(128), nullable=True),
    Column("asset_id", String(64), nullable=True),
    Column("payload", JSON, nullable=False),
    Column("outcome", String(16), nullable=False),
    UniqueConstraint("source", "sequence", "item_key", name="uq_observed_event_delivery"),
)

item_snapshot_table = Table(
    "item_snapshot",
    metadata,
    Column("item_key", String(160), primary_key=True),
    Column("state", String(32), nullable=False),
    Column("market", String(32), nullable=True),
    Column("class_id", String(64), nullable=False),
    Column("instance_id", String(64), nullable=False),
    Column("pattern", String(128), nullable=True),
    Column("asset_id", String(64), nullable=True),
    Column("trade_offer_id", String(64), nullable=True),
    Column("steam_trade_offer_id", String(64), nullable=True),
    Column("confirmation_deadline", UTCDateTime(), nullable=True),
    Column("hold_until", UTCDateTime(), nullable=True),
    Column("listing_eligible", Boolean, nullable=False),
    Column("listing_price", String(32), nullable=True),
    Column("pulled", JSON, nullable=False),
    Column("version", Integer, nullable=False),
    Column("cycle", Integer, nullable=False),
    Column("flagged", Boolean, nullable=False),
    Column("conflict_count", Integer, nullable=False),
    Column("failure_count", Integer, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=True),
)


def create_all_tables(engine: Engine) -> None:
    log.debug("Creating journal tables on %s", engine.url)
    metadata.create_all(engine)


def event_to_row(event: ObservedEvent, *, item_key: str, outcome: ApplyOutcome) -> dict[str, Any]:
    identity = event.identity
    return {
        "item_key": item_key,
        "source": event.source,
        "sequence": event.sequence,
        "kind": event.kind.value,
        "market": event.market.value if event.market else None,
        "observed_at": event.observed_at,
        "class_id": identity.class_id,
        "instance_id": identity.instance_id,
        "pattern": identity.pattern,
        "asset_id": identity.asset_id,
        "payload": event.to_payload(),
        "outcome": outcome.value,
    }


def row_to_event(row: RowMapping) -> ObservedEvent:
    return ObservedEvent(
        source=row["source"],
        identity=ItemIdentity(
            class_id=row["class_id"],
            instance_id=row["instance_id"],
            pattern=row["pattern"],
            asset_id=row["asset_id"],
        ),
        kind=EventKind(row["kind"]),
        observed_at=row["observed_at"],
        sequence=row["sequence"],
        market=Market(row["market"]) if row["market"] else None,
        payload=row["payload"] or {},
    )


def _price_text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def snapshot_to_row(record: ItemRecord) -> dict[str, Any]:
    identity = record.identity
    offer = record.trade_offer
    return {
        "item_key": record.key,
        "state": record.state.value,
        "market": record.market.value if record.market else None,
        "class_id": identity.class_id,
        "instance_id": identity.instance_id,
        "pattern": identity.pattern,
        "asset_id": identity.asset_id,
        "trade_offer_id": offer.external_offer_id if offer else None,
        "steam_trade_offer_id": offer.steam_trade_offer_id if offer else None,
        "confirmation_deadline": offer.confirmation_deadline if offer else None,
        "hold_until": record.hold_until,
        "listing_eligible": record.listing_eligible,
        "listing_price": _price_text(record.listing_price),
        "pulled": sorted(market.value for market in record.pulled),
        "version": record.version,
        "cycle": record.cycle,
        "flagged": record.flagged,
        "conflict_count": len(record.conflicts),
        "failure_count": len(record.failures),
        "updated_at": record.updated_at,
    }
