"""Normalized facts observed from the inventory provider and marketplaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .enums import EventKind, Market
from .identity import ItemIdentity

if TYPE_CHECKING:
    from collections.abc import Mapping

# Source ids for facts produced inside the process rather than by a provider.
TRADE_TIMER_SOURCE = "trade-timer"
DISPATCHER_SOURCE = "dispatcher"

_MARKETS_BY_ID = {market.value: market for market in Market}


def _json_value(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload or {}))


@dataclass(frozen=True, slots=True, kw_only=True)
class ObservedEvent:
    """One immutable fact from one source.

    ``sequence`` is the source's own monotonic counter; together with ``source``
    it identifies the event for idempotent re-delivery. ``market`` names the
    marketplace the fact is about, which differs from ``source`` for trade
    events reported by the inventory provider.
    """

    source: str
    identity: ItemIdentity
    kind: EventKind
    observed_at: datetime
    sequence: int
    market: Market | None = None
    payload: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))

    def __post_init__(self) -> None:
        if self.observed_at.tzinfo is None:
            raise ValueError("observed_at must be timezone-aware")
        if self.sequence < 0:
            raise ValueError("sequence must be non-negative")
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", _freeze(self.payload))
        if self.market is None:
            source_market = _MARKETS_BY_ID.get(self.source)
            if source_market is not None and source_market.is_marketplace:
                object.__setattr__(self, "market", source_market)

    @property
    def event_id(self) -> tuple[str, int]:
        return (self.source, self.sequence)

    def text(self, key: str) -> str | None:
        value = self.payload.get(key)
        if value is None:
            return None
        return str(value)

    def price(self, key: str = "price") -> Decimal | None:
        value = self.payload.get(key)
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    def timestamp(self, key: str) -> datetime | None:
        value = self.payload.get(key)
        if isinstance(value, datetime):
            return value
        if isinstance(value, str) and value:
            return datetime.fromisoformat(value)
        return None

    def to_payload(self) -> dict[str, Any]:
        """JSON-friendly copy of the payload for journaling."""
        return {key: _json_value(value) for key, value in self.payload.items()}
