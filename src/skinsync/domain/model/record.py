"""Canonical per-item state held by the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from .enums import ActionKind, ConflictKind, LifecycleState, Market
from .identity import ItemIdentity
from .trade import TradeOfferRef


@dataclass(frozen=True, slots=True, kw_only=True)
class ConflictRecord:
    """Audit flag for a double claim across marketplaces."""

    kind: ConflictKind
    market: Market | None
    source: str
    sequence: int
    cycle: int
    observed_at: datetime
    detail: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class DispatchFailureRecord:
    action_kind: ActionKind
    target: str
    permanent: bool
    observed_at: datetime
    reason: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class ItemRecord:
    """Immutable snapshot of one item's canonical state.

    Only the reconciliation engine produces new records (via ``evolve``); every
    other component receives these values read-only.
    """

    key: str
    identity: ItemIdentity
    state: LifecycleState = LifecycleState.UNKNOWN
    market: Market | None = None
    trade_offer: TradeOfferRef | None = None
    hold_until: datetime | None = None
    listing_eligible: bool = True
    listing_price: Decimal | None = None
    pulled: frozenset[Market] = field(default_factory=frozenset)
    watermarks: tuple[tuple[str, int], ...] = ()
    last_observed: tuple[tuple[str, datetime], ...] = ()
    version: int = 0
    cycle: int = 0
    conflicts: tuple[ConflictRecord, ...] = ()
    failures: tuple[DispatchFailureRecord, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def watermark(self, source: str) -> int:
        for name, sequence in self.watermarks:
            if name == source:
                return sequence
        return -1

    def last_observed_at(self, source: str) -> datetime | None:
        for name, observed_at in self.last_observed:
            if name == source:
                return observed_at
        return None

    @property
    def flagged(self) -> bool:
        """Whether the current lifecycle carries an unresolved conflict."""
        return any(conflict.cycle == self.cycle for conflict in self.conflicts)

    @property
    def is_listable(self) -> bool:
        if self.state in {LifecycleState.IN_INVENTORY, LifecycleState.WITHDRAWN}:
            return True
        return self.state is LifecycleState.TRADE_HOLD and self.listing_eligible

    def evolve(self, **changes: object) -> ItemRecord:
        return replace(self, **changes)  # pyright: ignore[reportArgumentType]

    def advanced(self, source: str, sequence: int, observed_at: datetime) -> ItemRecord:
        """Return a copy with the source cursor moved and the version bumped."""

        watermarks = dict(self.watermarks)
        watermarks[source] = max(sequence, watermarks.get(source, -1))
        observed = dict(self.last_observed)
        previous = observed.get(source)
        if previous is None or observed_at > previous:
            observed[source] = observed_at
        return replace(
            self,
            watermarks=tuple(sorted(watermarks.items())),
            last_observed=tuple(sorted(observed.items())),
            version=self.version + 1,
            created_at=self.created_at or observed_at,
            updated_at=observed_at if self.updated_at is None else max(self.updated_at, observed_at),
        )


def new_record(identity: ItemIdentity, *, key: str | None = None) -> ItemRecord:
    return ItemRecord(key=key or identity.canonical_key, identity=identity)
