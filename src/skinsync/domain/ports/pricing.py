"""Read-side ports used by pricing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal

    from skinsync.domain.model import ItemIdentity, ItemRecord, Market, ObservedEvent


@runtime_checkable
class LedgerReader(Protocol):
    """Snapshot reads; never blocks reconciliation of other items."""

    def snapshot(self, identity: ItemIdentity | str) -> ItemRecord: ...

    def history_of(
        self, identity: ItemIdentity | str, *, current_cycle: bool = False
    ) -> Sequence[ObservedEvent]: ...


@runtime_checkable
class Pricer(Protocol):
    """Chooses where and at which price an item goes back on sale.

    Returns ``None`` when no quote is possible yet; the relist is then skipped
    until the next readiness signal.
    """

    async def price_for(
        self, record: ItemRecord, history: Sequence[ObservedEvent]
    ) -> tuple[Market, Decimal] | None: ...


__all__ = ["LedgerReader", "Pricer"]
