"""Outbound port for operator-facing notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from skinsync.domain.errors import ActionDispatchFailure, ConflictDetected
    from skinsync.domain.model import ItemRecord


@runtime_checkable
class ConflictReporter(Protocol):
    def conflict(self, record: ItemRecord, error: ConflictDetected) -> None: ...

    def dispatch_failure(self, record: ItemRecord | None, error: ActionDispatchFailure) -> None: ...


__all__ = ["ConflictReporter"]
