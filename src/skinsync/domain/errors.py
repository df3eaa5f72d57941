"""Error taxonomy shared by the reconciliation core and its adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skinsync.domain.model import Action, ConflictRecord, ItemIdentity, ObservedEvent


class SkinSyncError(RuntimeError):
    """Base class for errors raised by skinsync."""


class TransientSourceError(SkinSyncError):
    """A network or timeout failure talking to a provider.

    Retried at the boundary (channel or dispatcher); never reaches the ledger.
    """

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class ItemNotFoundError(SkinSyncError, LookupError):
    def __init__(self, identity: ItemIdentity | str) -> None:
        super().__init__(f"No ledger record for {identity}")
        self.identity = identity


class UnknownSourceError(SkinSyncError):
    """Raised when an action targets a source with no registered adapter."""


class StaleEvent(SkinSyncError):  # noqa: N818
    """An event that cannot move the record forward.

    Not raised by ``apply``; returned on the result so callers can log it.
    """

    def __init__(self, event: ObservedEvent, reason: str) -> None:
        super().__init__(f"Stale {event.kind} from {event.source}#{event.sequence}: {reason}")
        self.event = event
        self.reason = reason


class ConflictDetected(SkinSyncError):  # noqa: N818
    """Two marketplaces claim the same item. Always surfaced, never dropped."""

    def __init__(self, event: ObservedEvent, conflict: ConflictRecord) -> None:
        market = conflict.market.value if conflict.market else "-"
        super().__init__(
            f"Conflict {conflict.kind} on {market} from {event.source}#{event.sequence}: "
            f"{conflict.detail}"
        )
        self.event = event
        self.conflict = conflict


class JournalWriteError(SkinSyncError):
    """The event log refused an event; the ledger was left unchanged."""

    def __init__(self, event: ObservedEvent) -> None:
        super().__init__(f"Could not journal {event.kind} from {event.source}#{event.sequence}")
        self.event = event


class TradeOfferExpired(SkinSyncError):  # noqa: N818
    """A trade offer passed its confirmation deadline; handled as a cancellation."""


class ActionDispatchFailure(SkinSyncError):
    def __init__(self, action: Action, message: str) -> None:
        super().__init__(f"{action.kind} -> {action.target}: {message}")
        self.action = action


class RetryableDispatchError(ActionDispatchFailure):
    """The provider may accept the action on a later attempt."""


class PermanentDispatchError(ActionDispatchFailure):
    """The provider rejected the action for good (e.g. listing already gone)."""
