"""Shared reconciliation contract components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from skinsync.domain.model import ApplyOutcome, Market

if TYPE_CHECKING:
    from skinsync.domain.errors import ConflictDetected, StaleEvent
    from skinsync.domain.model import Action, ConflictRecord, ItemRecord, ObservedEvent

DEFAULT_CONFIRMATION_WINDOW = timedelta(hours=12)


@dataclass(frozen=True, slots=True)
class TransitionContext:
    """Static inputs of the state machine."""

    marketplaces: frozenset[Market]
    confirmation_window: timedelta = DEFAULT_CONFIRMATION_WINDOW

    def __post_init__(self) -> None:
        if Market.STEAM in self.marketplaces:
            raise ValueError("The inventory provider is not a marketplace")


@dataclass(frozen=True, slots=True, kw_only=True)
class Transition:
    """Result of feeding one event to the state machine."""

    record: ItemRecord
    outcome: ApplyOutcome
    actions: tuple[Action, ...] = ()
    conflict: ConflictRecord | None = None
    reason: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class ApplyResult:
    """What ``ItemLedger.apply`` hands back to callers.

    ``previous`` is ``None`` when the event created the record.
    """

    event: ObservedEvent
    snapshot: ItemRecord
    previous: ItemRecord | None
    outcome: ApplyOutcome
    actions: tuple[Action, ...] = ()
    error: StaleEvent | ConflictDetected | None = None

    @property
    def changed_state(self) -> bool:
        if self.previous is None:
            return True
        return (self.previous.state, self.previous.market) != (
            self.snapshot.state,
            self.snapshot.market,
        )
