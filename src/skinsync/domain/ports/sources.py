"""Ports implemented once per marketplace and once for the inventory provider."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from skinsync.domain.model import Action, DispatchOutcome, ObservedEvent


@runtime_checkable
class SourceAdapter(Protocol):
    """Normalizes one provider into ``ObservedEvent``s and executes actions on it.

    ``events`` is restartable: it yields only events whose sequence is greater
    than ``since`` (the ledger's watermark for ``source_id``). ``execute`` maps
    provider answers to ``DispatchOutcome`` and raises ``TransientSourceError``
    for network failures the dispatcher should retry.
    """

    @property
    def source_id(self) -> str: ...

    def events(self, since: int) -> AsyncIterator[ObservedEvent]: ...

    async def execute(self, action: Action) -> DispatchOutcome: ...

    async def aclose(self) -> None: ...


__all__ = ["SourceAdapter"]
