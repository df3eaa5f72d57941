"""Item lifecycle state machine and the engine applying it."""

from __future__ import annotations

from .contracts import DEFAULT_CONFIRMATION_WINDOW, ApplyResult, Transition, TransitionContext
from .engine import ReconciliationEngine
from .transitions import EXPIRED_REASON, transition

__all__ = [
    "DEFAULT_CONFIRMATION_WINDOW",
    "EXPIRED_REASON",
    "ApplyResult",
    "ReconciliationEngine",
    "Transition",
    "TransitionContext",
    "transition",
]
