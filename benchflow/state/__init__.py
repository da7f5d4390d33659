"""Checkpointed run state: models, storage, locking and phase transitions."""

from .lock import ExclusiveAccessGuard
from .models import PhaseState, PhaseStatus, RunState, RunStatus
from .store import RunStateStore
from .tracker import PhaseTracker

__all__ = [
    "ExclusiveAccessGuard",
    "PhaseState",
    "PhaseStatus",
    "PhaseTracker",
    "RunState",
    "RunStateStore",
    "RunStatus",
]
