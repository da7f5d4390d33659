"""Persisted run and phase records.

Records are validated on both encode and decode; malformed state files are
rejected instead of being coerced into something plausible.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# State file version for future schema migrations
STATE_VERSION = 1


class RunStatus(str, Enum):
    """Overall status of a run."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def terminal(cls) -> set[RunStatus]:
        """Statuses after which a run is archived and never resumed."""
        return {cls.COMPLETED, cls.CANCELLED}

    def __str__(self) -> str:
        return self.value


class PhaseStatus(str, Enum):
    """Status of a single phase within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def done(cls) -> set[PhaseStatus]:
        """Statuses that count toward run completion."""
        return {cls.COMPLETED, cls.SKIPPED}

    @classmethod
    def settled(cls) -> set[PhaseStatus]:
        """Statuses that may not transition any further."""
        return {cls.COMPLETED, cls.FAILED, cls.SKIPPED}

    def __str__(self) -> str:
        return self.value


class PhaseState(BaseModel):
    """Progress record for one phase."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration: float | None = None  # seconds, derived on completion/failure
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def is_done(self) -> bool:
        return self.status in PhaseStatus.done()


class RunState(BaseModel):
    """Durable record of one run's progress.

    ``phases`` preserves insertion order, which is the execution order.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    version: int = STATE_VERSION
    run_id: str = Field(min_length=1)
    solution: str
    status: RunStatus = RunStatus.CREATED
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    phases: dict[str, PhaseState]
    metadata: dict[str, Any] = Field(default_factory=dict)
    results_dir: str = ""

    @property
    def phase_names(self) -> list[str]:
        return list(self.phases)

    @property
    def all_phases_done(self) -> bool:
        return all(phase.is_done for phase in self.phases.values())

    def phase_counts(self) -> dict[str, int]:
        """Number of phases per status, for status displays."""
        counts: dict[str, int] = {}
        for phase in self.phases.values():
            counts[phase.status.value] = counts.get(phase.status.value, 0) + 1
        return counts
