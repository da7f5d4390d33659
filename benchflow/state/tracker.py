"""Phase transition logic for the current run.

Every mutation follows the same shape under the store's guard:
read current -> compute next -> atomic write -> release. A failure at any
step (including lock timeout) leaves the persisted state untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..errors import IllegalTransition, InvalidInput, PhaseNotFound, RunNotFound
from ..util import utc_now
from .models import PhaseState, PhaseStatus, RunState, RunStatus
from .store import RunStateStore

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Phase failed without an error message"

# Allowed phase transitions. Completed/failed/skipped phases never move again
# except through prepare_resume().
_ALLOWED_TRANSITIONS: dict[PhaseStatus, set[PhaseStatus]] = {
    PhaseStatus.PENDING: {
        PhaseStatus.RUNNING,
        PhaseStatus.COMPLETED,
        PhaseStatus.FAILED,
        PhaseStatus.SKIPPED,
    },
    PhaseStatus.RUNNING: {PhaseStatus.COMPLETED, PhaseStatus.FAILED},
    PhaseStatus.COMPLETED: set(),
    PhaseStatus.FAILED: set(),
    PhaseStatus.SKIPPED: set(),
}


class PhaseTracker:
    """Advances phase statuses and derives the run's overall status."""

    def __init__(self, store: RunStateStore):
        self.store = store

    def update_phase(
        self,
        run_id: str,
        phase: str,
        new_status: PhaseStatus | str,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> RunState:
        """Apply one phase transition and recompute the run status atomically."""
        status = PhaseStatus(new_status)

        def apply(state: RunState) -> None:
            if phase not in state.phases:
                raise PhaseNotFound(run_id, phase)
            phase_state = state.phases[phase]
            if status not in _ALLOWED_TRANSITIONS[phase_state.status]:
                raise IllegalTransition(phase, phase_state.status.value, status.value)

            now = utc_now()
            if status == PhaseStatus.RUNNING:
                phase_state.started_at = now
                if state.started_at is None:
                    state.started_at = now
                if state.status != RunStatus.FAILED:
                    state.status = RunStatus.IN_PROGRESS
            elif status in (PhaseStatus.COMPLETED, PhaseStatus.FAILED):
                phase_state.completed_at = now
                phase_state.duration = _duration(phase_state)
                if status == PhaseStatus.FAILED:
                    phase_state.error = error_message or DEFAULT_FAILURE_MESSAGE
                    state.status = RunStatus.FAILED
            phase_state.status = status
            if details:
                phase_state.details.update(details)

            # Same locked section as the transition, so two near-simultaneous
            # updates cannot both decide they completed the run.
            _recompute_run_status(state)

        state = self._mutate(run_id, apply)
        logger.info(f"[{run_id}] Phase {phase} -> {status.value} (run: {state.status})")
        return state

    def is_phase_completed(self, run_id: str, phase: str) -> bool:
        """True iff the phase is completed or skipped. Plain read, no lock."""
        state = self._read(run_id)
        if phase not in state.phases:
            raise PhaseNotFound(run_id, phase)
        return state.phases[phase].is_done

    def get_phase(self, run_id: str, phase: str) -> PhaseState:
        state = self._read(run_id)
        if phase not in state.phases:
            raise PhaseNotFound(run_id, phase)
        return state.phases[phase]

    def complete_run(
        self, run_id: str, status: RunStatus | str = RunStatus.COMPLETED
    ) -> RunState:
        """Force the run into a terminal status and archive it.

        Idempotent for a run that is already completed or cancelled.
        """
        final = RunStatus(status)
        if final not in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED):
            raise InvalidInput(f"complete_run needs a terminal status, got {final}")

        def apply(state: RunState) -> None:
            if state.status in RunStatus.terminal():
                return
            state.status = final
            if state.completed_at is None:
                state.completed_at = utc_now()

        state = self._mutate(run_id, apply)
        self.store.archive(state)
        logger.info(f"[{run_id}] Run finished with status {state.status}")
        return state

    def prepare_resume(self, run_id: str) -> RunState:
        """Return failed or interrupted phases to pending for another attempt.

        This is the only path by which a settled phase may move again; it is
        taken explicitly by an operator resuming a run.
        """

        def apply(state: RunState) -> None:
            if state.status in RunStatus.terminal():
                return
            reset = []
            for name, phase_state in state.phases.items():
                if phase_state.status not in (PhaseStatus.FAILED, PhaseStatus.RUNNING):
                    continue
                previous = phase_state.details.setdefault("previous_errors", [])
                previous.append(
                    {
                        "status": phase_state.status.value,
                        "error": phase_state.error or "interrupted",
                        "started_at": (
                            phase_state.started_at.isoformat()
                            if phase_state.started_at
                            else None
                        ),
                    }
                )
                state.phases[name] = PhaseState(details=phase_state.details)
                reset.append(name)

            resumes = state.metadata.setdefault("resumed_at", [])
            resumes.append(utc_now().isoformat())
            state.completed_at = None
            if state.started_at is not None:
                state.status = RunStatus.IN_PROGRESS
            else:
                state.status = RunStatus.CREATED
            if reset:
                logger.warning(f"[{run_id}] Resetting phases for retry: {', '.join(reset)}")

        return self._mutate(run_id, apply)

    def _read(self, run_id: str) -> RunState:
        state = self.store.read()
        if state.run_id != run_id:
            raise RunNotFound(run_id)
        return state

    def _mutate(self, run_id: str, apply: Callable[[RunState], None]) -> RunState:
        with self.store.guard:
            state = self._read(run_id)
            apply(state)
            self.store.write_atomic(state)
        return state


def _duration(phase_state: PhaseState) -> float:
    if phase_state.started_at is None or phase_state.completed_at is None:
        return 0.0
    return (phase_state.completed_at - phase_state.started_at).total_seconds()


def _recompute_run_status(state: RunState) -> None:
    """Derive the overall status from the phases. Failure is sticky."""
    if state.status == RunStatus.FAILED:
        return
    if state.all_phases_done:
        state.status = RunStatus.COMPLETED
        state.completed_at = utc_now()
    elif state.started_at is not None:
        # The run starts with its first running phase; skips alone do not count.
        state.status = RunStatus.IN_PROGRESS
