"""Tests for phase transitions and derived run status."""

from __future__ import annotations

import threading

import pytest

from benchflow.errors import IllegalTransition, InvalidInput, PhaseNotFound, RunNotFound
from benchflow.state.models import PhaseStatus, RunStatus
from benchflow.state.store import RunStateStore
from benchflow.state.tracker import DEFAULT_FAILURE_MESSAGE, PhaseTracker


@pytest.fixture
def run(store):
    return store.create("run-1", "X", ["A", "B", "C"])


class TestTransitions:
    def test_running_sets_started_and_run_in_progress(self, tracker, run):
        state = tracker.update_phase("run-1", "A", PhaseStatus.RUNNING)

        assert state.status == RunStatus.IN_PROGRESS
        assert state.started_at is not None
        assert state.phases["A"].started_at is not None
        assert state.phases["A"].completed_at is None

    def test_completion_records_duration(self, tracker, run):
        tracker.update_phase("run-1", "A", "running")
        state = tracker.update_phase("run-1", "A", "completed", details={"rows": 10})

        phase = state.phases["A"]
        assert phase.status == PhaseStatus.COMPLETED
        assert phase.completed_at >= phase.started_at
        assert phase.duration >= 0
        assert phase.details == {"rows": 10}

    def test_completing_pending_phase_has_zero_duration(self, tracker, run):
        state = tracker.update_phase("run-1", "A", PhaseStatus.COMPLETED)
        assert state.phases["A"].duration == 0.0

    def test_all_done_completes_run(self, tracker, run):
        tracker.update_phase("run-1", "A", PhaseStatus.COMPLETED)
        tracker.update_phase("run-1", "B", PhaseStatus.COMPLETED)
        state = tracker.update_phase("run-1", "C", PhaseStatus.SKIPPED)

        assert state.status == RunStatus.COMPLETED
        assert state.completed_at is not None
        assert tracker.store.read().status == RunStatus.COMPLETED

    def test_skipping_before_anything_runs_leaves_run_created(self, tracker, run):
        state = tracker.update_phase("run-1", "B", PhaseStatus.SKIPPED)

        assert state.status == RunStatus.CREATED
        assert state.started_at is None

        state = tracker.update_phase("run-1", "A", PhaseStatus.RUNNING)
        assert state.status == RunStatus.IN_PROGRESS

    def test_failure_is_sticky(self, tracker, run):
        tracker.update_phase("run-1", "A", PhaseStatus.RUNNING)
        tracker.update_phase("run-1", "A", PhaseStatus.FAILED, error_message="boom")
        state = tracker.update_phase("run-1", "B", PhaseStatus.COMPLETED)

        assert state.status == RunStatus.FAILED
        assert state.phases["A"].error == "boom"

    def test_failure_without_message_gets_default(self, tracker, run):
        state = tracker.update_phase("run-1", "B", PhaseStatus.FAILED)
        assert state.phases["B"].error == DEFAULT_FAILURE_MESSAGE

    @pytest.mark.parametrize(
        "first, second",
        [
            (PhaseStatus.COMPLETED, PhaseStatus.RUNNING),
            (PhaseStatus.COMPLETED, PhaseStatus.PENDING),
            (PhaseStatus.SKIPPED, PhaseStatus.COMPLETED),
            (PhaseStatus.FAILED, PhaseStatus.COMPLETED),
            (PhaseStatus.RUNNING, PhaseStatus.PENDING),
        ],
    )
    def test_illegal_transitions_are_rejected(self, tracker, run, first, second):
        tracker.update_phase("run-1", "A", first)
        before = tracker.store.state_file.read_text()

        with pytest.raises(IllegalTransition):
            tracker.update_phase("run-1", "A", second)
        assert tracker.store.state_file.read_text() == before

    def test_unknown_phase(self, tracker, run):
        with pytest.raises(PhaseNotFound):
            tracker.update_phase("run-1", "Z", PhaseStatus.RUNNING)
        with pytest.raises(PhaseNotFound):
            tracker.is_phase_completed("run-1", "Z")

    def test_unknown_run(self, tracker, run):
        with pytest.raises(RunNotFound):
            tracker.update_phase("run-2", "A", PhaseStatus.RUNNING)

    def test_unknown_status_value(self, tracker, run):
        with pytest.raises(ValueError):
            tracker.update_phase("run-1", "A", "half-done")


class TestQueries:
    def test_fresh_run_has_nothing_completed(self, tracker, run):
        assert not any(tracker.is_phase_completed("run-1", p) for p in ["A", "B", "C"])

    def test_is_phase_completed(self, tracker, run):
        tracker.update_phase("run-1", "A", PhaseStatus.COMPLETED)
        tracker.update_phase("run-1", "B", PhaseStatus.SKIPPED)
        tracker.update_phase("run-1", "C", PhaseStatus.RUNNING)

        assert tracker.is_phase_completed("run-1", "A")
        assert tracker.is_phase_completed("run-1", "B")
        assert not tracker.is_phase_completed("run-1", "C")

    def test_get_phase(self, tracker, run):
        tracker.update_phase("run-1", "B", PhaseStatus.FAILED, error_message="nope")
        assert tracker.get_phase("run-1", "B").error == "nope"


class TestCompleteRun:
    def test_complete_run_archives(self, tracker, run):
        state = tracker.complete_run("run-1")

        assert state.status == RunStatus.COMPLETED
        assert tracker.store.read_history("run-1").status == RunStatus.COMPLETED

    def test_complete_run_is_idempotent(self, tracker, run):
        first = tracker.complete_run("run-1", RunStatus.CANCELLED)
        second = tracker.complete_run("run-1", RunStatus.COMPLETED)

        assert second.status == RunStatus.CANCELLED
        assert second.completed_at == first.completed_at

    def test_complete_run_needs_terminal_status(self, tracker, run):
        with pytest.raises(InvalidInput):
            tracker.complete_run("run-1", "in_progress")


class TestPrepareResume:
    def test_failed_and_running_phases_return_to_pending(self, tracker, run):
        tracker.update_phase("run-1", "A", PhaseStatus.COMPLETED)
        tracker.update_phase("run-1", "B", PhaseStatus.RUNNING)
        tracker.update_phase("run-1", "B", PhaseStatus.FAILED, error_message="disk full")

        state = tracker.prepare_resume("run-1")

        assert state.status == RunStatus.IN_PROGRESS
        assert state.phases["A"].status == PhaseStatus.COMPLETED
        b = state.phases["B"]
        assert b.status == PhaseStatus.PENDING
        assert b.error is None
        assert b.details["previous_errors"][0]["error"] == "disk full"
        assert len(state.metadata["resumed_at"]) == 1

    def test_resumed_phase_can_run_again(self, tracker, run):
        tracker.update_phase("run-1", "A", PhaseStatus.RUNNING)
        tracker.prepare_resume("run-1")
        tracker.update_phase("run-1", "A", PhaseStatus.RUNNING)
        tracker.update_phase("run-1", "A", PhaseStatus.COMPLETED)
        tracker.update_phase("run-1", "B", PhaseStatus.COMPLETED)
        state = tracker.update_phase("run-1", "C", PhaseStatus.COMPLETED)

        assert state.status == RunStatus.COMPLETED
        assert state.phases["A"].details["previous_errors"][0]["error"] == "interrupted"

    def test_terminal_run_is_left_alone(self, tracker, run):
        tracker.complete_run("run-1", RunStatus.CANCELLED)
        state = tracker.prepare_resume("run-1")

        assert state.status == RunStatus.CANCELLED
        assert "resumed_at" not in state.metadata


def test_concurrent_writers_never_lose_updates(tmp_path):
    phases = [f"P{i}" for i in range(8)]
    RunStateStore(tmp_path, lock_timeout=10.0).create("run-1", "X", phases)
    errors: list[BaseException] = []
    done = threading.Event()

    def writer(phase: str) -> None:
        # A store per thread so every writer takes the file lock independently.
        tracker = PhaseTracker(RunStateStore(tmp_path, lock_timeout=10.0))
        try:
            tracker.update_phase("run-1", phase, PhaseStatus.RUNNING, details={"by": phase})
            tracker.update_phase("run-1", phase, PhaseStatus.COMPLETED)
        except BaseException as e:
            errors.append(e)

    def reader() -> None:
        store = RunStateStore(tmp_path)
        try:
            while not done.is_set():
                state = store.read()
                assert state.run_id == "run-1"
        except BaseException as e:
            errors.append(e)

    watcher = threading.Thread(target=reader)
    watcher.start()
    writers = [threading.Thread(target=writer, args=(p,)) for p in phases]
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    done.set()
    watcher.join()

    assert errors == []
    final = RunStateStore(tmp_path).read()
    assert final.status == RunStatus.COMPLETED
    assert all(final.phases[p].status == PhaseStatus.COMPLETED for p in phases)
    assert all(final.phases[p].details == {"by": p} for p in phases)
