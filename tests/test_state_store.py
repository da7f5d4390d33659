"""Tests for the run state store."""

from __future__ import annotations

import json

import pytest

from benchflow.errors import InvalidInput, RunNotFound, StateCorrupted
from benchflow.state.models import PhaseStatus, RunStatus
from benchflow.state.store import STATE_FILENAME, RunStateStore


class TestCreate:
    def test_create_persists_pending_phases(self, store: RunStateStore):
        store.create("test-001", "X", ["Install", "Deploy", "Test"])

        raw = json.loads((store.state_dir / STATE_FILENAME).read_text())
        assert raw["run_id"] == "test-001"
        assert raw["solution"] == "X"
        assert raw["status"] == "created"
        assert list(raw["phases"]) == ["Install", "Deploy", "Test"]
        assert all(p["status"] == "pending" for p in raw["phases"].values())

        state = store.read()
        assert state.status == RunStatus.CREATED
        assert state.started_at is None
        assert state.completed_at is None
        assert state.phase_names == ["Install", "Deploy", "Test"]

    def test_create_rejects_empty_phase_list(self, store: RunStateStore):
        with pytest.raises(InvalidInput):
            store.create("test-001", "X", [])
        assert not store.exists()

    def test_create_rejects_duplicate_phases(self, store: RunStateStore):
        with pytest.raises(InvalidInput):
            store.create("test-001", "X", ["A", "A"])

    def test_create_keeps_metadata_and_results_dir(self, store: RunStateStore):
        state = store.create(
            "run-1", "X", ["A"], {"owner": "ops"}, results_dir="results/X"
        )
        assert state.metadata == {"owner": "ops"}
        assert store.read().results_dir == "results/X"

    def test_superseding_incomplete_run_archives_it(self, store: RunStateStore):
        store.create("run-1", "X", ["A", "B"])
        store.create("run-2", "X", ["A", "B"])

        assert store.read().run_id == "run-2"
        archived = store.read_history("run-1")
        assert archived.run_id == "run-1"
        assert archived.status == RunStatus.CREATED

    def test_superseding_completed_run_does_not_rearchive(self, store: RunStateStore):
        state = store.create("run-1", "X", ["A"])
        with store.guard:
            state.status = RunStatus.COMPLETED
            store.write_atomic(state)

        store.create("run-2", "X", ["A"])

        assert not store.history_path("run-1").exists()


class TestReadWrite:
    def test_read_without_state_raises(self, store: RunStateStore):
        with pytest.raises(RunNotFound):
            store.read()

    def test_write_atomic_leaves_no_temp_files(self, store: RunStateStore):
        state = store.create("run-1", "X", ["A"])
        for _ in range(5):
            with store.guard:
                state.metadata["counter"] = state.metadata.get("counter", 0) + 1
                store.write_atomic(state)

        leftovers = [p.name for p in store.state_dir.iterdir() if p.name.startswith(".")]
        assert leftovers == []
        assert store.read().metadata["counter"] == 5

    def test_corrupted_state_is_rejected(self, store: RunStateStore):
        store.create("run-1", "X", ["A"])
        store.state_file.write_text('{"run_id": "run-1", "phases": ')

        with pytest.raises(StateCorrupted):
            store.read()

    def test_unknown_status_is_rejected_not_coerced(self, store: RunStateStore):
        store.create("run-1", "X", ["A"])
        raw = json.loads(store.state_file.read_text())
        raw["phases"]["A"]["status"] = "half-done"
        store.state_file.write_text(json.dumps(raw))

        with pytest.raises(StateCorrupted):
            store.read()

    def test_phase_order_survives_round_trip(self, store: RunStateStore):
        phases = ["Zeta", "Alpha", "Mid", "Beta"]
        store.create("run-1", "X", phases)
        assert store.read().phase_names == phases


class TestHistory:
    def test_history_entries_are_immutable(self, store: RunStateStore):
        state = store.create("run-1", "X", ["A"])
        store.archive(state)

        state.phases["A"].status = PhaseStatus.COMPLETED
        store.archive(state)

        assert store.read_history("run-1").phases["A"].status == PhaseStatus.PENDING

    def test_list_history_oldest_first(self, store: RunStateStore):
        for run_id in ("run-1", "run-2", "run-3"):
            store.create(run_id, "X", ["A"])
        store.create("run-4", "X", ["A"])

        assert [s.run_id for s in store.list_history()] == ["run-1", "run-2", "run-3"]

    def test_list_history_skips_corrupted_entries(self, store: RunStateStore):
        store.create("run-1", "X", ["A"])
        store.create("run-2", "X", ["A"])
        (store.history_dir / "broken.json").write_text("not json")

        assert [s.run_id for s in store.list_history()] == ["run-1"]

    def test_read_missing_history_raises(self, store: RunStateStore):
        with pytest.raises(RunNotFound):
            store.read_history("nope")


def test_separate_stores_are_isolated(tmp_path):
    first = RunStateStore(tmp_path / "one")
    second = RunStateStore(tmp_path / "two")
    first.create("run-1", "X", ["A"])

    assert first.exists()
    assert not second.exists()
