"""Shared fixtures: a state store in tmp_path, fake remote executor and sampler."""

from __future__ import annotations

import threading
from collections.abc import Sequence

import pytest

from benchflow.collect.models import CounterReading
from benchflow.errors import RemoteCommandError, RemoteTargetUnreachable
from benchflow.state.store import RunStateStore
from benchflow.state.tracker import PhaseTracker


class FakeExecutor:
    """In-memory RemoteExecutor recording every invocation."""

    def __init__(
        self,
        outputs: dict[str, str] | None = None,
        unreachable: Sequence[str] = (),
        failing: Sequence[str] = (),
    ):
        self.outputs = outputs or {}
        self.unreachable = set(unreachable)
        self.failing = set(failing)
        self.calls: list[tuple[str, str, list[str]]] = []
        self._lock = threading.Lock()

    def invoke(self, target, procedure, args=None, timeout=None):
        with self._lock:
            self.calls.append((target, procedure, list(args or [])))
        if target in self.unreachable:
            raise RemoteTargetUnreachable(target, "no route to host")
        if procedure in self.failing:
            raise RemoteCommandError(target, procedure, 2, "procedure exploded\n")
        return self.outputs.get(procedure, f"{procedure} ok on {target}\n")

    def check_connectivity(self, target):
        return target not in self.unreachable


class FakeSampler:
    """Returns a fixed reading per counter; raises for failing targets."""

    def __init__(self, failing_targets: Sequence[str] = (), value: float = 1.0):
        self.failing_targets = set(failing_targets)
        self.value = value
        self.calls = 0
        self._lock = threading.Lock()

    def sample(self, target: str, category: str, counters: Sequence[str]):
        with self._lock:
            self.calls += 1
        if target in self.failing_targets:
            raise ConnectionError(f"{target} refused connection")
        names = list(counters) or [f"{category}_usage"]
        return [CounterReading(name, self.value) for name in names]


@pytest.fixture
def store(tmp_path) -> RunStateStore:
    return RunStateStore(tmp_path / "state", lock_timeout=5.0)


@pytest.fixture
def tracker(store) -> PhaseTracker:
    return PhaseTracker(store)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def fake_sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def executor_factory():
    return FakeExecutor


@pytest.fixture
def sampler_factory():
    return FakeSampler
