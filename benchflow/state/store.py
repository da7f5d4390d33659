"""Durable storage for the current run state and its history.

State files are stored at:
    <state_dir>/current_run.json          the single current run
    <state_dir>/history/<run_id>.json     immutable snapshots of finished runs
    <state_dir>/state.lock                lock file for ExclusiveAccessGuard
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import InvalidInput, RunNotFound, StateCorrupted
from ..util import ensure_directory, utc_now, write_text_atomic
from .lock import DEFAULT_LOCK_TIMEOUT, ExclusiveAccessGuard
from .models import PhaseState, RunState, RunStatus

logger = logging.getLogger(__name__)

STATE_FILENAME = "current_run.json"
HISTORY_DIRNAME = "history"
LOCK_FILENAME = "state.lock"


class RunStateStore:
    """Atomically written record of the current run, plus run history."""

    def __init__(
        self, state_dir: str | Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    ):
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / STATE_FILENAME
        self.history_dir = self.state_dir / HISTORY_DIRNAME
        self.guard = ExclusiveAccessGuard(
            self.state_dir / LOCK_FILENAME, timeout=lock_timeout
        )

    def exists(self) -> bool:
        return self.state_file.exists()

    def create(
        self,
        run_id: str,
        solution: str,
        phases: Iterable[str],
        metadata: dict[str, Any] | None = None,
        results_dir: str | Path = "",
    ) -> RunState:
        """Create and persist a fresh run with every phase pending.

        An existing current run that is not completed or cancelled is
        archived to history first.
        """
        phase_names = list(phases)
        if not phase_names:
            raise InvalidInput("A run needs at least one phase")
        if len(phase_names) != len(set(phase_names)):
            raise InvalidInput(f"Duplicate phase names in {phase_names}")
        if not run_id:
            raise InvalidInput("run_id must not be empty")

        state = RunState(
            run_id=run_id,
            solution=solution,
            status=RunStatus.CREATED,
            created_at=utc_now(),
            phases={name: PhaseState() for name in phase_names},
            metadata=dict(metadata or {}),
            results_dir=str(results_dir),
        )

        with self.guard:
            previous = self._read_if_present()
            if previous is not None and previous.status not in RunStatus.terminal():
                logger.warning(
                    f"Superseding incomplete run {previous.run_id} "
                    f"(status: {previous.status}); archiving to history"
                )
                self.archive(previous)
            self.write_atomic(state)

        logger.info(f"Created run {run_id} with phases: {', '.join(phase_names)}")
        return state

    def read(self) -> RunState:
        """Return the current run, or raise ``RunNotFound``."""
        state = self._read_if_present()
        if state is None:
            raise RunNotFound(None)
        return state

    def write_atomic(self, state: RunState) -> None:
        """Persist ``state`` so readers only ever see a complete file.

        Callers must hold ``self.guard``.
        """
        write_text_atomic(self.state_file, state.model_dump_json(indent=2))

    def archive(self, state: RunState) -> Path:
        """Copy ``state`` into history keyed by ``run_id``.

        History entries are written once; an existing snapshot is kept as is.
        """
        ensure_directory(self.history_dir)
        target = self.history_path(state.run_id)

        # Link a fully written temp file into place: fails if the entry exists.
        fd, tmp_path = tempfile.mkstemp(dir=self.history_dir, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_path, target)
                logger.info(f"Archived run {state.run_id} to {target}")
            except FileExistsError:
                logger.debug(f"History entry for {state.run_id} already exists, keeping it")
        finally:
            os.unlink(tmp_path)
        return target

    def history_path(self, run_id: str) -> Path:
        return self.history_dir / f"{run_id}.json"

    def read_history(self, run_id: str) -> RunState:
        """Load an archived run snapshot."""
        path = self.history_path(run_id)
        if not path.exists():
            raise RunNotFound(run_id)
        return self._decode(path)

    def list_history(self) -> list[RunState]:
        """All archived runs, oldest first. Unreadable entries are skipped."""
        if not self.history_dir.exists():
            return []

        runs: list[RunState] = []
        for path in self.history_dir.glob("*.json"):
            try:
                runs.append(self._decode(path))
            except StateCorrupted as e:
                logger.warning(str(e))
        return sorted(runs, key=lambda run: (run.created_at, run.run_id))

    def _read_if_present(self) -> RunState | None:
        if not self.state_file.exists():
            return None
        return self._decode(self.state_file)

    @staticmethod
    def _decode(path: Path) -> RunState:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateCorrupted(str(path), str(e)) from e
        try:
            return RunState.model_validate_json(text)
        except ValidationError as e:
            raise StateCorrupted(str(path), str(e)) from e
