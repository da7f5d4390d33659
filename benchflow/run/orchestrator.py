"""Checkpointed pipeline execution.

The orchestrator walks the run's phases in order. Each phase is marked
running, executed, then marked completed or failed; completed and skipped
phases are passed over on resume without running their bodies. A failure
halts the pipeline with no retry and no rollback: earlier phases' side
effects stay in place and the run stays resumable.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

from ..errors import InvalidInput, PhaseExecutionFailure
from ..state.models import PhaseStatus, RunState, RunStatus
from ..state.store import RunStateStore
from ..state.tracker import PhaseTracker
from ..util import ensure_directory, utc_now
from .phases import PhaseBody, PhaseContext, build_phase_bodies

if TYPE_CHECKING:
    from ..config import BenchflowConfig
    from ..remote.credentials import CredentialProvider
    from ..remote.executor import RemoteExecutor

logger = logging.getLogger(__name__)
console = Console()

INTERRUPTED_MESSAGE = "Interrupted by operator"


def generate_run_id(solution: str) -> str:
    """Unique, sortable run id: ``<solution>-<YYYYmmdd-HHMMSS>-<hex>``."""
    return f"{solution}-{utc_now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


class PipelineOrchestrator:
    """Drives a fixed, ordered phase list against the run state."""

    def __init__(
        self,
        config: BenchflowConfig,
        store: RunStateStore,
        executor: RemoteExecutor,
        phase_bodies: Mapping[str, PhaseBody] | None = None,
    ):
        self.config = config
        self.store = store
        self.tracker = PhaseTracker(store)
        self.executor = executor
        self.phase_bodies = dict(phase_bodies or build_phase_bodies(config))

    @classmethod
    def from_config(
        cls,
        config: BenchflowConfig,
        executor: RemoteExecutor | None = None,
        credentials: CredentialProvider | None = None,
    ) -> PipelineOrchestrator:
        """Wire the store and SSH executor described by the configuration."""
        from ..remote.executor import SshRemoteExecutor

        store = RunStateStore(config.state_path, lock_timeout=config.state.lock_timeout_s)
        if executor is None:
            executor = SshRemoteExecutor.from_config(config, credentials)
        return cls(config, store, executor)

    def run(
        self,
        resume: bool = False,
        skip: Iterable[str] = (),
        run_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RunState:
        """Execute the pipeline and return the final run state.

        Raises ``PhaseExecutionFailure`` when a phase body fails; the run is
        left in a resumable state.
        """
        state = self._prepare_run(resume, run_id, metadata)
        self._apply_skips(state, skip)

        results_dir = ensure_directory(state.results_dir or self.config.results_path)
        console.print(
            f"[bold blue]Run {state.run_id} ({state.solution}): "
            f"{len(state.phases)} phases[/bold blue]"
        )

        for name in state.phase_names:
            if self.tracker.is_phase_completed(state.run_id, name):
                status = self.tracker.get_phase(state.run_id, name).status
                console.print(f"[green]✓ {name} already {status}, skipping[/green]")
                continue
            self._run_phase(state.run_id, name, results_dir)

        final = self.tracker.complete_run(state.run_id, RunStatus.COMPLETED)
        console.print(f"[bold green]✓ Run {final.run_id} completed[/bold green]")
        return final

    def cancel(self) -> RunState:
        """Mark the current run cancelled and archive it."""
        state = self.store.read()
        return self.tracker.complete_run(state.run_id, RunStatus.CANCELLED)

    # Internal helpers -------------------------------------------------

    def _prepare_run(
        self, resume: bool, run_id: str | None, metadata: dict[str, Any] | None
    ) -> RunState:
        current = self.store.read() if resume and self.store.exists() else None
        if current is not None and current.status == RunStatus.CANCELLED:
            console.print(f"[yellow]Run {current.run_id} was cancelled; starting a new run[/yellow]")
            current = None

        if current is not None:
            if run_id and current.run_id != run_id:
                raise InvalidInput(
                    f"Cannot resume {run_id}: the current run is {current.run_id}"
                )
            if current.phase_names != self.config.phases:
                logger.warning(
                    f"Run {current.run_id} was created with phases {current.phase_names}; "
                    "resuming with the recorded phase list"
                )
            self._check_bodies(current.phase_names)
            console.print(f"[blue]Resuming run {current.run_id}[/blue]")
            return self.tracker.prepare_resume(current.run_id)

        if resume:
            logger.info("No run to resume; starting a new one")

        self._check_bodies(self.config.phases)
        run_metadata = {
            "title": self.config.title,
            "targets": self.config.target_names,
            "host": socket.gethostname(),
            "pid": os.getpid(),
            **(metadata or {}),
        }
        return self.store.create(
            run_id or generate_run_id(self.config.solution),
            self.config.solution,
            self.config.phases,
            run_metadata,
            results_dir=self.config.results_path,
        )

    def _check_bodies(self, phases: Iterable[str]) -> None:
        missing = [p for p in phases if p not in self.phase_bodies]
        if missing:
            raise InvalidInput(f"No phase body for: {', '.join(missing)}")

    def _apply_skips(self, state: RunState, skip: Iterable[str]) -> None:
        for name in skip:
            if name not in state.phases:
                raise InvalidInput(f"Cannot skip unknown phase '{name}'")
            if name not in self.config.optional_phases:
                raise InvalidInput(
                    f"Phase '{name}' is not optional. Optional phases: "
                    f"{', '.join(self.config.optional_phases) or 'none'}"
                )
            if self.tracker.get_phase(state.run_id, name).status == PhaseStatus.PENDING:
                self.tracker.update_phase(
                    state.run_id, name, PhaseStatus.SKIPPED, details={"bypassed": True}
                )
                console.print(f"[yellow]⏭ {name} bypassed[/yellow]")

    def _run_phase(self, run_id: str, name: str, results_dir: Path) -> None:
        console.print(f"[bold blue]▶ {name}[/bold blue]")
        self.tracker.update_phase(run_id, name, PhaseStatus.RUNNING)

        context = PhaseContext(
            run_id=run_id,
            phase=name,
            config=self.config,
            executor=self.executor,
            tracker=self.tracker,
            results_dir=Path(results_dir),
        )
        try:
            details = self.phase_bodies[name](context) or {}
        except KeyboardInterrupt:
            self.tracker.update_phase(
                run_id, name, PhaseStatus.FAILED, error_message=INTERRUPTED_MESSAGE
            )
            console.print(f"[red]✗ {name} interrupted; resume with --resume[/red]")
            raise
        except Exception as e:
            self.tracker.update_phase(
                run_id, name, PhaseStatus.FAILED, error_message=str(e) or type(e).__name__
            )
            console.print(f"[red]✗ {name} failed: {e}[/red]")
            raise PhaseExecutionFailure(name, e) from e

        self.tracker.update_phase(run_id, name, PhaseStatus.COMPLETED, details=details)
        console.print(f"[green]✓ {name} completed[/green]")
