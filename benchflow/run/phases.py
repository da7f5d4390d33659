"""Phase bodies executed by the pipeline orchestrator.

A phase body is any callable taking a ``PhaseContext`` and returning an
optional mapping of details that is recorded on the completed phase. Bodies
signal failure by raising; they never touch the run state themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

from ..collect.samplers import LocalCounterSampler, RemoteCounterSampler, RoutingSampler
from ..collect.stats import summarize
from ..collect.supervisor import MetricCollectionSupervisor
from ..errors import RemoteTargetUnreachable
from ..report.render import ReportRenderer
from ..util import Timer, ensure_directory, slugify

if TYPE_CHECKING:
    from ..config import BenchflowConfig, StepConfig
    from ..remote.executor import RemoteExecutor
    from ..state.tracker import PhaseTracker

logger = logging.getLogger(__name__)
console = Console()

# Upper bound on concurrent SSH sessions opened by one fan-out
MAX_PARALLEL_TARGETS = 16


@dataclass
class PhaseContext:
    """Everything a phase body may use."""

    run_id: str
    phase: str
    config: BenchflowConfig
    executor: RemoteExecutor
    tracker: PhaseTracker
    results_dir: Path

    @property
    def phase_dir(self) -> Path:
        """Per-phase output directory under the run's results directory."""
        return ensure_directory(self.results_dir / slugify(self.phase))


PhaseBody = Callable[[PhaseContext], dict[str, Any] | None]


class PreCheckPhase:
    """Pre-flight connectivity check against every target.

    Any unreachable target aborts the run before remote state is changed.
    """

    def __call__(self, ctx: PhaseContext) -> dict[str, Any]:
        targets = ctx.config.target_names
        if not targets:
            logger.warning("No targets configured; skipping connectivity check")
            return {"targets": []}

        workers = min(len(targets), MAX_PARALLEL_TARGETS)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            reachable = dict(zip(targets, pool.map(ctx.executor.check_connectivity, targets)))

        for target, ok in reachable.items():
            marker = "[green]✓[/green]" if ok else "[red]✗[/red]"
            console.print(f"  {marker} {target}")

        unreachable = [t for t, ok in reachable.items() if not ok]
        if unreachable:
            raise RemoteTargetUnreachable(
                ", ".join(unreachable), "pre-flight connectivity check failed"
            )
        return {"targets": targets}


class RemoteStepsPhase:
    """Run configured remote procedures, saving each invocation's output."""

    def __init__(self, steps: Sequence[StepConfig]):
        self.steps = list(steps)

    def __call__(self, ctx: PhaseContext) -> dict[str, Any]:
        if not self.steps:
            logger.info(f"[{ctx.run_id}] {ctx.phase}: no steps configured")
            return {"steps": 0}

        invocations = 0
        with Timer(ctx.phase) as timer:
            for index, step in enumerate(self.steps, start=1):
                targets = step.targets or ctx.config.target_names
                console.print(f"[dim]  step {index}: {step.procedure} on {', '.join(targets)}[/dim]")
                if step.parallel and len(targets) > 1:
                    self._run_parallel(ctx, index, step, targets)
                else:
                    for target in targets:
                        self._invoke(ctx, index, step, target)
                invocations += len(targets)

        return {
            "steps": len(self.steps),
            "invocations": invocations,
            "elapsed_s": round(timer.elapsed, 3),
            "output_dir": str(ctx.phase_dir),
        }

    def _run_parallel(
        self, ctx: PhaseContext, index: int, step: StepConfig, targets: Sequence[str]
    ) -> None:
        workers = min(len(targets), MAX_PARALLEL_TARGETS)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._invoke, ctx, index, step, t) for t in targets]
        # Every target has finished; report the first failure in target order.
        for future in futures:
            future.result()

    @staticmethod
    def _invoke(ctx: PhaseContext, index: int, step: StepConfig, target: str) -> None:
        output = ctx.executor.invoke(target, step.procedure, step.args, timeout=step.timeout_s)
        log_path = ctx.phase_dir / f"{index:02d}-{slugify(target)}.log"
        log_path.write_text(output, encoding="utf-8")


def build_sampler(config: BenchflowConfig, executor: RemoteExecutor) -> RoutingSampler:
    """Route categories with a procedure to the remote sampler, others to psutil."""
    procedures = {
        name: category.procedure
        for name, category in config.monitor.categories.items()
        if category.procedure
    }
    # A sample that takes longer than the interval is reported as an error.
    remote = RemoteCounterSampler(
        executor, procedures, timeout=max(config.monitor.interval_s, 1.0)
    )
    return RoutingSampler(remote, LocalCounterSampler())


class MonitorPhase:
    """Collect telemetry for the duration of the workload.

    Starts every category at once, waits for the expected workload duration
    plus a grace buffer, then stops the collection whether or not every
    worker finished. Collector failures are recorded as data.
    """

    def __init__(
        self,
        supervisor_factory: Callable[[PhaseContext], MetricCollectionSupervisor] | None = None,
    ):
        self.supervisor_factory = supervisor_factory or self._default_supervisor

    def __call__(self, ctx: PhaseContext) -> dict[str, Any]:
        monitor = ctx.config.monitor
        if not monitor.categories:
            logger.info(f"[{ctx.run_id}] No telemetry categories configured")
            return {"categories": []}

        supervisor = self.supervisor_factory(ctx)
        collection_id = supervisor.start(
            list(monitor.categories),
            ctx.config.target_names,
            monitor.interval_s,
            duration=monitor.workload_duration_s,
            max_samples=monitor.max_samples,
            counters={name: c.counters for name, c in monitor.categories.items()},
        )
        telemetry_dir = supervisor.collection_dir(collection_id)
        console.print(
            f"[blue]Collecting telemetry ({', '.join(monitor.categories)}) "
            f"for up to {monitor.workload_duration_s + monitor.grace_s:.0f}s[/blue]"
        )

        try:
            finished = supervisor.wait(
                collection_id, timeout=monitor.workload_duration_s + monitor.grace_s
            )
            if not finished:
                logger.warning(
                    f"[{ctx.run_id}] Collectors still running after duration + grace; stopping"
                )
        finally:
            summary = supervisor.stop(collection_id)

        details = summary.to_details()
        details["telemetry_dir"] = str(telemetry_dir)
        return details

    @staticmethod
    def _default_supervisor(ctx: PhaseContext) -> MetricCollectionSupervisor:
        monitor = ctx.config.monitor
        return MetricCollectionSupervisor(
            ctx.results_dir / "telemetry",
            build_sampler(ctx.config, ctx.executor),
            join_timeout=monitor.join_timeout_s,
            split_by_target=monitor.split_by_target,
        )


class ReportPhase:
    """Render the Markdown report from the run state and collected telemetry."""

    def __call__(self, ctx: PhaseContext) -> dict[str, Any]:
        state = ctx.tracker.store.read()

        telemetry: dict[str, Any] = {}
        telemetry_dir = _latest_telemetry_dir(state.phases)
        if telemetry_dir is not None and telemetry_dir.exists():
            for category in ctx.config.monitor.categories:
                telemetry[category] = summarize(telemetry_dir, category)

        output_path = ctx.config.report.output_path or ctx.results_dir / "report.md"
        path = ReportRenderer(ctx.config.title).write(state, output_path, telemetry)
        console.print(f"[green]✓ Report written to:[/] {path}")
        return {"report": str(path)}


class _ChainedPhase:
    """A built-in phase body followed by the phase's configured steps."""

    def __init__(self, first: PhaseBody, then: PhaseBody):
        self.first = first
        self.then = then

    def __call__(self, ctx: PhaseContext) -> dict[str, Any]:
        details = dict(self.first(ctx) or {})
        details.update(self.then(ctx) or {})
        return details


BUILTIN_PHASES: dict[str, Callable[[], PhaseBody]] = {
    "PreCheck": PreCheckPhase,
    "Monitor": MonitorPhase,
    "Report": ReportPhase,
}


def build_phase_bodies(config: BenchflowConfig) -> dict[str, PhaseBody]:
    """Map every configured phase to its body.

    PreCheck, Monitor and Report have built-in behaviour; every other phase
    runs its configured remote steps. Steps configured for a built-in phase
    run after the built-in behaviour.
    """
    bodies: dict[str, PhaseBody] = {}
    for name in config.phases:
        steps = config.steps.get(name, [])
        factory = BUILTIN_PHASES.get(name)
        if factory is None:
            bodies[name] = RemoteStepsPhase(steps)
        elif steps:
            bodies[name] = _ChainedPhase(factory(), RemoteStepsPhase(steps))
        else:
            bodies[name] = factory()
    return bodies


def _latest_telemetry_dir(phases: dict[str, Any]) -> Path | None:
    found: Path | None = None
    for phase in phases.values():
        directory = phase.details.get("telemetry_dir")
        if directory:
            found = Path(directory)
    return found
