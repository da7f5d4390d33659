"""Report rendering for finished (or failed) runs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, PackageLoader
from tabulate import tabulate

from ..collect.stats import CounterStats
from ..state.models import RunState
from ..util import ensure_directory, utc_now


class ReportRenderer:
    """Renders a RunState plus telemetry statistics into a Markdown report."""

    def __init__(self, title: str | None = None):
        self.title = title

        # Markdown output; nothing to escape.
        self.jinja_env = Environment(
            loader=PackageLoader("benchflow.report", "templates"),
            autoescape=False,  # nosec B701
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(
        self,
        state: RunState,
        telemetry: dict[str, dict[str, CounterStats]] | None = None,
    ) -> str:
        """Render the report text."""
        template = self.jinja_env.get_template("run_report.md.j2")
        failures = [
            (name, phase.error) for name, phase in state.phases.items() if phase.error
        ]
        return template.render(
            title=self.title or f"{state.solution} benchmark run",
            state=state,
            generated_at=utc_now().isoformat(),
            phase_table=phase_table(state),
            failures=failures,
            telemetry=[
                (category, telemetry_table(stats))
                for category, stats in sorted((telemetry or {}).items())
            ],
        )

    def write(
        self,
        state: RunState,
        output_path: str | Path,
        telemetry: dict[str, dict[str, CounterStats]] | None = None,
    ) -> Path:
        """Render and save the report; returns the written path."""
        path = Path(output_path)
        ensure_directory(path.parent)
        path.write_text(self.render(state, telemetry), encoding="utf-8")
        return path


def format_duration(seconds: float | None) -> str:
    """Format duration in a human-readable way."""
    if seconds is None:
        return "-"
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"


def phase_table(state: RunState, table_format: str = "github") -> str:
    """Markdown table of phase statuses and timings."""
    rows: list[list[Any]] = []
    for name, phase in state.phases.items():
        rows.append(
            [
                name,
                phase.status.value,
                phase.started_at.strftime("%Y-%m-%d %H:%M:%S") if phase.started_at else "-",
                format_duration(phase.duration),
            ]
        )
    return tabulate(rows, headers=["Phase", "Status", "Started", "Duration"], tablefmt=table_format)


def telemetry_table(stats: dict[str, CounterStats], table_format: str = "github") -> str:
    """Markdown table of per-counter aggregates."""
    if not stats:
        return "*No data available*"
    rows = [
        [counter, s.count, s.avg, s.min, s.max, s.p50, s.p95, s.p99]
        for counter, s in stats.items()
    ]
    return tabulate(
        rows,
        headers=["Counter", "Samples", "Avg", "Min", "Max", "p50", "p95", "p99"],
        tablefmt=table_format,
        floatfmt=".2f",
    )
