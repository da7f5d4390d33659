"""Aggregate statistics over persisted telemetry streams."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

PERCENTILES = (50, 95, 99)


@dataclass(frozen=True)
class CounterStats:
    """Aggregates for one counter."""

    count: int
    avg: float
    min: float
    max: float
    p50: float
    p95: float
    p99: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def nearest_rank(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending sequence (no interpolation)."""
    n = len(sorted_values)
    if n == 0:
        raise ValueError("Cannot compute a percentile of no values")
    index = math.ceil(percentile * n / 100) - 1
    return float(sorted_values[min(max(index, 0), n - 1)])


def load_samples(path: str | Path, category: str | None = None) -> pd.DataFrame:
    """Load telemetry records from a stream file or a collection directory.

    Lines that fail to parse (e.g. the tail of a reaped worker's file) are
    skipped with a warning.
    """
    source = Path(path)
    if source.is_dir():
        files = sorted(source.glob("*.jsonl"))
    elif source.exists():
        files = [source]
    else:
        raise FileNotFoundError(f"Telemetry path not found: {source}")

    records: list[dict[str, Any]] = []
    for file in files:
        with open(file, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed telemetry line {file}:{line_no}")

    df = pd.DataFrame.from_records(
        records,
        columns=["timestamp", "node", "category", "counter", "instance", "value", "error"],
    )
    if category is not None:
        df = df[df["category"] == category]
    return df


def summarize(path: str | Path, category: str | None = None) -> dict[str, CounterStats]:
    """Per-counter count/avg/min/max and nearest-rank p50/p95/p99.

    Error records are ignored. Counters are aggregated across nodes and
    instances.
    """
    df = load_samples(path, category)
    values = df[df["error"].isna() & df["value"].notna()]

    stats: dict[str, CounterStats] = {}
    for counter, group in values.groupby("counter", sort=True):
        ordered = sorted(float(v) for v in group["value"])
        stats[str(counter)] = CounterStats(
            count=len(ordered),
            avg=float(group["value"].mean()),
            min=ordered[0],
            max=ordered[-1],
            p50=nearest_rank(ordered, 50),
            p95=nearest_rank(ordered, 95),
            p99=nearest_rank(ordered, 99),
        )
    return stats


def error_counts(path: str | Path, category: str | None = None) -> dict[str, int]:
    """Number of error records per node."""
    df = load_samples(path, category)
    errors = df[df["error"].notna()]
    return {str(node): int(count) for node, count in errors.groupby("node").size().items()}
