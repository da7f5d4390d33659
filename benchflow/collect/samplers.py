"""Counter samplers used by telemetry workers."""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import psutil

from .models import CounterReading

if TYPE_CHECKING:
    from ..remote.executor import RemoteExecutor


class Sampler(Protocol):
    """Reads counters of one category from one target."""

    def sample(
        self, target: str, category: str, counters: Sequence[str]
    ) -> list[CounterReading]: ...


# =============================================================================
# Local sampling via psutil
# =============================================================================


def _cpu_readings() -> list[CounterReading]:
    readings = [CounterReading("cpu_percent", psutil.cpu_percent(interval=None))]
    for index, value in enumerate(psutil.cpu_percent(interval=None, percpu=True)):
        readings.append(CounterReading("cpu_percent", value, instance=str(index)))
    load = psutil.getloadavg()
    readings.append(CounterReading("load_1m", load[0]))
    return readings


def _memory_readings() -> list[CounterReading]:
    memory = psutil.virtual_memory()
    swap = psutil.swap_memory()
    return [
        CounterReading("memory_percent", memory.percent),
        CounterReading("memory_available_bytes", float(memory.available)),
        CounterReading("swap_percent", swap.percent),
    ]


def _disk_readings() -> list[CounterReading]:
    readings: list[CounterReading] = []
    for device, io in (psutil.disk_io_counters(perdisk=True) or {}).items():
        readings.append(CounterReading("read_bytes", float(io.read_bytes), device))
        readings.append(CounterReading("write_bytes", float(io.write_bytes), device))
    return readings


def _network_readings() -> list[CounterReading]:
    readings: list[CounterReading] = []
    for nic, io in (psutil.net_io_counters(pernic=True) or {}).items():
        readings.append(CounterReading("bytes_sent", float(io.bytes_sent), nic))
        readings.append(CounterReading("bytes_recv", float(io.bytes_recv), nic))
    return readings


BUILTIN_CATEGORIES: dict[str, Callable[[], list[CounterReading]]] = {
    "cpu": _cpu_readings,
    "memory": _memory_readings,
    "disk": _disk_readings,
    "network": _network_readings,
}


class LocalCounterSampler:
    """Built-in categories read from the local machine with psutil."""

    def sample(
        self, target: str, category: str, counters: Sequence[str]
    ) -> list[CounterReading]:
        reader = BUILTIN_CATEGORIES.get(category)
        if reader is None:
            raise ValueError(f"No built-in sampler for category '{category}'")
        return _filter(reader(), counters)


# =============================================================================
# Remote sampling via the remote executor
# =============================================================================


def parse_counter_output(output: str) -> list[CounterReading]:
    """Parse sampler procedure output.

    The procedure prints one JSON object mapping counter names either to a
    number or to an object of ``instance -> number``.
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ValueError(f"Sampler output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Sampler output must be a JSON object")

    readings: list[CounterReading] = []
    for counter, value in data.items():
        if isinstance(value, dict):
            for instance, instance_value in value.items():
                readings.append(
                    CounterReading(str(counter), _number(counter, instance_value), str(instance))
                )
        else:
            readings.append(CounterReading(str(counter), _number(counter, value)))
    return readings


class RemoteCounterSampler:
    """Run a category's sampling procedure on the target and parse its output."""

    def __init__(
        self,
        executor: RemoteExecutor,
        procedures: dict[str, str],
        timeout: float | None = None,
    ):
        self.executor = executor
        self.procedures = procedures
        self.timeout = timeout

    def sample(
        self, target: str, category: str, counters: Sequence[str]
    ) -> list[CounterReading]:
        procedure = self.procedures.get(category)
        if procedure is None:
            raise ValueError(f"No sampling procedure for category '{category}'")
        args = list(counters) if counters else None
        output = self.executor.invoke(target, procedure, args, timeout=self.timeout)
        return _filter(parse_counter_output(output), counters)


class RoutingSampler:
    """Categories with a procedure sample remotely, the rest locally."""

    def __init__(self, remote: RemoteCounterSampler, local: LocalCounterSampler | None = None):
        self.remote = remote
        self.local = local or LocalCounterSampler()

    def sample(
        self, target: str, category: str, counters: Sequence[str]
    ) -> list[CounterReading]:
        if category in self.remote.procedures:
            return self.remote.sample(target, category, counters)
        return self.local.sample(target, category, counters)


def _filter(readings: list[CounterReading], counters: Sequence[str]) -> list[CounterReading]:
    if not counters:
        return readings
    wanted = set(counters)
    return [r for r in readings if r.counter in wanted]


def _number(counter: Any, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Counter '{counter}' has non-numeric value {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"Counter '{counter}' has non-finite value {value!r}")
    return float(value)
