"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from benchflow.config import DEFAULT_PHASES, BenchflowConfig, load_config

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "example.yaml"


def _write_config(tmp_path, data, name="bench.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


def test_example_config_loads():
    cfg = load_config(EXAMPLE_CONFIG)

    assert cfg.solution == "example"
    assert cfg.phases == DEFAULT_PHASES
    assert cfg.target_names == ["node1", "node2"]
    assert cfg.steps["StartTest"][0].targets == ["node1"]
    assert cfg.monitor.categories["cpu"].counters == ["cpu_percent", "load_1m"]
    assert cfg.report.output_path == "results/example/report.md"


def test_defaults_from_filename(tmp_path):
    cfg = load_config(_write_config(tmp_path, {}, name="nightly.yaml"))

    assert cfg.solution == "nightly"
    assert cfg.results_path == Path("results/nightly")
    assert cfg.state_path == Path("results/nightly/state")


def test_env_vars_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("BENCH_HOST", "10.1.2.3")
    path = _write_config(
        tmp_path, {"targets": [{"name": "db", "host": "${BENCH_HOST}"}]}
    )

    assert load_config(path).get_target("db").host == "10.1.2.3"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "data",
    [
        {"phases": []},
        {"phases": ["A", "A"]},
        {"phases": ["A"], "optional_phases": ["B"]},
        {"phases": ["A"], "steps": {"B": [{"procedure": "x"}]}},
        {"targets": [{"name": "n1", "host": "h"}, {"name": "n1", "host": "h2"}]},
        {"targets": [{"name": "bad name", "host": "h"}]},
        {
            "targets": [{"name": "n1", "host": "h"}],
            "steps": {"Install": [{"procedure": "x", "targets": ["n2"]}]},
        },
        {"monitor": {"interval_s": 0}},
        {"monitor": {"categories": {"gpu": {}}}},
        {
            "targets": [{"name": "n1", "host": "10.0.0.1"}],
            "monitor": {"categories": {"cpu": {}}},
        },
        {
            "phases": ["Install", "Monitor"],
            "monitor": {"categories": {"queries": {"procedure": "sample.sh"}}},
        },
        {"solution": "has spaces"},
    ],
)
def test_invalid_configs_rejected(tmp_path, data):
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(_write_config(tmp_path, data))


def test_builtin_category_allowed_for_local_targets():
    cfg = BenchflowConfig(
        solution="local",
        targets=[{"name": "self", "host": "localhost"}],
        monitor={"categories": {"cpu": {}, "memory": {"counters": ["memory_percent"]}}},
    )
    assert cfg.get_target("self").is_local


def test_monitor_categories_without_monitor_phase_need_no_targets():
    cfg = BenchflowConfig(
        solution="offline",
        phases=["Install", "Report"],
        monitor={"categories": {"queries": {"procedure": "sample.sh"}}},
    )
    assert cfg.targets == []


def test_get_value():
    cfg = BenchflowConfig(solution="x", monitor={"interval_s": 2})

    assert cfg.get_value("monitor.interval_s") == 2
    assert cfg.get_value("solution") == "x"
    with pytest.raises(KeyError):
        cfg.get_value("monitor.nope")
    with pytest.raises(KeyError):
        cfg.get_target("missing")
