"""Configuration management for the pipeline framework."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator, model_validator

DEFAULT_PHASES = [
    "PreCheck",
    "Install",
    "Deploy",
    "StartTest",
    "Monitor",
    "StopTest",
    "Collect",
    "Report",
    "Cleanup",
]

LOCAL_HOSTS = {"localhost", "127.0.0.1", "local"}


class TargetConfig(BaseModel):
    """A remote node the pipeline operates on."""

    name: str
    host: str
    ssh_user: str | None = None  # Overrides remote.ssh_user
    ssh_port: int | None = None
    ssh_private_key_path: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure target name is filesystem-safe."""
        if not re.match(r"^[a-zA-Z0-9_.-]+$", v):
            raise ValueError(
                f"Target name '{v}' may only contain letters, digits, '.', '_' and '-'"
            )
        return v

    @property
    def is_local(self) -> bool:
        """True when the target is the machine running the pipeline."""
        return self.host in LOCAL_HOSTS


class RemoteConfig(BaseModel):
    """Defaults for remote execution over SSH."""

    ssh_user: str = "ubuntu"
    ssh_port: int = 22
    ssh_private_key_path: str | None = None
    credential: str | None = None  # Credential name holding the private key path
    connect_timeout_s: int = 5
    command_timeout_s: int = 300


class StepConfig(BaseModel):
    """A remote procedure invoked as part of a phase body."""

    procedure: str
    args: list[str] = []
    targets: list[str] | None = None  # Defaults to all targets
    timeout_s: int | None = None
    parallel: bool = False


class CategoryConfig(BaseModel):
    """A telemetry category collected during the Monitor phase."""

    procedure: str | None = None  # Remote sampling procedure; None = built-in
    counters: list[str] = []


class MonitorConfig(BaseModel):
    """Configuration for telemetry collection."""

    categories: dict[str, CategoryConfig] = {}
    interval_s: float = 5.0
    workload_duration_s: float = 300.0
    grace_s: float = 60.0
    join_timeout_s: float = 10.0
    max_samples: int | None = None
    split_by_target: bool = False

    @field_validator("interval_s")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Ensure the sampling interval is positive."""
        if v <= 0:
            raise ValueError(f"interval_s must be positive (got {v})")
        return v

    @field_validator("workload_duration_s", "grace_s", "join_timeout_s")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Ensure durations are non-negative."""
        if v < 0:
            raise ValueError(f"durations must be non-negative (got {v})")
        return v

    @field_validator("max_samples")
    @classmethod
    def validate_max_samples(cls, v: int | None) -> int | None:
        """Ensure max_samples is positive when set."""
        if v is not None and v < 1:
            raise ValueError(f"max_samples must be positive (got {v})")
        return v


class StateConfig(BaseModel):
    """Where run state lives and how long mutators wait for the lock."""

    state_dir: str | None = None
    lock_timeout_s: float = 30.0


class ReportConfig(BaseModel):
    """Configuration for report generation."""

    output_path: str | None = None


class BenchflowConfig(BaseModel):
    """Main pipeline configuration."""

    solution: str
    title: str | None = None
    results_dir: str | None = None
    phases: list[str] = list(DEFAULT_PHASES)
    optional_phases: list[str] = []
    targets: list[TargetConfig] = []
    remote: RemoteConfig = RemoteConfig()
    steps: dict[str, list[StepConfig]] = {}
    monitor: MonitorConfig = MonitorConfig()
    state: StateConfig = StateConfig()
    report: ReportConfig = ReportConfig()

    @field_validator("solution")
    @classmethod
    def validate_solution(cls, v: str) -> str:
        """Ensure solution name is filesystem-safe."""
        if not v or not v.replace("_", "").replace("-", "").isalnum():
            raise ValueError(
                "solution must contain only alphanumeric characters, underscores, and hyphens"
            )
        return v

    @field_validator("phases")
    @classmethod
    def validate_phases(cls, v: list[str]) -> list[str]:
        """Ensure the phase list is non-empty and unique."""
        if not v:
            raise ValueError("At least one phase must be configured")
        if len(v) != len(set(v)):
            duplicates = sorted({p for p in v if v.count(p) > 1})
            raise ValueError(f"Duplicate phase names: {', '.join(duplicates)}")
        return v

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: list[TargetConfig]) -> list[TargetConfig]:
        """Ensure target names are unique."""
        names = [t.name for t in v]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate target names: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_phase_references(self) -> "BenchflowConfig":
        """Validate that optional phases and steps reference known phases/targets."""
        phases = set(self.phases)
        unknown_optional = [p for p in self.optional_phases if p not in phases]
        if unknown_optional:
            raise ValueError(
                f"Optional phases not in phase list: {', '.join(unknown_optional)}"
            )

        unknown_steps = [p for p in self.steps if p not in phases]
        if unknown_steps:
            raise ValueError(
                f"Steps configured for unknown phases: {', '.join(unknown_steps)}"
            )

        target_names = {t.name for t in self.targets}
        for phase, steps in self.steps.items():
            for step in steps:
                for name in step.targets or []:
                    if name not in target_names:
                        raise ValueError(
                            f"Phase '{phase}' step '{step.procedure}' references "
                            f"unknown target '{name}'. Valid targets: "
                            f"{', '.join(sorted(target_names))}"
                        )

        if self.monitor.categories and "Monitor" in phases and not self.targets:
            raise ValueError(
                f"Monitor categories ({', '.join(self.monitor.categories)}) "
                "need at least one target to sample"
            )

        remote_targets = [t.name for t in self.targets if not t.is_local]
        # Import here to avoid circular dependency
        from .collect.samplers import BUILTIN_CATEGORIES

        for category, category_config in self.monitor.categories.items():
            if category_config.procedure is not None:
                continue
            if category not in BUILTIN_CATEGORIES:
                raise ValueError(
                    f"Monitor category '{category}' has no procedure and is not "
                    f"built-in ({', '.join(sorted(BUILTIN_CATEGORIES))})"
                )
            if remote_targets:
                raise ValueError(
                    f"Monitor category '{category}' needs a procedure to sample "
                    f"remote targets: {', '.join(remote_targets)}"
                )
        return self

    def get_target(self, name: str) -> TargetConfig:
        """Look up a target by name."""
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(f"Unknown target '{name}'")

    @property
    def target_names(self) -> list[str]:
        return [t.name for t in self.targets]

    @property
    def results_path(self) -> Path:
        return Path(self.results_dir or f"results/{self.solution}")

    @property
    def state_path(self) -> Path:
        return Path(self.state.state_dir or self.results_path / "state")

    def get_value(self, name: str) -> Any:
        """Resolve a dotted configuration name, e.g. ``monitor.interval_s``."""
        value: Any = self
        for part in name.split("."):
            if isinstance(value, BaseModel):
                if part not in type(value).model_fields:
                    raise KeyError(f"Unknown configuration value '{name}'")
                value = getattr(value, part)
            elif isinstance(value, dict):
                if part not in value:
                    raise KeyError(f"Unknown configuration value '{name}'")
                value = value[part]
            else:
                raise KeyError(f"Unknown configuration value '{name}'")
        return value


def load_config(path: str | Path) -> BenchflowConfig:
    """Load and validate pipeline configuration from YAML file."""
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    # Default solution name from config filename if not specified
    if not raw_config.get("solution"):
        raw_config["solution"] = config_path.stem

    solution = raw_config["solution"]
    if not raw_config.get("results_dir"):
        raw_config["results_dir"] = f"results/{solution}"

    report = raw_config.setdefault("report", {}) or {}
    raw_config["report"] = report
    if not report.get("output_path"):
        report["output_path"] = f"{raw_config['results_dir']}/report.md"

    # Expand environment variables in config
    raw_config = _expand_env_vars(raw_config)

    try:
        return BenchflowConfig(**raw_config)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}") from e


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj
