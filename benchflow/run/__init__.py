"""Pipeline execution modules."""

from .orchestrator import PipelineOrchestrator, generate_run_id
from .phases import (
    MonitorPhase,
    PhaseContext,
    PreCheckPhase,
    RemoteStepsPhase,
    ReportPhase,
    build_phase_bodies,
)

__all__ = [
    "MonitorPhase",
    "PhaseContext",
    "PipelineOrchestrator",
    "PreCheckPhase",
    "RemoteStepsPhase",
    "ReportPhase",
    "build_phase_bodies",
    "generate_run_id",
]
