"""Checkpointed, resumable benchmark pipelines for remote clusters."""

__version__ = "0.1.0"
