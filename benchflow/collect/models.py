"""Telemetry records written by the collection supervisor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

# Counter name used for records describing a whole failed sample of a target
TARGET_ERROR_COUNTER = "*"


@dataclass(frozen=True)
class CounterReading:
    """One value returned by a sampler."""

    counter: str
    value: float
    instance: str | None = None


class MetricSample(BaseModel):
    """One line of a telemetry stream: a value or an error, never both."""

    model_config = ConfigDict(extra="forbid")

    timestamp: datetime
    node: str
    category: str
    counter: str
    instance: str | None = None
    value: float | None = None
    error: str | None = None

    @model_validator(mode="after")
    def validate_value_xor_error(self) -> MetricSample:
        """Ensure exactly one of value/error is set."""
        if (self.value is None) == (self.error is None):
            raise ValueError("A metric sample carries either a value or an error")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None


class CollectionSummary(BaseModel):
    """Persisted description of a stopped collection."""

    collection_id: str
    started_at: datetime
    ended_at: datetime
    duration: float
    categories: list[str]
    targets: list[str]
    output_files: list[str]
    samples_written: dict[str, int]
    errors_written: dict[str, int]
    reaped_categories: list[str] = []

    def to_details(self) -> dict[str, Any]:
        """Compact form recorded in the Monitor phase details."""
        return {
            "collection_id": self.collection_id,
            "duration": round(self.duration, 3),
            "categories": self.categories,
            "output_files": self.output_files,
            "samples_written": sum(self.samples_written.values()),
            "errors_written": sum(self.errors_written.values()),
            "reaped_categories": self.reaped_categories,
        }
