"""Concurrent telemetry collection and statistics."""

from .models import CollectionSummary, CounterReading, MetricSample
from .samplers import LocalCounterSampler, RemoteCounterSampler, RoutingSampler, Sampler
from .stats import CounterStats, nearest_rank, summarize
from .supervisor import CollectionJob, MetricCollectionSupervisor

__all__ = [
    "CollectionJob",
    "CollectionSummary",
    "CounterReading",
    "CounterStats",
    "LocalCounterSampler",
    "MetricCollectionSupervisor",
    "MetricSample",
    "RemoteCounterSampler",
    "RoutingSampler",
    "Sampler",
    "nearest_rank",
    "summarize",
]
