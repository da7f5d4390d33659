"""Concurrent telemetry collection during the workload.

One daemon thread per category samples every target once per interval and
appends MetricSample lines to files it alone owns. Per-target failures are
written as error records; they never stop the worker or its siblings.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO

from ..errors import CollectionNotFound, InvalidInput
from ..util import ensure_directory, save_json, slugify, utc_now
from .models import TARGET_ERROR_COUNTER, CollectionSummary, MetricSample
from .samplers import Sampler

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "collection_summary.json"
DEFAULT_JOIN_TIMEOUT = 10.0


class _StreamWriter:
    """Append-only JSON-lines sink.

    After ``close`` further appends are dropped, which fences off a worker
    that was reaped while stuck inside a sampler call.
    """

    def __init__(self, path: Path):
        self.path = path
        self.samples = 0
        self.errors = 0
        self._lock = threading.Lock()
        self._handle: IO[str] | None = open(path, "a", encoding="utf-8")

    def append(self, sample: MetricSample) -> bool:
        line = sample.model_dump_json() + "\n"
        with self._lock:
            if self._handle is None:
                return False
            self._handle.write(line)
            self._handle.flush()
            if sample.is_error:
                self.errors += 1
            else:
                self.samples += 1
        return True

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


@dataclass
class CollectionJob:
    """One category worker of a collection."""

    category: str
    counters: list[str]
    writers: dict[str, _StreamWriter]  # target -> sink (may share one sink)
    thread: threading.Thread | None = None
    reaped: bool = False
    error: str | None = None

    @property
    def output_files(self) -> list[Path]:
        seen: dict[Path, None] = {}
        for writer in self.writers.values():
            seen[writer.path] = None
        return list(seen)

    def unique_writers(self) -> list[_StreamWriter]:
        return list({id(w): w for w in self.writers.values()}.values())


@dataclass
class _Collection:
    collection_id: str
    directory: Path
    targets: list[str]
    interval: float
    duration: float | None
    max_samples: int | None
    started_at: datetime
    started_monotonic: float
    stop_event: threading.Event = field(default_factory=threading.Event)
    jobs: dict[str, CollectionJob] = field(default_factory=dict)


class MetricCollectionSupervisor:
    """Starts, joins and reaps telemetry workers.

    The registry of active collections belongs to this instance; separate
    supervisors never see each other's collections.
    """

    def __init__(
        self,
        output_dir: str | Path,
        sampler: Sampler,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
        split_by_target: bool = False,
    ):
        self.output_dir = Path(output_dir)
        self.sampler = sampler
        self.join_timeout = join_timeout
        self.split_by_target = split_by_target
        self._collections: dict[str, _Collection] = {}
        self._registry_lock = threading.Lock()

    def start(
        self,
        categories: Sequence[str],
        targets: Sequence[str],
        interval: float,
        duration: float | None = None,
        max_samples: int | None = None,
        counters: Mapping[str, Sequence[str]] | None = None,
    ) -> str:
        """Spawn one worker per category and return the collection id.

        Workers stop on their own after ``duration`` seconds or
        ``max_samples`` ticks, whichever comes first, or when ``stop`` is
        called.
        """
        if not categories:
            raise InvalidInput("At least one telemetry category is required")
        if not targets:
            raise InvalidInput("At least one telemetry target is required")
        if len(set(categories)) != len(categories):
            raise InvalidInput(f"Duplicate telemetry categories: {list(categories)}")
        if interval <= 0:
            raise InvalidInput(f"Sampling interval must be positive (got {interval})")
        if max_samples is not None and max_samples < 1:
            raise InvalidInput(f"max_samples must be positive (got {max_samples})")

        collection_id = (
            f"collection-{utc_now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"
        )
        collection = _Collection(
            collection_id=collection_id,
            directory=ensure_directory(self.output_dir / collection_id),
            targets=list(targets),
            interval=interval,
            duration=duration,
            max_samples=max_samples,
            started_at=utc_now(),
            started_monotonic=time.monotonic(),
        )

        try:
            for category in categories:
                collection.jobs[category] = CollectionJob(
                    category=category,
                    counters=list((counters or {}).get(category, [])),
                    writers=self._open_writers(collection.directory, category, targets),
                )
        except BaseException:
            for job in collection.jobs.values():
                for writer in job.unique_writers():
                    writer.close()
            raise

        for job in collection.jobs.values():
            job.thread = threading.Thread(
                target=self._run_worker,
                args=(collection, job),
                name=f"collector-{slugify(job.category)}",
                daemon=True,
            )

        with self._registry_lock:
            self._collections[collection_id] = collection

        for job in collection.jobs.values():
            assert job.thread is not None
            job.thread.start()

        logger.info(
            f"Started collection {collection_id}: categories={list(categories)} "
            f"targets={list(targets)} interval={interval}s"
        )
        return collection_id

    def wait(self, collection_id: str, timeout: float | None = None) -> bool:
        """Wait until every worker finished on its own, at most ``timeout``.

        Returns True if all workers are done.
        """
        collection = self._get(collection_id)
        deadline = None if timeout is None else time.monotonic() + timeout
        for job in collection.jobs.values():
            assert job.thread is not None
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            job.thread.join(remaining)
        return not any(
            job.thread is not None and job.thread.is_alive()
            for job in collection.jobs.values()
        )

    def stop(
        self, collection_id: str, join_timeout: float | None = None
    ) -> CollectionSummary:
        """Signal, join (bounded), reap stragglers and persist the summary."""
        # Claimed here so a concurrent stop of the same id gets CollectionNotFound.
        with self._registry_lock:
            collection = self._collections.pop(collection_id, None)
        if collection is None:
            raise CollectionNotFound(collection_id)

        collection.stop_event.set()
        timeout = self.join_timeout if join_timeout is None else join_timeout
        deadline = time.monotonic() + timeout

        for job in collection.jobs.values():
            assert job.thread is not None
            job.thread.join(max(0.0, deadline - time.monotonic()))
            if job.thread.is_alive():
                job.reaped = True
                logger.warning(
                    f"Collector for '{job.category}' did not stop within "
                    f"{timeout:.1f}s; reaping it and closing its output"
                )
            for writer in job.unique_writers():
                writer.close()

        summary = self._summarize(collection)
        save_json(summary.model_dump(mode="json"), collection.directory / SUMMARY_FILENAME)

        logger.info(
            f"Stopped collection {collection_id} after {summary.duration:.1f}s: "
            f"{sum(summary.samples_written.values())} samples, "
            f"{sum(summary.errors_written.values())} errors"
        )
        return summary

    def stop_all(self) -> list[CollectionSummary]:
        return [self.stop(collection_id) for collection_id in self.active_collections()]

    def active_collections(self) -> list[str]:
        with self._registry_lock:
            return list(self._collections)

    def collection_dir(self, collection_id: str) -> Path:
        return self._get(collection_id).directory

    # Internal helpers -------------------------------------------------

    def _get(self, collection_id: str) -> _Collection:
        with self._registry_lock:
            collection = self._collections.get(collection_id)
        if collection is None:
            raise CollectionNotFound(collection_id)
        return collection

    def _open_writers(
        self, directory: Path, category: str, targets: Sequence[str]
    ) -> dict[str, _StreamWriter]:
        if self.split_by_target:
            writers: dict[str, _StreamWriter] = {}
            try:
                for target in targets:
                    writers[target] = _StreamWriter(
                        directory / f"{slugify(category)}__{slugify(target)}.jsonl"
                    )
            except BaseException:
                for writer in writers.values():
                    writer.close()
                raise
            return writers
        shared = _StreamWriter(directory / f"{slugify(category)}.jsonl")
        return dict.fromkeys(targets, shared)

    def _run_worker(self, collection: _Collection, job: CollectionJob) -> None:
        stop = collection.stop_event
        deadline = (
            None
            if collection.duration is None
            else collection.started_monotonic + collection.duration
        )
        ticks = 0
        try:
            while not stop.is_set():
                tick_started = time.monotonic()
                for target in collection.targets:
                    if stop.is_set():
                        break
                    self._sample_target(job, target)
                ticks += 1

                if collection.max_samples is not None and ticks >= collection.max_samples:
                    break
                now = time.monotonic()
                if deadline is not None and now >= deadline:
                    break

                pause = collection.interval - (now - tick_started)
                if deadline is not None:
                    pause = min(pause, deadline - now)
                if pause > 0 and stop.wait(pause):
                    break
        except Exception as e:
            job.error = str(e)
            logger.exception(f"Collector for '{job.category}' aborted")
        logger.debug(f"Collector for '{job.category}' finished after {ticks} ticks")

    def _sample_target(self, job: CollectionJob, target: str) -> None:
        writer = job.writers[target]
        try:
            readings = self.sampler.sample(target, job.category, job.counters)
            timestamp = utc_now()
            samples = [
                MetricSample(
                    timestamp=timestamp,
                    node=target,
                    category=job.category,
                    counter=reading.counter,
                    instance=reading.instance,
                    value=reading.value,
                )
                for reading in readings
            ]
        except Exception as e:
            # Per-target failures are data, not control flow.
            writer.append(
                MetricSample(
                    timestamp=utc_now(),
                    node=target,
                    category=job.category,
                    counter=TARGET_ERROR_COUNTER,
                    error=str(e) or type(e).__name__,
                )
            )
            return

        for sample in samples:
            writer.append(sample)

    def _summarize(self, collection: _Collection) -> CollectionSummary:
        ended_at = utc_now()
        output_files: list[str] = []
        samples: dict[str, int] = {}
        errors: dict[str, int] = {}
        for category, job in collection.jobs.items():
            output_files.extend(str(path) for path in job.output_files)
            writers = job.unique_writers()
            samples[category] = sum(w.samples for w in writers)
            errors[category] = sum(w.errors for w in writers)

        return CollectionSummary(
            collection_id=collection.collection_id,
            started_at=collection.started_at,
            ended_at=ended_at,
            duration=(ended_at - collection.started_at).total_seconds(),
            categories=list(collection.jobs),
            targets=collection.targets,
            output_files=output_files,
            samples_written=samples,
            errors_written=errors,
            reaped_categories=[c for c, job in collection.jobs.items() if job.reaped],
        )
