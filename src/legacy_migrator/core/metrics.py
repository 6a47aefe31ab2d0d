"""Metrics sink abstraction for the migration engine.

The orchestrator reports counters and durations through an injected
``MetricsSink`` so it can run without a metrics backend.  The application
wires ``PrometheusMetricsSink``, whose collectors are exposed on ``/metrics``.

Metrics:
    1. legacy_migrator_jobs_started_total (Counter, labels: target_entity)
    2. legacy_migrator_jobs_completed_total (Counter, labels: target_entity)
    3. legacy_migrator_jobs_failed_total (Counter, labels: target_entity)
    4. legacy_migrator_records_succeeded_total (Counter, labels: target_entity)
    5. legacy_migrator_records_failed_total (Counter, labels: target_entity)
    6. legacy_migrator_records_skipped_total (Counter, labels: target_entity)
    7. legacy_migrator_batches_retried_total (Counter, labels: target_entity)
    8. legacy_migrator_rollbacks_completed_total (Counter, labels: target_entity)
    9. legacy_migrator_rollbacks_failed_total (Counter, labels: target_entity)
    10. legacy_migrator_migration_duration_seconds (Histogram, labels: target_entity)
"""

from typing import Protocol

from prometheus_client import Counter, Histogram

JOBS_STARTED = "migration.jobs.started"
JOBS_COMPLETED = "migration.jobs.completed"
JOBS_FAILED = "migration.jobs.failed"
RECORDS_SUCCEEDED = "migration.records.succeeded"
RECORDS_FAILED = "migration.records.failed"
RECORDS_SKIPPED = "migration.records.skipped"
BATCHES_RETRIED = "migration.batches.retried"
ROLLBACKS_COMPLETED = "migration.rollbacks.completed"
ROLLBACKS_FAILED = "migration.rollbacks.failed"
MIGRATION_DURATION = "migration.duration"

LABELS = ["target_entity"]

COUNTERS: dict[str, Counter] = {
    JOBS_STARTED: Counter("legacy_migrator_jobs_started_total", "Import jobs started", labelnames=LABELS),
    JOBS_COMPLETED: Counter("legacy_migrator_jobs_completed_total", "Import jobs completed", labelnames=LABELS),
    JOBS_FAILED: Counter("legacy_migrator_jobs_failed_total", "Import jobs failed", labelnames=LABELS),
    RECORDS_SUCCEEDED: Counter(
        "legacy_migrator_records_succeeded_total", "Records migrated successfully", labelnames=LABELS
    ),
    RECORDS_FAILED: Counter("legacy_migrator_records_failed_total", "Records rejected", labelnames=LABELS),
    RECORDS_SKIPPED: Counter("legacy_migrator_records_skipped_total", "Blank records skipped", labelnames=LABELS),
    BATCHES_RETRIED: Counter("legacy_migrator_batches_retried_total", "Batch retries", labelnames=LABELS),
    ROLLBACKS_COMPLETED: Counter(
        "legacy_migrator_rollbacks_completed_total", "Import job rollbacks completed", labelnames=LABELS
    ),
    ROLLBACKS_FAILED: Counter(
        "legacy_migrator_rollbacks_failed_total", "Import job rollbacks failed", labelnames=LABELS
    ),
}

HISTOGRAMS: dict[str, Histogram] = {
    MIGRATION_DURATION: Histogram(
        "legacy_migrator_migration_duration_seconds",
        "Import job execution time in seconds",
        labelnames=LABELS,
        buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0, 7200.0),
    ),
}


class MetricsSink(Protocol):
    """Receives counter increments and timing observations."""

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        """Increment a counter by ``value``."""
        ...

    def timing(self, name: str, seconds: float, **tags: str) -> None:
        """Record a duration observation in seconds."""
        ...


class NullMetricsSink:
    """Metrics sink that discards everything."""

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        return None

    def timing(self, name: str, seconds: float, **tags: str) -> None:
        return None


class PrometheusMetricsSink:
    """Metrics sink backed by the module's Prometheus collectors.

    Unknown metric names are ignored; a missing ``target_entity`` tag is
    reported as ``unknown``.
    """

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        counter = COUNTERS.get(name)
        if counter is None or value <= 0:
            return
        counter.labels(target_entity=tags.get("target_entity", "unknown")).inc(value)

    def timing(self, name: str, seconds: float, **tags: str) -> None:
        histogram = HISTOGRAMS.get(name)
        if histogram is None:
            return
        histogram.labels(target_entity=tags.get("target_entity", "unknown")).observe(seconds)
