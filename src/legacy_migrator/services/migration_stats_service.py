"""Migration statistics and health summaries."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.models.base import utcnow
from legacy_migrator.models.import_job import ImportJob
from legacy_migrator.models.import_job_error import ErrorSeverity, ImportJobError
from legacy_migrator.services.import_job_service import (
    list_active_jobs,
    list_restartable_jobs,
    list_rollbackable_jobs,
)

DEFAULT_HIGH_ERROR_RATE = 0.1

# Health thresholds
WARNING_TIMED_OUT_JOBS = 0
CRITICAL_TIMED_OUT_JOBS = 5
WARNING_UNRESOLVED_ERRORS = 100
CRITICAL_UNRESOLVED_ERRORS = 500


class HealthStatus(enum.StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class JobStatistics:
    """Progress and error breakdown of a single job."""

    job_id: str
    status: str
    total_records: int | None
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    checkpoint_position: int
    progress_percentage: float
    error_rate: float
    records_per_second: float
    execution_time_ms: int
    total_errors: int
    resolved_errors: int
    critical_errors: int
    errors_by_category: dict[str, int] = field(default_factory=dict)
    errors_by_severity: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SourceSystemStatistics:
    source_system: str | None
    jobs: int
    total_records: int
    successful_records: int
    failed_records: int


@dataclass(frozen=True)
class MigrationStatistics:
    """Engine-wide totals across all jobs."""

    total_jobs: int
    jobs_by_status: dict[str, int]
    source_systems: list[SourceSystemStatistics]
    active_jobs: int
    restartable_jobs: int
    rollbackable_jobs: int
    unresolved_errors: int
    high_error_rate_jobs: list[str]


@dataclass(frozen=True)
class MigrationHealth:
    status: HealthStatus
    active_jobs: int
    timed_out_jobs: list[str]
    unresolved_errors: int
    checked_at: datetime


async def _count_grouped(session: AsyncSession, column, *criteria) -> dict[str, int]:
    result = await session.execute(select(column, func.count()).where(*criteria).group_by(column))
    return {str(key): count for key, count in result.all()}


async def count_unresolved_errors(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(ImportJobError.id)).where(ImportJobError.is_resolved.is_(False)))
    return result.scalar_one()


async def get_job_statistics(session: AsyncSession, job: ImportJob) -> JobStatistics:
    """Summarize a job's counters and its error records.

    Args:
        session: Database session.
        job: The job to summarize.

    Returns:
        Counters, throughput and error breakdowns for the job.
    """
    of_job = ImportJobError.import_job_id == job.id
    totals = await session.execute(
        select(
            func.count(ImportJobError.id),
            func.count(ImportJobError.id).filter(ImportJobError.is_resolved.is_(True)),
            func.count(ImportJobError.id).filter(ImportJobError.severity == ErrorSeverity.CRITICAL),
        ).where(of_job)
    )
    total_errors, resolved_errors, critical_errors = totals.one()

    return JobStatistics(
        job_id=job.job_id,
        status=job.status,
        total_records=job.total_records,
        processed_records=job.processed_records,
        successful_records=job.successful_records,
        failed_records=job.failed_records,
        skipped_records=job.skipped_records,
        checkpoint_position=job.checkpoint_position,
        progress_percentage=round(job.progress_percentage, 2),
        error_rate=round(job.error_rate, 4),
        records_per_second=job.records_per_second,
        execution_time_ms=job.execution_time_ms,
        total_errors=total_errors,
        resolved_errors=resolved_errors,
        critical_errors=critical_errors,
        errors_by_category=await _count_grouped(session, ImportJobError.category, of_job),
        errors_by_severity=await _count_grouped(session, ImportJobError.severity, of_job),
    )


async def get_migration_statistics(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    high_error_rate: float = DEFAULT_HIGH_ERROR_RATE,
) -> MigrationStatistics:
    """Summarize all jobs.

    Args:
        session: Database session.
        now: Reference time for rollback eligibility.
        high_error_rate: Failed/processed ratio above which a job is listed
            in ``high_error_rate_jobs``.
    """
    now = now or utcnow()
    jobs_by_status = await _count_grouped(session, ImportJob.status)

    source_rows = await session.execute(
        select(
            ImportJob.source_system,
            func.count(ImportJob.id),
            func.coalesce(func.sum(ImportJob.total_records), 0),
            func.coalesce(func.sum(ImportJob.successful_records), 0),
            func.coalesce(func.sum(ImportJob.failed_records), 0),
        )
        .group_by(ImportJob.source_system)
        .order_by(ImportJob.source_system)
    )
    source_systems = [
        SourceSystemStatistics(
            source_system=source_system,
            jobs=jobs,
            total_records=int(total),
            successful_records=int(successful),
            failed_records=int(failed),
        )
        for source_system, jobs, total, successful, failed in source_rows.all()
    ]

    high_error = await session.execute(
        select(ImportJob.job_id)
        .where(
            ImportJob.processed_records > 0,
            ImportJob.failed_records > ImportJob.processed_records * high_error_rate,
        )
        .order_by(ImportJob.created_at, ImportJob.job_id)
    )

    return MigrationStatistics(
        total_jobs=sum(jobs_by_status.values()),
        jobs_by_status=jobs_by_status,
        source_systems=source_systems,
        active_jobs=len(await list_active_jobs(session)),
        restartable_jobs=len(await list_restartable_jobs(session)),
        rollbackable_jobs=len(await list_rollbackable_jobs(session, now)),
        unresolved_errors=await count_unresolved_errors(session),
        high_error_rate_jobs=list(high_error.scalars().all()),
    )


def classify_health(timed_out_jobs: int, unresolved_errors: int) -> HealthStatus:
    if timed_out_jobs > CRITICAL_TIMED_OUT_JOBS or unresolved_errors > CRITICAL_UNRESOLVED_ERRORS:
        return HealthStatus.CRITICAL
    if timed_out_jobs > WARNING_TIMED_OUT_JOBS or unresolved_errors > WARNING_UNRESOLVED_ERRORS:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


async def get_migration_health(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    timeout: timedelta = timedelta(hours=2),
) -> MigrationHealth:
    """Assess the engine from running jobs and the unresolved error backlog.

    A running job is timed out when it has not checkpointed for longer than
    ``timeout``.
    """
    now = now or utcnow()
    active = await list_active_jobs(session)
    timed_out = [job.job_id for job in active if job.heartbeat_at is not None and now - job.heartbeat_at > timeout]
    unresolved = await count_unresolved_errors(session)

    return MigrationHealth(
        status=classify_health(len(timed_out), unresolved),
        active_jobs=len(active),
        timed_out_jobs=timed_out,
        unresolved_errors=unresolved,
        checked_at=now,
    )
