"""Import job queries: lookups, listings and error resolution."""

import uuid
from datetime import datetime

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.core.exceptions import JobStateError
from legacy_migrator.models.base import utcnow
from legacy_migrator.models.import_job import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    RESTARTABLE_STATUSES,
    ImportJob,
)
from legacy_migrator.models.import_job_error import ImportJobError


async def get_import_job(session: AsyncSession, job_id: str) -> ImportJob | None:
    """Get an import job by its external job id.

    Args:
        session: Database session.
        job_id: The job's opaque identifier.

    Returns:
        The ImportJob or None if not found.
    """
    result = await session.execute(select(ImportJob).where(ImportJob.job_id == job_id))
    return result.scalar_one_or_none()


async def list_import_jobs(
    session: AsyncSession,
    *,
    status: str | None = None,
    source_system: str | None = None,
    target_entity: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportJob], int]:
    """List import jobs with optional filters, newest first.

    Args:
        session: Database session.
        status: Filter by status.
        source_system: Filter by source system.
        target_entity: Filter by target entity (case-insensitive).
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (jobs, total count).
    """
    query = select(ImportJob)
    count_query = select(func.count(ImportJob.id))

    if status:
        query = query.where(ImportJob.status == status)
        count_query = count_query.where(ImportJob.status == status)
    if source_system:
        query = query.where(ImportJob.source_system == source_system)
        count_query = count_query.where(ImportJob.source_system == source_system)
    if target_entity:
        entity = target_entity.strip().upper()
        query = query.where(ImportJob.target_entity == entity)
        count_query = count_query.where(ImportJob.target_entity == entity)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(ImportJob.created_at.desc(), ImportJob.job_id.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    jobs = list(result.scalars().all())

    return jobs, total


async def list_job_errors(
    session: AsyncSession,
    job: ImportJob,
    *,
    unresolved_only: bool = False,
    category: str | None = None,
    severity: str | None = None,
) -> list[ImportJobError]:
    """List a job's error records in record order.

    Args:
        session: Database session.
        job: The job whose errors to list.
        unresolved_only: Only return errors not yet resolved.
        category: Filter by error category.
        severity: Filter by error severity.

    Returns:
        Error records ordered by record number.
    """
    query = select(ImportJobError).where(ImportJobError.import_job_id == job.id)
    if unresolved_only:
        query = query.where(ImportJobError.is_resolved.is_(False))
    if category:
        query = query.where(ImportJobError.category == category)
    if severity:
        query = query.where(ImportJobError.severity == severity)
    query = query.order_by(ImportJobError.record_number, ImportJobError.created_at)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_active_jobs(session: AsyncSession) -> list[ImportJob]:
    """Jobs currently validating or processing."""
    result = await session.execute(
        select(ImportJob)
        .where(ImportJob.status.in_(ACTIVE_STATUSES))
        .order_by(ImportJob.created_at, ImportJob.job_id)
    )
    return list(result.scalars().all())


async def list_restartable_jobs(session: AsyncSession) -> list[ImportJob]:
    """Paused or failed jobs that still hold a usable checkpoint.

    File presence is not checked here; ``restart`` does that before
    scheduling.
    """
    result = await session.execute(
        select(ImportJob)
        .where(
            ImportJob.status.in_(RESTARTABLE_STATUSES),
            ImportJob.archived_at.is_(None),
            ImportJob.total_records.is_not(None),
        )
        .order_by(ImportJob.created_at, ImportJob.job_id)
    )
    return [job for job in result.scalars().all() if job.is_resumable()]


async def list_rollbackable_jobs(session: AsyncSession, now: datetime | None = None) -> list[ImportJob]:
    """Completed jobs whose rollback window is still open at ``now``."""
    now = now or utcnow()
    result = await session.execute(
        select(ImportJob)
        .where(ImportJob.status.in_(COMPLETED_STATUSES), ImportJob.can_rollback.is_(True))
        .order_by(ImportJob.created_at, ImportJob.job_id)
    )
    return [job for job in result.scalars().all() if job.can_be_rolled_back(now)]


async def resolve_error(
    session: AsyncSession,
    error_id: uuid.UUID,
    *,
    resolved_by: str,
    notes: str | None = None,
) -> ImportJobError | None:
    """Mark an error record as resolved.

    Args:
        session: Database session.
        error_id: The error record's id.
        resolved_by: Who resolved it.
        notes: Optional resolution notes.

    Returns:
        The updated error record, or None if it does not exist.

    Raises:
        JobStateError: If the error is already resolved.
    """
    error = await session.get(ImportJobError, error_id)
    if error is None:
        return None
    if error.is_resolved:
        msg = f"Error {error_id} is already resolved"
        raise JobStateError(msg)

    error.mark_resolved(resolved_by, notes, utcnow())
    await session.commit()
    logger.info(f"Error {error_id} resolved by {resolved_by}")
    return error
