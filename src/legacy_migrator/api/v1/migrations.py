"""Data migration API endpoints.

POST /data-migration/upload (multipart file upload), job actions under
/data-migration/jobs/{job_id} (start, restart, pause, rollback), job and
error queries, error resolution, engine-wide statistics and health.
"""

import json
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.core.config import Settings, get_settings
from legacy_migrator.core.dependencies import get_async_session, get_orchestrator
from legacy_migrator.core.exceptions import JobNotFoundError, JobStateError, StagingError, SubmissionError
from legacy_migrator.models.import_job import ImportJob, ImportStatus
from legacy_migrator.schemas.common import PaginationMeta, PaginationParams
from legacy_migrator.schemas.imports import (
    ImportJobErrorResponse,
    ImportJobResponse,
    JobActionResponse,
    JobStatisticsResponse,
    MigrationHealthResponse,
    MigrationStatisticsResponse,
    PaginatedImportJobResponse,
    ResolveErrorRequest,
    RollbackRequest,
)
from legacy_migrator.services import import_job_service, migration_stats_service
from legacy_migrator.services.migration_service import MigrationOrchestrator

router = APIRouter(prefix="/data-migration", tags=["data-migration"])

_JOB_NOT_FOUND_DETAIL = "Import job not found"


async def _get_job_or_404(session: AsyncSession, job_id: str) -> ImportJob:
    job = await import_job_service.get_import_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_DETAIL)
    return job


@router.post("/upload", response_model=ImportJobResponse, status_code=202)
async def upload_file(
    file: UploadFile,
    target_entity: Annotated[str, Form()],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    orchestrator: Annotated[MigrationOrchestrator, Depends(get_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
    source_system: Annotated[str | None, Form()] = None,
    initiated_by: Annotated[str | None, Form()] = None,
    configuration: Annotated[str | None, Form(description="Import configuration as a JSON object")] = None,
) -> ImportJobResponse:
    """Stage a legacy file and create a PENDING import job."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    content = await file.read()
    if len(content) > settings.migration_max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds maximum size of {settings.migration_max_upload_mb} MB",
        )

    parsed_configuration = None
    if configuration:
        try:
            parsed_configuration = json.loads(configuration)
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid configuration: {e}") from e
        if not isinstance(parsed_configuration, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Configuration must be a JSON object")

    try:
        job = await orchestrator.submit(
            session,
            content,
            file.filename,
            source_system=source_system,
            target_entity=target_entity,
            initiated_by=initiated_by,
            configuration=parsed_configuration,
            content_type=file.content_type,
        )
    except SubmissionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except StagingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    return ImportJobResponse.model_validate(job)


@router.post("/jobs/{job_id}/start", response_model=JobActionResponse, status_code=202)
async def start_job(
    job_id: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    orchestrator: Annotated[MigrationOrchestrator, Depends(get_orchestrator)],
) -> JobActionResponse:
    """Schedule a PENDING job for processing."""
    job = await _get_job_or_404(session, job_id)
    if job.status != ImportStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Import job is not in PENDING status: {job.status}",
        )
    task_id = orchestrator.start(job_id)
    return JobActionResponse(job_id=job_id, status=job.status, message="Import job started", task_id=task_id)


@router.post("/jobs/{job_id}/restart", response_model=JobActionResponse, status_code=202)
async def restart_job(
    job_id: str,
    orchestrator: Annotated[MigrationOrchestrator, Depends(get_orchestrator)],
) -> JobActionResponse:
    """Resume a PAUSED or FAILED job from its last checkpoint."""
    try:
        task_id = await orchestrator.restart(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return JobActionResponse(
        job_id=job_id, status=ImportStatus.IN_PROGRESS, message="Import job restarted", task_id=task_id
    )


@router.post("/jobs/{job_id}/pause", response_model=JobActionResponse, status_code=202)
async def pause_job(
    job_id: str,
    orchestrator: Annotated[MigrationOrchestrator, Depends(get_orchestrator)],
) -> JobActionResponse:
    """Ask a running job to pause after its current batch."""
    try:
        job = await orchestrator.request_pause(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return JobActionResponse(job_id=job_id, status=job.status, message="Pause requested")


@router.post("/jobs/{job_id}/rollback", response_model=ImportJobResponse)
async def rollback_job(
    job_id: str,
    body: RollbackRequest,
    orchestrator: Annotated[MigrationOrchestrator, Depends(get_orchestrator)],
) -> ImportJobResponse:
    """Undo everything a completed job wrote."""
    try:
        job = await orchestrator.rollback(job_id, body.reason, body.rolled_back_by)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ImportJobResponse.model_validate(job)


@router.get("/jobs", response_model=PaginatedImportJobResponse)
async def list_jobs(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    job_status: str | None = None,
    source_system: str | None = None,
    target_entity: str | None = None,
) -> PaginatedImportJobResponse:
    """List import jobs with optional filters."""
    jobs, total = await import_job_service.list_import_jobs(
        session,
        status=job_status,
        source_system=source_system,
        target_entity=target_entity,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedImportJobResponse(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        pagination=PaginationMeta.build(total, pagination),
    )


@router.get("/jobs/{job_id}", response_model=ImportJobResponse)
async def get_job(
    job_id: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobResponse:
    """Get import job status and progress."""
    job = await _get_job_or_404(session, job_id)
    return ImportJobResponse.model_validate(job)


@router.get("/jobs/{job_id}/errors", response_model=list[ImportJobErrorResponse])
async def get_job_errors(
    job_id: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    unresolved_only: bool = False,
    category: str | None = None,
    severity: str | None = None,
) -> list[ImportJobErrorResponse]:
    """List a job's failed records in record order."""
    job = await _get_job_or_404(session, job_id)
    errors = await import_job_service.list_job_errors(
        session, job, unresolved_only=unresolved_only, category=category, severity=severity
    )
    return [ImportJobErrorResponse.model_validate(e) for e in errors]


@router.get("/jobs/{job_id}/stats", response_model=JobStatisticsResponse)
async def get_job_stats(
    job_id: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> JobStatisticsResponse:
    """Counters and error breakdown for one job."""
    job = await _get_job_or_404(session, job_id)
    stats = await migration_stats_service.get_job_statistics(session, job)
    return JobStatisticsResponse.model_validate(stats)


@router.post("/errors/{error_id}/resolve", response_model=ImportJobErrorResponse)
async def resolve_error(
    error_id: uuid.UUID,
    body: ResolveErrorRequest,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobErrorResponse:
    """Mark a failed record as resolved."""
    try:
        error = await import_job_service.resolve_error(
            session, error_id, resolved_by=body.resolved_by, notes=body.notes
        )
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if error is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job error not found")
    return ImportJobErrorResponse.model_validate(error)


@router.get("/stats", response_model=MigrationStatisticsResponse)
async def get_migration_stats(
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> MigrationStatisticsResponse:
    """Totals across all import jobs."""
    stats = await migration_stats_service.get_migration_statistics(session)
    return MigrationStatisticsResponse.model_validate(stats)


@router.get("/health", response_model=MigrationHealthResponse)
async def get_migration_health(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MigrationHealthResponse:
    """Engine health from stalled jobs and the unresolved error backlog."""
    health = await migration_stats_service.get_migration_health(session, timeout=settings.migration_stale_after)
    return MigrationHealthResponse.model_validate(health)
