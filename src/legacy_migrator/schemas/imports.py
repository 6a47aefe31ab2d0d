"""Data migration Pydantic v2 request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from legacy_migrator.schemas.common import PaginationMeta


class ImportJobResponse(BaseModel):
    """Import job status, progress and rollback eligibility."""

    job_id: str
    file_name: str
    file_type: str
    file_size: int
    source_system: str | None = None
    target_entity: str
    initiated_by: str | None = None
    status: str
    total_records: int | None = None
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    checkpoint_position: int
    batch_size: int
    current_retries: int
    max_retries: int
    progress_percentage: float
    records_per_second: float
    execution_time_ms: int
    error_summary: str | None = None
    can_rollback: bool
    rollback_deadline: datetime | None = None
    rollback_reason: str | None = None
    rolled_back_by: str | None = None
    rolled_back_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    last_checkpoint_at: datetime | None = None
    archived_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaginatedImportJobResponse(BaseModel):
    """Paginated list of import jobs."""

    items: list[ImportJobResponse]
    pagination: PaginationMeta


class ImportJobErrorResponse(BaseModel):
    """A failed record of an import job."""

    id: UUID
    record_number: int
    error_type: str
    error_code: str | None = None
    error_message: str
    category: str
    severity: str
    record_data: str | None = None
    affected_field: str | None = None
    suggested_fix: str | None = None
    error_timestamp: datetime
    is_resolved: bool
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None

    model_config = {"from_attributes": True}


class JobActionResponse(BaseModel):
    """Acknowledgement of a scheduled or completed job action."""

    job_id: str
    status: str
    message: str
    task_id: str | None = None


class RollbackRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000, description="Why the job is rolled back")
    rolled_back_by: str = Field(min_length=1, max_length=100, description="Actor requesting the rollback")


class ResolveErrorRequest(BaseModel):
    resolved_by: str = Field(min_length=1, max_length=100)
    notes: str | None = Field(default=None, max_length=2000)


class JobStatisticsResponse(BaseModel):
    """Counters and error breakdowns of one job."""

    job_id: str
    status: str
    total_records: int | None = None
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
    errors_by_category: dict[str, int]
    errors_by_severity: dict[str, int]

    model_config = {"from_attributes": True}


class SourceSystemStatisticsResponse(BaseModel):
    source_system: str | None = None
    jobs: int
    total_records: int
    successful_records: int
    failed_records: int

    model_config = {"from_attributes": True}


class MigrationStatisticsResponse(BaseModel):
    """Totals across all import jobs."""

    total_jobs: int
    jobs_by_status: dict[str, int]
    source_systems: list[SourceSystemStatisticsResponse]
    active_jobs: int
    restartable_jobs: int
    rollbackable_jobs: int
    unresolved_errors: int
    high_error_rate_jobs: list[str]

    model_config = {"from_attributes": True}


class MigrationHealthResponse(BaseModel):
    status: str
    active_jobs: int
    timed_out_jobs: list[str]
    unresolved_errors: int
    checked_at: datetime

    model_config = {"from_attributes": True}
