"""ImportJob model - one migration run of one staged file, with checkpoint/restart state."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Integer, String, Text, Uuid, true
from sqlalchemy.orm import Mapped, composite, mapped_column

from legacy_migrator.models.base import AuditMetadata, Base, as_utc


class ImportStatus(enum.StrEnum):
    """Lifecycle status of an import job."""

    PENDING = "pending"
    VALIDATING = "validating"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    ROLLBACK_IN_PROGRESS = "rollback_in_progress"
    ROLLBACK_COMPLETED = "rollback_completed"
    ROLLBACK_FAILED = "rollback_failed"


class ImportFileType(enum.StrEnum):
    """Formats of files delivered by legacy source systems."""

    CSV = "csv"
    XML = "xml"
    JSON = "json"
    EXCEL = "excel"
    FIXED_WIDTH = "fixed_width"
    DOKA_LEGACY = "doka_legacy"


ACTIVE_STATUSES = frozenset({ImportStatus.VALIDATING, ImportStatus.IN_PROGRESS})
COMPLETED_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.COMPLETED_WITH_ERRORS})
RESTARTABLE_STATUSES = frozenset({ImportStatus.PAUSED, ImportStatus.FAILED})
TERMINAL_STATUSES = COMPLETED_STATUSES | {
    ImportStatus.FAILED,
    ImportStatus.ROLLBACK_COMPLETED,
    ImportStatus.ROLLBACK_FAILED,
}


class ImportJob(Base):
    """Durable description of one migration run.

    ``checkpoint_position`` is the offset of the next unprocessed record and
    the only input used to resume a job.  It is written in the same commit
    as the batch counters and never decreases.
    """

    __tablename__ = "import_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)

    # Source descriptors
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_system: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    target_entity: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    initiated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    server_instance: Mapped[str | None] = mapped_column(String(100), nullable=True)
    process_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ImportStatus.PENDING, server_default="pending", index=True
    )

    # Serialized JSON, interpreted only by record processors
    import_configuration: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_rules: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Progress; total_records stays NULL until the file has been validated and counted
    total_records: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed_records: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    successful_records: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    failed_records: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    skipped_records: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    # Checkpoint / retry
    checkpoint_position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1000, server_default="1000")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")
    current_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_checkpoint_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    records_per_second: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")

    # Failure and rollback control
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    can_rollback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    rollback_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rollback_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rolled_back_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    audit: Mapped[AuditMetadata] = composite("created_at", "updated_at")

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percentage(self) -> float:
        if not self.total_records:
            return 0.0
        return self.processed_records / self.total_records * 100.0

    @property
    def error_rate(self) -> float:
        if not self.processed_records:
            return 0.0
        return self.failed_records / self.processed_records

    @property
    def heartbeat_at(self) -> datetime | None:
        """Last sign of life of a running job: its latest checkpoint, else its start."""
        return as_utc(self.last_checkpoint_at or self.started_at or self.created_at)

    def has_valid_checkpoint(self) -> bool:
        """Whether the checkpoint is an offset inside the counted file."""
        if self.total_records is None:
            return False
        return 0 <= self.checkpoint_position <= self.total_records

    def is_resumable(self, *, file_available: bool = True) -> bool:
        """Whether ``restart`` may continue this job from its checkpoint.

        Args:
            file_available: Whether the staged file still exists in storage.
        """
        return (
            self.status in RESTARTABLE_STATUSES
            and self.archived_at is None
            and file_available
            and self.has_valid_checkpoint()
        )

    def can_be_rolled_back(self, now: datetime) -> bool:
        """Whether a rollback is allowed at ``now``."""
        if not (self.can_rollback and self.is_completed):
            return False
        deadline = as_utc(self.rollback_deadline)
        return deadline is None or now < deadline

    def update_progress(self, now: datetime) -> None:
        """Recompute elapsed time and throughput from ``started_at``."""
        started = as_utc(self.started_at)
        if started is None:
            return
        elapsed_ms = max(int((now - started).total_seconds() * 1000), 0)
        self.execution_time_ms = elapsed_ms
        if elapsed_ms > 0 and self.processed_records > 0:
            self.records_per_second = self.processed_records / (elapsed_ms / 1000.0)
