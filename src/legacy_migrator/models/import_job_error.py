"""ImportJobError model - one failed record of an import job."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, composite, mapped_column

from legacy_migrator.models.base import AuditMetadata, Base


class ErrorCategory(enum.StrEnum):
    """Broad classification of a record-level failure."""

    VALIDATION = "validation"
    DUPLICATE = "duplicate"
    REFERENCE = "reference"
    FORMAT = "format"
    BUSINESS_RULE = "business_rule"
    SYSTEM = "system"
    PERMISSION = "permission"


class ErrorSeverity(enum.StrEnum):
    """How urgently a failed record needs operator attention."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImportJobError(Base):
    """A record that failed during an import job.

    Rows are appended by the batch loop and never deleted by the engine;
    only the resolution fields change afterwards.
    """

    __tablename__ = "import_job_errors"
    __table_args__ = (Index("ix_import_job_errors_job_record", "import_job_id", "record_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    import_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    record_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Raw record serialized as JSON
    record_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    suggested_fix: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    audit: Mapped[AuditMetadata] = composite("created_at", "updated_at")

    @property
    def is_critical(self) -> bool:
        return self.severity == ErrorSeverity.CRITICAL

    @property
    def is_resolvable(self) -> bool:
        """System failures are retried by restarting the job, not resolved by hand."""
        return not self.is_resolved and self.category != ErrorCategory.SYSTEM

    def mark_resolved(self, resolved_by: str, notes: str | None, now: datetime) -> None:
        """Record who resolved the error and how."""
        self.is_resolved = True
        self.resolved_by = resolved_by
        self.resolution_notes = notes
        self.resolved_at = now
        self.audit = self.audit.touched(now)
