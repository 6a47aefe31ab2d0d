"""MigratedRecord model - target store written by the reference record processor."""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, composite, mapped_column

from legacy_migrator.models.base import AuditMetadata, Base


class MigratedRecord(Base):
    """One legacy record persisted under its entity's natural key.

    The owning ``import_job_id`` is what a rollback deletes by.
    """

    __tablename__ = "migrated_records"
    __table_args__ = (UniqueConstraint("target_entity", "record_key", name="uq_migrated_record_entity_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    import_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_entity: Mapped[str] = mapped_column(String(100), nullable=False)
    record_key: Mapped[str] = mapped_column(String(255), nullable=False)
    record_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    audit: Mapped[AuditMetadata] = composite("created_at", "updated_at")
