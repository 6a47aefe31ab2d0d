"""Create import_jobs, import_job_errors and migrated_records tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "import_jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("job_id", sa.String(50), nullable=False, unique=True),
        # Source descriptors
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("file_type", sa.String(20), nullable=False),
        sa.Column("source_system", sa.String(100), nullable=True),
        sa.Column("target_entity", sa.String(100), nullable=False),
        sa.Column("initiated_by", sa.String(100), nullable=True),
        sa.Column("server_instance", sa.String(100), nullable=True),
        sa.Column("process_id", sa.String(100), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("import_configuration", sa.Text, nullable=True),
        sa.Column("validation_rules", sa.Text, nullable=True),
        # Progress
        sa.Column("total_records", sa.BigInteger, nullable=True),
        sa.Column("processed_records", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("successful_records", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("failed_records", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("skipped_records", sa.BigInteger, nullable=False, server_default="0"),
        # Checkpoint / retry
        sa.Column("checkpoint_position", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("batch_size", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("current_retries", sa.Integer, nullable=False, server_default="0"),
        # Timing
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_checkpoint_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_time_ms", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("records_per_second", sa.Float, nullable=False, server_default="0"),
        # Failure and rollback control
        sa.Column("error_summary", sa.Text, nullable=True),
        sa.Column("can_rollback", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("rollback_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rollback_reason", sa.Text, nullable=True),
        sa.Column("rolled_back_by", sa.String(100), nullable=True),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_import_jobs_job_id", "import_jobs", ["job_id"])
    op.create_index("ix_import_jobs_status", "import_jobs", ["status"])
    op.create_index("ix_import_jobs_source_system", "import_jobs", ["source_system"])
    op.create_index("ix_import_jobs_target_entity", "import_jobs", ["target_entity"])
    op.create_index("ix_import_jobs_created_at", "import_jobs", ["created_at"])

    op.create_table(
        "import_job_errors",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "import_job_id",
            sa.Uuid,
            sa.ForeignKey("import_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("record_number", sa.BigInteger, nullable=False),
        sa.Column("error_type", sa.String(50), nullable=False),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("error_message", sa.Text, nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("record_data", sa.Text, nullable=True),
        sa.Column("affected_field", sa.String(100), nullable=True),
        sa.Column("suggested_fix", sa.Text, nullable=True),
        sa.Column("error_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_import_job_errors_import_job_id", "import_job_errors", ["import_job_id"])
    op.create_index("ix_import_job_errors_job_record", "import_job_errors", ["import_job_id", "record_number"])
    op.create_index("ix_import_job_errors_category", "import_job_errors", ["category"])
    op.create_index("ix_import_job_errors_severity", "import_job_errors", ["severity"])

    op.create_table(
        "migrated_records",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "import_job_id",
            sa.Uuid,
            sa.ForeignKey("import_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("target_entity", sa.String(100), nullable=False),
        sa.Column("record_key", sa.String(255), nullable=False),
        sa.Column("record_number", sa.BigInteger, nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("target_entity", "record_key", name="uq_migrated_record_entity_key"),
    )
    op.create_index("ix_migrated_records_import_job_id", "migrated_records", ["import_job_id"])


def downgrade() -> None:
    op.drop_index("ix_migrated_records_import_job_id", table_name="migrated_records")
    op.drop_table("migrated_records")

    op.drop_index("ix_import_job_errors_severity", table_name="import_job_errors")
    op.drop_index("ix_import_job_errors_category", table_name="import_job_errors")
    op.drop_index("ix_import_job_errors_job_record", table_name="import_job_errors")
    op.drop_index("ix_import_job_errors_import_job_id", table_name="import_job_errors")
    op.drop_table("import_job_errors")

    op.drop_index("ix_import_jobs_created_at", table_name="import_jobs")
    op.drop_index("ix_import_jobs_target_entity", table_name="import_jobs")
    op.drop_index("ix_import_jobs_source_system", table_name="import_jobs")
    op.drop_index("ix_import_jobs_status", table_name="import_jobs")
    op.drop_index("ix_import_jobs_job_id", table_name="import_jobs")
    op.drop_table("import_jobs")
