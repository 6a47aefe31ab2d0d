"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from legacy_migrator.models.base import AuditMetadata, Base
from legacy_migrator.models.import_job import ImportFileType, ImportJob, ImportStatus
from legacy_migrator.models.import_job_error import ErrorCategory, ErrorSeverity, ImportJobError
from legacy_migrator.models.migrated_record import MigratedRecord

__all__ = [
    "AuditMetadata",
    "Base",
    "ErrorCategory",
    "ErrorSeverity",
    "ImportFileType",
    "ImportJob",
    "ImportJobError",
    "ImportStatus",
    "MigratedRecord",
]
