"""Exception hierarchy for the migration engine.

Submission and state errors surface to callers synchronously; record-level
errors are contained by the batch loop and stored as error rows.
"""


class MigrationError(Exception):
    """Base class for migration engine errors."""


class SubmissionError(MigrationError, ValueError):
    """A submitted file or its parameters were rejected before staging."""


class StagingError(MigrationError, OSError):
    """Staging or archiving a file failed."""


class JobNotFoundError(MigrationError, LookupError):
    """No import job exists with the given identifier."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Import job not found: {job_id}")
        self.job_id = job_id


class JobStateError(MigrationError):
    """The job is not in a state that allows the requested operation."""


class MaxRetriesExceededError(MigrationError):
    """A batch kept failing until the job's retry budget was exhausted."""


class DuplicateRecordError(MigrationError):
    """A record's natural key has already been migrated."""


class RecordValidationError(ValueError):
    """A single record failed validation.

    Args:
        errors: Human-readable validation messages.
        field: The first offending field, when one can be named.
    """

    def __init__(self, errors: list[str], field: str | None = None) -> None:
        super().__init__("Validation failed: " + "; ".join(errors))
        self.errors = errors
        self.field = field
