"""Migration orchestrator: resumable, checkpointed import of legacy files.

A job moves PENDING → VALIDATING → IN_PROGRESS and then finishes as
COMPLETED, COMPLETED_WITH_ERRORS or FAILED, or stops early as PAUSED.
The batch loop reads ``batch_size`` records at a time starting from
``checkpoint_position`` and commits each batch's record writes, error
records and new checkpoint together, so a crash loses at most the batch in
flight.  Each record runs in its own savepoint: a failed record is stored
as an error record and never aborts the batch, and a blank record is
counted as skipped.  Batch-level failures are retried with linear backoff
until the job's retry budget is spent.

Every transition that begins an execution (start, restart, rollback) is a
compare-and-set ``UPDATE ... WHERE status IN (...)``, so two callers can
never both own a job.
"""

import asyncio
import json
import os
import socket
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, NamedTuple

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from legacy_migrator.core import metrics
from legacy_migrator.core.background import BackgroundTaskRunner, task_runner
from legacy_migrator.core.config import Settings
from legacy_migrator.core.exceptions import (
    DuplicateRecordError,
    JobNotFoundError,
    JobStateError,
    MaxRetriesExceededError,
    RecordValidationError,
    StagingError,
    SubmissionError,
)
from legacy_migrator.core.metrics import MetricsSink, NullMetricsSink
from legacy_migrator.lib.importer.error_report import CsvErrorReportWriter, ErrorReportWriter
from legacy_migrator.lib.importer.file_types import determine_file_type
from legacy_migrator.lib.importer.pause import PauseController, PauseSignal
from legacy_migrator.lib.importer.processor import RecordProcessor, default_processors
from legacy_migrator.lib.importer.rules import default_validation_rules, normalize_entity
from legacy_migrator.lib.importer.staging import FileStageManager, LocalFileStageManager
from legacy_migrator.lib.importer.validator import is_blank_record, suggest_fix
from legacy_migrator.models.base import AuditMetadata, utcnow
from legacy_migrator.models.import_job import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    RESTARTABLE_STATUSES,
    ImportJob,
    ImportStatus,
)
from legacy_migrator.models.import_job_error import ErrorCategory, ErrorSeverity, ImportJobError
from legacy_migrator.services.import_job_service import get_import_job, list_active_jobs, list_job_errors


class ErrorClassification(NamedTuple):
    error_type: str
    category: ErrorCategory
    severity: ErrorSeverity


def classify_error(error: BaseException) -> ErrorClassification:
    """Map a record-level exception to its stored type, category and severity.

    Unrecognized exceptions are system errors of high severity.
    """
    if isinstance(error, DuplicateRecordError):
        return ErrorClassification("DUPLICATE_RECORD", ErrorCategory.DUPLICATE, ErrorSeverity.LOW)
    if isinstance(error, IntegrityError):
        message = str(error.orig).lower()
        if "unique" in message or "duplicate" in message:
            return ErrorClassification("DUPLICATE_RECORD", ErrorCategory.DUPLICATE, ErrorSeverity.LOW)
        if "foreign key" in message:
            return ErrorClassification("REFERENCE_ERROR", ErrorCategory.REFERENCE, ErrorSeverity.HIGH)
        return ErrorClassification("CONSTRAINT_VIOLATION", ErrorCategory.BUSINESS_RULE, ErrorSeverity.MEDIUM)
    if isinstance(error, ValueError):
        return ErrorClassification("VALIDATION_ERROR", ErrorCategory.VALIDATION, ErrorSeverity.MEDIUM)
    if isinstance(error, PermissionError):
        return ErrorClassification("PERMISSION_ERROR", ErrorCategory.PERMISSION, ErrorSeverity.HIGH)
    if isinstance(error, LookupError):
        return ErrorClassification("REFERENCE_ERROR", ErrorCategory.REFERENCE, ErrorSeverity.HIGH)
    if "duplicate" in str(error).lower():
        return ErrorClassification("DUPLICATE_RECORD", ErrorCategory.DUPLICATE, ErrorSeverity.LOW)
    return ErrorClassification("PROCESSING_ERROR", ErrorCategory.SYSTEM, ErrorSeverity.HIGH)


def build_error_record(
    import_job_id: uuid.UUID,
    record: Mapping[str, Any],
    record_number: int,
    error: Exception,
    now: datetime,
) -> ImportJobError:
    """Build the error row for a record that failed at ``record_number``."""
    classification = classify_error(error)
    affected_field = None
    suggested_fix = None
    if isinstance(error, RecordValidationError):
        affected_field = error.field
        suggested_fix = suggest_fix(error)

    return ImportJobError(
        import_job_id=import_job_id,
        record_number=record_number,
        error_type=classification.error_type,
        error_code=type(error).__name__,
        error_message=str(error) or type(error).__name__,
        category=classification.category,
        severity=classification.severity,
        record_data=json.dumps(dict(record), default=str),
        affected_field=affected_field,
        suggested_fix=suggested_fix,
        error_timestamp=now,
        is_resolved=False,
        audit=AuditMetadata.new(now),
    )


class BatchCounts(NamedTuple):
    succeeded: int
    failed: int
    skipped: int


class MigrationOrchestrator:
    """Owns the import job lifecycle.

    Args:
        session_factory: Creates the sessions background executions run in.
        stage_manager: Stores submitted files until they are archived.
        processors: Record processor per (upper-case) target entity.
        pause_controller: Receives pause requests; also the default pause
            signal.
        pause_signal: Checked between batches; defaults to ``pause_controller``.
        metrics_sink: Receives job and record counters.
        error_report_writer: Writes a report for jobs that finish with
            failed records; None disables reports.
        runner: Background task runner for ``start`` and ``restart``.
        batch_size: Records per batch for new jobs.
        max_retries: Batch retry budget for new jobs.
        retry_backoff_seconds: Linear backoff step between batch retries.
        rollback_window: How long after submission a job can be rolled back.
        sleep: Awaitable sleep, replaceable in tests.
        clock: Returns the current aware UTC time, replaceable in tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        stage_manager: FileStageManager,
        processors: Mapping[str, RecordProcessor] | None = None,
        pause_controller: PauseController | None = None,
        pause_signal: PauseSignal | None = None,
        metrics_sink: MetricsSink | None = None,
        error_report_writer: ErrorReportWriter | None = None,
        runner: BackgroundTaskRunner | None = None,
        batch_size: int = 1000,
        max_retries: int = 3,
        retry_backoff_seconds: float = 5.0,
        rollback_window: timedelta = timedelta(days=30),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._stage_manager = stage_manager
        self._processors = {normalize_entity(k): v for k, v in (processors or default_processors()).items()}
        self.pause_controller = pause_controller or PauseController()
        self._pause_signal = pause_signal or self.pause_controller
        self._metrics = metrics_sink or NullMetricsSink()
        self._error_report_writer = error_report_writer
        self._runner = runner or task_runner
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._rollback_window = rollback_window
        self._sleep = sleep
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        **overrides: Any,
    ) -> "MigrationOrchestrator":
        """Build an orchestrator with the reference collaborators configured from ``settings``."""
        options: dict[str, Any] = {
            "stage_manager": LocalFileStageManager(settings.migration_upload_dir, settings.migration_archive_dir),
            "error_report_writer": CsvErrorReportWriter(settings.migration_error_dir),
            "batch_size": settings.migration_batch_size,
            "max_retries": settings.migration_max_retries,
            "retry_backoff_seconds": settings.migration_retry_backoff_seconds,
            "rollback_window": settings.migration_rollback_window,
        }
        options.update(overrides)
        return cls(session_factory, **options)

    @property
    def runner(self) -> BackgroundTaskRunner:
        return self._runner

    @property
    def supported_entities(self) -> list[str]:
        return sorted(self._processors)

    @asynccontextmanager
    async def _exclusive(self, job_id: str) -> AsyncIterator[None]:
        """Serialize executions of one job within this process.

        The lock is dropped once no execution holds or waits for it.
        """
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._lock_users[job_id] = self._lock_users.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[job_id] -= 1
            if self._lock_users[job_id] == 0:
                del self._lock_users[job_id]
                del self._locks[job_id]

    def is_executing(self, job_id: str) -> bool:
        """Whether an execution of ``job_id`` holds or waits for its lock in this process."""
        return job_id in self._locks

    def _processor_for(self, job: ImportJob) -> RecordProcessor:
        processor = self._processors.get(normalize_entity(job.target_entity))
        if processor is None:
            msg = f"No record processor for target entity {job.target_entity}"
            raise JobStateError(msg)
        return processor

    # --- Submission ------------------------------------------------------------

    async def submit(
        self,
        session: AsyncSession,
        content: bytes,
        filename: str,
        *,
        source_system: str | None,
        target_entity: str,
        initiated_by: str | None,
        configuration: Mapping[str, Any] | None = None,
        content_type: str | None = None,
    ) -> ImportJob:
        """Stage a file and create a PENDING job for it.

        Args:
            session: Database session.
            content: Raw file bytes.
            filename: Original file name.
            source_system: Legacy system the file came from.
            target_entity: Entity the records migrate into.
            initiated_by: Actor submitting the file.
            configuration: Import configuration stored with the job.
            content_type: MIME type reported by the client.

        Returns:
            The created job.

        Raises:
            SubmissionError: If the file name, content or target entity is
                rejected.
            StagingError: If the file cannot be staged.
        """
        if not filename or not filename.strip():
            msg = "File name is required"
            raise SubmissionError(msg)
        if not content:
            msg = "File is empty"
            raise SubmissionError(msg)
        entity = normalize_entity(target_entity or "")
        if entity not in self._processors:
            msg = f"Unsupported target entity: {target_entity}. Expected one of {', '.join(self.supported_entities)}"
            raise SubmissionError(msg)

        job_id = str(uuid.uuid4())
        file_path = await self._stage_manager.stage(content, filename, job_id)
        file_type = determine_file_type(filename, content_type)
        now = self._clock()

        job = ImportJob(
            job_id=job_id,
            file_name=filename,
            file_path=file_path,
            file_size=len(content),
            file_type=file_type,
            source_system=source_system,
            target_entity=entity,
            initiated_by=initiated_by,
            server_instance=socket.gethostname(),
            process_id=str(os.getpid()),
            status=ImportStatus.PENDING,
            import_configuration=json.dumps(dict(configuration)) if configuration else None,
            validation_rules=json.dumps(default_validation_rules(entity)),
            processed_records=0,
            successful_records=0,
            failed_records=0,
            skipped_records=0,
            checkpoint_position=0,
            batch_size=self._batch_size,
            max_retries=self._max_retries,
            current_retries=0,
            execution_time_ms=0,
            records_per_second=0.0,
            can_rollback=True,
            rollback_deadline=now + self._rollback_window,
            audit=AuditMetadata.new(now),
        )
        session.add(job)
        await session.commit()

        logger.info(f"Created import job {job_id} for {filename} ({file_type}, {len(content)} bytes) -> {entity}")
        return job

    # --- Start -----------------------------------------------------------------

    def start(self, job_id: str) -> str:
        """Schedule a PENDING job and return the background task id."""
        return self._runner.submit_task(self.run_start(job_id))

    async def run_start(self, job_id: str) -> ImportJob | None:
        """Validate, count and process a PENDING job to completion.

        Returns:
            The job as it stands afterwards, or None if it does not exist.
        """
        async with self._exclusive(job_id), self._session_factory() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                logger.error(f"Import job not found: {job_id}")
                return None
            if job.status != ImportStatus.PENDING:
                logger.warning(f"Import job {job_id} is not in PENDING status: {job.status}")
                return job

            if not await self._claim(
                session, job, {ImportStatus.PENDING}, ImportStatus.VALIDATING, started_at=self._clock()
            ):
                logger.warning(f"Import job {job_id} was claimed by another worker")
                return job

            self._metrics.increment(metrics.JOBS_STARTED, target_entity=job.target_entity)
            logger.info(f"Starting import job {job_id}")
            try:
                processor = self._processor_for(job)
                await self._validate_and_count(session, job, processor)
                await self._run_batches(session, job, processor)
                await self.finalize(session, job)
            except Exception as e:
                logger.exception(f"Failed to process import job {job_id}: {e}")
                await self._fail(session, job, str(e) or type(e).__name__)
            return job

    async def _validate_and_count(self, session: AsyncSession, job: ImportJob, processor: RecordProcessor) -> None:
        logger.info(f"Validating file for import job {job.job_id}")
        if not await self._stage_manager.exists(job.file_path):
            msg = f"Uploaded file not found: {job.file_path}"
            raise FileNotFoundError(msg)
        if not await processor.validate_file_shape(job.file_path, job.file_type):
            msg = f"Invalid file format for type: {job.file_type}"
            raise ValueError(msg)

        total = await processor.count_records(job.file_path, job.file_type)
        job.total_records = total
        job.status = ImportStatus.IN_PROGRESS
        job.audit = job.audit.touched(self._clock())
        await session.commit()
        logger.info(f"File validation completed for import job {job.job_id} - Total records: {total}")

    # --- Batch loop ------------------------------------------------------------

    async def _run_batches(self, session: AsyncSession, job: ImportJob, processor: RecordProcessor) -> None:
        job_id = job.job_id
        while job.status == ImportStatus.IN_PROGRESS:
            offset = job.checkpoint_position
            try:
                records = await processor.read_batch(job.file_path, job.file_type, offset, job.batch_size)
                if not records:
                    return
                counts = await self._process_batch(session, job, processor, records, offset)
                self._write_checkpoint(job, offset + len(records), counts)
                await session.commit()
            except Exception as e:
                await self._handle_batch_failure(session, job, job_id, offset, e)
                continue

            self._metrics.increment(metrics.RECORDS_SUCCEEDED, counts.succeeded, target_entity=job.target_entity)
            self._metrics.increment(metrics.RECORDS_FAILED, counts.failed, target_entity=job.target_entity)
            self._metrics.increment(metrics.RECORDS_SKIPPED, counts.skipped, target_entity=job.target_entity)
            logger.debug(
                f"Processed batch for import job {job.job_id} - Position: {job.checkpoint_position}, "
                f"Success: {job.successful_records}, Failed: {job.failed_records}"
            )

            if self._pause_signal.should_pause(job):
                await self._pause(session, job)
                return

    async def _process_batch(
        self,
        session: AsyncSession,
        job: ImportJob,
        processor: RecordProcessor,
        records: list[dict[str, Any]],
        offset: int,
    ) -> BatchCounts:
        """Process one batch, each record inside its own savepoint.

        A record whose processing or flush fails is rolled back to its
        savepoint and stored as an error record. Blank records are skipped.
        """
        import_job_id = job.id
        job_id = job.job_id
        succeeded = failed = skipped = 0
        for index, record in enumerate(records):
            record_number = offset + index
            if is_blank_record(record):
                skipped += 1
                continue
            try:
                async with session.begin_nested():
                    await processor.process(session, record, job, record_number)
            except Exception as e:
                failed += 1
                session.add(build_error_record(import_job_id, record, record_number, e, self._clock()))
                logger.debug(f"Recorded error for import job {job_id} at record {record_number}: {e}")
            else:
                succeeded += 1
        return BatchCounts(succeeded, failed, skipped)

    def _write_checkpoint(self, job: ImportJob, position: int, counts: BatchCounts) -> None:
        now = self._clock()
        job.checkpoint_position = position
        job.processed_records = position
        job.successful_records += counts.succeeded
        job.failed_records += counts.failed
        job.skipped_records += counts.skipped
        job.last_checkpoint_at = now
        job.update_progress(now)
        job.audit = job.audit.touched(now)

    async def _handle_batch_failure(
        self, session: AsyncSession, job: ImportJob, job_id: str, offset: int, error: Exception
    ) -> None:
        # A failed flush or commit leaves the session unusable until rolled back
        await session.rollback()
        logger.warning(f"Batch processing error for import job {job_id} at position {offset}: {error}")
        await session.refresh(job)

        job.current_retries += 1
        job.audit = job.audit.touched(self._clock())
        await session.commit()
        self._metrics.increment(metrics.BATCHES_RETRIED, target_entity=job.target_entity)

        if job.current_retries >= job.max_retries:
            msg = f"Max retries exceeded at position {offset}: {error}"
            raise MaxRetriesExceededError(msg) from error

        delay = job.current_retries * self._retry_backoff_seconds
        logger.info(f"Retrying batch at position {offset} for import job {job_id} in {delay:.1f}s")
        await self._sleep(delay)

    async def _pause(self, session: AsyncSession, job: ImportJob) -> None:
        now = self._clock()
        job.status = ImportStatus.PAUSED
        job.paused_at = now
        job.update_progress(now)
        job.audit = job.audit.touched(now)
        await session.commit()
        logger.info(f"Import job {job.job_id} paused at position {job.checkpoint_position}")

    async def _fail(self, session: AsyncSession, job: ImportJob, summary: str) -> None:
        await session.rollback()
        await session.refresh(job)
        self.pause_controller.cancel(job.job_id)
        now = self._clock()
        job.status = ImportStatus.FAILED
        job.error_summary = summary
        job.completed_at = now
        job.update_progress(now)
        job.audit = job.audit.touched(now)
        await session.commit()
        self._metrics.increment(metrics.JOBS_FAILED, target_entity=job.target_entity)

    # --- Finalization ----------------------------------------------------------

    async def finalize(self, session: AsyncSession, job: ImportJob) -> ImportJob:
        """Complete an IN_PROGRESS job, archive its file and report its errors.

        Any other status is left untouched, so calling this twice archives
        and counts once.
        """
        if job.status != ImportStatus.IN_PROGRESS:
            logger.info(f"Import job {job.job_id} not finalized: status is {job.status}")
            return job

        self.pause_controller.cancel(job.job_id)
        now = self._clock()
        job.completed_at = now
        job.update_progress(now)
        job.status = ImportStatus.COMPLETED if job.failed_records == 0 else ImportStatus.COMPLETED_WITH_ERRORS

        try:
            archived_path = await self._stage_manager.archive(job.file_path, job.job_id, job.file_name)
        except StagingError:
            logger.exception(f"Failed to archive file for import job {job.job_id}")
        else:
            job.file_path = archived_path
            job.archived_at = now

        if job.failed_records > 0 and self._error_report_writer is not None:
            await self._write_error_report(session, job)

        job.audit = job.audit.touched(now)
        await session.commit()

        self._metrics.increment(metrics.JOBS_COMPLETED, target_entity=job.target_entity)
        self._metrics.timing(metrics.MIGRATION_DURATION, job.execution_time_ms / 1000.0, target_entity=job.target_entity)
        logger.info(
            f"Completed import job {job.job_id} - Success: {job.successful_records}, Failed: {job.failed_records}"
        )
        return job

    async def _write_error_report(self, session: AsyncSession, job: ImportJob) -> None:
        errors = await list_job_errors(session, job)
        try:
            report_path = await asyncio.to_thread(self._error_report_writer.write, job, errors)
        except OSError:
            logger.exception(f"Failed to write error report for import job {job.job_id}")
        else:
            logger.info(f"Generated error report for import job {job.job_id} with {len(errors)} errors: {report_path}")

    # --- Restart ---------------------------------------------------------------

    async def _is_resumable(self, job: ImportJob) -> bool:
        file_available = job.archived_at is None and await self._stage_manager.exists(job.file_path)
        return job.is_resumable(file_available=file_available)

    async def restart(self, job_id: str) -> str:
        """Schedule a PAUSED or FAILED job to resume from its checkpoint.

        Returns:
            The background task id.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobStateError: If the job cannot be resumed.
        """
        async with self._session_factory() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if not await self._is_resumable(job):
                msg = (
                    f"Import job {job_id} cannot be restarted. "
                    f"Status: {job.status}, Checkpoint: {job.checkpoint_position}"
                )
                raise JobStateError(msg)
        return self._runner.submit_task(self.run_restart(job_id))

    async def run_restart(self, job_id: str) -> ImportJob | None:
        """Resume a job from its persisted checkpoint and finalize it."""
        async with self._exclusive(job_id), self._session_factory() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                logger.error(f"Import job not found: {job_id}")
                return None
            if not await self._is_resumable(job):
                logger.warning(
                    f"Import job {job_id} cannot be restarted. Status: {job.status}, "
                    f"Checkpoint: {job.checkpoint_position}"
                )
                return job

            if not await self._claim(
                session,
                job,
                RESTARTABLE_STATUSES,
                ImportStatus.IN_PROGRESS,
                current_retries=0,
                paused_at=None,
                completed_at=None,
                error_summary=None,
            ):
                logger.warning(f"Import job {job_id} was claimed by another worker")
                return job

            logger.info(f"Restarting import job {job_id} from checkpoint position {job.checkpoint_position}")
            try:
                processor = self._processor_for(job)
                await self._run_batches(session, job, processor)
                await self.finalize(session, job)
            except Exception as e:
                logger.exception(f"Failed to restart import job {job_id}: {e}")
                await self._fail(session, job, f"Restart failed: {e}")
            return job

    # --- Pause -----------------------------------------------------------------

    async def request_pause(self, job_id: str) -> ImportJob:
        """Ask a running job to pause after its current batch.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobStateError: If the job is not running.
        """
        async with self._session_factory() as session:
            job = await get_import_job(session, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status not in ACTIVE_STATUSES:
            msg = f"Import job {job_id} is not running: {job.status}"
            raise JobStateError(msg)
        self.pause_controller.request(job_id)
        return job

    # --- Rollback --------------------------------------------------------------

    async def rollback(self, job_id: str, reason: str, actor: str) -> ImportJob:
        """Undo everything a completed job wrote.

        Rollback is one-shot: whether compensation succeeds or fails, the job
        cannot be rolled back again.

        Args:
            job_id: The job to roll back.
            reason: Why the job is rolled back.
            actor: Who requested the rollback.

        Returns:
            The job in ROLLBACK_COMPLETED or ROLLBACK_FAILED.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobStateError: If the job is not eligible for rollback.
        """
        async with self._exclusive(job_id), self._session_factory() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            now = self._clock()
            not_eligible = f"Import job cannot be rolled back: {job_id}"
            if not job.can_be_rolled_back(now):
                raise JobStateError(not_eligible)
            if not await self._claim(
                session,
                job,
                COMPLETED_STATUSES,
                ImportStatus.ROLLBACK_IN_PROGRESS,
                rollback_reason=reason,
                rolled_back_by=actor,
            ):
                raise JobStateError(not_eligible)

            logger.info(f"Starting rollback for import job {job_id}: {reason}")
            try:
                removed = await self._processor_for(job).compensate(session, job)
                job.status = ImportStatus.ROLLBACK_COMPLETED
                job.rolled_back_at = self._clock()
                job.can_rollback = False
                job.audit = job.audit.touched(job.rolled_back_at)
                await session.commit()
            except Exception as e:
                logger.exception(f"Failed to rollback import job {job_id}: {e}")
                await session.rollback()
                await session.refresh(job)
                job.status = ImportStatus.ROLLBACK_FAILED
                job.error_summary = f"Rollback failed: {e}"
                job.can_rollback = False
                job.audit = job.audit.touched(self._clock())
                await session.commit()
                self._metrics.increment(metrics.ROLLBACKS_FAILED, target_entity=job.target_entity)
                return job

            self._metrics.increment(metrics.ROLLBACKS_COMPLETED, target_entity=job.target_entity)
            logger.info(f"Successfully rolled back import job {job_id} ({removed} records removed)")
            return job

    # --- Recovery --------------------------------------------------------------

    async def recover_stale_jobs(self, session: AsyncSession, stale_after: timedelta) -> list[ImportJob]:
        """Fail running jobs that stopped checkpointing, making them restartable.

        Jobs executing in this process are skipped.

        Returns:
            The jobs marked FAILED.
        """
        now = self._clock()
        recovered: list[ImportJob] = []
        for job in await list_active_jobs(session):
            if self.is_executing(job.job_id):
                continue
            heartbeat = job.heartbeat_at
            if heartbeat is None or now - heartbeat <= stale_after:
                continue
            job.status = ImportStatus.FAILED
            job.error_summary = f"Interrupted: no checkpoint since {heartbeat.isoformat()}"
            job.completed_at = now
            job.audit = job.audit.touched(now)
            recovered.append(job)
            logger.warning(f"Import job {job.job_id} marked failed after no progress since {heartbeat.isoformat()}")

        if recovered:
            await session.commit()
        return recovered

    # --- Internals -------------------------------------------------------------

    async def _claim(
        self,
        session: AsyncSession,
        job: ImportJob,
        from_statuses: Iterable[str],
        to_status: ImportStatus,
        **values: Any,
    ) -> bool:
        """Move ``job`` to ``to_status`` only if it is still in ``from_statuses``.

        Returns:
            Whether this caller won the transition.
        """
        query = (
            update(ImportJob)
            .where(ImportJob.id == job.id, ImportJob.status.in_(list(from_statuses)))
            .values(status=to_status, updated_at=self._clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if to_status == ImportStatus.ROLLBACK_IN_PROGRESS:
            query = query.where(ImportJob.can_rollback.is_(True))
        result = await session.execute(query)
        await session.commit()
        await session.refresh(job)
        return result.rowcount == 1
