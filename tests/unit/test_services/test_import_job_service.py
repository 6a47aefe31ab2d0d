"""Tests for import job queries and error resolution."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from conftest import build_job
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.core.exceptions import JobStateError
from legacy_migrator.models import AuditMetadata, ErrorCategory, ImportJob, ImportJobError, ImportStatus
from legacy_migrator.services.import_job_service import (
    get_import_job,
    list_active_jobs,
    list_import_jobs,
    list_job_errors,
    list_restartable_jobs,
    list_rollbackable_jobs,
    resolve_error,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _error(job: ImportJob, record_number: int, **overrides: Any) -> ImportJobError:
    values: dict[str, Any] = {
        "import_job_id": job.id,
        "record_number": record_number,
        "error_type": "VALIDATION_ERROR",
        "error_code": "RecordValidationError",
        "error_message": "amount must be greater than zero",
        "category": ErrorCategory.VALIDATION,
        "severity": "high",
        "error_timestamp": NOW,
        "audit": AuditMetadata.new(NOW),
    }
    values.update(overrides)
    return ImportJobError(**values)


async def _add(session: AsyncSession, *objects: object) -> None:
    session.add_all(objects)
    await session.commit()


class TestGetImportJob:
    @pytest.mark.asyncio
    async def test_found(self, async_session: AsyncSession) -> None:
        await _add(async_session, build_job("IMP-1"))
        job = await get_import_job(async_session, "IMP-1")
        assert job is not None
        assert job.file_name == "IMP-1.csv"
        assert job.status == ImportStatus.PENDING
        assert job.checkpoint_position == 0

    @pytest.mark.asyncio
    async def test_not_found(self, async_session: AsyncSession) -> None:
        assert await get_import_job(async_session, "IMP-missing") is None


class TestListImportJobs:
    """Tests for list_import_jobs."""

    @pytest.mark.asyncio
    async def test_newest_first_with_pagination(self, async_session: AsyncSession) -> None:
        await _add(
            async_session,
            *(build_job(f"IMP-{i}", created_at=NOW + timedelta(minutes=i)) for i in range(5)),
        )

        first_page, total = await list_import_jobs(async_session, page=1, page_size=2)
        second_page, _ = await list_import_jobs(async_session, page=2, page_size=2)

        assert total == 5
        assert [job.job_id for job in first_page] == ["IMP-4", "IMP-3"]
        assert [job.job_id for job in second_page] == ["IMP-2", "IMP-1"]

    @pytest.mark.asyncio
    async def test_filters(self, async_session: AsyncSession) -> None:
        await _add(
            async_session,
            build_job("IMP-1", status=ImportStatus.COMPLETED),
            build_job("IMP-2", status=ImportStatus.FAILED, source_system="SAP"),
            build_job("IMP-3", status=ImportStatus.FAILED, target_entity="CLIENT"),
        )

        failed, failed_total = await list_import_jobs(async_session, status="failed")
        sap, _ = await list_import_jobs(async_session, source_system="SAP")
        clients, _ = await list_import_jobs(async_session, target_entity=" client ")

        assert failed_total == 2
        assert {job.job_id for job in failed} == {"IMP-2", "IMP-3"}
        assert [job.job_id for job in sap] == ["IMP-2"]
        assert [job.job_id for job in clients] == ["IMP-3"]


class TestListJobErrors:
    """Tests for list_job_errors."""

    @pytest.mark.asyncio
    async def test_ordered_and_filtered(self, async_session: AsyncSession) -> None:
        job = build_job("IMP-1")
        other = build_job("IMP-2")
        await _add(async_session, job, other)
        await _add(
            async_session,
            _error(job, 9, category=ErrorCategory.DUPLICATE, severity="medium", error_type="DUPLICATE_RECORD"),
            _error(job, 3),
            _error(job, 5, is_resolved=True),
            _error(other, 1),
        )

        all_errors = await list_job_errors(async_session, job)
        unresolved = await list_job_errors(async_session, job, unresolved_only=True)
        duplicates = await list_job_errors(async_session, job, category="duplicate")
        high = await list_job_errors(async_session, job, severity="high")

        assert [e.record_number for e in all_errors] == [3, 5, 9]
        assert [e.record_number for e in unresolved] == [3, 9]
        assert [e.record_number for e in duplicates] == [9]
        assert [e.record_number for e in high] == [3, 5]


class TestJobSelections:
    """Tests for the active, restartable and rollbackable listings."""

    @pytest.mark.asyncio
    async def test_active_jobs(self, async_session: AsyncSession) -> None:
        await _add(
            async_session,
            build_job("IMP-1", status=ImportStatus.IN_PROGRESS),
            build_job("IMP-2", status=ImportStatus.VALIDATING),
            build_job("IMP-3", status=ImportStatus.PAUSED),
        )
        assert {job.job_id for job in await list_active_jobs(async_session)} == {"IMP-1", "IMP-2"}

    @pytest.mark.asyncio
    async def test_restartable_jobs(self, async_session: AsyncSession) -> None:
        await _add(
            async_session,
            build_job("IMP-2", status=ImportStatus.FAILED, checkpoint_position=8),
            build_job("IMP-1", status=ImportStatus.PAUSED, checkpoint_position=4),
            build_job("IMP-3", status=ImportStatus.FAILED, total_records=None),
            build_job("IMP-4", status=ImportStatus.FAILED, archived_at=NOW),
            build_job("IMP-5", status=ImportStatus.COMPLETED),
        )
        restartable = await list_restartable_jobs(async_session)
        assert [job.job_id for job in restartable] == ["IMP-1", "IMP-2"]

    @pytest.mark.asyncio
    async def test_rollbackable_jobs(self, async_session: AsyncSession) -> None:
        deadline = NOW + timedelta(days=30)
        await _add(
            async_session,
            build_job("IMP-2", status=ImportStatus.COMPLETED_WITH_ERRORS, rollback_deadline=deadline),
            build_job("IMP-1", status=ImportStatus.COMPLETED, rollback_deadline=deadline),
            build_job("IMP-3", status=ImportStatus.COMPLETED, rollback_deadline=deadline, can_rollback=False),
            build_job("IMP-4", status=ImportStatus.ROLLBACK_COMPLETED, can_rollback=False),
        )

        within = await list_rollbackable_jobs(async_session, NOW + timedelta(days=1))
        after = await list_rollbackable_jobs(async_session, NOW + timedelta(days=31))

        assert [job.job_id for job in within] == ["IMP-1", "IMP-2"]
        assert after == []


class TestResolveError:
    """Tests for resolve_error."""

    @pytest.mark.asyncio
    async def test_marks_resolved(self, async_session: AsyncSession) -> None:
        job = build_job("IMP-1")
        await _add(async_session, job)
        error = _error(job, 7)
        await _add(async_session, error)

        resolved = await resolve_error(async_session, error.id, resolved_by="ops-team", notes="Fixed in source")

        assert resolved is not None
        assert resolved.is_resolved
        assert resolved.resolved_by == "ops-team"
        assert resolved.resolution_notes == "Fixed in source"
        assert resolved.resolved_at is not None

    @pytest.mark.asyncio
    async def test_unknown_error(self, async_session: AsyncSession) -> None:
        assert await resolve_error(async_session, uuid.uuid4(), resolved_by="ops-team") is None

    @pytest.mark.asyncio
    async def test_already_resolved(self, async_session: AsyncSession) -> None:
        job = build_job("IMP-1")
        await _add(async_session, job)
        error = _error(job, 7, is_resolved=True)
        await _add(async_session, error)

        with pytest.raises(JobStateError, match="already resolved"):
            await resolve_error(async_session, error.id, resolved_by="ops-team")
