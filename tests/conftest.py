"""Shared test fixtures for the async database, file staging and the migration orchestrator."""

from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from legacy_migrator.core.background import InProcessTaskRunner
from legacy_migrator.core.config import Settings
from legacy_migrator.core.exceptions import DuplicateRecordError, RecordValidationError
from legacy_migrator.lib.importer.error_report import CsvErrorReportWriter
from legacy_migrator.lib.importer.staging import LocalFileStageManager
from legacy_migrator.models.base import AuditMetadata, Base
from legacy_migrator.models.import_job import ImportJob
from legacy_migrator.models.migrated_record import MigratedRecord
from legacy_migrator.services.import_job_service import get_import_job
from legacy_migrator.services.migration_service import MigrationOrchestrator

GUARANTEE_HEADER = "guarantee_reference,guarantee_type,amount,currency,beneficiary_name,applicant_name"


def guarantee_csv(rows: int, *, invalid: set[int] | None = None) -> bytes:
    """Build a guarantee CSV with ``rows`` records; indexes in ``invalid`` get a negative amount."""
    invalid = invalid or set()
    lines = [GUARANTEE_HEADER]
    for i in range(rows):
        amount = "-5.00" if i in invalid else f"{1000 + i}.50"
        lines.append(f"GR-{i:04d},PERFORMANCE,{amount},EUR,Beneficiary {i},Applicant {i}")
    return ("\n".join(lines) + "\n").encode()


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class InMemoryMetricsSink:
    """Metrics sink that aggregates counters and timings in memory."""

    counters: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    timings: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))

    def increment(self, name: str, value: int = 1, **tags: str) -> None:
        self.counters[name] += value

    def timing(self, name: str, seconds: float, **tags: str) -> None:
        self.timings[name].append(seconds)

    def count(self, name: str) -> int:
        return self.counters.get(name, 0)


class ScriptedProcessor:
    """Record processor over an in-memory record list.

    Records with ``invalid`` set fail validation and records with
    ``duplicate`` set fail as duplicates.  ``read_failures`` maps a batch
    offset to how many times reading it raises before it succeeds
    (``-1`` for always).
    """

    def __init__(self, records: list[dict[str, Any]], *, read_failures: dict[int, int] | None = None) -> None:
        self.records = records
        self.read_failures = dict(read_failures or {})
        self.shape_ok = True
        self.compensate_error: Exception | None = None
        self.batch_offsets: list[int] = []
        self.processed: list[int] = []

    async def validate_file_shape(self, path: str, file_type: str) -> bool:
        return self.shape_ok

    async def count_records(self, path: str, file_type: str) -> int:
        return len(self.records)

    async def read_batch(self, path: str, file_type: str, offset: int, size: int) -> list[dict[str, Any]]:
        remaining = self.read_failures.get(offset, 0)
        if remaining:
            if remaining > 0:
                self.read_failures[offset] = remaining - 1
            msg = f"Storage unavailable at offset {offset}"
            raise ConnectionError(msg)
        batch = self.records[offset : offset + size]
        if batch:
            self.batch_offsets.append(offset)
        return batch

    async def process(self, session: AsyncSession, record: dict[str, Any], job: ImportJob, record_number: int) -> None:
        if record.get("invalid"):
            raise RecordValidationError(["amount must be greater than zero"], field="amount")
        if record.get("duplicate"):
            msg = f"Duplicate guarantee record: {record.get('ref')}"
            raise DuplicateRecordError(msg)
        self.processed.append(record_number)

    async def compensate(self, session: AsyncSession, job: ImportJob) -> int:
        if self.compensate_error is not None:
            raise self.compensate_error
        removed = len(self.processed)
        self.processed.clear()
        return removed


class KeyedRecordProcessor(ScriptedProcessor):
    """Scripted processor that also stores each record under its ``ref``.

    The ``migrated_records`` unique constraint is the only duplicate check,
    so a repeated ``ref`` fails when the record is flushed.
    """

    async def process(self, session: AsyncSession, record: dict[str, Any], job: ImportJob, record_number: int) -> None:
        await super().process(session, record, job, record_number)
        session.add(
            MigratedRecord(
                import_job_id=job.id,
                target_entity=job.target_entity,
                record_key=record["ref"],
                record_number=record_number,
                payload="{}",
                audit=AuditMetadata.new(),
            )
        )
        await session.flush()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        migration_upload_dir=str(tmp_path / "uploads"),
        migration_archive_dir=str(tmp_path / "archive"),
        migration_error_dir=str(tmp_path / "errors"),
        migration_recover_on_startup=False,
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays the orchestrator asked to sleep for, in order."""
    return []


@pytest.fixture
def metrics_sink() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


@pytest.fixture
def stage_manager(tmp_path: Path) -> LocalFileStageManager:
    return LocalFileStageManager(tmp_path / "uploads", tmp_path / "archive")


@pytest.fixture
def make_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    stage_manager: LocalFileStageManager,
    metrics_sink: InMemoryMetricsSink,
    clock: FakeClock,
    sleeps: list[float],
    tmp_path: Path,
) -> Callable[..., MigrationOrchestrator]:
    """Factory for orchestrators wired to the test database, clock and sleep recorder."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(**overrides: Any) -> MigrationOrchestrator:
        options: dict[str, Any] = {
            "stage_manager": stage_manager,
            "metrics_sink": metrics_sink,
            "error_report_writer": CsvErrorReportWriter(tmp_path / "errors"),
            "runner": InProcessTaskRunner(),
            "batch_size": 4,
            "sleep": _sleep,
            "clock": clock,
        }
        options.update(overrides)
        return MigrationOrchestrator(session_factory, **options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., MigrationOrchestrator]) -> MigrationOrchestrator:
    """Orchestrator using the reference record processors."""
    return make_orchestrator()


@pytest.fixture
def reload_job(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[str], Any]:
    """Read a job back through a fresh session."""

    async def _reload(job_id: str) -> ImportJob:
        async with session_factory() as session:
            job = await get_import_job(session, job_id)
        assert job is not None
        return job

    return _reload


def build_job(job_id: str, *, created_at: datetime | None = None, **overrides: Any) -> ImportJob:
    """Build an unsaved import job row with realistic defaults."""
    values: dict[str, Any] = {
        "job_id": job_id,
        "file_name": f"{job_id}.csv",
        "file_path": f"/data/uploads/{job_id}.csv",
        "file_size": 2048,
        "file_type": "csv",
        "source_system": "DOKA",
        "target_entity": "GUARANTEE",
        "total_records": 10,
        "audit": AuditMetadata.new(created_at or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)),
    }
    values.update(overrides)
    return ImportJob(**values)
