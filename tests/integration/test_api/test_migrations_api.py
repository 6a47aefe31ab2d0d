"""Integration tests for the data migration API endpoints.

Requests go through the real router, orchestrator and reference guarantee
processor against a file-backed SQLite database.
"""

import uuid
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from conftest import guarantee_csv
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from legacy_migrator.api.v1.migrations import router as migrations_router
from legacy_migrator.core.background import InProcessTaskRunner
from legacy_migrator.core.config import Settings, get_settings
from legacy_migrator.core.dependencies import get_async_session, get_orchestrator
from legacy_migrator.lib.importer.error_report import CsvErrorReportWriter
from legacy_migrator.lib.importer.staging import LocalFileStageManager
from legacy_migrator.models.base import Base
from legacy_migrator.services.migration_service import MigrationOrchestrator

pytestmark = pytest.mark.integration

BASE = "/api/v1/data-migration"


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'migration.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def api_orchestrator(file_engine: AsyncEngine, tmp_path: Path) -> MigrationOrchestrator:
    async def _no_sleep(delay: float) -> None:
        return None

    return MigrationOrchestrator(
        async_sessionmaker(file_engine, expire_on_commit=False),
        stage_manager=LocalFileStageManager(tmp_path / "uploads", tmp_path / "archive"),
        error_report_writer=CsvErrorReportWriter(tmp_path / "errors"),
        runner=InProcessTaskRunner(),
        batch_size=4,
        sleep=_no_sleep,
    )


@pytest.fixture
def app(file_engine: AsyncEngine, api_orchestrator: MigrationOrchestrator, settings: Settings) -> FastAPI:
    factory = async_sessionmaker(file_engine, expire_on_commit=False)

    async def _session() -> AsyncGenerator[AsyncSession]:
        async with factory() as session:
            yield session

    app = FastAPI()
    app.include_router(migrations_router, prefix="/api/v1")
    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_orchestrator] = lambda: api_orchestrator
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _upload(client: AsyncClient, content: bytes, filename: str = "guarantees.csv", **form: str) -> Response:
    data = {"target_entity": "GUARANTEE", "source_system": "DOKA", "initiated_by": "migration-operator", **form}
    return await client.post(f"{BASE}/upload", files={"file": (filename, content, "text/csv")}, data=data)


async def _run_to_end(client: AsyncClient, orchestrator: MigrationOrchestrator, content: bytes) -> str:
    job_id = (await _upload(client, content)).json()["job_id"]
    response = await client.post(f"{BASE}/jobs/{job_id}/start")
    assert response.status_code == 202
    await orchestrator.runner.wait(response.json()["task_id"])
    return job_id


class TestUpload:
    """Tests for POST /data-migration/upload."""

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, client: AsyncClient, tmp_path: Path) -> None:
        response = await _upload(client, guarantee_csv(3), configuration='{"delimiter": ","}')

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["file_type"] == "csv"
        assert body["target_entity"] == "GUARANTEE"
        assert body["total_records"] is None
        assert body["checkpoint_position"] == 0
        assert body["can_rollback"] is True
        assert len(list((tmp_path / "uploads").iterdir())) == 1

    @pytest.mark.asyncio
    async def test_unsupported_entity(self, client: AsyncClient) -> None:
        response = await _upload(client, guarantee_csv(1), target_entity="INVOICE")
        assert response.status_code == 400
        assert "Unsupported target entity" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_empty_file(self, client: AsyncClient) -> None:
        response = await _upload(client, b"")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_configuration_must_be_object(self, client: AsyncClient) -> None:
        assert (await _upload(client, guarantee_csv(1), configuration="[1, 2]")).status_code == 400
        assert (await _upload(client, guarantee_csv(1), configuration="{not json")).status_code == 400

    @pytest.mark.asyncio
    async def test_too_large(self, app: FastAPI, client: AsyncClient, settings: Settings) -> None:
        small = settings.model_copy(update={"migration_max_upload_mb": 1})
        app.dependency_overrides[get_settings] = lambda: small

        response = await _upload(client, b"x" * (1024 * 1024 + 1))

        assert response.status_code == 413


class TestStart:
    """Tests for POST /data-migration/jobs/{job_id}/start."""

    @pytest.mark.asyncio
    async def test_runs_job_in_background(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(10, invalid={7}))

        job = (await client.get(f"{BASE}/jobs/{job_id}")).json()
        assert job["status"] == "completed_with_errors"
        assert job["processed_records"] == 10
        assert job["successful_records"] == 9
        assert job["failed_records"] == 1
        assert job["checkpoint_position"] == 10
        assert job["progress_percentage"] == 100.0

    @pytest.mark.asyncio
    async def test_unknown_job(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/jobs/missing/start")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_job_not_pending(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(2))

        response = await client.post(f"{BASE}/jobs/{job_id}/start")

        assert response.status_code == 409
        assert "PENDING" in response.json()["detail"]


class TestPauseAndRestart:
    """Tests for the pause and restart endpoints."""

    @pytest.mark.asyncio
    async def test_restart_paused_job(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        api_orchestrator.pause_controller.maintenance = True
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(10))

        paused = (await client.get(f"{BASE}/jobs/{job_id}")).json()
        assert paused["status"] == "paused"
        assert paused["checkpoint_position"] == 4

        api_orchestrator.pause_controller.maintenance = False
        response = await client.post(f"{BASE}/jobs/{job_id}/restart")
        assert response.status_code == 202
        await api_orchestrator.runner.wait(response.json()["task_id"])

        done = (await client.get(f"{BASE}/jobs/{job_id}")).json()
        assert done["status"] == "completed"
        assert done["successful_records"] == 10
        assert done["started_at"] == paused["started_at"]

    @pytest.mark.asyncio
    async def test_restart_rejected(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(2))

        assert (await client.post(f"{BASE}/jobs/{job_id}/restart")).status_code == 400
        assert (await client.post(f"{BASE}/jobs/missing/restart")).status_code == 404

    @pytest.mark.asyncio
    async def test_pause_requires_running_job(self, client: AsyncClient) -> None:
        job_id = (await _upload(client, guarantee_csv(2))).json()["job_id"]

        response = await client.post(f"{BASE}/jobs/{job_id}/pause")

        assert response.status_code == 400
        assert "not running" in response.json()["detail"]
        assert (await client.post(f"{BASE}/jobs/missing/pause")).status_code == 404


class TestRollback:
    """Tests for POST /data-migration/jobs/{job_id}/rollback."""

    @pytest.mark.asyncio
    async def test_rollback_once(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(3))
        body = {"reason": "Wrong currency mapping", "rolled_back_by": "ops-team"}

        response = await client.post(f"{BASE}/jobs/{job_id}/rollback", json=body)

        assert response.status_code == 200
        assert response.json()["status"] == "rollback_completed"
        assert response.json()["can_rollback"] is False
        assert response.json()["rolled_back_by"] == "ops-team"

        again = await client.post(f"{BASE}/jobs/{job_id}/rollback", json=body)
        assert again.status_code == 400

    @pytest.mark.asyncio
    async def test_rollback_validation(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/jobs/missing/rollback", json={"reason": "", "rolled_back_by": "x"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rollback_unknown_job(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{BASE}/jobs/missing/rollback", json={"reason": "cleanup", "rolled_back_by": "ops-team"}
        )
        assert response.status_code == 404


class TestQueries:
    """Tests for the job, error and statistics queries."""

    @pytest.mark.asyncio
    async def test_list_jobs(self, client: AsyncClient) -> None:
        for _ in range(3):
            await _upload(client, guarantee_csv(1))

        response = await client.get(f"{BASE}/jobs", params={"page_size": 2, "job_status": "pending"})

        assert response.status_code == 200
        body = response.json()
        assert len(body["items"]) == 2
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["total_pages"] == 2

    @pytest.mark.asyncio
    async def test_get_unknown_job(self, client: AsyncClient) -> None:
        assert (await client.get(f"{BASE}/jobs/missing")).status_code == 404
        assert (await client.get(f"{BASE}/jobs/missing/errors")).status_code == 404
        assert (await client.get(f"{BASE}/jobs/missing/stats")).status_code == 404

    @pytest.mark.asyncio
    async def test_errors_and_resolution(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(10, invalid={7}))

        errors = (await client.get(f"{BASE}/jobs/{job_id}/errors")).json()
        assert len(errors) == 1
        assert errors[0]["record_number"] == 7
        assert errors[0]["error_type"] == "VALIDATION_ERROR"
        assert errors[0]["affected_field"] == "amount"

        resolved = await client.post(
            f"{BASE}/errors/{errors[0]['id']}/resolve",
            json={"resolved_by": "ops-team", "notes": "Amount corrected at source"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["is_resolved"] is True

        unresolved = await client.get(f"{BASE}/jobs/{job_id}/errors", params={"unresolved_only": True})
        assert unresolved.json() == []

        again = await client.post(f"{BASE}/errors/{errors[0]['id']}/resolve", json={"resolved_by": "ops-team"})
        assert again.status_code == 400

    @pytest.mark.asyncio
    async def test_resolve_unknown_error(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/errors/{uuid.uuid4()}/resolve", json={"resolved_by": "ops-team"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_job_stats(self, client: AsyncClient, api_orchestrator: MigrationOrchestrator) -> None:
        job_id = await _run_to_end(client, api_orchestrator, guarantee_csv(10, invalid={7}))

        stats = (await client.get(f"{BASE}/jobs/{job_id}/stats")).json()

        assert stats["total_errors"] == 1
        assert stats["error_rate"] == 0.1
        assert stats["errors_by_category"] == {"validation": 1}

    @pytest.mark.asyncio
    async def test_migration_stats_and_health(
        self, client: AsyncClient, api_orchestrator: MigrationOrchestrator
    ) -> None:
        await _run_to_end(client, api_orchestrator, guarantee_csv(3))
        await _upload(client, guarantee_csv(1))

        stats = (await client.get(f"{BASE}/stats")).json()
        assert stats["total_jobs"] == 2
        assert stats["jobs_by_status"] == {"completed": 1, "pending": 1}
        assert stats["rollbackable_jobs"] == 1

        health = (await client.get(f"{BASE}/health")).json()
        assert health["status"] == "healthy"
        assert health["active_jobs"] == 0
