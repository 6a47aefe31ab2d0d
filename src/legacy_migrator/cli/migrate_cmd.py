"""Migration CLI commands: submit, run and inspect import jobs."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer

migrate_app = typer.Typer()

T = TypeVar("T")


async def _with_engine(action: Callable[[Any], Awaitable[T]]) -> T:
    """Run ``action(orchestrator)`` against a freshly initialized engine."""
    from legacy_migrator.core.background import InProcessTaskRunner
    from legacy_migrator.core.config import get_settings
    from legacy_migrator.core.database import dispose_engine, get_session_factory, init_engine
    from legacy_migrator.services.migration_service import MigrationOrchestrator

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        orchestrator = MigrationOrchestrator.from_settings(
            settings, get_session_factory(), runner=InProcessTaskRunner()
        )
        return await action(orchestrator)
    finally:
        await dispose_engine()


def _echo_job(job: Any) -> None:
    typer.echo(f"Import job {job.job_id}: {job.status}")
    typer.echo(f"  File:        {job.file_name} ({job.file_type})")
    typer.echo(f"  Entity:      {job.target_entity}")
    typer.echo(f"  Total:       {job.total_records if job.total_records is not None else '-'}")
    typer.echo(f"  Processed:   {job.processed_records}")
    typer.echo(f"  Succeeded:   {job.successful_records}")
    typer.echo(f"  Failed:      {job.failed_records}")
    typer.echo(f"  Checkpoint:  {job.checkpoint_position}")
    if job.error_summary:
        typer.echo(f"  Error:       {job.error_summary}")


async def _run_in_foreground(orchestrator: Any, schedule: Callable[[], Any]) -> None:
    """Schedule an execution on the orchestrator's in-process runner and wait for it."""
    task_id = schedule()
    if asyncio.iscoroutine(task_id):
        task_id = await task_id
    await orchestrator.runner.wait(task_id)


@migrate_app.command("submit")
def submit(
    file: Path = typer.Argument(..., help="Path to the legacy file", exists=True, dir_okay=False),  # noqa: B008
    target_entity: str = typer.Option(..., "--entity", help="Target entity (GUARANTEE, CLIENT, COMMISSION)"),
    source_system: str | None = typer.Option(None, "--source", help="Source system name"),
    initiated_by: str | None = typer.Option(None, "--by", help="Actor submitting the file"),
    configuration: str | None = typer.Option(None, "--config", help="Import configuration as a JSON object"),
    run: bool = typer.Option(False, "--run", help="Process the job immediately"),
) -> None:
    """Stage a file and create an import job."""
    parsed = json.loads(configuration) if configuration else None
    asyncio.run(_submit(file, target_entity, source_system, initiated_by, parsed, run))


async def _submit(
    file_path: Path,
    target_entity: str,
    source_system: str | None,
    initiated_by: str | None,
    configuration: dict | None,
    run: bool,
) -> None:
    """Async implementation of submit."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.core.exceptions import SubmissionError
    from legacy_migrator.services.import_job_service import get_import_job

    async def _action(orchestrator: Any) -> None:
        async with get_session_factory()() as session:
            try:
                job = await orchestrator.submit(
                    session,
                    file_path.read_bytes(),
                    file_path.name,
                    source_system=source_system,
                    target_entity=target_entity,
                    initiated_by=initiated_by,
                    configuration=configuration,
                )
            except SubmissionError as e:
                typer.echo(f"Submission rejected: {e}", err=True)
                raise typer.Exit(code=1) from e
        typer.echo(f"Import job created: {job.job_id}")

        if run:
            await _run_in_foreground(orchestrator, lambda: orchestrator.start(job.job_id))
            async with get_session_factory()() as session:
                _echo_job(await get_import_job(session, job.job_id))

    await _with_engine(_action)


@migrate_app.command("start")
def start(job_id: str = typer.Argument(..., help="Import job id")) -> None:
    """Process a PENDING job in the foreground."""
    asyncio.run(_start(job_id))


async def _start(job_id: str) -> None:
    """Async implementation of start."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.services.import_job_service import get_import_job

    async def _action(orchestrator: Any) -> None:
        async with get_session_factory()() as session:
            job = await get_import_job(session, job_id)
        if job is None:
            typer.echo(f"Import job not found: {job_id}", err=True)
            raise typer.Exit(code=1)
        if job.status != "pending":
            typer.echo(f"Import job is not in PENDING status: {job.status}", err=True)
            raise typer.Exit(code=1)

        await _run_in_foreground(orchestrator, lambda: orchestrator.start(job_id))
        async with get_session_factory()() as session:
            _echo_job(await get_import_job(session, job_id))

    await _with_engine(_action)


@migrate_app.command("restart")
def restart(job_id: str = typer.Argument(..., help="Import job id")) -> None:
    """Resume a PAUSED or FAILED job from its checkpoint in the foreground."""
    asyncio.run(_restart(job_id))


async def _restart(job_id: str) -> None:
    """Async implementation of restart."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.core.exceptions import JobNotFoundError, JobStateError
    from legacy_migrator.services.import_job_service import get_import_job

    async def _action(orchestrator: Any) -> None:
        try:
            await _run_in_foreground(orchestrator, lambda: orchestrator.restart(job_id))
        except (JobNotFoundError, JobStateError) as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1) from e
        async with get_session_factory()() as session:
            _echo_job(await get_import_job(session, job_id))

    await _with_engine(_action)


@migrate_app.command("pause")
def pause(
    job_id: str = typer.Argument(..., help="Import job id"),
    api_url: str = typer.Option("http://localhost:8000", "--api-url", help="Base URL of the running API server"),
) -> None:
    """Ask the API server running a job to pause it after the current batch."""
    import httpx

    from legacy_migrator.core.config import get_settings

    url = f"{api_url.rstrip('/')}{get_settings().api_v1_prefix}/data-migration/jobs/{job_id}/pause"
    try:
        response = httpx.post(url, timeout=10.0)
    except httpx.HTTPError as e:
        typer.echo(f"Could not reach API server: {e}", err=True)
        raise typer.Exit(code=1) from e
    if response.status_code != 202:
        typer.echo(f"Pause rejected ({response.status_code}): {response.json().get('detail')}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Pause requested for import job {job_id}")


@migrate_app.command("rollback")
def rollback(
    job_id: str = typer.Argument(..., help="Import job id"),
    reason: str = typer.Option(..., "--reason", help="Why the job is rolled back"),
    actor: str = typer.Option(..., "--by", help="Actor requesting the rollback"),
) -> None:
    """Undo everything a completed job wrote."""
    asyncio.run(_rollback(job_id, reason, actor))


async def _rollback(job_id: str, reason: str, actor: str) -> None:
    """Async implementation of rollback."""
    from legacy_migrator.core.exceptions import JobNotFoundError, JobStateError

    async def _action(orchestrator: Any) -> None:
        try:
            job = await orchestrator.rollback(job_id, reason, actor)
        except (JobNotFoundError, JobStateError) as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1) from e
        _echo_job(job)

    await _with_engine(_action)


@migrate_app.command("status")
def status(job_id: str = typer.Argument(..., help="Import job id")) -> None:
    """Show a job's status and progress."""
    asyncio.run(_status(job_id))


async def _status(job_id: str) -> None:
    """Async implementation of status."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.services.import_job_service import get_import_job

    async def _action(orchestrator: Any) -> None:
        async with get_session_factory()() as session:
            job = await get_import_job(session, job_id)
        if job is None:
            typer.echo(f"Import job not found: {job_id}", err=True)
            raise typer.Exit(code=1)
        _echo_job(job)

    await _with_engine(_action)


@migrate_app.command("errors")
def errors(
    job_id: str = typer.Argument(..., help="Import job id"),
    unresolved_only: bool = typer.Option(False, "--unresolved", help="Only unresolved errors"),
    limit: int = typer.Option(50, "--limit", help="Maximum errors to show"),
) -> None:
    """List a job's failed records."""
    asyncio.run(_errors(job_id, unresolved_only, limit))


async def _errors(job_id: str, unresolved_only: bool, limit: int) -> None:
    """Async implementation of errors."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.services.import_job_service import get_import_job, list_job_errors

    async def _action(orchestrator: Any) -> None:
        async with get_session_factory()() as session:
            job = await get_import_job(session, job_id)
            if job is None:
                typer.echo(f"Import job not found: {job_id}", err=True)
                raise typer.Exit(code=1)
            job_errors = await list_job_errors(session, job, unresolved_only=unresolved_only)

        typer.echo(f"{len(job_errors)} errors for import job {job_id}")
        for error in job_errors[:limit]:
            field = f" [{error.affected_field}]" if error.affected_field else ""
            typer.echo(f"  #{error.record_number} {error.error_type}/{error.severity}{field}: {error.error_message}")

    await _with_engine(_action)


@migrate_app.command("stats")
def stats(job_id: str | None = typer.Argument(None, help="Import job id; omit for engine-wide totals")) -> None:
    """Show job or engine-wide statistics."""
    asyncio.run(_stats(job_id))


async def _stats(job_id: str | None) -> None:
    """Async implementation of stats."""
    from legacy_migrator.core.database import get_session_factory
    from legacy_migrator.services.import_job_service import get_import_job
    from legacy_migrator.services.migration_stats_service import get_job_statistics, get_migration_statistics

    async def _action(orchestrator: Any) -> None:
        async with get_session_factory()() as session:
            if job_id is None:
                summary = await get_migration_statistics(session)
                typer.echo(f"Jobs:               {summary.total_jobs}")
                for job_status, count in sorted(summary.jobs_by_status.items()):
                    typer.echo(f"  {job_status:<22}{count}")
                typer.echo(f"Active:             {summary.active_jobs}")
                typer.echo(f"Restartable:        {summary.restartable_jobs}")
                typer.echo(f"Rollbackable:       {summary.rollbackable_jobs}")
                typer.echo(f"Unresolved errors:  {summary.unresolved_errors}")
                return

            job = await get_import_job(session, job_id)
            if job is None:
                typer.echo(f"Import job not found: {job_id}", err=True)
                raise typer.Exit(code=1)
            job_stats = await get_job_statistics(session, job)

        typer.echo(f"Import job {job_stats.job_id}: {job_stats.status}")
        typer.echo(f"  Progress:    {job_stats.progress_percentage:.1f}%")
        typer.echo(f"  Error rate:  {job_stats.error_rate:.2%}")
        typer.echo(f"  Throughput:  {job_stats.records_per_second:.1f} records/s")
        typer.echo(f"  Errors:      {job_stats.total_errors} ({job_stats.resolved_errors} resolved)")
        for category, count in sorted(job_stats.errors_by_category.items()):
            typer.echo(f"    {category:<14}{count}")

    await _with_engine(_action)
