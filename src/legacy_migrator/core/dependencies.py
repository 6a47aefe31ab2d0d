"""FastAPI dependency injection for database sessions and the migration orchestrator."""

from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.core.database import get_session_factory
from legacy_migrator.services.migration_service import MigrationOrchestrator


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_orchestrator(request: Request) -> MigrationOrchestrator:
    """Return the orchestrator created at application start-up.

    Raises:
        HTTPException: 503 if the application has not finished starting.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Migration engine is not initialized",
        )
    return orchestrator
