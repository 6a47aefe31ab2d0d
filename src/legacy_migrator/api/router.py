"""Root API router with /api/v1 prefix."""

from fastapi import APIRouter

from legacy_migrator.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included.

    Args:
        settings: Application settings.

    Returns:
        Configured API router.
    """
    from legacy_migrator.api.v1.migrations import router as migrations_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(migrations_router)

    return root_router
