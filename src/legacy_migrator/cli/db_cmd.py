"""Database schema CLI commands backed by Alembic."""

from typing import TYPE_CHECKING

import typer
from loguru import logger

if TYPE_CHECKING:
    from alembic.config import Config

db_app = typer.Typer()


def _alembic_config(config_path: str) -> "Config":
    from alembic.config import Config

    return Config(config_path)


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config_path: str = typer.Option("alembic.ini", "--config", help="Path to alembic.ini"),
) -> None:
    """Create or upgrade the import job tables."""
    from alembic import command

    logger.info(f"Upgrading migration schema to {revision}")
    command.upgrade(_alembic_config(config_path), revision)
    logger.info("Migration schema upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config_path: str = typer.Option("alembic.ini", "--config", help="Path to alembic.ini"),
) -> None:
    """Revert the migration schema to the target revision."""
    from alembic import command

    logger.info(f"Downgrading migration schema to {revision}")
    command.downgrade(_alembic_config(config_path), revision)
    logger.info("Migration schema downgrade complete")


@db_app.command()
def current(
    config_path: str = typer.Option("alembic.ini", "--config", help="Path to alembic.ini"),
) -> None:
    """Show the schema revision the database is at."""
    from alembic import command

    command.current(_alembic_config(config_path), verbose=True)


@db_app.command("create-tables")
def create_tables_cmd() -> None:
    """Create the import job tables directly from the models, bypassing Alembic."""
    import asyncio

    asyncio.run(_create_tables())


async def _create_tables() -> None:
    from legacy_migrator.core.config import get_settings
    from legacy_migrator.core.database import create_tables, dispose_engine, init_engine

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        await create_tables()
    finally:
        await dispose_engine()
    typer.echo("Import job tables created")
