"""Tests for the database engine and session management module."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import build_job
from sqlalchemy import func, inspect, select

import legacy_migrator.core.database as db_module
from legacy_migrator.core.database import create_tables, dispose_engine, get_engine, get_session_factory, init_engine
from legacy_migrator.models.import_job import ImportJob


class TestGetEngine:
    """Tests for get_engine."""

    def test_raises_when_not_initialized(self) -> None:
        original_engine = db_module._engine
        db_module._engine = None
        try:
            with pytest.raises(RuntimeError, match="Database engine not initialized"):
                get_engine()
        finally:
            db_module._engine = original_engine

    @pytest.mark.asyncio
    async def test_returns_engine_when_initialized(self) -> None:
        engine = init_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert get_engine() is engine
        finally:
            await dispose_engine()


class TestGetSessionFactory:
    """Tests for get_session_factory."""

    def test_raises_when_not_initialized(self) -> None:
        original_factory = db_module._session_factory
        db_module._session_factory = None
        try:
            with pytest.raises(RuntimeError, match="Session factory not initialized"):
                get_session_factory()
        finally:
            db_module._session_factory = original_factory


class TestInitEngine:
    """Tests for init_engine."""

    @pytest.mark.asyncio
    async def test_sessions_do_not_expire_on_commit(self) -> None:
        init_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert get_session_factory().kw["expire_on_commit"] is False
        finally:
            await dispose_engine()

    def test_postgres_gets_pool_settings(self) -> None:
        with patch("legacy_migrator.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", echo=False)
            mock_create.assert_called_once_with(
                "postgresql+asyncpg://localhost/db", echo=False, pool_size=10, max_overflow=5
            )

    def test_sqlite_skips_pool_settings(self) -> None:
        with (
            patch("legacy_migrator.core.database.create_async_engine", return_value=MagicMock()) as mock_create,
            patch("legacy_migrator.core.database.enable_sqlite_savepoints") as mock_savepoints,
        ):
            engine = init_engine("sqlite+aiosqlite:///./migration.db")
            mock_create.assert_called_once_with("sqlite+aiosqlite:///./migration.db")
            mock_savepoints.assert_called_once_with(engine)

    def test_init_engine_with_schema(self) -> None:
        """init_engine with schema injects connect_args with search_path."""
        with patch("legacy_migrator.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", schema="legacy", echo=False)
            mock_create.assert_called_once_with(
                "postgresql+asyncpg://localhost/db",
                echo=False,
                connect_args={"options": "-c search_path=legacy,public"},
                pool_size=10,
                max_overflow=5,
            )

    def test_rejects_non_dict_connect_args(self) -> None:
        with pytest.raises(TypeError, match="connect_args must be a dict"):
            init_engine("postgresql+asyncpg://localhost/db", schema="legacy", connect_args="bad")


class TestCreateTables:
    @pytest.mark.asyncio
    async def test_creates_import_job_tables(self) -> None:
        engine = init_engine("sqlite+aiosqlite:///:memory:")
        try:
            await create_tables()
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
            assert {"import_jobs", "import_job_errors", "migrated_records"} <= set(tables)
        finally:
            await dispose_engine()


class TestSqliteSavepoints:
    """Tests for file-backed SQLite transactions created by init_engine."""

    @pytest.mark.asyncio
    async def test_released_savepoint_is_undone_by_outer_rollback(self, tmp_path: Path) -> None:
        init_engine(f"sqlite+aiosqlite:///{tmp_path / 'savepoints.db'}")
        try:
            await create_tables()
            factory = get_session_factory()
            async with factory() as session:
                async with session.begin_nested():
                    session.add(build_job("IMP-1"))
                await session.rollback()

            async with factory() as session:
                count = (await session.execute(select(func.count(ImportJob.id)))).scalar_one()
            assert count == 0
        finally:
            await dispose_engine()


class TestDisposeEngine:
    """Tests for dispose_engine."""

    @pytest.mark.asyncio
    async def test_disposes_engine(self) -> None:
        init_engine("sqlite+aiosqlite:///:memory:")
        await dispose_engine()
        assert db_module._engine is None
        assert db_module._session_factory is None

    @pytest.mark.asyncio
    async def test_dispose_when_no_engine(self) -> None:
        original = db_module._engine
        db_module._engine = None
        try:
            await dispose_engine()  # Should not raise
        finally:
            db_module._engine = original
