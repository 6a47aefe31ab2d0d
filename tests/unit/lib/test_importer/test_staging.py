"""Unit tests for local file staging."""

from pathlib import Path

import pytest

from legacy_migrator.core.exceptions import StagingError
from legacy_migrator.lib.importer.staging import LocalFileStageManager, safe_filename


class TestSafeFilename:
    """Tests for safe_filename."""

    def test_strips_directories(self) -> None:
        assert safe_filename("../../etc/passwd") == "passwd"
        assert safe_filename("C:\\exports\\doka.dka") == "doka.dka"

    def test_replaces_unsafe_characters(self) -> None:
        assert safe_filename("Garantien März (1).csv") == "Garantien_M_rz__1_.csv"

    def test_hidden_or_empty_names(self) -> None:
        assert safe_filename(".env") == "env"
        assert safe_filename("...") == "upload"


class TestLocalFileStageManager:
    """Tests for LocalFileStageManager."""

    @pytest.fixture
    def manager(self, tmp_path: Path) -> LocalFileStageManager:
        return LocalFileStageManager(tmp_path / "uploads", tmp_path / "archive")

    async def test_stage_writes_file(self, manager: LocalFileStageManager, tmp_path: Path) -> None:
        path = await manager.stage(b"a,b\n1,2\n", "guarantees.csv", "job-1")

        assert Path(path) == tmp_path / "uploads" / "job-1_guarantees.csv"
        assert Path(path).read_bytes() == b"a,b\n1,2\n"
        assert await manager.exists(path)

    async def test_archive_moves_file(self, manager: LocalFileStageManager, tmp_path: Path) -> None:
        staged = await manager.stage(b"data", "guarantees.csv", "job-1")

        archived = await manager.archive(staged, "job-1", "guarantees.csv")

        assert not await manager.exists(staged)
        assert await manager.exists(archived)
        assert Path(archived).parent == tmp_path / "archive"
        name = Path(archived).name
        assert name.startswith("job-1_")
        assert name.endswith("_guarantees.csv")

    async def test_archive_missing_file_raises(self, manager: LocalFileStageManager, tmp_path: Path) -> None:
        with pytest.raises(StagingError, match="Failed to archive"):
            await manager.archive(str(tmp_path / "uploads" / "gone.csv"), "job-1", "gone.csv")

    async def test_stage_failure_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "uploads"
        blocker.write_text("not a directory")
        manager = LocalFileStageManager(blocker, tmp_path / "archive")

        with pytest.raises(StagingError, match="Failed to stage"):
            await manager.stage(b"data", "guarantees.csv", "job-1")

    async def test_exists_for_directories_is_false(self, manager: LocalFileStageManager, tmp_path: Path) -> None:
        assert not await manager.exists(str(tmp_path))
