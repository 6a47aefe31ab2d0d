"""File staging for submitted migration files.

Provides a ``FileStageManager`` Protocol and a ``LocalFileStageManager``
implementation that writes files to the local filesystem using async I/O.
Staged files live under ``{upload_dir}/{job_id}_{filename}`` and are moved
to ``{archive_dir}/{job_id}_{timestamp}_{filename}`` once a job finishes.
"""

import asyncio
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import aiofiles
from loguru import logger

from legacy_migrator.core.exceptions import StagingError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class FileStageManager(Protocol):
    """Storage for files between submission and archival."""

    async def stage(self, content: bytes, filename: str, job_id: str) -> str:
        """Persist submitted bytes and return the staged path.

        Raises:
            StagingError: If the file cannot be written.
        """
        ...

    async def archive(self, path: str, job_id: str, filename: str) -> str:
        """Move a staged file to the archive and return the new path.

        Raises:
            StagingError: If the file cannot be moved.
        """
        ...

    async def exists(self, path: str) -> bool:
        """Whether a staged or archived file is still present."""
        ...


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied file name to a safe basename.

    Args:
        filename: Name as sent by the client, possibly with directories.

    Returns:
        The basename with unsafe characters replaced by ``_``.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_CHARS.sub("_", basename).lstrip(".")
    return cleaned or "upload"


class LocalFileStageManager:
    """Local filesystem implementation of FileStageManager.

    Args:
        upload_dir: Directory for staged files.
        archive_dir: Directory for archived files.
    """

    def __init__(self, upload_dir: str | Path, archive_dir: str | Path) -> None:
        self._upload_dir = Path(upload_dir)
        self._archive_dir = Path(archive_dir)

    async def stage(self, content: bytes, filename: str, job_id: str) -> str:
        target = self._upload_dir / f"{job_id}_{safe_filename(filename)}"
        try:
            self._upload_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(content)
        except OSError as e:
            msg = f"Failed to stage {filename}: {e}"
            raise StagingError(msg) from e
        logger.debug(f"Staged {len(content)} bytes at {target}")
        return str(target)

    async def archive(self, path: str, job_id: str, filename: str) -> str:
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        target = self._archive_dir / f"{job_id}_{timestamp}_{safe_filename(filename)}"
        try:
            self._archive_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.move, path, target)
        except OSError as e:
            msg = f"Failed to archive {path}: {e}"
            raise StagingError(msg) from e
        return str(target)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(Path(path).is_file)
