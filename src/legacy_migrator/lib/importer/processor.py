"""Record processors: per-entity reading, validation and persistence.

The orchestrator drives a ``RecordProcessor`` for the job's target entity.
``EntityRecordProcessor`` is the reference implementation: it reads the
staged file with :mod:`legacy_migrator.lib.importer.readers`, validates
each record, and stores it as a ``MigratedRecord`` keyed by the entity's
natural key.  It never writes before a record has passed validation and the
duplicate check, so a failed record leaves nothing behind in the session.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from legacy_migrator.core.exceptions import DuplicateRecordError, RecordValidationError
from legacy_migrator.lib.importer import readers
from legacy_migrator.lib.importer.rules import SUPPORTED_ENTITIES, load_rules, normalize_entity
from legacy_migrator.lib.importer.validator import validate_record
from legacy_migrator.models.base import AuditMetadata, utcnow
from legacy_migrator.models.import_job import ImportJob
from legacy_migrator.models.migrated_record import MigratedRecord


class RecordProcessor(Protocol):
    """Reads, validates and persists the records of one target entity."""

    async def validate_file_shape(self, path: str, file_type: str) -> bool:
        """Cheap check that the staged file matches its declared type."""
        ...

    async def count_records(self, path: str, file_type: str) -> int:
        """Count the records in the staged file."""
        ...

    async def read_batch(self, path: str, file_type: str, offset: int, size: int) -> list[dict[str, Any]]:
        """Read up to ``size`` records starting at record ``offset``.

        An empty list means the end of the file.
        """
        ...

    async def process(self, session: AsyncSession, record: dict[str, Any], job: ImportJob, record_number: int) -> None:
        """Validate and persist one record; raise to reject it.

        Writes are added to ``session`` and committed by the caller with the
        batch checkpoint.
        """
        ...

    async def compensate(self, session: AsyncSession, job: ImportJob) -> int:
        """Undo everything ``job`` wrote and return the number of records removed."""
        ...


def natural_key(target_entity: str, record: dict[str, Any]) -> str:
    """Derive the key used for duplicate detection.

    Args:
        target_entity: Entity the record migrates into.
        record: The validated record.

    Returns:
        ``guarantee_reference`` for guarantees, ``client_code`` (else
        ``email``) for clients, ``guarantee_reference:commission_type`` for
        commissions, and ``id`` otherwise.

    Raises:
        RecordValidationError: If the fields making up the key are missing.
    """
    entity = normalize_entity(target_entity)
    if entity == "GUARANTEE":
        parts = [record.get("guarantee_reference")]
        field = "guarantee_reference"
    elif entity == "CLIENT":
        parts = [record.get("client_code") or record.get("email")]
        field = "client_code"
    elif entity == "COMMISSION":
        parts = [record.get("guarantee_reference"), record.get("commission_type")]
        field = "guarantee_reference"
    else:
        parts = [record.get("id")]
        field = "id"

    if any(p is None or str(p).strip() == "" for p in parts):
        raise RecordValidationError([f"Cannot derive {entity.lower()} key: {field} is missing"], field=field)
    return ":".join(str(p).strip() for p in parts)


class EntityRecordProcessor:
    """Reference processor storing records in the ``migrated_records`` table.

    Args:
        target_entity: Entity this processor handles.
    """

    def __init__(self, target_entity: str) -> None:
        self.target_entity = normalize_entity(target_entity)

    async def validate_file_shape(self, path: str, file_type: str) -> bool:
        return await asyncio.to_thread(readers.validate_file_shape, Path(path), file_type)

    async def count_records(self, path: str, file_type: str) -> int:
        return await asyncio.to_thread(readers.count_records, Path(path), file_type)

    async def read_batch(self, path: str, file_type: str, offset: int, size: int) -> list[dict[str, Any]]:
        return await asyncio.to_thread(readers.read_records, Path(path), file_type, offset, size)

    async def process(self, session: AsyncSession, record: dict[str, Any], job: ImportJob, record_number: int) -> None:
        rules = load_rules(job.validation_rules)
        validate_record(record, rules, self.target_entity)
        key = natural_key(self.target_entity, record)
        payload = json.dumps(record, default=str, sort_keys=True)

        result = await session.execute(
            select(MigratedRecord).where(
                MigratedRecord.target_entity == self.target_entity,
                MigratedRecord.record_key == key,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if not rules.get("allow_duplicates", False):
                msg = f"Duplicate {self.target_entity.lower()} record: {key}"
                raise DuplicateRecordError(msg)
            # Later occurrence wins and moves to this job
            existing.import_job_id = job.id
            existing.record_number = record_number
            existing.payload = payload
            existing.audit = existing.audit.touched()
            return

        session.add(
            MigratedRecord(
                import_job_id=job.id,
                target_entity=self.target_entity,
                record_key=key,
                record_number=record_number,
                payload=payload,
                audit=AuditMetadata.new(utcnow()),
            )
        )

    async def compensate(self, session: AsyncSession, job: ImportJob) -> int:
        result = await session.execute(delete(MigratedRecord).where(MigratedRecord.import_job_id == job.id))
        removed = result.rowcount or 0
        logger.info(f"Removed {removed} {self.target_entity.lower()} records written by import job {job.job_id}")
        return removed


def default_processors() -> dict[str, RecordProcessor]:
    """One reference processor per supported target entity."""
    return {entity: EntityRecordProcessor(entity) for entity in SUPPORTED_ENTITIES}
