"""Declarative base and the audit metadata value shared by every table.

Audit timestamps are modelled as a composed value (``AuditMetadata``) mapped
onto two columns with :func:`sqlalchemy.orm.composite`, rather than inherited
from a base entity class.
"""

import dataclasses
from datetime import UTC, datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime read back from the database to aware UTC.

    SQLite drops timezone information on round-trip, so naive values are
    interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclasses.dataclass(frozen=True)
class AuditMetadata:
    """Creation and last-modification timestamps of a row."""

    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls, now: datetime | None = None) -> "AuditMetadata":
        """Build metadata for a row created at ``now``."""
        stamp = now or utcnow()
        return cls(created_at=stamp, updated_at=stamp)

    def touched(self, now: datetime | None = None) -> "AuditMetadata":
        """Return a copy with ``updated_at`` moved to ``now``."""
        return dataclasses.replace(self, updated_at=now or utcnow())
