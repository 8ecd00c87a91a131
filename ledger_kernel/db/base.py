"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map, and the
    TrackedBase mixin for row timestamps.
Architecture position: Kernel > DB.  Lowest-level import target in the kernel.
    MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys: every model gets a uuid4 primary key stored as a
      36-character string, portable across PostgreSQL and SQLite.
    - Integer money: ``int`` maps to BigInteger.  Amounts are stored in minor
      units (cents) and never as floats.
    - Timezone-aware timestamps: ``datetime`` maps to UTCDateTime, so
      every loaded timestamp is aware and in UTC on every backend.

Audit relevance:
    TrackedBase.created_at is the recording time of every ledger row.
    updated_at is row metadata and may change on otherwise-frozen rows (see
    db/immutability.py).
"""

from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID (or UUID string) -> str on write.
        - process_result_value: str -> UUID on read.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always round-trips as UTC.

    Guarantees:
        - process_bind_param: aware values are converted to UTC; naive values
          are taken to be UTC already.
        - process_result_value: the loaded value carries tzinfo=UTC, also on
          backends (SQLite) that store timestamps without an offset.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime (DateTime(timezone=True), read back as UTC).
        - int maps to BigInteger (cents never overflow 32 bits).
        - dict maps to JSON.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
        dict[str, Any]: JSON,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with row timestamps.

    Guarantees:
        - created_at defaults to the database NOW() on INSERT; services that
          need a deterministic timestamp pass one from an injected Clock.
        - updated_at auto-updates on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
