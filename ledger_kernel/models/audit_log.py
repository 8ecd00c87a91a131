"""
Module: ledger_kernel.models.audit_log
Responsibility: ORM persistence for the append-only API audit trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - request_body is stored sanitized; payload_hash is the SHA-256 of the
      sanitized body, so the stored row can be checked against itself.

Audit relevance:
    Written by the audit sink outside the ledger transaction.  A missing row
    never implies a missing ledger write, only a lost audit record.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """State-changing operations that produce an audit record."""

    RECORD_SALE = "record_sale"
    RECORD_PAYOUT = "record_payout"
    REVERSE_TRANSACTION = "reverse_transaction"
    RECONCILE_MATCH = "reconcile_match"
    RECONCILE_UNMATCH = "reconcile_unmatch"
    RECONCILE_AUTO_MATCH = "reconcile_auto_match"
    SNAPSHOT_CREATED = "snapshot_created"
    PERIOD_CLOSED = "period_closed"
    PERIOD_LOCKED = "period_locked"


class AuditLogEntry(Base):
    """One audit record per state-changing API call."""

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_ledger_created", "ledger_id", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    # Not a foreign key: audit rows must be writable even for requests that
    # name an unknown ledger.
    ledger_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)

    request_body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    response_status: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action} {self.entity_type}:{self.entity_id}>"
