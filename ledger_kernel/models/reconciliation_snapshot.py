"""
Module: ledger_kernel.models.reconciliation_snapshot
Responsibility: ORM persistence for frozen, hash-verified reconciliation
    state of a period.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: never updated or deleted through the ORM
      (db/immutability.py).  A re-freeze inserts a new row with the next
      ``version`` for the same (ledger, window).
    - integrity_hash == SHA-256(canonical_json(snapshot_data)) at insert.

Failure modes:
    - IntegrityMismatchError when verification recomputes a different hash,
      i.e. snapshot_data was edited out-of-band.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString


class ReconciliationSnapshot(Base):
    """
    Point-in-time capture of matched and unmatched transactions.

    Guarantees:
        - (ledger_id, period_start, period_end, version) is unique; the
          latest snapshot for a window is the highest version.
        - Summary columns duplicate snapshot_data["summary"] for querying;
          only snapshot_data is covered by the hash.
    """

    __tablename__ = "reconciliation_snapshots"

    __table_args__ = (
        UniqueConstraint(
            "ledger_id", "period_start", "period_end", "version",
            name="uq_snapshot_window_version",
        ),
        Index("idx_snapshot_ledger_period", "ledger_id", "period_id"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledgers.id"),
        nullable=False,
    )

    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_periods.id"),
        nullable=True,
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    snapshot_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    matched_count: Mapped[int] = mapped_column(BigInteger, nullable=False)

    unmatched_count: Mapped[int] = mapped_column(BigInteger, nullable=False)

    matched_total: Mapped[int] = mapped_column(BigInteger, nullable=False)

    unmatched_total: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ReconciliationSnapshot {self.period_start}..{self.period_end} "
            f"v{self.version}>"
        )
