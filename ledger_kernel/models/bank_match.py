"""
Module: ledger_kernel.models.bank_match
Responsibility: ORM persistence for the link between a ledger transaction and
    an externally supplied bank transaction.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one match per transaction (uq_bank_match_transaction).
    - Created, replaced and deleted only by ReconciliationMatcher, behind
      PeriodLockGuard.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class BankMatchStatus(str, Enum):
    MATCHED = "matched"


class MatchMethod(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class BankMatch(TrackedBase):
    """One-to-one transaction <-> bank line link."""

    __tablename__ = "bank_matches"

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_bank_match_transaction"),
        Index("idx_bank_match_ledger", "ledger_id"),
        Index("idx_bank_match_bank_tx", "ledger_id", "bank_transaction_id"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledgers.id"),
        nullable=False,
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id"),
        nullable=False,
    )

    bank_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[BankMatchStatus] = mapped_column(
        String(20),
        default=BankMatchStatus.MATCHED,
        nullable=False,
    )

    match_method: Mapped[MatchMethod] = mapped_column(
        String(20),
        default=MatchMethod.MANUAL,
        nullable=False,
    )

    matched_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<BankMatch {self.transaction_id} -> {self.bank_transaction_id}>"
