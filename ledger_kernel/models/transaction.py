"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for ledger transactions and their entries,
    the single source of financial truth.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Idempotency: (ledger_id, reference_id) is UNIQUE (uq_transaction_reference).
    - Double entry: for every transaction sum(debit entries) == sum(credit
      entries).  Checked by TransactionWriter before flush; ``is_balanced`` is
      the read-side assertion.
    - Append-only: entries are never updated or deleted; a transaction may
      only change ``status`` (along ALLOWED_STATUS_TRANSITIONS) and
      ``metadata``.  Enforced by db/immutability.py.
    - Entry amounts are non-negative integer cents (ck_entry_amount_nonneg).

Failure modes:
    - IntegrityError on a duplicate reference_id; the recorder turns it into
      an idempotent replay.
    - ImmutabilityViolationError on any forbidden update or delete.

Audit relevance:
    Corrections are new offsetting transactions (type ``reversal``) linked
    through reverses_transaction_id, never edits to history.
"""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class TransactionType(str, Enum):
    SALE = "sale"
    EXPENSE = "expense"
    PAYOUT = "payout"
    REFUND = "refund"
    REVERSAL = "reversal"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    """Transaction lifecycle.

    Contract: pending -> completed -> reconciled, with reconciled ->
    completed on unmatch.  voided and reversed are terminal.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    RECONCILED = "reconciled"
    VOIDED = "voided"
    REVERSED = "reversed"


TERMINAL_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.VOIDED,
    TransactionStatus.REVERSED,
})

ALLOWED_STATUS_TRANSITIONS: frozenset[tuple[TransactionStatus, TransactionStatus]] = frozenset({
    (TransactionStatus.PENDING, TransactionStatus.COMPLETED),
    (TransactionStatus.PENDING, TransactionStatus.VOIDED),
    (TransactionStatus.COMPLETED, TransactionStatus.RECONCILED),
    (TransactionStatus.RECONCILED, TransactionStatus.COMPLETED),
    (TransactionStatus.COMPLETED, TransactionStatus.VOIDED),
    (TransactionStatus.COMPLETED, TransactionStatus.REVERSED),
    (TransactionStatus.RECONCILED, TransactionStatus.REVERSED),
})


class EntryType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class Transaction(TrackedBase):
    """
    One economic event recorded in a ledger.

    Contract:
        Created exactly once by TransactionWriter together with its entries.
        Afterwards only ``status`` and ``metadata_`` change.

    Guarantees:
        - reference_id is unique within the ledger.
        - amount is the gross amount in cents.
        - transaction_date is the accounting date the period guard checks.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        UniqueConstraint("ledger_id", "reference_id", name="uq_transaction_reference"),
        Index("idx_transaction_ledger_status", "ledger_id", "status"),
        Index("idx_transaction_ledger_date", "ledger_id", "transaction_date"),
        CheckConstraint("amount >= 0", name="ck_transaction_amount_nonneg"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledgers.id"),
        nullable=False,
    )

    reference_id: Mapped[str] = mapped_column(String(255), nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        default=TransactionStatus.COMPLETED,
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    reverses_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id"),
        nullable=True,
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="transaction",
        lazy="selectin",
        order_by="Entry.line_no",
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.reference_id} {self.transaction_type} status={self.status}>"

    @property
    def is_terminal(self) -> bool:
        return TransactionStatus(self.status) in TERMINAL_STATUSES

    @property
    def is_reconciled(self) -> bool:
        return self.status == TransactionStatus.RECONCILED

    @property
    def total_debits(self) -> int:
        return sum(e.amount for e in self.entries if e.entry_type == EntryType.DEBIT)

    @property
    def total_credits(self) -> int:
        return sum(e.amount for e in self.entries if e.entry_type == EntryType.CREDIT)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class Entry(Base):
    """
    One debit or credit leg of a transaction against one account.

    Guarantees:
        - amount >= 0; the side is carried by entry_type.
        - line_no orders entries within their transaction.
    """

    __tablename__ = "entries"

    __table_args__ = (
        UniqueConstraint("transaction_id", "line_no", name="uq_entry_line"),
        Index("idx_entry_account", "account_id"),
        CheckConstraint("amount >= 0", name="ck_entry_amount_nonneg"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(BigInteger, nullable=False)

    entry_type: Mapped[EntryType] = mapped_column(String(10), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    transaction: Mapped["Transaction"] = relationship(back_populates="entries")

    account: Mapped["Account"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<Entry {self.entry_type} {self.amount} account={self.account_id}>"
