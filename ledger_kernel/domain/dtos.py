"""
DTOs -- immutable data structures crossing the service boundary.

Responsibility:
    Requests into the recorders, results out of every service, and the
    read-side views returned by selectors.  Services return these, never ORM
    entities, so callers cannot mutate ledger rows by accident.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model`` converters exist as
    boundary helpers and are only called from services and selectors.

Data flow:
    SaleRequest -> (split) -> TransactionDraft -> TransactionWriter -> SaleResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.domain.matching import AutoMatchPlan
from ledger_kernel.domain.split import SplitResult

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.accounting_period import AccountingPeriod as PeriodModel
    from ledger_kernel.models.ledger import Ledger as LedgerModel
    from ledger_kernel.models.reconciliation_snapshot import (
        ReconciliationSnapshot as SnapshotModel,
    )
    from ledger_kernel.models.transaction import Transaction as TransactionModel


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


# =============================================================================
# Writer input
# =============================================================================


@dataclass(frozen=True)
class EntrySpec:
    """
    One leg to be written.  The account is named by role, not id, and is
    created on first use.
    """

    account_type: str
    entry_type: str
    amount: int
    entity_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, int) or self.amount < 0:
            raise ValueError(f"Entry amount must be a non-negative integer: {self.amount!r}")


@dataclass(frozen=True)
class TransactionDraft:
    """Everything TransactionWriter needs for one all-or-nothing write."""

    ledger_id: UUID
    reference_id: str
    transaction_type: str
    amount: int
    currency: str
    transaction_date: date
    entries: tuple[EntrySpec, ...]
    metadata: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    reverses_transaction_id: UUID | None = None

    @property
    def total_debits(self) -> int:
        return sum(e.amount for e in self.entries if e.entry_type == "debit")

    @property
    def total_credits(self) -> int:
        return sum(e.amount for e in self.entries if e.entry_type == "credit")


@dataclass(frozen=True)
class WriteResult:
    """
    Outcome of TransactionWriter.write().

    ``idempotent`` is True when the reference_id already existed and no new
    rows were written.
    """

    transaction_id: UUID
    reference_id: str
    idempotent: bool
    balances: dict[str, int] = field(default_factory=dict)


# =============================================================================
# Recorder requests and results
# =============================================================================


@dataclass(frozen=True)
class SaleRequest:
    ledger_id: UUID
    reference_id: str
    creator_id: str
    amount_cents: int
    creator_percent: Any = None
    processing_fee_cents: int = 0
    currency: str | None = None
    transaction_date: date | None = None
    description: str | None = None
    product_id: str | None = None
    product_name: str | None = None
    customer_email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SaleResult:
    transaction_id: UUID
    reference_id: str
    idempotent: bool
    split: SplitResult | None
    creator_balance: int

    def breakdown(self) -> dict[str, Any] | None:
        return self.split.breakdown() if self.split is not None else None


@dataclass(frozen=True)
class PayoutRequest:
    ledger_id: UUID
    reference_id: str
    creator_id: str
    amount_cents: int
    currency: str | None = None
    transaction_date: date | None = None
    payout_method: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutResult:
    transaction_id: UUID
    reference_id: str
    idempotent: bool
    amount_cents: int
    creator_balance: int


@dataclass(frozen=True)
class ReversalResult:
    original_transaction_id: UUID
    reversal_transaction_id: UUID
    reversal_reference_id: str
    reversed_amount: int
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchResult:
    success: bool
    transaction_id: UUID
    bank_transaction_id: str | None = None
    bank_match_id: UUID | None = None
    status: str | None = None


# =============================================================================
# Read-side views
# =============================================================================


@dataclass(frozen=True)
class LedgerInfo:
    id: UUID
    name: str
    status: str
    settings: dict[str, Any]

    @classmethod
    def from_model(cls, ledger: LedgerModel) -> LedgerInfo:
        return cls(
            id=ledger.id,
            name=ledger.name,
            status=_value(ledger.status),
            settings=dict(ledger.settings or {}),
        )


@dataclass(frozen=True)
class AccountInfo:
    id: UUID
    ledger_id: UUID
    account_type: str
    entity_id: str | None
    name: str
    balance: int
    currency: str
    metadata: dict[str, Any]

    @classmethod
    def from_model(cls, account: AccountModel) -> AccountInfo:
        return cls(
            id=account.id,
            ledger_id=account.ledger_id,
            account_type=_value(account.account_type),
            entity_id=account.entity_id,
            name=account.name,
            balance=account.balance,
            currency=account.currency,
            metadata=dict(account.metadata_ or {}),
        )


@dataclass(frozen=True)
class EntryInfo:
    account_id: UUID
    account_type: str
    entity_id: str | None
    entry_type: str
    amount: int


@dataclass(frozen=True)
class TransactionInfo:
    id: UUID
    ledger_id: UUID
    reference_id: str
    transaction_type: str
    status: str
    amount: int
    currency: str
    transaction_date: date
    created_at: datetime | None
    metadata: dict[str, Any]
    entries: tuple[EntryInfo, ...] = ()

    @classmethod
    def from_model(cls, tx: TransactionModel, with_entries: bool = False) -> TransactionInfo:
        entries: tuple[EntryInfo, ...] = ()
        if with_entries:
            entries = tuple(
                EntryInfo(
                    account_id=e.account_id,
                    account_type=_value(e.account.account_type),
                    entity_id=e.account.entity_id,
                    entry_type=_value(e.entry_type),
                    amount=e.amount,
                )
                for e in tx.entries
            )
        return cls(
            id=tx.id,
            ledger_id=tx.ledger_id,
            reference_id=tx.reference_id,
            transaction_type=_value(tx.transaction_type),
            status=_value(tx.status),
            amount=tx.amount,
            currency=tx.currency,
            transaction_date=tx.transaction_date,
            created_at=tx.created_at,
            metadata=dict(tx.metadata_ or {}),
            entries=entries,
        )


@dataclass(frozen=True)
class PeriodInfo:
    id: UUID
    ledger_id: UUID
    name: str
    period_start: date
    period_end: date
    status: str
    closed_at: datetime | None = None
    locked_at: datetime | None = None

    @classmethod
    def from_model(cls, period: PeriodModel) -> PeriodInfo:
        return cls(
            id=period.id,
            ledger_id=period.ledger_id,
            name=period.name,
            period_start=period.period_start,
            period_end=period.period_end,
            status=_value(period.status),
            closed_at=period.closed_at,
            locked_at=period.locked_at,
        )


@dataclass(frozen=True)
class SnapshotSummary:
    total_matched: int
    total_unmatched: int
    matched_amount: int
    unmatched_amount: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_matched": self.total_matched,
            "total_unmatched": self.total_unmatched,
            "matched_amount": self.matched_amount,
            "unmatched_amount": self.unmatched_amount,
        }


@dataclass(frozen=True)
class SnapshotInfo:
    id: UUID
    ledger_id: UUID
    period_id: UUID | None
    period_start: date
    period_end: date
    version: int
    integrity_hash: str
    summary: SnapshotSummary
    snapshot_data: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_model(cls, snapshot: SnapshotModel) -> SnapshotInfo:
        return cls(
            id=snapshot.id,
            ledger_id=snapshot.ledger_id,
            period_id=snapshot.period_id,
            period_start=snapshot.period_start,
            period_end=snapshot.period_end,
            version=snapshot.version,
            integrity_hash=snapshot.integrity_hash,
            summary=SnapshotSummary(
                total_matched=snapshot.matched_count,
                total_unmatched=snapshot.unmatched_count,
                matched_amount=snapshot.matched_total,
                unmatched_amount=snapshot.unmatched_total,
            ),
            snapshot_data=dict(snapshot.snapshot_data or {}),
            created_at=snapshot.created_at,
        )


@dataclass(frozen=True)
class SnapshotVerification:
    snapshot: SnapshotInfo
    integrity_valid: bool
    computed_hash: str


@dataclass(frozen=True)
class BalanceDrift:
    """An account whose cached balance disagrees with its entries."""

    account_id: UUID
    account_key: str
    cached_balance: int
    derived_balance: int

    @property
    def difference(self) -> int:
        return self.cached_balance - self.derived_balance


@dataclass(frozen=True)
class BalanceEquation:
    total_debits: int
    total_credits: int

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class SkippedMatch:
    bank_transaction_id: str
    transaction_id: UUID | None
    reason: str


@dataclass(frozen=True)
class AutoMatchResult:
    """
    Outcome of ReconciliationMatcher.auto_match().

    ``matched`` holds the proposals that were applied (empty on a dry run);
    ``plan`` is the full proposal set they came from.
    """

    plan: AutoMatchPlan
    matched: tuple[MatchResult, ...]
    skipped: tuple[SkippedMatch, ...]
    dry_run: bool = False
