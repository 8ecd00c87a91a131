"""
Module: ledger_kernel.models.accounting_period
Responsibility: ORM persistence for accounting periods, the date ranges
    whose status gates mutation of the transactions dated inside them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Once a period is CLOSED or LOCKED no transaction dated within
      [period_start, period_end] may be created, reconciled, unmatched or
      reversed.  Enforced by PeriodLockGuard.
    - Status moves OPEN -> CLOSED -> LOCKED (OPEN -> LOCKED allowed) and
      never regresses; boundaries of a sealed period are frozen.  Enforced
      by db/immutability.py.
    - Periods of one ledger do not overlap (checked by PeriodService).

Failure modes:
    - PeriodLockedError from the guard.
    - ImmutabilityViolationError on regression or edits to a sealed period.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle status of an accounting period.

    Contract: OPEN -> CLOSED -> LOCKED.  CLOSED still allows an explicit
    lock; LOCKED is permanent.
    """

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


SEALED_STATUSES: frozenset[PeriodStatus] = frozenset({
    PeriodStatus.CLOSED,
    PeriodStatus.LOCKED,
})


class AccountingPeriod(TrackedBase):
    """
    Date range with a mutation gate.

    Guarantees:
        - period_start <= period_end (enforced by PeriodService).
        - closed_at / locked_at come from an injected clock.
    """

    __tablename__ = "accounting_periods"

    __table_args__ = (
        Index("idx_period_ledger_dates", "ledger_id", "period_start", "period_end"),
        Index("idx_period_ledger_status", "ledger_id", "status"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledgers.id"),
        nullable=False,
    )

    # e.g. "2025-03", "2025-Q1"
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.name}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_sealed(self) -> bool:
        """Closed or locked."""
        return PeriodStatus(self.status) in SEALED_STATUSES

    def contains_date(self, check_date: date) -> bool:
        return self.period_start <= check_date <= self.period_end
