"""
PeriodService and PeriodLockGuard -- accounting period lifecycle and the
mutation gate over sealed periods.

Responsibility:
    PeriodService creates, closes and locks accounting periods.
    PeriodLockGuard answers one question for every mutating operation: does
    this date fall inside a closed or locked period of this ledger?

Architecture position:
    Kernel > Services -- imperative shell.  The guard is called by
    TransactionWriter (creation, including backdated creation),
    ReconciliationMatcher (match, unmatch) and ReversalService before any
    write.

Invariants enforced:
    - No transaction dated within a CLOSED or LOCKED period is created,
      reconciled, unmatched or reversed.
    - The guard reads the period table on every call.  Nothing is cached, so
      a close committed by another session is seen by the next check.
    - Periods of one ledger never overlap.
    - Status moves OPEN -> CLOSED -> LOCKED (or OPEN -> LOCKED) and never
      regresses.  Close and lock take a row lock to serialize concurrent
      callers.

Failure modes:
    - PeriodLockedError (guard) naming the sealed period.
    - PeriodOverlapError on create.
    - PeriodTransitionError on close/lock from the wrong status.
    - PeriodNotFoundError for an unknown period id.

Audit relevance:
    Guard rejections are logged at WARNING with the operation and the
    period id; close and lock are logged at INFO.
"""

import calendar
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import PeriodInfo
from ledger_kernel.exceptions import (
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodTransitionError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import (
    SEALED_STATUSES,
    AccountingPeriod,
    PeriodStatus,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")


def period_bounds_for_month(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be 1..12, got {month}", field="month")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def period_bounds_for_quarter(year: int, quarter: int) -> tuple[date, date]:
    """First and last day of a calendar quarter (1..4)."""
    if not 1 <= quarter <= 4:
        raise ValidationError(f"quarter must be 1..4, got {quarter}", field="quarter")
    first_month = (quarter - 1) * 3 + 1
    start, _ = period_bounds_for_month(year, first_month)
    _, end = period_bounds_for_month(year, first_month + 2)
    return start, end


class PeriodLockGuard:
    """
    Read-only check of a date against the sealed periods of a ledger.

    Contract:
        ``assert_mutable`` returns normally iff no CLOSED or LOCKED period of
        the ledger contains the date.  It never writes.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_sealed_period(self, ledger_id: UUID, check_date: date) -> AccountingPeriod | None:
        return self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.ledger_id == ledger_id,
                AccountingPeriod.period_start <= check_date,
                AccountingPeriod.period_end >= check_date,
                AccountingPeriod.status.in_([s.value for s in SEALED_STATUSES]),
            )
            .order_by(AccountingPeriod.period_start)
            .limit(1)
        ).scalar_one_or_none()

    def is_mutable(self, ledger_id: UUID, check_date: date) -> bool:
        return self.find_sealed_period(ledger_id, check_date) is None

    def assert_mutable(self, ledger_id: UUID, check_date: date, operation: str) -> None:
        """
        Raises:
            PeriodLockedError: ``check_date`` falls in a closed or locked period.
        """
        period = self.find_sealed_period(ledger_id, check_date)
        if period is None:
            return

        status = getattr(period.status, "value", period.status)
        logger.warning(
            "period_lock_rejected",
            extra={
                "ledger_id": str(ledger_id),
                "period_id": str(period.id),
                "period_status": status,
                "checked_date": check_date.isoformat(),
                "operation": operation,
            },
        )
        raise PeriodLockedError(str(period.id), status, check_date.isoformat())


class PeriodService(BaseService[AccountingPeriod]):
    """
    Accounting period lifecycle.

    Contract:
        Returns frozen ``PeriodInfo`` DTOs.  Flushes within the caller's
        transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_period(
        self,
        ledger_id: UUID,
        name: str,
        period_start: date,
        period_end: date,
    ) -> PeriodInfo:
        """
        Create an OPEN period.

        Raises:
            ValidationError: If period_start > period_end.
            PeriodOverlapError: If the range overlaps an existing period.
        """
        if period_start > period_end:
            raise ValidationError(
                f"period_start ({period_start}) cannot be after period_end ({period_end})",
                field="period_start",
            )

        self._validate_no_overlap(ledger_id, period_start, period_end)

        period = AccountingPeriod(
            ledger_id=ledger_id,
            name=name,
            period_start=period_start,
            period_end=period_end,
            status=PeriodStatus.OPEN,
        )
        self.session.add(period)
        self.session.flush()

        logger.info(
            "period_created",
            extra={
                "ledger_id": str(ledger_id),
                "period_id": str(period.id),
                "period_name": name,
                "period_start": str(period_start),
                "period_end": str(period_end),
            },
        )
        return PeriodInfo.from_model(period)

    def create_month(self, ledger_id: UUID, year: int, month: int) -> PeriodInfo:
        start, end = period_bounds_for_month(year, month)
        return self.create_period(ledger_id, f"{year:04d}-{month:02d}", start, end)

    def create_quarter(self, ledger_id: UUID, year: int, quarter: int) -> PeriodInfo:
        start, end = period_bounds_for_quarter(year, quarter)
        return self.create_period(ledger_id, f"{year:04d}-Q{quarter}", start, end)

    def _validate_no_overlap(self, ledger_id: UUID, period_start: date, period_end: date) -> None:
        # Two ranges overlap iff start1 <= end2 and start2 <= end1
        overlapping = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.ledger_id == ledger_id,
                AccountingPeriod.period_start <= period_end,
                AccountingPeriod.period_end >= period_start,
            )
            .order_by(AccountingPeriod.period_start)
            .limit(1)
        ).scalar_one_or_none()

        if overlapping is not None:
            raise PeriodOverlapError(
                existing_period_id=str(overlapping.id),
                overlap_start=str(max(period_start, overlapping.period_start)),
                overlap_end=str(min(period_end, overlapping.period_end)),
            )

    def _get_for_update(self, ledger_id: UUID, period_id: UUID) -> AccountingPeriod:
        period = self.session.execute(
            select(AccountingPeriod)
            .where(AccountingPeriod.id == period_id, AccountingPeriod.ledger_id == ledger_id)
            .with_for_update()
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def get_period(self, ledger_id: UUID, period_id: UUID) -> PeriodInfo:
        period = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.id == period_id,
                AccountingPeriod.ledger_id == ledger_id,
            )
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return PeriodInfo.from_model(period)

    def list_periods(self, ledger_id: UUID) -> list[PeriodInfo]:
        periods = self.session.execute(
            select(AccountingPeriod)
            .where(AccountingPeriod.ledger_id == ledger_id)
            .order_by(AccountingPeriod.period_start)
        ).scalars().all()
        return [PeriodInfo.from_model(p) for p in periods]

    def close_period(self, ledger_id: UUID, period_id: UUID) -> PeriodInfo:
        """
        Close an OPEN period.

        Raises:
            PeriodNotFoundError: Unknown period.
            PeriodTransitionError: Period is already closed or locked.
        """
        period = self._get_for_update(ledger_id, period_id)
        status = getattr(period.status, "value", period.status)
        if status != PeriodStatus.OPEN.value:
            raise PeriodTransitionError(str(period_id), status, PeriodStatus.CLOSED.value)

        period.status = PeriodStatus.CLOSED
        period.closed_at = self._clock.now()
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"ledger_id": str(ledger_id), "period_id": str(period_id)},
        )
        return PeriodInfo.from_model(period)

    def lock_period(self, ledger_id: UUID, period_id: UUID) -> PeriodInfo:
        """
        Lock an OPEN or CLOSED period permanently.

        Raises:
            PeriodNotFoundError: Unknown period.
            PeriodTransitionError: Period is already locked.
        """
        period = self._get_for_update(ledger_id, period_id)
        status = getattr(period.status, "value", period.status)
        if status == PeriodStatus.LOCKED.value:
            raise PeriodTransitionError(str(period_id), status, PeriodStatus.LOCKED.value)

        now = self._clock.now()
        if period.closed_at is None:
            period.closed_at = now
        period.status = PeriodStatus.LOCKED
        period.locked_at = now
        self.session.flush()

        logger.info(
            "period_locked",
            extra={
                "ledger_id": str(ledger_id),
                "period_id": str(period_id),
                "from_status": status,
            },
        )
        return PeriodInfo.from_model(period)
