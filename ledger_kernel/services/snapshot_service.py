"""
SnapshotService -- freezes reconciliation state and proves it unchanged.

Responsibility:
    ``create_snapshot`` captures the matched and unmatched transactions of a
    date window into a ReconciliationSnapshot whose ``integrity_hash`` is
    SHA-256 over the canonical JSON of ``snapshot_data``.  ``get_snapshot``
    and ``verify`` recompute that hash from the stored data and report
    whether it still agrees.

Architecture position:
    Kernel > Services -- imperative shell.  Hashing goes through
    utils/hashing.py, the one place that defines the canonical form.

Invariants enforced:
    - snapshot_data is normalized through canonical JSON before it is both
      hashed and stored, so a freshly written snapshot always verifies.
    - Snapshots are append-only.  A second freeze of the same window gets
      the next ``version``; the latest snapshot is the highest version.
    - A hash mismatch is reported (and logged at ERROR), never repaired.
    - Creating a snapshot does not lock or close the period.

Failure modes:
    - ValidationError when no window is given or start > end.
    - PeriodNotFoundError for an unknown period id.
    - SnapshotNotFoundError when nothing has been frozen for the window.
    - IntegrityMismatchError from ``verify_or_raise``.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import SnapshotInfo, SnapshotSummary, SnapshotVerification
from ledger_kernel.exceptions import (
    IntegrityMismatchError,
    PeriodNotFoundError,
    RecordingFailed,
    SnapshotNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.bank_match import BankMatch
from ledger_kernel.models.reconciliation_snapshot import ReconciliationSnapshot
from ledger_kernel.models.transaction import Transaction, TransactionStatus
from ledger_kernel.services.base import BaseService
from ledger_kernel.utils.hashing import hash_payload, to_json_native

logger = get_logger("services.snapshot")

# Window start used when a snapshot is requested "as of" a date.
OPEN_WINDOW_START = date(1900, 1, 1)

_VERSION_ATTEMPTS = 3

# Terminal transactions need no bank counterpart.
EXCLUDED_FROM_UNMATCHED = (TransactionStatus.VOIDED.value, TransactionStatus.REVERSED.value)


class SnapshotService(BaseService[ReconciliationSnapshot]):
    """
    Reconciliation snapshots.

    Contract:
        Returns ``SnapshotInfo`` / ``SnapshotVerification`` DTOs and flushes
        within the caller's transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Window resolution
    # ------------------------------------------------------------------

    def _resolve_window(
        self,
        ledger_id: UUID,
        period_id: UUID | None,
        period_start: date | None,
        period_end: date | None,
        as_of_date: date | None,
    ) -> tuple[UUID | None, date, date]:
        if period_id is not None:
            period = self.session.execute(
                select(AccountingPeriod).where(
                    AccountingPeriod.id == period_id,
                    AccountingPeriod.ledger_id == ledger_id,
                )
            ).scalar_one_or_none()
            if period is None:
                raise PeriodNotFoundError(str(period_id))
            return period.id, period.period_start, period.period_end

        if period_start is not None and period_end is not None:
            if period_start > period_end:
                raise ValidationError(
                    f"period_start ({period_start}) cannot be after period_end ({period_end})",
                    field="period_start",
                )
            return None, period_start, period_end

        if as_of_date is not None:
            return None, OPEN_WINDOW_START, as_of_date

        raise ValidationError(
            "Provide period_id, period_start and period_end, or as_of_date",
            field="period_start",
        )

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def _collect(self, ledger_id: UUID, start: date, end: date) -> tuple[list, list]:
        in_window = (
            Transaction.ledger_id == ledger_id,
            Transaction.transaction_date >= start,
            Transaction.transaction_date <= end,
        )
        matched_rows = self.session.execute(
            select(Transaction, BankMatch)
            .join(BankMatch, BankMatch.transaction_id == Transaction.id)
            .where(*in_window)
            .order_by(Transaction.transaction_date, Transaction.reference_id)
        ).all()
        matched = [
            {
                "transaction_id": tx.id,
                "bank_transaction_id": bm.bank_transaction_id,
                "amount": tx.amount,
                "reference": tx.reference_id,
                "matched_at": bm.matched_at,
            }
            for tx, bm in matched_rows
        ]

        unmatched_rows = self.session.execute(
            select(Transaction)
            .outerjoin(BankMatch, BankMatch.transaction_id == Transaction.id)
            .where(
                *in_window,
                BankMatch.id.is_(None),
                Transaction.status.not_in(EXCLUDED_FROM_UNMATCHED),
            )
            .order_by(Transaction.transaction_date, Transaction.reference_id)
        ).scalars().all()
        unmatched = [
            {
                "transaction_id": tx.id,
                "amount": tx.amount,
                "reference": tx.reference_id,
                "date": tx.transaction_date,
            }
            for tx in unmatched_rows
        ]
        return matched, unmatched

    def _next_version(self, ledger_id: UUID, start: date, end: date) -> int:
        current = self.session.execute(
            select(func.max(ReconciliationSnapshot.version)).where(
                ReconciliationSnapshot.ledger_id == ledger_id,
                ReconciliationSnapshot.period_start == start,
                ReconciliationSnapshot.period_end == end,
            )
        ).scalar()
        return (current or 0) + 1

    def create_snapshot(
        self,
        ledger_id: UUID,
        period_id: UUID | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        as_of_date: date | None = None,
    ) -> SnapshotInfo:
        """
        Freeze the reconciliation state of a window.

        The window is the period's range when ``period_id`` is given, else
        [period_start, period_end], else everything up to ``as_of_date``.
        """
        resolved_period_id, start, end = self._resolve_window(
            ledger_id, period_id, period_start, period_end, as_of_date
        )
        matched, unmatched = self._collect(ledger_id, start, end)
        summary = SnapshotSummary(
            total_matched=len(matched),
            total_unmatched=len(unmatched),
            matched_amount=sum(m["amount"] for m in matched),
            unmatched_amount=sum(u["amount"] for u in unmatched),
        )
        created_at = self._clock.now()

        snapshot_data: dict[str, Any] = to_json_native({
            "period_start": start,
            "period_end": end,
            "created_at": created_at,
            "matched_transactions": matched,
            "unmatched_transactions": unmatched,
            "summary": summary.to_dict(),
        })
        integrity_hash = hash_payload(snapshot_data)

        for attempt in range(1, _VERSION_ATTEMPTS + 1):
            snapshot = ReconciliationSnapshot(
                ledger_id=ledger_id,
                period_id=resolved_period_id,
                period_start=start,
                period_end=end,
                version=self._next_version(ledger_id, start, end),
                snapshot_data=snapshot_data,
                integrity_hash=integrity_hash,
                matched_count=summary.total_matched,
                unmatched_count=summary.total_unmatched,
                matched_total=summary.matched_amount,
                unmatched_total=summary.unmatched_amount,
                created_at=created_at,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(snapshot)
                break
            except IntegrityError:
                logger.info(
                    "snapshot_version_conflict",
                    extra={"ledger_id": str(ledger_id), "attempt": attempt},
                )
        else:
            raise RecordingFailed(
                f"snapshot:{start.isoformat()}:{end.isoformat()}",
                "could not allocate a snapshot version",
            )

        logger.info(
            "snapshot_created",
            extra={
                "ledger_id": str(ledger_id),
                "snapshot_id": str(snapshot.id),
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "version": snapshot.version,
                "integrity_hash": integrity_hash,
                "matched_count": summary.total_matched,
                "unmatched_count": summary.total_unmatched,
            },
        )
        return SnapshotInfo.from_model(snapshot)

    # ------------------------------------------------------------------
    # Retrieval and verification
    # ------------------------------------------------------------------

    def _check(self, snapshot: ReconciliationSnapshot) -> SnapshotVerification:
        computed = hash_payload(snapshot.snapshot_data)
        valid = computed == snapshot.integrity_hash
        if not valid:
            logger.error(
                "snapshot_integrity_mismatch",
                extra={
                    "snapshot_id": str(snapshot.id),
                    "ledger_id": str(snapshot.ledger_id),
                    "stored_hash": snapshot.integrity_hash,
                    "computed_hash": computed,
                },
            )
        return SnapshotVerification(
            snapshot=SnapshotInfo.from_model(snapshot),
            integrity_valid=valid,
            computed_hash=computed,
        )

    def _latest(
        self,
        ledger_id: UUID,
        period_id: UUID | None,
        period_start: date | None,
        period_end: date | None,
    ) -> ReconciliationSnapshot:
        stmt = select(ReconciliationSnapshot).where(ReconciliationSnapshot.ledger_id == ledger_id)
        if period_id is not None:
            stmt = stmt.where(ReconciliationSnapshot.period_id == period_id)
            key = str(period_id)
        elif period_start is not None and period_end is not None:
            stmt = stmt.where(
                ReconciliationSnapshot.period_start == period_start,
                ReconciliationSnapshot.period_end == period_end,
            )
            key = f"{period_start.isoformat()}..{period_end.isoformat()}"
        else:
            raise ValidationError(
                "Provide period_id or period_start and period_end", field="period_start"
            )

        snapshot = self.session.execute(
            stmt.order_by(
                ReconciliationSnapshot.version.desc(),
                ReconciliationSnapshot.created_at.desc(),
            ).limit(1)
        ).scalar_one_or_none()
        if snapshot is None:
            raise SnapshotNotFoundError(key)
        return snapshot

    def get_snapshot(
        self,
        ledger_id: UUID,
        period_id: UUID | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> SnapshotVerification:
        """Latest snapshot for the period, with its integrity re-checked."""
        return self._check(self._latest(ledger_id, period_id, period_start, period_end))

    def verify(self, ledger_id: UUID, snapshot_id: UUID) -> SnapshotVerification:
        snapshot = self.session.execute(
            select(ReconciliationSnapshot).where(
                ReconciliationSnapshot.id == snapshot_id,
                ReconciliationSnapshot.ledger_id == ledger_id,
            )
        ).scalar_one_or_none()
        if snapshot is None:
            raise SnapshotNotFoundError(str(snapshot_id))
        return self._check(snapshot)

    def verify_or_raise(self, ledger_id: UUID, snapshot_id: UUID) -> SnapshotInfo:
        """
        Raises:
            IntegrityMismatchError: The stored data no longer hashes to the
                stored integrity_hash.
        """
        result = self.verify(ledger_id, snapshot_id)
        if not result.integrity_valid:
            raise IntegrityMismatchError(
                str(snapshot_id), result.snapshot.integrity_hash, result.computed_hash
            )
        return result.snapshot

    def list_snapshots(self, ledger_id: UUID, period_start: date, period_end: date) -> list[SnapshotInfo]:
        rows = self.session.execute(
            select(ReconciliationSnapshot)
            .where(
                ReconciliationSnapshot.ledger_id == ledger_id,
                ReconciliationSnapshot.period_start == period_start,
                ReconciliationSnapshot.period_end == period_end,
            )
            .order_by(ReconciliationSnapshot.version)
        ).scalars().all()
        return [SnapshotInfo.from_model(s) for s in rows]
