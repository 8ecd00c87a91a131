"""
ReconciliationMatcher -- links ledger transactions to bank activity.

Responsibility:
    Creates and removes BankMatch rows, moves the transaction between
    ``completed`` and ``reconciled`` and keeps the reconciliation marker in
    the transaction metadata in step.  Also proposes automatic matches and
    lists what is still unmatched.

Architecture position:
    Kernel > Services -- imperative shell.  The pairing policy for
    auto-match is pure and lives in domain/matching.py; every applied match
    goes through ``match`` so it passes the same guard.

Invariants enforced:
    - At most one BankMatch per transaction (unique constraint plus upsert).
    - match and unmatch never touch amounts or entries.  They change only
      the transaction status, its metadata marker and the BankMatch row.
    - Both are rejected for transactions dated in a closed or locked period.
    - The transaction row is locked (SELECT ... FOR UPDATE) for the whole
      match/unmatch so concurrent reconcile calls serialize per transaction.
    - unmatch(match(tx)) restores the previous status and metadata.
    - Auto-match never breaks ties.

Failure modes:
    - TransactionNotFoundError for an id outside the ledger.
    - PeriodLockedError from the guard.
    - ValidationError when reconciling a voided or reversed transaction.
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AutoMatchResult,
    MatchResult,
    SkippedMatch,
    TransactionInfo,
)
from ledger_kernel.domain.matching import BankLine, MatchCandidate, plan_auto_matches
from ledger_kernel.domain.metadata import ReconciliationMarker, with_reconciliation
from ledger_kernel.exceptions import (
    PeriodLockedError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.bank_match import BankMatch, BankMatchStatus, MatchMethod
from ledger_kernel.models.transaction import Transaction, TransactionStatus
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodLockGuard

logger = get_logger("services.reconciliation")

UNMATCHED_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value)


def _status(tx: Transaction) -> str:
    return getattr(tx.status, "value", tx.status)


class ReconciliationMatcher(BaseService[BankMatch]):
    """
    Manual and automatic bank reconciliation.

    Contract:
        Every public method flushes within the caller's transaction and
        returns DTOs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        date_tolerance_days: int = 2,
        page_size: int = 100,
        max_page_size: int = 500,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._guard = PeriodLockGuard(session)
        self._tolerance = date_tolerance_days
        self._page_size = page_size
        self._max_page_size = max_page_size

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lock_transaction(self, ledger_id: UUID, transaction_id: UUID) -> Transaction:
        tx = self.session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id, Transaction.ledger_id == ledger_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    def _match_for(self, transaction_id: UUID) -> BankMatch | None:
        return self.session.execute(
            select(BankMatch).where(BankMatch.transaction_id == transaction_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # match / unmatch
    # ------------------------------------------------------------------

    def match(
        self,
        ledger_id: UUID,
        transaction_id: UUID,
        bank_transaction_id: str,
        method: MatchMethod = MatchMethod.MANUAL,
    ) -> MatchResult:
        """
        Link ``transaction_id`` to ``bank_transaction_id``.

        An existing match for the transaction is replaced.

        Raises:
            TransactionNotFoundError: Unknown transaction.
            PeriodLockedError: Transaction dated in a sealed period.
            ValidationError: Transaction is voided or reversed.
        """
        if not bank_transaction_id:
            raise ValidationError("bank_transaction_id is required", field="bank_transaction_id")

        with LogContext.bind(ledger_id=str(ledger_id), transaction_id=str(transaction_id)):
            tx = self._lock_transaction(ledger_id, transaction_id)
            self._guard.assert_mutable(ledger_id, tx.transaction_date, "reconcile_match")
            if tx.is_terminal:
                raise ValidationError(
                    f"Cannot reconcile a {_status(tx)} transaction", field="transaction_id"
                )

            now = self._clock.now()
            bank_match = self._upsert_match(ledger_id, tx.id, bank_transaction_id, method, now)

            marker = ReconciliationMarker(
                bank_match_id=str(bank_match.id),
                bank_transaction_id=bank_transaction_id,
                reconciled_at=now.isoformat(),
                method=getattr(method, "value", method),
            )
            tx.metadata_ = with_reconciliation(tx.metadata_, marker)
            tx.status = TransactionStatus.RECONCILED
            self.session.flush()

            logger.info(
                "transaction_matched",
                extra={
                    "bank_transaction_id": bank_transaction_id,
                    "bank_match_id": str(bank_match.id),
                    "match_method": marker.method,
                },
            )
            return MatchResult(
                success=True,
                transaction_id=tx.id,
                bank_transaction_id=bank_transaction_id,
                bank_match_id=bank_match.id,
                status=TransactionStatus.RECONCILED.value,
            )

    def _upsert_match(self, ledger_id, transaction_id, bank_transaction_id, method, now) -> BankMatch:
        bank_match = self._match_for(transaction_id)
        if bank_match is None:
            bank_match = BankMatch(
                ledger_id=ledger_id,
                transaction_id=transaction_id,
                bank_transaction_id=bank_transaction_id,
                status=BankMatchStatus.MATCHED,
                match_method=method,
                matched_at=now,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(bank_match)
                return bank_match
            except IntegrityError:
                # Lost the insert race; fall through and update the winner.
                bank_match = self._match_for(transaction_id)
                if bank_match is None:
                    raise

        bank_match.bank_transaction_id = bank_transaction_id
        bank_match.match_method = method
        bank_match.status = BankMatchStatus.MATCHED
        bank_match.matched_at = now
        return bank_match

    def unmatch(self, ledger_id: UUID, transaction_id: UUID) -> MatchResult:
        """
        Remove the transaction's bank match.

        Returns ``success=False`` when the transaction has no match.

        Raises:
            TransactionNotFoundError: Unknown transaction.
            PeriodLockedError: Transaction dated in a sealed period.
        """
        with LogContext.bind(ledger_id=str(ledger_id), transaction_id=str(transaction_id)):
            tx = self._lock_transaction(ledger_id, transaction_id)
            self._guard.assert_mutable(ledger_id, tx.transaction_date, "reconcile_unmatch")

            bank_match = self._match_for(tx.id)
            if bank_match is None:
                logger.info("unmatch_without_match")
                return MatchResult(success=False, transaction_id=tx.id, status=_status(tx))

            bank_transaction_id = bank_match.bank_transaction_id
            self.session.delete(bank_match)
            tx.metadata_ = with_reconciliation(tx.metadata_, None)
            if _status(tx) == TransactionStatus.RECONCILED.value:
                tx.status = TransactionStatus.COMPLETED
            self.session.flush()

            logger.info("transaction_unmatched", extra={"bank_transaction_id": bank_transaction_id})
            return MatchResult(
                success=True,
                transaction_id=tx.id,
                bank_transaction_id=bank_transaction_id,
                status=_status(tx),
            )

    # ------------------------------------------------------------------
    # Listing and auto-match
    # ------------------------------------------------------------------

    def _unmatched_query(self, ledger_id: UUID):
        return (
            select(Transaction)
            .outerjoin(BankMatch, BankMatch.transaction_id == Transaction.id)
            .where(
                Transaction.ledger_id == ledger_id,
                Transaction.status.in_(UNMATCHED_STATUSES),
                BankMatch.id.is_(None),
            )
        )

    def list_unmatched(self, ledger_id: UUID, limit: int | None = None) -> list[TransactionInfo]:
        """Unmatched, non-terminal transactions, most recent first, capped."""
        if limit is None:
            limit = self._page_size
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        limit = min(limit, self._max_page_size)

        rows = self.session.execute(
            self._unmatched_query(ledger_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
            .limit(limit)
        ).scalars().all()
        return [TransactionInfo.from_model(tx) for tx in rows]

    def auto_match(
        self,
        ledger_id: UUID,
        bank_lines: list[BankLine],
        tolerance_days: int | None = None,
        dry_run: bool = False,
    ) -> AutoMatchResult:
        """
        Match bank lines to unmatched transactions by exact amount within
        the date tolerance.

        Ambiguous candidates are returned in ``plan.ambiguous`` and left for
        a manual match.  Bank ids that are already matched, and proposals
        whose transaction sits in a sealed period, are reported in
        ``skipped``.
        """
        tolerance = self._tolerance if tolerance_days is None else tolerance_days
        if tolerance < 0:
            raise ValidationError("tolerance_days must be >= 0", field="tolerance_days")
        for line in bank_lines:
            if not isinstance(line.amount, int) or isinstance(line.amount, bool):
                raise ValidationError(
                    f"Bank line amount must be integer cents: {line.amount!r}", field="bank_lines"
                )

        skipped: list[SkippedMatch] = []
        already = set(
            self.session.execute(
                select(BankMatch.bank_transaction_id).where(
                    BankMatch.ledger_id == ledger_id,
                    BankMatch.bank_transaction_id.in_([b.bank_transaction_id for b in bank_lines]),
                )
            ).scalars()
        )
        fresh_lines = []
        for line in bank_lines:
            if line.bank_transaction_id in already:
                skipped.append(SkippedMatch(line.bank_transaction_id, None, "already_matched"))
            else:
                fresh_lines.append(line)

        candidates: list[MatchCandidate] = []
        if fresh_lines:
            window_start = min(b.posted_date for b in fresh_lines)
            window_end = max(b.posted_date for b in fresh_lines)
            rows = self.session.execute(
                self._unmatched_query(ledger_id).where(
                    and_(
                        Transaction.transaction_date >= window_start - timedelta(days=tolerance),
                        Transaction.transaction_date <= window_end + timedelta(days=tolerance),
                    )
                )
            ).scalars().all()
            candidates = [
                MatchCandidate(
                    transaction_id=tx.id,
                    reference_id=tx.reference_id,
                    amount=tx.amount,
                    transaction_date=tx.transaction_date,
                )
                for tx in rows
            ]

        try:
            plan = plan_auto_matches(fresh_lines, candidates, tolerance)
        except ValueError as exc:
            raise ValidationError(str(exc), field="bank_lines")

        matched: list[MatchResult] = []
        if not dry_run:
            for proposal in plan.proposals:
                try:
                    matched.append(
                        self.match(
                            ledger_id,
                            proposal.transaction_id,
                            proposal.bank_transaction_id,
                            method=MatchMethod.AUTO,
                        )
                    )
                except PeriodLockedError:
                    skipped.append(
                        SkippedMatch(
                            proposal.bank_transaction_id, proposal.transaction_id, "period_locked"
                        )
                    )

        logger.info(
            "auto_match_completed",
            extra={
                "ledger_id": str(ledger_id),
                "bank_line_count": len(bank_lines),
                "proposed": len(plan.proposals),
                "matched": len(matched),
                "ambiguous": len(plan.ambiguous),
                "skipped": len(skipped),
                "dry_run": dry_run,
            },
        )
        return AutoMatchResult(
            plan=plan,
            matched=tuple(matched),
            skipped=tuple(skipped),
            dry_run=dry_run,
        )
