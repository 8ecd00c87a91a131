"""
ReversalService -- corrections as offsetting transactions.

Responsibility:
    Reverses a recorded transaction by writing a new ``reversal``
    transaction whose entries mirror the original with every side flipped,
    then marks the original ``reversed``.

Architecture position:
    Kernel > Services -- imperative shell.  Uses TransactionWriter for the
    offsetting write, so balances, idempotency and the period guard behave
    exactly as for any other transaction.

Invariants enforced:
    - History is never edited: the original keeps its entries and amounts;
      only its status and the ``reversed_by`` extension key change.
    - A transaction is reversed at most once.  The reversal reference is
      derived from the original id, so a retry cannot write a second one.
    - Neither the original's date nor the reversal's date may fall in a
      closed or locked period.

Failure modes:
    - TransactionNotFoundError, TransactionAlreadyReversedError,
      TransactionNotReversibleError, PeriodLockedError, RecordingFailed.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntrySpec, ReversalResult, TransactionDraft
from ledger_kernel.domain.metadata import (
    REVERSED_BY_KEY,
    ReversalMetadata,
    parse_metadata,
    to_json,
    with_extra,
)
from ledger_kernel.exceptions import (
    TransactionAlreadyReversedError,
    TransactionNotFoundError,
    TransactionNotReversibleError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.transaction import (
    EntryType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodLockGuard
from ledger_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.reversal")

_FLIPPED = {
    EntryType.DEBIT.value: EntryType.CREDIT.value,
    EntryType.CREDIT.value: EntryType.DEBIT.value,
}


def reversal_reference_for(transaction_id: UUID) -> str:
    return f"reversal_{transaction_id}"


class ReversalService(BaseService[Transaction]):
    """Writes offsetting transactions."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._guard = PeriodLockGuard(session)
        self._writer = TransactionWriter(session, self._clock, guard=self._guard)

    def reverse_transaction(
        self,
        ledger_id: UUID,
        transaction_id: UUID,
        reason: str,
    ) -> ReversalResult:
        """
        Reverse ``transaction_id``.

        Returns:
            ReversalResult.  ``warnings`` notes a reconciled original (its
            bank match stays in place and needs review) and any creator
            balance left negative by the reversal.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reversal reason is required", field="reason")

        with LogContext.bind(ledger_id=str(ledger_id), transaction_id=str(transaction_id)):
            original = self.session.execute(
                select(Transaction)
                .where(Transaction.id == transaction_id, Transaction.ledger_id == ledger_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if original is None:
                raise TransactionNotFoundError(str(transaction_id))

            self._check_reversible(original)
            self._guard.assert_mutable(ledger_id, original.transaction_date, "reverse_transaction")

            was_reconciled = original.is_reconciled
            metadata = ReversalMetadata(
                original_transaction_id=str(original.id),
                original_reference_id=original.reference_id,
                reason=reason.strip(),
            )
            draft = TransactionDraft(
                ledger_id=ledger_id,
                reference_id=reversal_reference_for(original.id),
                transaction_type=TransactionType.REVERSAL.value,
                amount=original.amount,
                currency=original.currency,
                transaction_date=self._clock.today(),
                entries=tuple(
                    EntrySpec(
                        account_type=getattr(e.account.account_type, "value", e.account.account_type),
                        entry_type=_FLIPPED[getattr(e.entry_type, "value", e.entry_type)],
                        amount=e.amount,
                        entity_id=e.account.entity_id,
                    )
                    for e in original.entries
                ),
                metadata=to_json(metadata),
                description=f"Reversal of {original.reference_id}: {reason.strip()}",
                reverses_transaction_id=original.id,
            )
            written = self._writer.write(draft, operation="reverse_transaction")
            if written.idempotent:
                raise TransactionAlreadyReversedError(str(original.id), str(written.transaction_id))

            original.status = TransactionStatus.REVERSED
            original.metadata_ = with_extra(
                original.metadata_, **{REVERSED_BY_KEY: str(written.transaction_id)}
            )
            self.session.flush()

            warnings: list[str] = []
            if was_reconciled:
                warnings.append(
                    "Original transaction was reconciled; its bank match remains and needs review"
                )
            creator_prefix = f"{AccountType.CREATOR_BALANCE.value}:"
            for key, balance in sorted(written.balances.items()):
                if key.startswith(creator_prefix) and balance < 0:
                    warnings.append(
                        f"Creator {key[len(creator_prefix):]} balance is negative ({balance}) "
                        "after reversal"
                    )

            logger.info(
                "transaction_reversed",
                extra={
                    "reversal_transaction_id": str(written.transaction_id),
                    "amount": original.amount,
                    "was_reconciled": was_reconciled,
                    "warning_count": len(warnings),
                },
            )
            return ReversalResult(
                original_transaction_id=original.id,
                reversal_transaction_id=written.transaction_id,
                reversal_reference_id=written.reference_id,
                reversed_amount=original.amount,
                warnings=tuple(warnings),
            )

    def _check_reversible(self, original: Transaction) -> None:
        status = TransactionStatus(original.status)
        if status == TransactionStatus.REVERSED:
            reversed_by = parse_metadata(original.metadata_).extra.get(REVERSED_BY_KEY)
            raise TransactionAlreadyReversedError(str(original.id), reversed_by)
        if TransactionType(original.transaction_type) == TransactionType.REVERSAL:
            raise TransactionNotReversibleError(
                str(original.id), "reversal transactions cannot be reversed"
            )
        if status not in (TransactionStatus.COMPLETED, TransactionStatus.RECONCILED):
            raise TransactionNotReversibleError(
                str(original.id), f"status {status.value} cannot be reversed"
            )
