"""
PayoutRecorder -- moves a creator's earned balance out to the creator.

Responsibility:
    Records a payout as

        Dr creator_balance (creator)   amount
        Cr cash                        amount

    after checking that the creator balance covers it.

Architecture position:
    Kernel > Services -- imperative shell, same shape as SaleRecorder.

Invariants enforced:
    - The creator balance never goes below zero through a payout.  The
      creator account row is locked (SELECT ... FOR UPDATE) while the
      balance is checked and decremented, so two concurrent payouts cannot
      both pass the check.
    - Idempotent on reference_id; a replay skips the balance check.

Failure modes:
    - ValidationError for a non-positive amount; CurrencyMismatchError for a
      currency other than the ledger's.
    - InsufficientBalanceError when amount exceeds the creator balance.
    - PeriodLockedError for a backdated payout into a sealed period.
    - RecordingFailed on storage errors.
"""


from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntrySpec, PayoutRequest, PayoutResult, TransactionDraft
from ledger_kernel.domain.metadata import PayoutMetadata, to_json
from ledger_kernel.exceptions import InsufficientBalanceError, ValidationError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.transaction import EntryType, TransactionType
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.payout_recorder")


class PayoutRecorder:
    """Records creator payouts."""

    def __init__(self, session: Session, clock: Clock | None = None, auto_commit: bool = False):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._ledgers = LedgerService(session)
        self._writer = TransactionWriter(session, self._clock)

    def record_payout(self, request: PayoutRequest) -> PayoutResult:
        with LogContext.ledger_write(request.ledger_id, request.reference_id):
            try:
                result = self._do_record(request)
                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                raise

            with LogContext.bind(transaction_id=result.transaction_id):
                logger.info(
                    "payout_replayed" if result.idempotent else "payout_recorded",
                    extra={
                        "creator_id": request.creator_id,
                        "amount": result.amount_cents,
                        "creator_balance": result.creator_balance,
                    },
                )
            return result

    def _lock_creator_account(self, request: PayoutRequest) -> Account | None:
        return self._session.execute(
            select(Account)
            .where(
                Account.ledger_id == request.ledger_id,
                Account.account_key == Account.key_for(
                    AccountType.CREATOR_BALANCE, request.creator_id
                ),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _do_record(self, request: PayoutRequest) -> PayoutResult:
        if not request.creator_id:
            raise ValidationError("creator_id is required", field="creator_id")
        amount = request.amount_cents
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("payout amount must be a positive integer", field="amount")

        ledger = self._ledgers.require_active(request.ledger_id)
        currency = self._ledgers.resolve_currency(ledger, request.currency)

        existing = self._writer.find_existing(request.ledger_id, request.reference_id)
        if existing is None:
            account = self._lock_creator_account(request)
            available = account.balance if account is not None else 0
            if amount > available:
                logger.warning(
                    "payout_insufficient_balance",
                    extra={
                        "creator_id": request.creator_id,
                        "available": available,
                        "requested": amount,
                    },
                )
                raise InsufficientBalanceError(request.creator_id, available, amount)

        metadata = PayoutMetadata(
            creator_id=request.creator_id,
            payout_method=request.payout_method,
            extra=dict(request.metadata),
        )
        draft = TransactionDraft(
            ledger_id=request.ledger_id,
            reference_id=request.reference_id,
            transaction_type=TransactionType.PAYOUT.value,
            amount=amount,
            currency=currency,
            transaction_date=request.transaction_date or self._clock.today(),
            entries=(
                EntrySpec(
                    AccountType.CREATOR_BALANCE.value,
                    EntryType.DEBIT.value,
                    amount,
                    entity_id=request.creator_id,
                ),
                EntrySpec(AccountType.CASH.value, EntryType.CREDIT.value, amount),
            ),
            metadata=to_json(metadata),
            description=request.description or f"Payout {request.reference_id}",
        )
        written = self._writer.write(draft, operation="record_payout")

        creator_key = Account.key_for(AccountType.CREATOR_BALANCE, request.creator_id)
        creator_balance = written.balances.get(creator_key, 0)
        return PayoutResult(
            transaction_id=written.transaction_id,
            reference_id=written.reference_id,
            idempotent=written.idempotent,
            amount_cents=existing.amount if existing is not None else amount,
            creator_balance=creator_balance,
        )
