"""
TransactionWriter -- the single all-or-nothing write of a transaction.

Responsibility:
    Persists one ``TransactionDraft`` as a Transaction row, its balanced
    Entry rows and the matching increments to cached account balances.
    Everything happens inside one savepoint of the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  SaleRecorder, PayoutRecorder and
    ReversalService build drafts; this class is the only code that inserts
    Transactions and Entries or changes ``Account.balance``.

Invariants enforced:
    - Double entry: a draft whose debits differ from its credits is rejected
      before anything is written.
    - Idempotency: (ledger_id, reference_id) is unique.  A repeated
      reference returns the existing transaction with ``idempotent=True``.
      A concurrent duplicate that loses the unique-constraint race is rolled
      back to the savepoint and also reported as a replay.
    - Balance updates are single ``UPDATE ... SET balance = balance + :delta``
      statements in the same transaction as the entry inserts.  There is no
      read-modify-write of a balance.
    - Period guard: creation is rejected when the transaction date falls in
      a closed or locked period (checked after the replay lookup, so a
      retry of an already-recorded reference still succeeds).
    - Single currency: every account a draft touches carries the draft's
      currency.

Failure modes:
    - ValidationError for an empty draft or an invalid currency;
      CurrencyMismatchError when an account holds another currency (the
      savepoint is rolled back).
    - UnbalancedTransactionError before any write.
    - PeriodLockedError from the guard.
    - RecordingFailed for any other storage error.  The savepoint is rolled
      back, so the caller may retry with the same reference_id.

Audit relevance:
    ``transaction_written`` and ``transaction_replayed`` log events carry the
    reference id, the transaction id and the entry count.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import TransactionDraft, WriteResult
from ledger_kernel.exceptions import (
    CurrencyMismatchError,
    RecordingFailed,
    UnbalancedTransactionError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import (
    Entry,
    EntryType,
    Transaction,
    TransactionStatus,
)
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodLockGuard

logger = get_logger("services.transaction_writer")


class TransactionWriter(BaseService[Transaction]):
    """
    Atomic writer for transactions and entries.

    Contract:
        ``write`` either persists the whole draft (transaction, entries,
        balances) and flushes, or persists nothing.  It never commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        guard: PeriodLockGuard | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._accounts = AccountService(session)
        self._guard = guard or PeriodLockGuard(session)

    def find_existing(self, ledger_id: UUID, reference_id: str) -> Transaction | None:
        return self.session.execute(
            select(Transaction).where(
                Transaction.ledger_id == ledger_id,
                Transaction.reference_id == reference_id,
            )
        ).scalar_one_or_none()

    def write(self, draft: TransactionDraft, operation: str = "record_transaction") -> WriteResult:
        """
        Persist ``draft`` or return the existing transaction for its reference.

        Args:
            draft: Fully computed transaction with entry legs.
            operation: Name used in guard rejection logs.

        Returns:
            WriteResult.  ``balances`` maps account_key to the balance after
            this write (or the current balance on replay).
        """
        existing = self.find_existing(draft.ledger_id, draft.reference_id)
        if existing is not None:
            return self._replay(existing, draft)

        self._validate(draft)
        self._guard.assert_mutable(draft.ledger_id, draft.transaction_date, operation)

        currency = validate_currency(draft.currency)
        try:
            with self.session.begin_nested():
                tx, balances = self._insert(draft, currency)
        except IntegrityError as exc:
            winner = self.find_existing(draft.ledger_id, draft.reference_id)
            if winner is not None:
                logger.info(
                    "transaction_duplicate_race",
                    extra={"reference_id": draft.reference_id},
                )
                return self._replay(winner, draft)
            logger.error(
                "transaction_write_failed",
                extra={"reference_id": draft.reference_id, "error": str(exc.orig)},
            )
            raise RecordingFailed(draft.reference_id, "integrity constraint violated") from exc
        except SQLAlchemyError as exc:
            logger.error(
                "transaction_write_failed",
                extra={"reference_id": draft.reference_id, "error": type(exc).__name__},
                exc_info=True,
            )
            raise RecordingFailed(draft.reference_id, type(exc).__name__) from exc

        logger.info(
            "transaction_written",
            extra={
                "transaction_id": str(tx.id),
                "reference_id": draft.reference_id,
                "transaction_type": draft.transaction_type,
                "amount": draft.amount,
                "entry_count": len(draft.entries),
            },
        )
        return WriteResult(
            transaction_id=tx.id,
            reference_id=draft.reference_id,
            idempotent=False,
            balances=balances,
        )

    def _validate(self, draft: TransactionDraft) -> None:
        if not draft.entries:
            raise ValidationError("A transaction needs at least one entry", field="entries")
        debits, credits = draft.total_debits, draft.total_credits
        if debits != credits:
            raise UnbalancedTransactionError(draft.reference_id, debits, credits)

    def _insert(self, draft: TransactionDraft, currency: str) -> tuple[Transaction, dict[str, int]]:
        tx = Transaction(
            ledger_id=draft.ledger_id,
            reference_id=draft.reference_id,
            transaction_type=draft.transaction_type,
            status=TransactionStatus.COMPLETED,
            amount=draft.amount,
            currency=currency,
            transaction_date=draft.transaction_date,
            description=draft.description,
            metadata_=dict(draft.metadata),
            reverses_transaction_id=draft.reverses_transaction_id,
        )
        self.session.add(tx)
        self.session.flush()

        deltas: dict[UUID, int] = {}
        accounts: dict[UUID, Account] = {}
        for line_no, spec in enumerate(draft.entries, start=1):
            account = self._accounts.get_or_create(
                draft.ledger_id, spec.account_type, spec.entity_id, currency
            )
            if account.currency != currency:
                raise CurrencyMismatchError(account.currency, currency)
            tx.entries.append(
                Entry(
                    account=account,
                    account_id=account.id,
                    line_no=line_no,
                    entry_type=EntryType(spec.entry_type),
                    amount=spec.amount,
                )
            )
            accounts[account.id] = account
            deltas[account.id] = deltas.get(account.id, 0) + account.signed_amount(
                spec.entry_type, spec.amount
            )
        self.session.flush()

        balances: dict[str, int] = {}
        for account_id, delta in deltas.items():
            account = accounts[account_id]
            new_balance = self._increment_balance(account_id, delta)
            set_committed_value(account, "balance", new_balance)
            balances[account.account_key] = new_balance
        return tx, balances

    def _increment_balance(self, account_id: UUID, delta: int) -> int:
        """Atomic in-database increment; returns the balance after it."""
        return self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + delta)
            .returning(Account.balance)
            .execution_options(synchronize_session=False)
        ).scalar_one()

    def _replay(self, existing: Transaction, draft: TransactionDraft) -> WriteResult:
        if existing.amount != draft.amount:
            logger.warning(
                "reference_replayed_with_different_amount",
                extra={
                    "reference_id": draft.reference_id,
                    "transaction_id": str(existing.id),
                    "recorded_amount": existing.amount,
                    "replayed_amount": draft.amount,
                },
            )
        logger.info(
            "transaction_replayed",
            extra={
                "reference_id": draft.reference_id,
                "transaction_id": str(existing.id),
            },
        )
        balances = {e.account.account_key: e.account.balance for e in existing.entries}
        return WriteResult(
            transaction_id=existing.id,
            reference_id=existing.reference_id,
            idempotent=True,
            balances=balances,
        )
