"""
SaleRecorder -- validates a sale, splits the revenue and records it.

Responsibility:
    Turns a ``SaleRequest`` into a balanced four-leg transaction:

        Dr cash                        gross
        Cr creator_balance (creator)   creator share
        Cr platform_revenue            platform share
        Cr processing_fees             fee (only when fee > 0)

    and returns the transaction id, the split breakdown and the creator's
    resulting balance.

Architecture position:
    Kernel > Services -- imperative shell.  Pure split logic lives in
    domain/split.py; persistence goes through TransactionWriter.

Invariants enforced:
    - Validation and the split run before any write.
    - creator + platform + fee == gross to the cent.
    - A repeated reference_id is an idempotent replay, not a failure.

Failure modes:
    - ValidationError (CurrencyMismatchError for a currency other than the
      ledger's), LedgerNotFoundError, PeriodLockedError,
      RecordingFailed (see TransactionWriter).
"""

import time
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntrySpec, SaleRequest, SaleResult, TransactionDraft
from ledger_kernel.domain.metadata import SaleMetadata, to_json
from ledger_kernel.domain.split import calculate_split, resolve_creator_percent
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.transaction import EntryType, TransactionType
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.sale_recorder")


class SaleRecorder:
    """
    Records creator sales.

    Usage:
        recorder = SaleRecorder(session, clock, fallback_percent=Decimal("80"))
        result = recorder.record_sale(SaleRequest(...))
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        fallback_percent: int | Decimal = Decimal("80"),
        auto_commit: bool = False,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._fallback_percent = fallback_percent
        self._auto_commit = auto_commit
        self._ledgers = LedgerService(session)
        self._accounts = AccountService(session)
        self._writer = TransactionWriter(session, self._clock)

    def record_sale(self, request: SaleRequest) -> SaleResult:
        """
        Record one sale.

        Postconditions:
            - On a new reference: one Transaction of type ``sale`` with
              balanced entries exists and the three or four touched account
              balances are incremented.
            - On a known reference: nothing is written and the result has
              ``idempotent=True`` and ``split=None``.
        """
        with LogContext.ledger_write(request.ledger_id, request.reference_id):
            t0 = time.monotonic()
            try:
                result = self._do_record(request)
                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "sale_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            with LogContext.bind(transaction_id=result.transaction_id):
                if result.idempotent:
                    logger.info("sale_replayed", extra={"duration_ms": duration_ms})
                else:
                    logger.info(
                        "sale_recorded",
                        extra={
                            "creator_id": request.creator_id,
                            "gross_cents": request.amount_cents,
                            "creator_cents": result.split.creator_cents,
                            "platform_cents": result.split.platform_cents,
                            "fee_cents": result.split.fee_cents,
                            "duration_ms": duration_ms,
                        },
                    )
            return result

    def _do_record(self, request: SaleRequest) -> SaleResult:
        if not request.creator_id:
            raise ValidationError("creator_id is required", field="creator_id")
        if not request.reference_id:
            raise ValidationError("reference_id is required", field="reference_id")

        ledger = self._ledgers.require_active(request.ledger_id)
        currency = self._ledgers.resolve_currency(ledger, request.currency)

        creator_account = self._accounts.get_creator_account(request.ledger_id, request.creator_id)
        percent = resolve_creator_percent(
            explicit=request.creator_percent,
            account_custom_percent=(
                creator_account.custom_split_percent if creator_account is not None else None
            ),
            ledger_default_percent=ledger.default_creator_percent,
            fallback_percent=self._fallback_percent,
        )
        split = calculate_split(request.amount_cents, percent, request.processing_fee_cents)

        entries = [
            EntrySpec(AccountType.CASH.value, EntryType.DEBIT.value, split.gross_cents),
            EntrySpec(
                AccountType.CREATOR_BALANCE.value,
                EntryType.CREDIT.value,
                split.creator_cents,
                entity_id=request.creator_id,
            ),
            EntrySpec(AccountType.PLATFORM_REVENUE.value, EntryType.CREDIT.value, split.platform_cents),
        ]
        if split.fee_cents > 0:
            entries.append(
                EntrySpec(AccountType.PROCESSING_FEES.value, EntryType.CREDIT.value, split.fee_cents)
            )

        metadata = SaleMetadata(
            creator_id=request.creator_id,
            creator_percent=str(split.creator_percent),
            platform_percent=str(split.platform_percent),
            creator_amount=split.creator_cents,
            platform_amount=split.platform_cents,
            processing_fee=split.fee_cents,
            product_id=request.product_id,
            product_name=request.product_name,
            customer_email=request.customer_email,
            extra=dict(request.metadata),
        )

        draft = TransactionDraft(
            ledger_id=request.ledger_id,
            reference_id=request.reference_id,
            transaction_type=TransactionType.SALE.value,
            amount=split.gross_cents,
            currency=currency,
            transaction_date=request.transaction_date or self._clock.today(),
            entries=tuple(entries),
            metadata=to_json(metadata),
            description=request.description or f"Sale {request.reference_id}",
        )
        written = self._writer.write(draft, operation="record_sale")

        creator_key = f"{AccountType.CREATOR_BALANCE.value}:{request.creator_id}"
        creator_balance = written.balances.get(creator_key)
        if creator_balance is None:
            account = self._accounts.get_creator_account(request.ledger_id, request.creator_id)
            creator_balance = account.balance if account is not None else 0

        return SaleResult(
            transaction_id=written.transaction_id,
            reference_id=written.reference_id,
            idempotent=written.idempotent,
            split=None if written.idempotent else split,
            creator_balance=creator_balance,
        )
