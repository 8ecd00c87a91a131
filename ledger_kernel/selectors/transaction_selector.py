"""
Module: ledger_kernel.selectors.transaction_selector
Responsibility: Read-only transaction lookups for callers outside the write
    path (exports, reports, the API facade).
Architecture position: Kernel > Selectors.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountInfo, TransactionInfo
from ledger_kernel.exceptions import TransactionNotFoundError
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.selectors.base import BaseSelector


class TransactionSelector(BaseSelector[Transaction]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, ledger_id: UUID, transaction_id: UUID, with_entries: bool = True) -> TransactionInfo:
        tx = self.session.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.ledger_id == ledger_id,
            )
        ).scalar_one_or_none()
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return TransactionInfo.from_model(tx, with_entries=with_entries)

    def get_by_reference(self, ledger_id: UUID, reference_id: str) -> TransactionInfo | None:
        tx = self.session.execute(
            select(Transaction).where(
                Transaction.ledger_id == ledger_id,
                Transaction.reference_id == reference_id,
            )
        ).scalar_one_or_none()
        return TransactionInfo.from_model(tx, with_entries=True) if tx else None

    def list_transactions(
        self,
        ledger_id: UUID,
        start: date | None = None,
        end: date | None = None,
        transaction_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TransactionInfo]:
        """Transactions newest first, optionally filtered by date and type."""
        stmt = select(Transaction).where(Transaction.ledger_id == ledger_id)
        if start is not None:
            stmt = stmt.where(Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.transaction_date <= end)
        if transaction_type is not None:
            stmt = stmt.where(Transaction.transaction_type == transaction_type)
        rows = self.session.execute(
            stmt.order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [TransactionInfo.from_model(tx) for tx in rows]

    def list_accounts(self, ledger_id: UUID) -> list[AccountInfo]:
        rows = self.session.execute(
            select(Account).where(Account.ledger_id == ledger_id).order_by(Account.account_key)
        ).scalars().all()
        return [AccountInfo.from_model(a) for a in rows]
