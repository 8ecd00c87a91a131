"""
Module: ledger_kernel.selectors.balance_selector
Responsibility: Read-only balance checks that recompute everything from
    Entry rows and compare it with the cached ``Account.balance`` column.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Cached balance == signed sum of entries, signed by the account's
      normal side.  ``verify_account_balances`` lists every account where
      this does not hold.
    - Per transaction, debits == credits.  ``unbalanced_transactions`` lists
      every transaction where this does not hold.
    - Over a whole ledger, total debits == total credits
      (``check_balance_equation``).

Failure modes:
    - Returns empty lists and zero totals for an empty ledger.

Audit relevance:
    These are the checks an operator runs after an incident.  A non-empty
    result means a write bypassed TransactionWriter.
"""

from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import BalanceDrift, BalanceEquation
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import Account, NormalBalance
from ledger_kernel.models.transaction import Entry, EntryType, Transaction
from ledger_kernel.selectors.base import BaseSelector


def _side_sums():
    debit_sum = func.coalesce(
        func.sum(case((Entry.entry_type == EntryType.DEBIT.value, Entry.amount), else_=0)), 0
    ).label("debit_total")
    credit_sum = func.coalesce(
        func.sum(case((Entry.entry_type == EntryType.CREDIT.value, Entry.amount), else_=0)), 0
    ).label("credit_total")
    return debit_sum, credit_sum


def _signed(normal_balance: str, debits: int, credits: int) -> int:
    if getattr(normal_balance, "value", normal_balance) == NormalBalance.DEBIT.value:
        return int(debits) - int(credits)
    return int(credits) - int(debits)


class BalanceSelector(BaseSelector[Entry]):
    """Derived balances and ledger-wide consistency checks."""

    def __init__(self, session: Session):
        super().__init__(session)

    def derived_balance(self, account_id: UUID) -> int:
        """Balance of one account recomputed from its entries."""
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))

        debit_sum, credit_sum = _side_sums()
        debits, credits = self.session.execute(
            select(debit_sum, credit_sum).where(Entry.account_id == account_id)
        ).one()
        return _signed(account.normal_balance, debits, credits)

    def verify_account_balances(self, ledger_id: UUID) -> list[BalanceDrift]:
        """Accounts whose cached balance disagrees with their entries."""
        debit_sum, credit_sum = _side_sums()
        rows = self.session.execute(
            select(
                Account.id,
                Account.account_key,
                Account.normal_balance,
                Account.balance,
                debit_sum,
                credit_sum,
            )
            .outerjoin(Entry, Entry.account_id == Account.id)
            .where(Account.ledger_id == ledger_id)
            .group_by(Account.id, Account.account_key, Account.normal_balance, Account.balance)
            .order_by(Account.account_key)
        ).all()

        drifts = []
        for account_id, key, normal_balance, cached, debits, credits in rows:
            derived = _signed(normal_balance, debits, credits)
            if derived != cached:
                drifts.append(
                    BalanceDrift(
                        account_id=account_id,
                        account_key=key,
                        cached_balance=cached,
                        derived_balance=derived,
                    )
                )
        return drifts

    def check_balance_equation(self, ledger_id: UUID) -> BalanceEquation:
        """Total debits and credits over every entry in the ledger."""
        debit_sum, credit_sum = _side_sums()
        debits, credits = self.session.execute(
            select(debit_sum, credit_sum)
            .join(Transaction, Transaction.id == Entry.transaction_id)
            .where(Transaction.ledger_id == ledger_id)
        ).one()
        return BalanceEquation(total_debits=int(debits), total_credits=int(credits))

    def unbalanced_transactions(self, ledger_id: UUID) -> list[UUID]:
        """Ids of transactions whose entries do not balance (expected empty)."""
        debit_sum, credit_sum = _side_sums()
        rows = self.session.execute(
            select(Transaction.id, debit_sum, credit_sum)
            .join(Entry, Entry.transaction_id == Transaction.id)
            .where(Transaction.ledger_id == ledger_id)
            .group_by(Transaction.id)
        ).all()
        return [tx_id for tx_id, debits, credits in rows if int(debits) != int(credits)]
