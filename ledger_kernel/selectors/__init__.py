"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.balance_selector import BalanceSelector
from ledger_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "BalanceSelector",
    "TransactionSelector",
]
