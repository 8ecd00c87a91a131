"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.payout_recorder import PayoutRecorder
from ledger_kernel.services.period_service import (
    PeriodLockGuard,
    PeriodService,
    period_bounds_for_month,
    period_bounds_for_quarter,
)
from ledger_kernel.services.reconciliation_service import ReconciliationMatcher
from ledger_kernel.services.reversal_service import ReversalService
from ledger_kernel.services.sale_recorder import SaleRecorder
from ledger_kernel.services.snapshot_service import SnapshotService
from ledger_kernel.services.transaction_writer import TransactionWriter

__all__ = [
    "AccountService",
    "LedgerService",
    "PayoutRecorder",
    "PeriodLockGuard",
    "PeriodService",
    "ReconciliationMatcher",
    "ReversalService",
    "SaleRecorder",
    "SnapshotService",
    "TransactionWriter",
    "period_bounds_for_month",
    "period_bounds_for_quarter",
]
