"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import (
    Account,
    AccountType,
    NormalBalance,
    normal_balance_for,
)
from ledger_kernel.models.accounting_period import AccountingPeriod, PeriodStatus
from ledger_kernel.models.audit_log import AuditAction, AuditLogEntry
from ledger_kernel.models.bank_match import BankMatch, BankMatchStatus, MatchMethod
from ledger_kernel.models.ledger import Ledger, LedgerStatus
from ledger_kernel.models.reconciliation_snapshot import ReconciliationSnapshot
from ledger_kernel.models.transaction import (
    ALLOWED_STATUS_TRANSITIONS,
    Entry,
    EntryType,
    Transaction,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "normal_balance_for",
    "AccountingPeriod",
    "PeriodStatus",
    "AuditAction",
    "AuditLogEntry",
    "BankMatch",
    "BankMatchStatus",
    "MatchMethod",
    "Ledger",
    "LedgerStatus",
    "ReconciliationSnapshot",
    "ALLOWED_STATUS_TRANSITIONS",
    "Entry",
    "EntryType",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
]
