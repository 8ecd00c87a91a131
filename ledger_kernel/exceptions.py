"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (the API facade, batch jobs, retrying clients) need to
react to failures precisely. A retrier must tell "safe to retry" from "your
input is wrong"; the API must turn a locked period into a 403 that names the
period. Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has an HTTP_STATUS attribute (transport mapping)
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        matcher.match(ledger_id, tx_id, "bank_123")
    except PeriodLockedError as e:
        return {"error": e.code, "period_id": e.period_id}, e.http_status

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- PostingError
    |   +-- DuplicateReferenceError
    |   +-- UnbalancedTransactionError
    |   +-- InsufficientBalanceError
    |   +-- RecordingFailed
    |
    +-- NotFoundError
    |   +-- LedgerNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- AccountNotFoundError
    |   +-- PeriodNotFoundError
    |   +-- SnapshotNotFoundError
    |
    +-- PeriodError
    |   +-- PeriodLockedError
    |   +-- PeriodOverlapError
    |   +-- PeriodTransitionError
    |
    +-- ReversalError
    |   +-- TransactionAlreadyReversedError
    |   +-- TransactionNotReversibleError
    |
    +-- IntegrityCheckError
    |   +-- IntegrityMismatchError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | HTTP | When Raised
-------------|-----------------------------|------|------------------------------
Validation   | VALIDATION_ERROR            | 400  | Malformed/out-of-range input
             | INVALID_CURRENCY            | 400  | Not a recognised ISO 4217 code
             | CURRENCY_MISMATCH           | 400  | Currency differs from the ledger
-------------|-----------------------------|------|------------------------------
Posting      | DUPLICATE_REFERENCE         | 409  | reference_id replay (success)
             | UNBALANCED_TRANSACTION      | 500  | Debits != credits before commit
             | INSUFFICIENT_BALANCE        | 400  | Payout exceeds creator balance
             | RECORDING_FAILED            | 500  | Storage failure, safe to retry
-------------|-----------------------------|------|------------------------------
Lookup       | LEDGER_NOT_FOUND            | 404  | Unknown or inactive ledger
             | TRANSACTION_NOT_FOUND       | 404  | Unknown transaction
             | ACCOUNT_NOT_FOUND           | 404  | Unknown account
             | PERIOD_NOT_FOUND            | 404  | Unknown accounting period
             | SNAPSHOT_NOT_FOUND          | 404  | No snapshot for the period
-------------|-----------------------------|------|------------------------------
Period       | PERIOD_LOCKED               | 403  | Mutation inside closed period
             | PERIOD_OVERLAP              | 400  | Date range conflicts
             | PERIOD_TRANSITION_INVALID   | 400  | Illegal status change
-------------|-----------------------------|------|------------------------------
Reversal     | TRANSACTION_ALREADY_REVERSED| 409  | Second reversal attempt
             | TRANSACTION_NOT_REVERSIBLE  | 400  | Voided or a reversal itself
-------------|-----------------------------|------|------------------------------
Integrity    | INTEGRITY_MISMATCH          | 409  | Snapshot hash does not verify
-------------|-----------------------------|------|------------------------------
Immutability | IMMUTABILITY_VIOLATION      | 409  | Modifying an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENT REPLAY IS SUCCESS:

    try:
        result = recorder.record_sale(request)
    except DuplicateReferenceError as e:
        transaction_id = e.transaction_id

2. RETRY ONLY WHAT IS SAFE TO RETRY:

    except RecordingFailed:
        retry_with_same_reference_id()

3. INTEGRITY FAILURES ARE NEVER REPAIRED:

    except IntegrityMismatchError as e:
        alert_finance_team(e.snapshot_id)

===============================================================================
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and an ``http_status`` for the API facade.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    http_status: int = 500


# Validation


class ValidationError(LedgerKernelError):
    """Input is malformed or out of range. Raised before any write."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency}", field="currency")


class CurrencyMismatchError(ValidationError):
    """Currency differs from the ledger's (or the account's) currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Currency {actual} does not match ledger currency {expected}",
            field="currency",
        )


# Posting


class PostingError(LedgerKernelError):
    """Base exception for transaction recording errors."""

    code: str = "POSTING_ERROR"
    http_status: int = 500


class DuplicateReferenceError(PostingError):
    """
    reference_id already recorded in this ledger (idempotent success).

    Carries the original transaction id so callers can treat the replay
    exactly like the first response.
    """

    code: str = "DUPLICATE_REFERENCE"
    http_status: int = 409

    def __init__(self, ledger_id: str, reference_id: str, transaction_id: str):
        self.ledger_id = ledger_id
        self.reference_id = reference_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Duplicate reference_id {reference_id} in ledger {ledger_id} "
            f"(transaction {transaction_id})"
        )


class UnbalancedTransactionError(PostingError):
    """Entry debits do not equal credits."""

    code: str = "UNBALANCED_TRANSACTION"

    def __init__(self, reference_id: str, debits: int, credits: int):
        self.reference_id = reference_id
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced entries for {reference_id}: "
            f"debits={debits}, credits={credits}"
        )


class InsufficientBalanceError(PostingError):
    """Payout would take the creator balance below zero."""

    code: str = "INSUFFICIENT_BALANCE"
    http_status: int = 400

    def __init__(self, creator_id: str, available: int, requested: int):
        self.creator_id = creator_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance for creator {creator_id}: "
            f"available={available}, requested={requested}"
        )


class RecordingFailed(PostingError):
    """
    Storage-layer failure while writing. Everything was rolled back.

    Safe to retry with the same reference_id.
    """

    code: str = "RECORDING_FAILED"

    def __init__(self, reference_id: str, reason: str):
        self.reference_id = reference_id
        self.reason = reason
        super().__init__(f"Recording failed for {reference_id}: {reason}")


# Lookup


class NotFoundError(LedgerKernelError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"
    http_status: int = 404

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class LedgerNotFoundError(NotFoundError):
    """Ledger does not exist or is not active."""

    code: str = "LEDGER_NOT_FOUND"

    def __init__(self, ledger_id: str):
        self.ledger_id = ledger_id
        super().__init__("Ledger", ledger_id)


class TransactionNotFoundError(NotFoundError):
    """Transaction does not exist in the ledger."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__("Transaction", transaction_id)


class AccountNotFoundError(NotFoundError):
    """Account does not exist in the ledger."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account", account_id)


class PeriodNotFoundError(NotFoundError):
    """Accounting period does not exist."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__("AccountingPeriod", period_id)


class SnapshotNotFoundError(NotFoundError):
    """No reconciliation snapshot exists for the period."""

    code: str = "SNAPSHOT_NOT_FOUND"

    def __init__(self, period_key: str):
        self.period_key = period_key
        super().__init__("ReconciliationSnapshot", period_key)


# Period


class PeriodError(LedgerKernelError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"
    http_status: int = 400


class PeriodLockedError(PeriodError):
    """
    Mutation attempted against a transaction dated in a closed or locked period.

    Names the offending period so the caller can reopen it or post an
    out-of-period correcting entry instead.
    """

    code: str = "PERIOD_LOCKED"
    http_status: int = 403

    def __init__(self, period_id: str, period_status: str, checked_date: str):
        self.period_id = period_id
        self.period_status = period_status
        self.checked_date = checked_date
        super().__init__(
            f"Date {checked_date} falls in {period_status} period {period_id}"
        )


class PeriodOverlapError(PeriodError):
    """New period date range overlaps with an existing period."""

    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        existing_period_id: str,
        overlap_start: str,
        overlap_end: str,
    ):
        self.existing_period_id = existing_period_id
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end
        super().__init__(
            f"Period overlaps existing period {existing_period_id} "
            f"from {overlap_start} to {overlap_end}"
        )


class PeriodTransitionError(PeriodError):
    """Period status change is not allowed (periods never regress)."""

    code: str = "PERIOD_TRANSITION_INVALID"

    def __init__(self, period_id: str, from_status: str, to_status: str):
        self.period_id = period_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_id} cannot move from {from_status} to {to_status}"
        )


# Reversal


class ReversalError(LedgerKernelError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"
    http_status: int = 400


class TransactionAlreadyReversedError(ReversalError):
    """Transaction was already reversed."""

    code: str = "TRANSACTION_ALREADY_REVERSED"
    http_status: int = 409

    def __init__(self, transaction_id: str, reversal_transaction_id: str | None = None):
        self.transaction_id = transaction_id
        self.reversal_transaction_id = reversal_transaction_id
        super().__init__(f"Transaction {transaction_id} is already reversed")


class TransactionNotReversibleError(ReversalError):
    """Transaction status or type does not permit reversal."""

    code: str = "TRANSACTION_NOT_REVERSIBLE"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Transaction {transaction_id} cannot be reversed: {reason}")


# Integrity


class IntegrityCheckError(LedgerKernelError):
    """Base exception for tamper-evidence failures."""

    code: str = "INTEGRITY_ERROR"
    http_status: int = 409


class IntegrityMismatchError(IntegrityCheckError):
    """
    Recomputed snapshot hash does not match the stored hash.

    The row was altered outside the application. Never auto-repaired.
    """

    code: str = "INTEGRITY_MISMATCH"

    def __init__(self, snapshot_id: str, stored_hash: str, computed_hash: str):
        self.snapshot_id = snapshot_id
        self.stored_hash = stored_hash
        self.computed_hash = computed_hash
        super().__init__(
            f"Snapshot {snapshot_id} failed integrity check: "
            f"stored={stored_hash}, computed={computed_hash}"
        )


# Immutability


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"
    http_status: int = 409


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
