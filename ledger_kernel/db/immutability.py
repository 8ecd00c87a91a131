"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A ledger is append-only.  Money that was recorded stays recorded; mistakes
are corrected by new offsetting transactions that leave a visible trail.
Reconciliation snapshots and audit rows are evidence and must never change.

SQLAlchemy fires mapper events before an UPDATE/DELETE reaches the database.
The listeners below intercept them and raise ImmutabilityViolationError, so
the flush aborts and nothing is written:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Raw SQL bypasses these listeners.  That is why snapshots carry an integrity
hash: out-of-band edits are detected at verification time instead.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|------------------------------------------------------
Entry                  | Never updated, never deleted
Transaction            | Only status (legal transitions) and metadata change;
                       | never deleted
Account                | Structural fields frozen; deletion blocked once any
                       | entry references it
Ledger                 | Only status and settings change; never deleted
AccountingPeriod       | Status never regresses; sealed periods are frozen
                       | except for CLOSED -> LOCKED; sealed periods are
                       | never deleted
ReconciliationSnapshot | Never updated, never deleted
AuditLogEntry          | Never updated, never deleted

updated_at is row metadata and is always allowed to change.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to seed forbidden states may call
unregister_immutability_listeners() and re-register afterwards.

===============================================================================
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes (relationships ignored)."""
    insp = inspect(target)
    changed = []
    for col_attr in insp.mapper.column_attrs:
        if insp.attrs[col_attr.key].history.has_changes():
            changed.append(col_attr.key)
    return changed


def _status_change(target):
    hist = get_history(target, "status")
    if hist.deleted and hist.added:
        return hist.deleted[0], hist.added[0]
    return None, None


def _normalize(value) -> str:
    return getattr(value, "value", value)


# =============================================================================
# Always-immutable records
# =============================================================================


def _make_always_immutable(entity_type: str):
    def _check_update(mapper, connection, target):
        changed = [c for c in _changed_columns(target) if c not in _AUDIT_METADATA_FIELDS]
        if changed:
            _block(
                entity_type,
                target,
                "UPDATE",
                f"{entity_type} records are immutable (attempted to change '{changed[0]}')",
                field=changed[0],
            )

    def _check_delete(mapper, connection, target):
        _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    return _check_update, _check_delete


_check_entry_update, _check_entry_delete = _make_always_immutable("Entry")
_check_snapshot_update, _check_snapshot_delete = _make_always_immutable(
    "ReconciliationSnapshot"
)
_check_audit_log_update, _check_audit_log_delete = _make_always_immutable("AuditLogEntry")


# =============================================================================
# Transaction: status + metadata only
# =============================================================================

TRANSACTION_MUTABLE_FIELDS = frozenset({"status", "metadata_", "updated_at"})


def _check_transaction_update(mapper, connection, target):
    from ledger_kernel.models.transaction import (
        ALLOWED_STATUS_TRANSITIONS,
        TransactionStatus,
    )

    for field in _changed_columns(target):
        if field not in TRANSACTION_MUTABLE_FIELDS:
            _block(
                "Transaction",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on a recorded transaction",
                field=field,
            )

    old_status, new_status = _status_change(target)
    if old_status is None:
        return
    transition = (
        TransactionStatus(_normalize(old_status)),
        TransactionStatus(_normalize(new_status)),
    )
    if transition[0] != transition[1] and transition not in ALLOWED_STATUS_TRANSITIONS:
        _block(
            "Transaction",
            target,
            "UPDATE",
            f"Illegal status transition {transition[0].value} -> {transition[1].value}",
            field="status",
        )


def _check_transaction_delete(mapper, connection, target):
    _block(
        "Transaction",
        target,
        "DELETE",
        "Transactions are never deleted; record an offsetting transaction",
    )


# =============================================================================
# Ledger: status + settings only
# =============================================================================

LEDGER_MUTABLE_FIELDS = frozenset({"status", "settings", "updated_at"})


def _check_ledger_update(mapper, connection, target):
    for field in _changed_columns(target):
        if field not in LEDGER_MUTABLE_FIELDS:
            _block(
                "Ledger",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on a ledger",
                field=field,
            )


def _check_ledger_delete(mapper, connection, target):
    _block("Ledger", target, "DELETE", "Ledgers cannot be deleted")


# =============================================================================
# Account: structural fields frozen
# =============================================================================

ACCOUNT_STRUCTURAL_FIELDS = frozenset({
    "ledger_id",
    "account_type",
    "entity_id",
    "account_key",
    "normal_balance",
    "currency",
})


def _check_account_update(mapper, connection, target):
    for field in _changed_columns(target):
        if field in ACCOUNT_STRUCTURAL_FIELDS:
            _block(
                "Account",
                target,
                "UPDATE",
                f"Cannot modify structural field '{field}' on an account",
                field=field,
            )


def _check_account_delete(mapper, connection, target):
    from ledger_kernel.models.transaction import Entry

    referenced = connection.execute(
        select(Entry.id).where(Entry.account_id == target.id).limit(1)
    ).first()
    if referenced is not None:
        _block("Account", target, "DELETE", "Account is referenced by ledger entries")


# =============================================================================
# AccountingPeriod: no regression, sealed periods frozen
# =============================================================================

PERIOD_LOCK_FIELDS = frozenset({"status", "locked_at", "updated_at"})


def _check_period_update(mapper, connection, target):
    from ledger_kernel.models.accounting_period import PeriodStatus, SEALED_STATUSES

    allowed_transitions = {
        (PeriodStatus.OPEN, PeriodStatus.CLOSED),
        (PeriodStatus.OPEN, PeriodStatus.LOCKED),
        (PeriodStatus.CLOSED, PeriodStatus.LOCKED),
    }

    old_status, new_status = _status_change(target)
    if old_status is not None:
        transition = (
            PeriodStatus(_normalize(old_status)),
            PeriodStatus(_normalize(new_status)),
        )
        if transition[0] != transition[1] and transition not in allowed_transitions:
            _block(
                "AccountingPeriod",
                target,
                "UPDATE",
                f"Period status cannot move {transition[0].value} -> {transition[1].value}",
                field="status",
            )
        was_sealed = transition[0] in SEALED_STATUSES
    else:
        was_sealed = PeriodStatus(_normalize(target.status)) in SEALED_STATUSES

    if not was_sealed:
        return

    for field in _changed_columns(target):
        if field not in PERIOD_LOCK_FIELDS:
            _block(
                "AccountingPeriod",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on a sealed period",
                field=field,
            )


def _check_period_delete(mapper, connection, target):
    from ledger_kernel.models.accounting_period import PeriodStatus, SEALED_STATUSES

    if PeriodStatus(_normalize(target.status)) in SEALED_STATUSES:
        _block("AccountingPeriod", target, "DELETE", "Sealed periods cannot be deleted")


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.accounting_period import AccountingPeriod
    from ledger_kernel.models.audit_log import AuditLogEntry
    from ledger_kernel.models.ledger import Ledger
    from ledger_kernel.models.reconciliation_snapshot import ReconciliationSnapshot
    from ledger_kernel.models.transaction import Entry, Transaction

    return [
        (Entry, "before_update", _check_entry_update),
        (Entry, "before_delete", _check_entry_delete),
        (Transaction, "before_update", _check_transaction_update),
        (Transaction, "before_delete", _check_transaction_delete),
        (Ledger, "before_update", _check_ledger_update),
        (Ledger, "before_delete", _check_ledger_delete),
        (Account, "before_update", _check_account_update),
        (Account, "before_delete", _check_account_delete),
        (AccountingPeriod, "before_update", _check_period_update),
        (AccountingPeriod, "before_delete", _check_period_delete),
        (ReconciliationSnapshot, "before_update", _check_snapshot_update),
        (ReconciliationSnapshot, "before_delete", _check_snapshot_delete),
        (AuditLogEntry, "before_update", _check_audit_log_update),
        (AuditLogEntry, "before_delete", _check_audit_log_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
