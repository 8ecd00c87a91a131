"""
ledger_services -- request-facing layer above the ledger kernel.

``LedgerApi`` validates untrusted request bodies, runs kernel services in one
unit of work and answers with ``ApiResponse``.  ``DatabaseAuditSink`` records
every state-changing call off the request path.
"""

from ledger_services.api import ApiResponse, LedgerApi
from ledger_services.audit_sink import (
    AuditRecord,
    DatabaseAuditSink,
    NullAuditSink,
    sanitize_for_audit,
)

__all__ = [
    "ApiResponse",
    "AuditRecord",
    "DatabaseAuditSink",
    "LedgerApi",
    "NullAuditSink",
    "sanitize_for_audit",
]
