"""
Audit sink -- best-effort, asynchronous audit trail of API calls.

Responsibility:
    Receives one ``AuditRecord`` per state-changing API call, removes
    secrets and personal data from the request body and appends an
    ``AuditLogEntry`` row on a background worker with its own session.

Architecture position:
    Services layer, outside the kernel's unit of work.  ``LedgerApi`` calls
    ``emit`` after its own transaction has committed or rolled back and
    never waits for the result.

Invariants enforced:
    - An audit failure never reaches the caller and never touches the
      ledger transaction.  Failures are logged at WARNING and dropped.
    - Stored request bodies are sanitized; ``payload_hash`` is the SHA-256
      of the sanitized body.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import AuditLogEntry
from ledger_kernel.utils.hashing import hash_payload, to_json_native

logger = get_logger("services.audit_sink")

REDACTED = "[REDACTED]"
MAX_DEPTH = 10

SENSITIVE_FIELDS = frozenset({
    "account_number",
    "routing_number",
    "ssn",
    "tax_id",
    "bank_account",
    "access_token",
    "api_key",
    "webhook_secret",
    "password",
    "secret",
})

SENSITIVE_SUBSTRINGS = ("account_number", "routing", "ssn", "secret", "token", "password")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_FIELDS or any(s in lowered for s in SENSITIVE_SUBSTRINGS)


def sanitize_for_audit(value: Any, depth: int = 0) -> Any:
    """Copy of ``value`` with sensitive keys redacted at every nesting level."""
    if depth > MAX_DEPTH:
        return "[max depth]"
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive(str(key)) else sanitize_for_audit(item, depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_for_audit(item, depth + 1) for item in value]
    return value


@dataclass(frozen=True)
class AuditRecord:
    action: str
    entity_type: str
    response_status: int
    ledger_id: UUID | None = None
    entity_id: str | None = None
    actor: str | None = None
    request_body: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None: ...

    def shutdown(self, wait: bool = True) -> None: ...


class NullAuditSink:
    """Sink used when auditing is disabled in configuration."""

    def emit(self, record: AuditRecord) -> None:
        logger.debug("audit_disabled", extra={"action": record.action})

    def shutdown(self, wait: bool = True) -> None:
        return None


class DatabaseAuditSink:
    """
    Writes AuditLogEntry rows on a thread pool.

    Usage:
        sink = DatabaseAuditSink(get_session_factory(), worker_count=2)
        sink.emit(AuditRecord(action="record_sale", ...))
        sink.shutdown()
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        worker_count: int = 2,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._executor = ThreadPoolExecutor(
            max_workers=worker_count,
            thread_name_prefix="ledger-audit",
        )

    def emit(self, record: AuditRecord) -> Future | None:
        """Schedule the write and return immediately."""
        try:
            return self._executor.submit(self._write, record, self._clock.now())
        except RuntimeError:
            # Executor already shut down.
            logger.warning("audit_dropped_after_shutdown", extra={"action": record.action})
            return None

    def _write(self, record: AuditRecord, created_at) -> None:
        try:
            body = to_json_native(sanitize_for_audit(record.request_body))
            with session_scope(self._session_factory) as session:
                session.add(
                    AuditLogEntry(
                        ledger_id=record.ledger_id,
                        action=record.action,
                        entity_type=record.entity_type,
                        entity_id=record.entity_id,
                        actor=record.actor,
                        request_body=body,
                        payload_hash=hash_payload(body),
                        response_status=record.response_status,
                        created_at=created_at,
                    )
                )
        except Exception:
            logger.warning(
                "audit_write_failed",
                extra={"action": record.action, "entity_id": record.entity_id},
                exc_info=True,
            )
            return
        logger.debug("audit_written", extra={"action": record.action})

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting records; with ``wait`` drain the queue first."""
        self._executor.shutdown(wait=wait)
