"""
LedgerApi -- request/response facade over the ledger kernel.

Responsibility:
    Accepts untrusted, JSON-shaped request bodies, validates them, runs the
    matching kernel service inside one ``session_scope`` and converts the
    outcome into an ``ApiResponse(status_code, body)``.  After the unit of
    work has committed or rolled back, every state-changing call hands an
    ``AuditRecord`` to the audit sink.  Recording calls are audited under the
    transaction id they produced, or under the reference id when rejected.

Architecture position:
    Services layer.  Reads ``ledger_config`` once and passes plain values
    (fallback percent, tolerance, page sizes) into kernel services, which
    never import configuration themselves.

Error mapping:
    LedgerKernelError subclasses map to ``exc.http_status`` with
    ``{"success": False, "error": str(exc), "code": exc.code}``; a locked
    period adds ``period_id``.  A replayed sale is answered with 409,
    ``idempotent: True`` and the original ``transaction_id``.  Anything else
    is logged and answered with 500.

Response values:
    Balances and transaction amounts are integer cents.  A sale's
    ``breakdown`` is the major-unit view: its amounts are decimal strings
    with two places (``"gross_amount": "29.99"``) and its percents are
    decimal strings as well (``"creator_percent": "80"``), as is a creator's
    ``custom_split_percent``.  No Decimal passes through a float on the way
    out.  Ids are strings and dates are ISO 8601.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from ledger_config import LedgerEngineConfig, get_active_config
from ledger_kernel.db.engine import session_scope
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    PayoutRequest,
    SaleRequest,
    SnapshotVerification,
    TransactionInfo,
)
from ledger_kernel.domain.matching import BankLine
from ledger_kernel.exceptions import (
    InsufficientBalanceError,
    LedgerKernelError,
    PeriodLockedError,
    TransactionAlreadyReversedError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, configure_logging, get_logger
from ledger_kernel.models.audit_log import AuditAction
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.payout_recorder import PayoutRecorder
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reconciliation_service import ReconciliationMatcher
from ledger_kernel.services.reversal_service import ReversalService
from ledger_kernel.services.sale_recorder import SaleRecorder
from ledger_kernel.services.snapshot_service import SnapshotService
from ledger_services.audit_sink import (
    AuditRecord,
    AuditSink,
    DatabaseAuditSink,
    NullAuditSink,
)
from ledger_services.validation import (
    optional_date,
    optional_id,
    optional_mapping,
    optional_text,
    validate_amount,
    validate_id,
    validate_uuid,
)

logger = get_logger("services.api")

RECONCILE_ACTIONS = (
    "match",
    "unmatch",
    "create_snapshot",
    "get_snapshot",
    "list_unmatched",
    "auto_match",
)

_RECONCILE_AUDIT_ACTIONS = {
    "match": AuditAction.RECONCILE_MATCH.value,
    "unmatch": AuditAction.RECONCILE_UNMATCH.value,
    "auto_match": AuditAction.RECONCILE_AUTO_MATCH.value,
    "create_snapshot": AuditAction.SNAPSHOT_CREATED.value,
}


def _plain(value: Any) -> Any:
    """Render service results as JSON-compatible values."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _maybe_uuid(value: Any) -> UUID | None:
    try:
        return validate_uuid(value, "ledger_id") if value is not None else None
    except ValidationError:
        return None


def _transaction_view(tx: TransactionInfo) -> dict[str, Any]:
    return {
        "id": tx.id,
        "reference_id": tx.reference_id,
        "transaction_type": tx.transaction_type,
        "status": tx.status,
        "amount": tx.amount,
        "currency": tx.currency,
        "transaction_date": tx.transaction_date,
        "created_at": tx.created_at,
    }


def _snapshot_view(verification: SnapshotVerification) -> dict[str, Any]:
    snapshot = verification.snapshot
    return {
        "id": snapshot.id,
        "period_id": snapshot.period_id,
        "period_start": snapshot.period_start,
        "period_end": snapshot.period_end,
        "version": snapshot.version,
        "created_at": snapshot.created_at,
        "integrity_hash": snapshot.integrity_hash,
        "integrity_valid": verification.integrity_valid,
        "summary": snapshot.summary.to_dict(),
    }


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class LedgerApi:
    """
    Facade used by HTTP handlers and jobs.

    Usage:
        api = LedgerApi(get_session_factory())
        response = api.record_sale(ledger_id, {"reference_id": "order_1", ...})
        api.close()
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: LedgerEngineConfig | None = None,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        register_immutability_listeners()
        self._factory = session_factory
        self._config = config or get_active_config()
        configure_logging(level=self._config.logging.level)
        self._clock = clock or SystemClock()
        if audit_sink is None:
            if self._config.audit.enabled:
                audit_sink = DatabaseAuditSink(
                    session_factory,
                    worker_count=self._config.audit.worker_count,
                    clock=self._clock,
                )
            else:
                audit_sink = NullAuditSink()
        self._audit = audit_sink

    def close(self, wait: bool = True) -> None:
        self._audit.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _error_response(self, exc: LedgerKernelError) -> ApiResponse:
        body: dict[str, Any] = {"success": False, "error": str(exc), "code": exc.code}
        if isinstance(exc, ValidationError) and exc.field:
            body["field"] = exc.field
        if isinstance(exc, PeriodLockedError):
            body["period_id"] = exc.period_id
            body["period_status"] = exc.period_status
        if isinstance(exc, InsufficientBalanceError):
            body["available"] = exc.available
            body["requested"] = exc.requested
        if isinstance(exc, TransactionAlreadyReversedError) and exc.reversal_transaction_id:
            body["reversal_transaction_id"] = exc.reversal_transaction_id
        return ApiResponse(exc.http_status, body)

    def _run(
        self,
        action: str,
        handler: Callable[[Session], ApiResponse],
        *,
        ledger_id: Any = None,
        entity_type: str = "transaction",
        entity_id: str | None = None,
        entity_key: str | None = None,
        actor: str | None = None,
        request_body: dict[str, Any] | None = None,
        audited: bool = True,
    ) -> ApiResponse:
        with LogContext.bind(
            correlation_id=uuid4(), actor_id=actor, ledger_id=_maybe_uuid(ledger_id)
        ):
            try:
                with session_scope(self._factory) as session:
                    response = handler(session)
            except LedgerKernelError as exc:
                logger.info(
                    "api_request_rejected",
                    extra={"action": action, "error_code": exc.code, "status_code": exc.http_status},
                )
                response = self._error_response(exc)
            except Exception:
                logger.exception("api_request_failed", extra={"action": action})
                response = ApiResponse(
                    500,
                    {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
                )

            if audited:
                if entity_key and response.body.get(entity_key) is not None:
                    entity_id = str(response.body[entity_key])
                self._audit.emit(
                    AuditRecord(
                        action=action,
                        entity_type=entity_type,
                        response_status=response.status_code,
                        ledger_id=_maybe_uuid(ledger_id),
                        entity_id=entity_id if isinstance(entity_id, str) else None,
                        actor=actor,
                        request_body=request_body or {},
                    )
                )
            return ApiResponse(response.status_code, _plain(response.body))

    # ------------------------------------------------------------------
    # Ledgers and creators
    # ------------------------------------------------------------------

    def create_ledger(self, body: dict[str, Any], actor: str | None = None) -> ApiResponse:
        def handler(session: Session) -> ApiResponse:
            name = optional_text(body.get("name"), "name", max_length=255)
            settings = optional_mapping(body.get("settings"), "settings")
            ledger = LedgerService(session, self._config.default_currency).create_ledger(
                name or "", settings
            )
            return ApiResponse(
                201,
                {
                    "success": True,
                    "ledger_id": ledger.id,
                    "name": ledger.name,
                    "status": ledger.status,
                    "settings": ledger.settings,
                },
            )

        return self._run(
            "create_ledger",
            handler,
            entity_type="ledger",
            actor=actor,
            request_body=body,
        )

    def set_creator_split(
        self, ledger_id: Any, body: dict[str, Any], actor: str | None = None
    ) -> ApiResponse:
        creator_id = body.get("creator_id")

        def handler(session: Session) -> ApiResponse:
            lid = validate_uuid(ledger_id, "ledger_id")
            cid = validate_id(creator_id, "creator_id")
            ledger = LedgerService(session).require_active(lid)
            account = AccountService(session).set_custom_split(
                lid, cid, body.get("creator_percent"), currency=ledger.currency
            )
            return ApiResponse(
                200,
                {
                    "success": True,
                    "creator_id": cid,
                    "account_id": account.id,
                    "custom_split_percent": account.metadata.get("custom_split_percent"),
                },
            )

        return self._run(
            "set_creator_split",
            handler,
            ledger_id=ledger_id,
            entity_type="account",
            entity_id=creator_id,
            actor=actor,
            request_body=body,
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_sale(self, ledger_id: Any, body: dict[str, Any], actor: str | None = None) -> ApiResponse:
        """
        Record a sale.

        Body: reference_id, creator_id, amount (cents), processing_fee,
        creator_percent, product_id, product_name, customer_email,
        transaction_date, currency, metadata.
        """
        reference_id = body.get("reference_id")

        def handler(session: Session) -> ApiResponse:
            request = SaleRequest(
                ledger_id=validate_uuid(ledger_id, "ledger_id"),
                reference_id=validate_id(reference_id, "reference_id"),
                creator_id=validate_id(body.get("creator_id"), "creator_id"),
                amount_cents=validate_amount(body.get("amount"), "amount"),
                processing_fee_cents=validate_amount(
                    body.get("processing_fee", 0), "processing_fee", allow_zero=True
                ),
                creator_percent=body.get("creator_percent"),
                currency=optional_text(body.get("currency"), "currency", max_length=3),
                transaction_date=optional_date(body.get("transaction_date"), "transaction_date"),
                description=optional_text(body.get("description"), "description"),
                product_id=optional_id(body.get("product_id"), "product_id"),
                product_name=optional_text(body.get("product_name"), "product_name"),
                customer_email=optional_text(body.get("customer_email"), "customer_email", 255),
                metadata=optional_mapping(body.get("metadata"), "metadata"),
            )
            recorder = SaleRecorder(
                session,
                self._clock,
                fallback_percent=self._config.split.fallback_creator_percent,
            )
            result = recorder.record_sale(request)
            if result.idempotent:
                return ApiResponse(
                    409,
                    {
                        "success": False,
                        "error": "Duplicate reference_id",
                        "transaction_id": result.transaction_id,
                        "idempotent": True,
                    },
                )
            return ApiResponse(
                200,
                {
                    "success": True,
                    "transaction_id": result.transaction_id,
                    "breakdown": result.breakdown(),
                    "creator_balance": result.creator_balance,
                },
            )

        return self._run(
            AuditAction.RECORD_SALE.value,
            handler,
            ledger_id=ledger_id,
            entity_id=reference_id,
            entity_key="transaction_id",
            actor=actor,
            request_body={
                "reference_id": reference_id,
                "creator_id": body.get("creator_id"),
                "amount_cents": body.get("amount"),
                "creator_percent": body.get("creator_percent"),
            },
        )

    def record_payout(self, ledger_id: Any, body: dict[str, Any], actor: str | None = None) -> ApiResponse:
        reference_id = body.get("reference_id")

        def handler(session: Session) -> ApiResponse:
            request = PayoutRequest(
                ledger_id=validate_uuid(ledger_id, "ledger_id"),
                reference_id=validate_id(reference_id, "reference_id"),
                creator_id=validate_id(body.get("creator_id"), "creator_id"),
                amount_cents=validate_amount(body.get("amount"), "amount"),
                currency=optional_text(body.get("currency"), "currency", max_length=3),
                transaction_date=optional_date(body.get("transaction_date"), "transaction_date"),
                payout_method=optional_id(body.get("payout_method"), "payout_method"),
                description=optional_text(body.get("description"), "description"),
                metadata=optional_mapping(body.get("metadata"), "metadata"),
            )
            result = PayoutRecorder(session, self._clock).record_payout(request)
            if result.idempotent:
                return ApiResponse(
                    409,
                    {
                        "success": False,
                        "error": "Duplicate reference_id",
                        "transaction_id": result.transaction_id,
                        "idempotent": True,
                    },
                )
            return ApiResponse(
                200,
                {
                    "success": True,
                    "transaction_id": result.transaction_id,
                    "amount": result.amount_cents,
                    "creator_balance": result.creator_balance,
                },
            )

        return self._run(
            AuditAction.RECORD_PAYOUT.value,
            handler,
            ledger_id=ledger_id,
            entity_id=reference_id,
            entity_key="transaction_id",
            actor=actor,
            request_body=body,
        )

    def reverse_transaction(
        self, ledger_id: Any, body: dict[str, Any], actor: str | None = None
    ) -> ApiResponse:
        transaction_id = body.get("transaction_id")

        def handler(session: Session) -> ApiResponse:
            result = ReversalService(session, self._clock).reverse_transaction(
                validate_uuid(ledger_id, "ledger_id"),
                validate_uuid(transaction_id, "transaction_id"),
                optional_text(body.get("reason"), "reason") or "",
            )
            return ApiResponse(
                200,
                {
                    "success": True,
                    "original_transaction_id": result.original_transaction_id,
                    "reversal_transaction_id": result.reversal_transaction_id,
                    "reversed_amount": result.reversed_amount,
                    "warnings": list(result.warnings),
                },
            )

        return self._run(
            AuditAction.REVERSE_TRANSACTION.value,
            handler,
            ledger_id=ledger_id,
            entity_id=str(transaction_id) if transaction_id is not None else None,
            actor=actor,
            request_body=body,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, ledger_id: Any, body: dict[str, Any], actor: str | None = None) -> ApiResponse:
        """Dispatch on ``body["action"]``; see RECONCILE_ACTIONS."""
        action = body.get("action")
        if action not in RECONCILE_ACTIONS:
            return ApiResponse(
                400,
                {
                    "success": False,
                    "error": f"Invalid action. Must be one of: {', '.join(RECONCILE_ACTIONS)}",
                    "code": ValidationError.code,
                    "field": "action",
                },
            )

        handler = getattr(self, f"_reconcile_{action}")
        transaction_id = body.get("transaction_id")
        return self._run(
            _RECONCILE_AUDIT_ACTIONS.get(action, f"reconcile_{action}"),
            lambda session: handler(session, validate_uuid(ledger_id, "ledger_id"), body),
            ledger_id=ledger_id,
            entity_type="snapshot" if action.endswith("snapshot") else "transaction",
            entity_id=str(transaction_id) if transaction_id is not None else None,
            actor=actor,
            request_body=body,
            audited=action in _RECONCILE_AUDIT_ACTIONS,
        )

    def _matcher(self, session: Session) -> ReconciliationMatcher:
        matching = self._config.matching
        return ReconciliationMatcher(
            session,
            self._clock,
            date_tolerance_days=matching.date_tolerance_days,
            page_size=matching.list_page_size,
            max_page_size=matching.max_page_size,
        )

    def _reconcile_match(self, session: Session, ledger_id: UUID, body: dict[str, Any]) -> ApiResponse:
        result = self._matcher(session).match(
            ledger_id,
            validate_uuid(body.get("transaction_id"), "transaction_id"),
            validate_id(body.get("bank_transaction_id"), "bank_transaction_id"),
        )
        return ApiResponse(
            200,
            {
                "success": result.success,
                "match_id": result.bank_match_id,
                "transaction_id": result.transaction_id,
                "bank_transaction_id": result.bank_transaction_id,
            },
        )

    def _reconcile_unmatch(self, session: Session, ledger_id: UUID, body: dict[str, Any]) -> ApiResponse:
        result = self._matcher(session).unmatch(
            ledger_id, validate_uuid(body.get("transaction_id"), "transaction_id")
        )
        return ApiResponse(
            200,
            {
                "success": result.success,
                "transaction_id": result.transaction_id,
                "bank_transaction_id": result.bank_transaction_id,
            },
        )

    def _reconcile_list_unmatched(
        self, session: Session, ledger_id: UUID, body: dict[str, Any]
    ) -> ApiResponse:
        limit = body.get("limit")
        if limit is not None:
            limit = validate_amount(limit, "limit")
        rows = self._matcher(session).list_unmatched(ledger_id, limit=limit)
        return ApiResponse(
            200,
            {
                "success": True,
                "unmatched_count": len(rows),
                "transactions": [_transaction_view(tx) for tx in rows],
            },
        )

    def _reconcile_auto_match(
        self, session: Session, ledger_id: UUID, body: dict[str, Any]
    ) -> ApiResponse:
        raw_lines = body.get("bank_lines")
        if not isinstance(raw_lines, list):
            raise ValidationError("bank_lines must be a list", field="bank_lines")
        lines = []
        for raw in raw_lines:
            raw = optional_mapping(raw, "bank_lines")
            posted = optional_date(raw.get("posted_date"), "posted_date")
            if posted is None:
                raise ValidationError("posted_date is required", field="posted_date")
            lines.append(
                BankLine(
                    bank_transaction_id=validate_id(raw.get("bank_transaction_id"), "bank_transaction_id"),
                    amount=validate_amount(raw.get("amount"), "amount"),
                    posted_date=posted,
                    description=optional_text(raw.get("description"), "description"),
                )
            )
        tolerance = body.get("tolerance_days")
        if tolerance is not None:
            tolerance = validate_amount(tolerance, "tolerance_days", allow_zero=True)

        result = self._matcher(session).auto_match(
            ledger_id, lines, tolerance_days=tolerance, dry_run=bool(body.get("dry_run", False))
        )
        return ApiResponse(
            200,
            {
                "success": True,
                "dry_run": result.dry_run,
                "proposed": [
                    {
                        "bank_transaction_id": p.bank_transaction_id,
                        "transaction_id": p.transaction_id,
                        "amount": p.amount,
                        "date_delta_days": p.date_delta_days,
                    }
                    for p in result.plan.proposals
                ],
                "matched": [
                    {"bank_transaction_id": m.bank_transaction_id, "transaction_id": m.transaction_id}
                    for m in result.matched
                ],
                "ambiguous": [
                    {
                        "bank_transaction_ids": a.bank_transaction_ids,
                        "transaction_ids": a.transaction_ids,
                        "amount": a.amount,
                    }
                    for a in result.plan.ambiguous
                ],
                "unmatched_bank_lines": result.plan.unmatched_bank_lines,
                "skipped": [
                    {
                        "bank_transaction_id": s.bank_transaction_id,
                        "transaction_id": s.transaction_id,
                        "reason": s.reason,
                    }
                    for s in result.skipped
                ],
            },
        )

    def _snapshot_window(self, body: dict[str, Any]) -> dict[str, Any]:
        period_id = body.get("period_id")
        return {
            "period_id": validate_uuid(period_id, "period_id") if period_id is not None else None,
            "period_start": optional_date(body.get("period_start"), "period_start"),
            "period_end": optional_date(body.get("period_end"), "period_end"),
        }

    def _reconcile_create_snapshot(
        self, session: Session, ledger_id: UUID, body: dict[str, Any]
    ) -> ApiResponse:
        snapshot = SnapshotService(session, self._clock).create_snapshot(
            ledger_id,
            as_of_date=optional_date(body.get("as_of_date"), "as_of_date"),
            **self._snapshot_window(body),
        )
        return ApiResponse(
            200,
            {
                "success": True,
                "snapshot_id": snapshot.id,
                "version": snapshot.version,
                "integrity_hash": snapshot.integrity_hash,
                "summary": snapshot.summary.to_dict(),
            },
        )

    def _reconcile_get_snapshot(
        self, session: Session, ledger_id: UUID, body: dict[str, Any]
    ) -> ApiResponse:
        verification = SnapshotService(session, self._clock).get_snapshot(
            ledger_id, **self._snapshot_window(body)
        )
        return ApiResponse(
            200,
            {
                "success": True,
                "snapshot": _snapshot_view(verification),
                "integrity_valid": verification.integrity_valid,
            },
        )

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def create_period(self, ledger_id: Any, body: dict[str, Any], actor: str | None = None) -> ApiResponse:
        def handler(session: Session) -> ApiResponse:
            lid = validate_uuid(ledger_id, "ledger_id")
            start = optional_date(body.get("period_start"), "period_start")
            end = optional_date(body.get("period_end"), "period_end")
            if start is None or end is None:
                raise ValidationError("period_start and period_end are required", field="period_start")
            name = optional_text(body.get("name"), "name", max_length=100) or f"{start}..{end}"
            period = PeriodService(session, self._clock).create_period(lid, name, start, end)
            return ApiResponse(201, {"success": True, "period": asdict(period)})

        return self._run(
            "create_period",
            handler,
            ledger_id=ledger_id,
            entity_type="period",
            actor=actor,
            request_body=body,
        )

    def close_period(self, ledger_id: Any, period_id: Any, actor: str | None = None) -> ApiResponse:
        return self._transition_period(AuditAction.PERIOD_CLOSED.value, ledger_id, period_id, actor)

    def lock_period(self, ledger_id: Any, period_id: Any, actor: str | None = None) -> ApiResponse:
        return self._transition_period(AuditAction.PERIOD_LOCKED.value, ledger_id, period_id, actor)

    def _transition_period(self, action: str, ledger_id: Any, period_id: Any, actor: str | None) -> ApiResponse:
        def handler(session: Session) -> ApiResponse:
            service = PeriodService(session, self._clock)
            transition = (
                service.close_period if action == AuditAction.PERIOD_CLOSED.value else service.lock_period
            )
            period = transition(
                validate_uuid(ledger_id, "ledger_id"), validate_uuid(period_id, "period_id")
            )
            return ApiResponse(200, {"success": True, "period": asdict(period)})

        return self._run(
            action,
            handler,
            ledger_id=ledger_id,
            entity_type="period",
            entity_id=str(period_id),
            actor=actor,
            request_body={"period_id": period_id},
        )
