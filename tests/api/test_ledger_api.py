"""
Tests for the LedgerApi facade.

Verifies:
- Request bodies are validated and errors map to typed status codes
- A replayed sale is answered with 409 and the original transaction id
- A sealed period is answered with 403 naming the period
- Every reconcile action dispatches, and only state changes are audited

The facade commits through its own sessions, so these tests use the
committed ``session_factory`` fixture.
"""

from datetime import date

import pytest

from ledger_config import LedgerEngineConfig
from ledger_kernel.domain.clock import DeterministicClock
from ledger_services.api import LedgerApi


class RecordingAuditSink:
    def __init__(self):
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def shutdown(self, wait=True):
        return None

    def actions(self):
        return [r.action for r in self.records]


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def api(session_factory, audit_sink):
    api = LedgerApi(
        session_factory,
        config=LedgerEngineConfig(),
        clock=DeterministicClock(),
        audit_sink=audit_sink,
    )
    yield api
    api.close()


@pytest.fixture
def api_ledger(api, audit_sink):
    response = api.create_ledger({"name": "API Marketplace"}, actor="setup")
    assert response.status_code == 201
    audit_sink.records.clear()
    return response.body["ledger_id"]


def _sale_body(reference_id="order_1", amount=2999, **overrides):
    body = {
        "reference_id": reference_id,
        "creator_id": "creator_1",
        "amount": amount,
        "creator_percent": 80,
    }
    body.update(overrides)
    return body


class TestLedgers:
    def test_create_ledger(self, api):
        response = api.create_ledger({"name": "Shop", "settings": {"default_creator_percent": 75}})

        assert response.status_code == 201
        assert response.body["status"] == "active"
        assert response.body["settings"]["default_creator_percent"] == "75"

    def test_blank_name(self, api):
        response = api.create_ledger({"name": "  "})

        assert response.status_code == 400
        assert response.body["field"] == "name"

    def test_set_creator_split(self, api, api_ledger):
        response = api.set_creator_split(api_ledger, {"creator_id": "creator_1", "creator_percent": 90})
        assert response.status_code == 200
        assert response.body["custom_split_percent"] == "90"

        sale = api.record_sale(api_ledger, _sale_body(amount=1000, creator_percent=None))

        assert sale.body["breakdown"]["creator_amount"] == "9.00"


class TestRecordSale:
    def test_breakdown(self, api, api_ledger):
        response = api.record_sale(api_ledger, _sale_body())

        assert response.status_code == 200
        assert response.ok
        assert response.body["success"] is True
        assert response.body["breakdown"] == {
            "gross_amount": "29.99",
            "processing_fee": "0.00",
            "net_amount": "29.99",
            "creator_amount": "23.99",
            "platform_amount": "6.00",
            "creator_percent": "80",
            "platform_percent": "20",
        }
        assert response.body["creator_balance"] == 2399
        assert isinstance(response.body["transaction_id"], str)

    def test_replay_is_409(self, api, api_ledger):
        first = api.record_sale(api_ledger, _sale_body())

        replay = api.record_sale(api_ledger, _sale_body())

        assert replay.status_code == 409
        assert replay.body["idempotent"] is True
        assert replay.body["transaction_id"] == first.body["transaction_id"]
        assert replay.body["error"] == "Duplicate reference_id"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"amount": 0}, "amount"),
            ({"amount": "29.99"}, "amount"),
            ({"reference_id": "bad ref!"}, "reference_id"),
            ({"creator_id": None}, "creator_id"),
            ({"processing_fee": -1}, "processing_fee"),
            ({"transaction_date": "15/01/2025"}, "transaction_date"),
            ({"creator_percent": 101}, "creator_percent"),
        ],
    )
    def test_validation_errors(self, api, api_ledger, overrides, field):
        response = api.record_sale(api_ledger, _sale_body(**overrides))

        assert response.status_code == 400
        assert response.body["code"] == "VALIDATION_ERROR"
        assert response.body["field"] == field

    def test_malformed_ledger_id(self, api):
        response = api.record_sale("not-a-uuid", _sale_body())

        assert response.status_code == 400
        assert response.body["field"] == "ledger_id"

    def test_unknown_ledger(self, api):
        response = api.record_sale("00000000-0000-0000-0000-000000000001", _sale_body())

        assert response.status_code == 404
        assert response.body["code"] == "LEDGER_NOT_FOUND"

    def test_sealed_period_is_403(self, api, api_ledger):
        period = api.create_period(
            api_ledger, {"period_start": "2025-01-01", "period_end": "2025-01-31", "name": "2025-01"}
        )
        period_id = period.body["period"]["id"]
        assert api.close_period(api_ledger, period_id).status_code == 200

        response = api.record_sale(api_ledger, _sale_body(transaction_date="2025-01-10"))

        assert response.status_code == 403
        assert response.body["code"] == "PERIOD_LOCKED"
        assert response.body["period_id"] == period_id
        assert response.body["period_status"] == "closed"

    def test_currency_mismatch_is_400(self, api, api_ledger):
        response = api.record_sale(api_ledger, _sale_body(currency="EUR"))

        assert response.status_code == 400
        assert response.body["code"] == "CURRENCY_MISMATCH"
        assert response.body["field"] == "currency"
        assert api.record_sale(api_ledger, _sale_body(currency="usd")).status_code == 200

    def test_api_and_kernel_logs_share_correlation_id(self, api, api_ledger, captured_logs):
        api.record_sale(api_ledger, _sale_body(currency="EUR"), actor="checkout")

        by_message = {r["message"]: r for r in captured_logs()}
        kernel, facade = by_message["sale_failed"], by_message["api_request_rejected"]
        assert kernel["correlation_id"] == facade["correlation_id"]
        assert kernel["ledger_id"] == facade["ledger_id"] == api_ledger
        assert kernel["actor_id"] == "checkout"
        assert kernel["reference_id"] == "order_1"
        assert kernel["exc_code"] == facade["error_code"] == "CURRENCY_MISMATCH"

    def test_unexpected_error_is_500(self, api, api_ledger, monkeypatch, captured_logs):
        def boom(self, request):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("ledger_services.api.SaleRecorder.record_sale", boom)

        response = api.record_sale(api_ledger, _sale_body())

        assert response.status_code == 500
        assert response.body == {
            "success": False,
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
        }
        assert any(r["message"] == "api_request_failed" for r in captured_logs())


class TestPayoutAndReversal:
    def test_payout(self, api, api_ledger):
        api.record_sale(api_ledger, _sale_body(amount=10000))

        response = api.record_payout(
            api_ledger, {"reference_id": "payout_1", "creator_id": "creator_1", "amount": 3000}
        )

        assert response.status_code == 200
        assert response.body["creator_balance"] == 5000

    def test_overdraw(self, api, api_ledger):
        api.record_sale(api_ledger, _sale_body(amount=1000))

        response = api.record_payout(
            api_ledger, {"reference_id": "payout_1", "creator_id": "creator_1", "amount": 900}
        )

        assert response.status_code == 400
        assert response.body["code"] == "INSUFFICIENT_BALANCE"
        assert (response.body["available"], response.body["requested"]) == (800, 900)

    def test_reverse_then_reverse_again(self, api, api_ledger):
        sale = api.record_sale(api_ledger, _sale_body())
        tx_id = sale.body["transaction_id"]

        first = api.reverse_transaction(api_ledger, {"transaction_id": tx_id, "reason": "refund"})
        second = api.reverse_transaction(api_ledger, {"transaction_id": tx_id, "reason": "refund"})

        assert first.status_code == 200
        assert first.body["reversed_amount"] == 2999
        assert first.body["warnings"] == []
        assert second.status_code == 409
        assert second.body["reversal_transaction_id"] == first.body["reversal_transaction_id"]


class TestReconcile:
    def test_invalid_action(self, api, api_ledger, audit_sink):
        response = api.reconcile(api_ledger, {"action": "delete_everything"})

        assert response.status_code == 400
        assert response.body["field"] == "action"
        assert audit_sink.records == []

    def test_match_unmatch_cycle(self, api, api_ledger):
        tx_id = api.record_sale(api_ledger, _sale_body()).body["transaction_id"]

        matched = api.reconcile(
            api_ledger, {"action": "match", "transaction_id": tx_id, "bank_transaction_id": "bank_1"}
        )
        assert matched.status_code == 200
        assert matched.body["bank_transaction_id"] == "bank_1"
        assert matched.body["match_id"]

        listed = api.reconcile(api_ledger, {"action": "list_unmatched"})
        assert listed.body["unmatched_count"] == 0

        unmatched = api.reconcile(api_ledger, {"action": "unmatch", "transaction_id": tx_id})
        assert unmatched.body["success"] is True

        listed = api.reconcile(api_ledger, {"action": "list_unmatched"})
        assert listed.body["unmatched_count"] == 1
        assert listed.body["transactions"][0]["id"] == tx_id
        assert listed.body["transactions"][0]["transaction_date"] == "2025-01-15"

    def test_unmatch_without_match(self, api, api_ledger):
        tx_id = api.record_sale(api_ledger, _sale_body()).body["transaction_id"]

        response = api.reconcile(api_ledger, {"action": "unmatch", "transaction_id": tx_id})

        assert response.status_code == 200
        assert response.body["success"] is False

    def test_auto_match(self, api, api_ledger):
        tx_id = api.record_sale(
            api_ledger, _sale_body(amount=4200, transaction_date="2025-01-12")
        ).body["transaction_id"]
        lines = [
            {"bank_transaction_id": "bank_1", "amount": 4200, "posted_date": "2025-01-13"},
            {"bank_transaction_id": "bank_2", "amount": 1, "posted_date": "2025-01-13"},
        ]

        preview = api.reconcile(api_ledger, {"action": "auto_match", "bank_lines": lines, "dry_run": True})
        applied = api.reconcile(api_ledger, {"action": "auto_match", "bank_lines": lines})

        assert preview.body["dry_run"] is True
        assert preview.body["proposed"][0]["transaction_id"] == tx_id
        assert preview.body["matched"] == []
        assert applied.body["matched"] == [{"bank_transaction_id": "bank_1", "transaction_id": tx_id}]
        assert applied.body["unmatched_bank_lines"] == ["bank_2"]

    def test_auto_match_requires_list(self, api, api_ledger):
        response = api.reconcile(api_ledger, {"action": "auto_match", "bank_lines": "bank_1"})

        assert response.status_code == 400
        assert response.body["field"] == "bank_lines"

    def test_snapshot_create_and_get(self, api, api_ledger):
        tx_id = api.record_sale(api_ledger, _sale_body()).body["transaction_id"]
        api.reconcile(
            api_ledger, {"action": "match", "transaction_id": tx_id, "bank_transaction_id": "bank_1"}
        )
        window = {"period_start": "2025-01-01", "period_end": "2025-01-31"}

        created = api.reconcile(api_ledger, {"action": "create_snapshot", **window})
        fetched = api.reconcile(api_ledger, {"action": "get_snapshot", **window})

        assert created.status_code == 200
        assert created.body["version"] == 1
        assert created.body["summary"]["total_matched"] == 1
        assert fetched.body["integrity_valid"] is True
        assert fetched.body["snapshot"]["id"] == created.body["snapshot_id"]
        assert fetched.body["snapshot"]["integrity_hash"] == created.body["integrity_hash"]

    def test_get_missing_snapshot(self, api, api_ledger):
        response = api.reconcile(
            api_ledger,
            {"action": "get_snapshot", "period_start": "2024-01-01", "period_end": "2024-01-31"},
        )

        assert response.status_code == 404

    def test_match_in_locked_period(self, api, api_ledger):
        tx_id = api.record_sale(
            api_ledger, _sale_body(transaction_date="2025-01-10")
        ).body["transaction_id"]
        period_id = api.create_period(
            api_ledger, {"period_start": "2025-01-01", "period_end": "2025-01-31"}
        ).body["period"]["id"]
        api.lock_period(api_ledger, period_id)

        response = api.reconcile(
            api_ledger, {"action": "match", "transaction_id": tx_id, "bank_transaction_id": "b"}
        )

        assert response.status_code == 403
        assert response.body["period_id"] == period_id


class TestPeriods:
    def test_lifecycle(self, api, api_ledger):
        created = api.create_period(
            api_ledger, {"period_start": "2025-02-01", "period_end": "2025-02-28"}
        )
        period_id = created.body["period"]["id"]

        assert created.status_code == 201
        assert created.body["period"]["name"] == "2025-02-01..2025-02-28"
        assert api.close_period(api_ledger, period_id).body["period"]["status"] == "closed"
        assert api.lock_period(api_ledger, period_id).body["period"]["status"] == "locked"
        assert api.close_period(api_ledger, period_id).status_code == 400

    def test_overlap(self, api, api_ledger):
        api.create_period(api_ledger, {"period_start": "2025-02-01", "period_end": "2025-02-28"})

        response = api.create_period(
            api_ledger, {"period_start": "2025-02-15", "period_end": "2025-03-15"}
        )

        assert response.body["code"] == "PERIOD_OVERLAP"

    def test_missing_dates(self, api, api_ledger):
        response = api.create_period(api_ledger, {"period_start": "2025-02-01"})

        assert response.status_code == 400


class TestAuditTrail:
    def test_state_changes_are_audited(self, api, api_ledger, audit_sink):
        tx_id = api.record_sale(api_ledger, _sale_body(), actor="checkout").body["transaction_id"]
        api.record_sale(api_ledger, _sale_body(), actor="checkout")
        api.reconcile(
            api_ledger, {"action": "match", "transaction_id": tx_id, "bank_transaction_id": "bank_1"}
        )
        api.reconcile(api_ledger, {"action": "list_unmatched"})
        api.reconcile(api_ledger, {"action": "create_snapshot", "as_of_date": "2025-01-31"})

        assert audit_sink.actions() == [
            "record_sale",
            "record_sale",
            "reconcile_match",
            "snapshot_created",
        ]
        first, replay = audit_sink.records[:2]
        assert first.response_status == 200
        assert replay.response_status == 409
        assert first.actor == "checkout"
        assert first.entity_id == tx_id
        assert replay.entity_id == tx_id
        assert str(first.ledger_id) == api_ledger
        assert first.request_body == {
            "reference_id": "order_1",
            "creator_id": "creator_1",
            "amount_cents": 2999,
            "creator_percent": 80,
        }

    def test_rejections_are_audited(self, api, api_ledger, audit_sink):
        api.record_sale(api_ledger, _sale_body(amount=-1))

        assert audit_sink.records[0].response_status == 400
        assert audit_sink.records[0].entity_id == "order_1"

    def test_payout_audited_by_transaction_id(self, api, api_ledger, audit_sink):
        api.record_sale(api_ledger, _sale_body(amount=10000))
        payout = api.record_payout(
            api_ledger, {"reference_id": "payout_1", "creator_id": "creator_1", "amount": 100}
        )

        assert audit_sink.records[-1].action == "record_payout"
        assert audit_sink.records[-1].entity_id == payout.body["transaction_id"]

    def test_default_sink_follows_config(self, session_factory):
        from ledger_config import AuditConfig
        from ledger_services.audit_sink import DatabaseAuditSink, NullAuditSink

        disabled = LedgerApi(session_factory, config=LedgerEngineConfig(audit=AuditConfig(enabled=False)))
        enabled = LedgerApi(session_factory, config=LedgerEngineConfig())
        try:
            assert isinstance(disabled._audit, NullAuditSink)
            assert isinstance(enabled._audit, DatabaseAuditSink)
        finally:
            disabled.close()
            enabled.close()

    def test_database_sink_end_to_end(self, session_factory):
        from sqlalchemy import select

        from ledger_kernel.models.audit_log import AuditLogEntry

        api = LedgerApi(session_factory, config=LedgerEngineConfig(), clock=DeterministicClock())
        ledger_id = api.create_ledger({"name": "Audited"}).body["ledger_id"]
        api.record_payout(
            ledger_id,
            {"reference_id": "payout_1", "creator_id": "c1", "amount": 5, "bank_account": "999"},
        )
        api.close(wait=True)

        with session_factory() as session:
            rows = session.execute(
                select(AuditLogEntry).where(AuditLogEntry.action == "record_payout")
            ).scalars().all()
        assert len(rows) == 1
        assert rows[0].response_status == 400
        assert rows[0].request_body["bank_account"] == "[REDACTED]"


def test_reconcile_actions_cover_every_handler():
    from ledger_services.api import RECONCILE_ACTIONS

    for action in RECONCILE_ACTIONS:
        assert callable(getattr(LedgerApi, f"_reconcile_{action}"))


def test_transaction_date_defaults_to_clock(api, api_ledger):
    api.record_sale(api_ledger, _sale_body())
    listed = api.reconcile(api_ledger, {"action": "list_unmatched", "limit": 5})

    assert listed.body["transactions"][0]["transaction_date"] == date(2025, 1, 15).isoformat()
