"""Tests for the structured logging system (ledger_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import InsufficientBalanceError, PeriodLockedError
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger import LedgerStatus


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


@pytest.fixture
def json_stream():
    """Install a JSON handler at INFO and return its stream."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler)
    return stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:
    def test_envelope(self, json_stream):
        get_logger("services.sale_recorder").info("sale_recorded")

        record = _parse_log(json_stream)
        assert record["level"] == "INFO"
        assert record["message"] == "sale_recorded"
        assert record["logger"] == "ledger_kernel.services.sale_recorder"
        assert record["ts"].endswith("+00:00")

    def test_money_fields_stay_integer_cents(self, json_stream):
        get_logger("test").info("sale_recorded", extra={"gross_cents": 2999, "creator_id": "c1"})

        record = _parse_log(json_stream)
        assert record["gross_cents"] == 2999
        assert record["creator_id"] == "c1"

    def test_ledger_types_serialized(self, json_stream):
        tx_id = uuid4()
        get_logger("test").info(
            "typed",
            extra={
                "tx": tx_id,
                "day": date(2025, 1, 15),
                "creator_percent": Decimal("33.330"),
                "account_type": AccountType.CREATOR_BALANCE,
                "status": LedgerStatus.SUSPENDED,
            },
        )

        record = _parse_log(json_stream)
        assert record["tx"] == str(tx_id)
        assert record["day"] == "2025-01-15"
        assert record["creator_percent"] == "33.330"
        assert record["account_type"] == "creator_balance"
        assert record["status"] == "suspended"

    def test_context_wins_over_extra(self, json_stream):
        LogContext.set(reference_id="order_1")
        get_logger("test").info("msg", extra={"reference_id": "stale"})

        assert _parse_log(json_stream)["reference_id"] == "order_1"

    def test_no_context_fields_when_empty(self, json_stream):
        get_logger("test").info("bare_message")

        record = _parse_log(json_stream)
        assert "correlation_id" not in record
        assert "ledger_id" not in record

    def test_kernel_exception_fields(self, json_stream):
        try:
            raise InsufficientBalanceError("creator_1", 500, 900)
        except InsufficientBalanceError:
            get_logger("test").warning("payout_failed", exc_info=True)

        record = _parse_log(json_stream)
        assert record["exc_type"] == "InsufficientBalanceError"
        assert record["exc_code"] == "INSUFFICIENT_BALANCE"
        assert record["exc_http_status"] == 400
        assert record["exc_available"] == 500
        assert record["exc_requested"] == 900
        assert "traceback" in record

    def test_period_error_fields(self, json_stream):
        try:
            raise PeriodLockedError("p-1", "closed", "2025-01-10")
        except PeriodLockedError:
            get_logger("test").error("period_error", exc_info=True)

        record = _parse_log(json_stream)
        assert record["exc_code"] == "PERIOD_LOCKED"
        assert record["exc_http_status"] == 403
        assert record["exc_period_id"] == "p-1"
        assert record["exc_period_status"] == "closed"

    def test_plain_exception(self, json_stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(json_stream)
        assert record["exc_type"] == "ValueError"
        assert "exc_code" not in record

    def test_formatter_usable_standalone(self):
        record = logging.LogRecord("ledger_kernel.x", logging.INFO, "", 0, "hello", (), None)

        assert json.loads(StructuredFormatter().format(record))["message"] == "hello"


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", ledger_id=uuid4())

        assert LogContext.get("correlation_id") == "x"
        assert set(LogContext.get_all()) == {"correlation_id", "ledger_id"}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(event_id="nope")
        with pytest.raises(KeyError):
            LogContext.bind(creator_id="c1")

    def test_bind_restores(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", transaction_id="tx-1"):
            assert LogContext.get("correlation_id") == "inner"
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_skips_none_values(self):
        LogContext.set(actor_id="alice")
        with LogContext.bind(actor_id=None, ledger_id="l-1"):
            assert LogContext.get_all() == {"ledger_id": "l-1", "actor_id": "alice"}

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(reference_id="order_1"):
                raise RuntimeError("fail")
        assert LogContext.get("reference_id") is None


class TestLedgerWriteScope:
    def test_mints_correlation_id(self):
        ledger_id = uuid4()
        with LogContext.ledger_write(ledger_id, "order_1"):
            ctx = LogContext.get_all()

        assert ctx["ledger_id"] == str(ledger_id)
        assert ctx["reference_id"] == "order_1"
        assert ctx["correlation_id"]
        assert LogContext.get_all() == {}

    def test_keeps_enclosing_correlation_id(self):
        with LogContext.bind(correlation_id="api-req", actor_id="checkout"):
            with LogContext.ledger_write(uuid4(), "order_1"):
                assert LogContext.get("correlation_id") == "api-req"
                assert LogContext.get("actor_id") == "checkout"

    def test_drops_previous_transaction_id(self):
        with LogContext.bind(transaction_id="tx-earlier"):
            with LogContext.ledger_write(uuid4(), "order_2"):
                assert LogContext.get("transaction_id") is None
            assert LogContext.get("transaction_id") == "tx-earlier"


class TestConfigureLogging:
    def test_idempotent(self):
        h1 = logging.StreamHandler(StringIO())
        h2 = logging.StreamHandler(StringIO())

        assert configure_logging(handler=h1) is True
        assert configure_logging(handler=h2) is False

        handlers = logging.getLogger("ledger_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_level_by_name(self):
        stream = StringIO()
        configure_logging(level="warning", stream=stream)
        logger = get_logger("services.payout_recorder")
        logger.info("payout_recorded")
        logger.warning("payout_insufficient_balance")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["payout_insufficient_balance"]

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging(level="LOUD", stream=StringIO())

    def test_reset_leaves_foreign_handlers(self):
        foreign = logging.NullHandler()
        root = logging.getLogger("ledger_kernel")
        root.addHandler(foreign)
        try:
            ours = logging.StreamHandler(StringIO())
            configure_logging(handler=ours)
            reset_logging()

            assert foreign in root.handlers
            assert ours not in root.handlers
        finally:
            root.removeHandler(foreign)

    def test_child_loggers_share_handler(self):
        stream = StringIO()
        configure_logging(level=logging.DEBUG, stream=stream)
        get_logger("services.transaction_writer").debug("transaction_written")

        assert _parse_log(stream)["logger"] == "ledger_kernel.services.transaction_writer"
