"""
Tests for ReconciliationMatcher.

Verifies:
- match moves a transaction to reconciled and writes one BankMatch
- unmatch(match(tx)) restores status and metadata
- list_unmatched excludes matched and terminal transactions
- auto_match proposes only unique exact-amount pairings within tolerance
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.matching import BankLine
from ledger_kernel.domain.metadata import reconciliation_of
from ledger_kernel.exceptions import TransactionNotFoundError, ValidationError
from ledger_kernel.models.bank_match import BankMatch
from ledger_kernel.models.transaction import Transaction, TransactionStatus
from ledger_kernel.services.reconciliation_service import ReconciliationMatcher


def _match_count(session, transaction_id) -> int:
    return session.execute(
        select(func.count()).select_from(BankMatch).where(BankMatch.transaction_id == transaction_id)
    ).scalar_one()


class TestMatch:
    def test_match_reconciles(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")

        result = matcher.match(ledger_id, sale.transaction_id, "bank_1")

        assert result.success
        assert result.status == TransactionStatus.RECONCILED.value
        tx = session.get(Transaction, sale.transaction_id)
        assert tx.is_reconciled
        marker = reconciliation_of(tx.metadata_)
        assert marker.bank_transaction_id == "bank_1"
        assert marker.bank_match_id == str(result.bank_match_id)
        assert _match_count(session, sale.transaction_id) == 1

    def test_rematch_replaces_bank_id(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")
        first = matcher.match(ledger_id, sale.transaction_id, "bank_1")

        second = matcher.match(ledger_id, sale.transaction_id, "bank_2")

        assert second.bank_match_id == first.bank_match_id
        assert _match_count(session, sale.transaction_id) == 1
        tx = session.get(Transaction, sale.transaction_id)
        assert reconciliation_of(tx.metadata_).bank_transaction_id == "bank_2"

    def test_amounts_and_entries_untouched(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1", amount=2999)
        tx = session.get(Transaction, sale.transaction_id)
        before = [(e.account_id, e.entry_type, e.amount) for e in tx.entries]

        matcher.match(ledger_id, sale.transaction_id, "bank_1")

        tx = session.get(Transaction, sale.transaction_id)
        assert tx.amount == 2999
        assert [(e.account_id, e.entry_type, e.amount) for e in tx.entries] == before

    def test_unknown_transaction(self, matcher, ledger_id):
        with pytest.raises(TransactionNotFoundError):
            matcher.match(ledger_id, uuid4(), "bank_1")

    def test_transaction_of_another_ledger_not_found(
        self, matcher, ledger_service, record_sale
    ):
        sale = record_sale("order_1")
        other = ledger_service.create_ledger("Other")

        with pytest.raises(TransactionNotFoundError):
            matcher.match(other.id, sale.transaction_id, "bank_1")

    def test_blank_bank_id_rejected(self, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")

        with pytest.raises(ValidationError):
            matcher.match(ledger_id, sale.transaction_id, "")

    def test_reversed_transaction_rejected(self, matcher, reversal_service, ledger_id, record_sale):
        sale = record_sale("order_1")
        reversal_service.reverse_transaction(ledger_id, sale.transaction_id, "refund")

        with pytest.raises(ValidationError):
            matcher.match(ledger_id, sale.transaction_id, "bank_1")


class TestUnmatch:
    def test_round_trip_restores_transaction(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")
        tx = session.get(Transaction, sale.transaction_id)
        original_status = tx.status
        original_metadata = dict(tx.metadata_)

        matcher.match(ledger_id, sale.transaction_id, "bank_1")
        result = matcher.unmatch(ledger_id, sale.transaction_id)

        assert result.success
        assert result.bank_transaction_id == "bank_1"
        tx = session.get(Transaction, sale.transaction_id)
        assert tx.status == original_status
        assert tx.metadata_ == original_metadata
        assert _match_count(session, sale.transaction_id) == 0

    def test_unmatch_without_match_reports_failure(self, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")

        result = matcher.unmatch(ledger_id, sale.transaction_id)

        assert result.success is False
        assert result.status == TransactionStatus.COMPLETED.value

    def test_match_again_after_unmatch(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1")
        matcher.match(ledger_id, sale.transaction_id, "bank_1")
        matcher.unmatch(ledger_id, sale.transaction_id)

        result = matcher.match(ledger_id, sale.transaction_id, "bank_9")

        assert result.success
        assert _match_count(session, sale.transaction_id) == 1


class TestListUnmatched:
    def test_excludes_matched_and_reversed(self, matcher, reversal_service, ledger_id, record_sale):
        open_sale = record_sale("order_open")
        matched = record_sale("order_matched")
        reversed_sale = record_sale("order_reversed")
        matcher.match(ledger_id, matched.transaction_id, "bank_1")
        reversal = reversal_service.reverse_transaction(
            ledger_id, reversed_sale.transaction_id, "refund"
        )

        ids = {t.id for t in matcher.list_unmatched(ledger_id)}

        assert open_sale.transaction_id in ids
        assert matched.transaction_id not in ids
        assert reversed_sale.transaction_id not in ids
        # The reversal itself is a live, unmatched transaction.
        assert reversal.reversal_transaction_id in ids

    def test_most_recent_first(self, matcher, ledger_id, record_sale):
        record_sale("order_old", transaction_date=date(2025, 1, 2))
        record_sale("order_new", transaction_date=date(2025, 1, 14))

        refs = [t.reference_id for t in matcher.list_unmatched(ledger_id)]

        assert refs == ["order_new", "order_old"]

    def test_limit_is_capped(self, session, ledger_id, record_sale, deterministic_clock):
        for i in range(4):
            record_sale(f"order_{i}")
        small = ReconciliationMatcher(session, deterministic_clock, page_size=2, max_page_size=3)

        assert len(small.list_unmatched(ledger_id)) == 2
        assert len(small.list_unmatched(ledger_id, limit=100)) == 3

    def test_bad_limit(self, matcher, ledger_id):
        with pytest.raises(ValidationError):
            matcher.list_unmatched(ledger_id, limit=0)


class TestAutoMatch:
    def test_unique_pair_is_applied(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1", amount=2999, transaction_date=date(2025, 1, 10))

        result = matcher.auto_match(
            ledger_id, [BankLine("bank_1", 2999, date(2025, 1, 11))], tolerance_days=2
        )

        assert len(result.matched) == 1
        assert result.matched[0].transaction_id == sale.transaction_id
        assert session.get(Transaction, sale.transaction_id).is_reconciled

    def test_dry_run_writes_nothing(self, session, matcher, ledger_id, record_sale):
        sale = record_sale("order_1", amount=2999, transaction_date=date(2025, 1, 10))

        result = matcher.auto_match(
            ledger_id, [BankLine("bank_1", 2999, date(2025, 1, 10))], dry_run=True
        )

        assert result.dry_run
        assert len(result.plan.proposals) == 1
        assert result.matched == ()
        assert _match_count(session, sale.transaction_id) == 0

    def test_ambiguous_left_alone(self, session, matcher, ledger_id, record_sale):
        a = record_sale("order_a", amount=500, transaction_date=date(2025, 1, 10))
        b = record_sale("order_b", amount=500, transaction_date=date(2025, 1, 11))

        result = matcher.auto_match(ledger_id, [BankLine("bank_1", 500, date(2025, 1, 10))])

        assert result.matched == ()
        assert len(result.plan.ambiguous) == 1
        assert _match_count(session, a.transaction_id) == 0
        assert _match_count(session, b.transaction_id) == 0

    def test_already_matched_bank_id_skipped(self, matcher, ledger_id, record_sale):
        first = record_sale("order_1", amount=500)
        record_sale("order_2", amount=500)
        matcher.match(ledger_id, first.transaction_id, "bank_1")

        result = matcher.auto_match(ledger_id, [BankLine("bank_1", 500, date(2025, 1, 15))])

        assert [s.reason for s in result.skipped] == ["already_matched"]
        assert result.matched == ()

    def test_sealed_period_proposal_skipped(
        self, matcher, period_service, ledger_id, january_period, record_sale
    ):
        sale = record_sale("order_1", amount=700, transaction_date=date(2025, 1, 31))
        period_service.close_period(ledger_id, january_period.id)

        result = matcher.auto_match(ledger_id, [BankLine("bank_1", 700, date(2025, 2, 1))])

        assert result.matched == ()
        assert result.skipped[0].reason == "period_locked"
        assert result.skipped[0].transaction_id == sale.transaction_id

    def test_non_integer_amount_rejected(self, matcher, ledger_id):
        with pytest.raises(ValidationError):
            matcher.auto_match(ledger_id, [BankLine("bank_1", 5.5, date(2025, 1, 15))])

    def test_duplicate_bank_ids_rejected(self, matcher, ledger_id):
        lines = [
            BankLine("bank_1", 500, date(2025, 1, 15)),
            BankLine("bank_1", 600, date(2025, 1, 15)),
        ]
        with pytest.raises(ValidationError):
            matcher.auto_match(ledger_id, lines)
