"""
Tests for LedgerService and AccountService.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    AccountNotFoundError,
    ImmutabilityViolationError,
    LedgerNotFoundError,
    ValidationError,
)
from ledger_kernel.models.account import Account, AccountType, NormalBalance


class TestLedgerService:
    def test_create_provisions_ledger_accounts(self, account_service, ledger):
        for account_type in (
            AccountType.CASH,
            AccountType.PLATFORM_REVENUE,
            AccountType.PROCESSING_FEES,
        ):
            account = account_service.find(ledger.id, account_type)
            assert account is not None
            assert account.balance == 0

        assert ledger.status == "active"
        assert ledger.settings["currency"] == "USD"

    def test_blank_name_rejected(self, ledger_service):
        with pytest.raises(ValidationError) as exc_info:
            ledger_service.create_ledger("   ")
        assert exc_info.value.field == "name"

    def test_default_percent_normalized(self, ledger_service):
        ledger = ledger_service.create_ledger("Shop", {"default_creator_percent": 75.5})

        assert ledger.settings["default_creator_percent"] == "75.5"

    def test_default_percent_out_of_range(self, ledger_service):
        with pytest.raises(ValidationError):
            ledger_service.create_ledger("Shop", {"default_creator_percent": 101})

    def test_bad_currency(self, ledger_service):
        with pytest.raises(ValidationError):
            ledger_service.create_ledger("Shop", {"currency": "dollars"})

    def test_update_settings_merges_and_removes(self, ledger_service, ledger_id):
        ledger_service.update_settings(ledger_id, {"default_creator_percent": 70, "theme": "dark"})

        updated = ledger_service.update_settings(ledger_id, {"theme": None})

        assert updated.settings["default_creator_percent"] == "70"
        assert "theme" not in updated.settings

    def test_set_status(self, ledger_service, ledger_id):
        assert ledger_service.set_status(ledger_id, "archived").status == "archived"

        with pytest.raises(ValidationError):
            ledger_service.require_active(ledger_id)

    def test_unknown_status(self, ledger_service, ledger_id):
        with pytest.raises(ValidationError):
            ledger_service.set_status(ledger_id, "deleted")

    def test_unknown_ledger(self, ledger_service):
        with pytest.raises(LedgerNotFoundError):
            ledger_service.get_ledger(uuid4())


class TestAccountService:
    def test_creator_account_created_once(self, session, account_service, ledger_id):
        first = account_service.get_or_create(ledger_id, AccountType.CREATOR_BALANCE, "c1", "USD")
        second = account_service.get_or_create(ledger_id, "creator_balance", "c1", "USD")

        assert first.id == second.id
        assert first.account_key == "creator_balance:c1"
        assert first.normal_balance == NormalBalance.CREDIT

    def test_cash_is_debit_normal(self, account_service, ledger_id):
        assert account_service.find(ledger_id, AccountType.CASH).normal_balance == NormalBalance.DEBIT

    def test_creator_account_needs_entity(self, account_service, ledger_id):
        with pytest.raises(ValidationError):
            account_service.get_or_create(ledger_id, AccountType.CREATOR_BALANCE, None, "USD")

    def test_ledger_level_account_takes_no_entity(self, account_service, ledger_id):
        with pytest.raises(ValidationError):
            account_service.get_or_create(ledger_id, AccountType.CASH, "c1", "USD")

    def test_unknown_account_type(self, account_service, ledger_id):
        with pytest.raises(ValidationError):
            account_service.get_or_create(ledger_id, "liability", None, "USD")

    def test_get_account(self, account_service, ledger_id):
        cash = account_service.find(ledger_id, AccountType.CASH)

        assert account_service.get_account(ledger_id, cash.id).account_type == "cash"
        with pytest.raises(AccountNotFoundError):
            account_service.get_account(ledger_id, uuid4())

    def test_set_and_clear_custom_split(self, account_service, ledger_id):
        info = account_service.set_custom_split(ledger_id, "c1", Decimal("85.5"))
        assert info.metadata["custom_split_percent"] == "85.5"

        cleared = account_service.set_custom_split(ledger_id, "c1", None)
        assert "custom_split_percent" not in cleared.metadata

    def test_custom_split_out_of_range(self, account_service, ledger_id):
        with pytest.raises(ValidationError) as exc_info:
            account_service.set_custom_split(ledger_id, "c1", 150)
        assert exc_info.value.field == "creator_percent"

    def test_structural_fields_frozen(self, session, account_service, ledger_id):
        cash = account_service.find(ledger_id, AccountType.CASH)
        cash.account_key = "cash:elsewhere"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_key_for(self):
        assert Account.key_for(AccountType.CREATOR_BALANCE, "c9") == "creator_balance:c9"
        assert Account.key_for("cash", None) == "cash:*"
