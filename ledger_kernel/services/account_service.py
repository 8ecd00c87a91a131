"""
AccountService -- lazy account provisioning and creator split settings.

Responsibility:
    Resolves the account for (ledger, account_type, entity_id), creating it
    on first use, and stores per-creator split overrides on the creator's
    balance account.

Architecture position:
    Kernel > Services -- imperative shell.  Called by TransactionWriter for
    every entry leg, by LedgerService when a ledger is provisioned, and by
    the API facade for split configuration.

Invariants enforced:
    - One account per (ledger, type, entity): the unique ``account_key``
      constraint decides concurrent creates.  The loser's insert is rolled
      back to a savepoint and the winner's row is returned.
    - Ledger-level account types never carry an entity id; creator_balance
      accounts always do.

Failure modes:
    - ValidationError for an unknown account type or a missing/extra
      entity id.
    - AccountNotFoundError from ``get_account``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.domain.split import to_percent
from ledger_kernel.exceptions import AccountNotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    LEDGER_LEVEL_TYPES,
    Account,
    AccountType,
    normal_balance_for,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")

CUSTOM_SPLIT_KEY = "custom_split_percent"


def _account_name(account_type: AccountType, entity_id: str | None) -> str:
    label = account_type.value.replace("_", " ").title()
    return f"{label} - {entity_id}" if entity_id else label


class AccountService(BaseService[Account]):
    """
    Account lookup and lazy creation.

    Contract:
        ``get_or_create`` returns the ORM account (the writer needs the row
        for its balance update); every other public method returns
        ``AccountInfo``.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _coerce_type(self, account_type: AccountType | str, entity_id: str | None) -> AccountType:
        try:
            resolved = AccountType(account_type)
        except ValueError:
            raise ValidationError(f"Unknown account type: {account_type}", field="account_type")

        if resolved in LEDGER_LEVEL_TYPES and entity_id is not None:
            raise ValidationError(
                f"{resolved.value} accounts are ledger-level and take no entity_id",
                field="entity_id",
            )
        if resolved == AccountType.CREATOR_BALANCE and not entity_id:
            raise ValidationError("creator_balance accounts require a creator id", field="entity_id")
        return resolved

    def find(
        self,
        ledger_id: UUID,
        account_type: AccountType | str,
        entity_id: str | None = None,
    ) -> Account | None:
        key = Account.key_for(account_type, entity_id)
        return self.session.execute(
            select(Account).where(
                Account.ledger_id == ledger_id,
                Account.account_key == key,
            )
        ).scalar_one_or_none()

    def get_or_create(
        self,
        ledger_id: UUID,
        account_type: AccountType | str,
        entity_id: str | None,
        currency: str,
    ) -> Account:
        """
        Return the account, creating it when absent.

        The insert runs in a savepoint.  If a concurrent transaction created
        the same account first, the unique constraint fires, the savepoint is
        rolled back and the committed row is read instead.
        """
        resolved = self._coerce_type(account_type, entity_id)

        existing = self.find(ledger_id, resolved, entity_id)
        if existing is not None:
            return existing

        account = Account(
            ledger_id=ledger_id,
            account_type=resolved,
            entity_id=entity_id,
            account_key=Account.key_for(resolved, entity_id),
            name=_account_name(resolved, entity_id),
            normal_balance=normal_balance_for(resolved),
            balance=0,
            currency=currency,
            metadata_={},
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
        except IntegrityError:
            logger.info(
                "account_create_race_lost",
                extra={"ledger_id": str(ledger_id), "account_key": account.account_key},
            )
            winner = self.find(ledger_id, resolved, entity_id)
            if winner is None:
                raise
            return winner

        logger.info(
            "account_created",
            extra={
                "ledger_id": str(ledger_id),
                "account_key": account.account_key,
                "normal_balance": normal_balance_for(resolved).value,
            },
        )
        return account

    def get_account(self, ledger_id: UUID, account_id: UUID) -> AccountInfo:
        account = self.session.execute(
            select(Account).where(Account.id == account_id, Account.ledger_id == ledger_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return AccountInfo.from_model(account)

    def get_creator_account(self, ledger_id: UUID, creator_id: str) -> Account | None:
        return self.find(ledger_id, AccountType.CREATOR_BALANCE, creator_id)

    def set_custom_split(
        self,
        ledger_id: UUID,
        creator_id: str,
        creator_percent: int | float | str | Decimal | None,
        currency: str = "USD",
    ) -> AccountInfo:
        """
        Store (or clear, with None) the creator's default share.

        Used by SaleRecorder when a sale names no explicit percentage.

        Raises:
            ValidationError: If the percentage is outside 0..100.
        """
        account = self.get_or_create(
            ledger_id, AccountType.CREATOR_BALANCE, creator_id, currency
        )
        metadata = dict(account.metadata_ or {})
        if creator_percent is None:
            metadata.pop(CUSTOM_SPLIT_KEY, None)
        else:
            percent = to_percent(creator_percent, field="creator_percent")
            if percent < 0 or percent > 100:
                raise ValidationError(
                    "creator_percent must be between 0 and 100", field="creator_percent"
                )
            metadata[CUSTOM_SPLIT_KEY] = str(percent)
        account.metadata_ = metadata
        self.session.flush()

        logger.info(
            "creator_split_configured",
            extra={
                "ledger_id": str(ledger_id),
                "creator_id": creator_id,
                "creator_percent": metadata.get(CUSTOM_SPLIT_KEY),
            },
        )
        return AccountInfo.from_model(account)
