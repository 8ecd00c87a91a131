"""
LedgerService -- tenant ledger provisioning and settings.

Responsibility:
    Creates ledgers together with their ledger-level accounts, updates the
    mutable settings (``default_creator_percent``, ``currency``) and moves a
    ledger between ACTIVE, SUSPENDED and ARCHIVED.

Architecture position:
    Kernel > Services -- imperative shell.  Recorders call
    ``require_active`` before writing.

Invariants enforced:
    - A ledger's name never changes (db/immutability.py).
    - ``default_creator_percent`` is a creator share in 0..100.  There is no
      inference of a platform fee from small values.
    - Only ACTIVE ledgers accept new transactions.

Failure modes:
    - LedgerNotFoundError for an unknown ledger id.
    - ValidationError for invalid settings or a non-active ledger.
    - CurrencyMismatchError when a write names a currency other than the
      ledger's.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.dtos import LedgerInfo
from ledger_kernel.domain.split import to_percent
from ledger_kernel.exceptions import (
    CurrencyMismatchError,
    LedgerNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger import Ledger, LedgerStatus
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.ledger")

# Accounts every ledger starts with.  Creator accounts appear lazily.
PROVISIONED_ACCOUNT_TYPES = (
    AccountType.CASH,
    AccountType.PLATFORM_REVENUE,
    AccountType.PROCESSING_FEES,
)


def _normalize_settings(settings: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(settings)
    if "currency" in normalized:
        normalized["currency"] = validate_currency(normalized["currency"])
    if normalized.get("default_creator_percent") is not None:
        percent = to_percent(normalized["default_creator_percent"], field="default_creator_percent")
        if percent < 0 or percent > 100:
            raise ValidationError(
                "default_creator_percent must be between 0 and 100",
                field="default_creator_percent",
            )
        normalized["default_creator_percent"] = str(percent)
    return normalized


class LedgerService(BaseService[Ledger]):
    """Ledger lifecycle and settings."""

    def __init__(self, session: Session, default_currency: str = "USD"):
        super().__init__(session)
        self._default_currency = default_currency
        self._accounts = AccountService(session)

    def create_ledger(self, name: str, settings: dict[str, Any] | None = None) -> LedgerInfo:
        """
        Create a ledger and provision its cash, platform revenue and
        processing fee accounts.

        Raises:
            ValidationError: Empty name or invalid settings.
        """
        if not name or not name.strip():
            raise ValidationError("Ledger name is required", field="name")

        normalized = _normalize_settings(settings or {})
        normalized.setdefault("currency", validate_currency(self._default_currency))

        ledger = Ledger(name=name.strip(), status=LedgerStatus.ACTIVE, settings=normalized)
        self.session.add(ledger)
        self.session.flush()

        for account_type in PROVISIONED_ACCOUNT_TYPES:
            self._accounts.get_or_create(ledger.id, account_type, None, normalized["currency"])

        logger.info(
            "ledger_created",
            extra={
                "ledger_id": str(ledger.id),
                "currency": normalized["currency"],
                "default_creator_percent": normalized.get("default_creator_percent"),
            },
        )
        return LedgerInfo.from_model(ledger)

    def _get_orm(self, ledger_id: UUID) -> Ledger:
        ledger = self.session.execute(
            select(Ledger).where(Ledger.id == ledger_id)
        ).scalar_one_or_none()
        if ledger is None:
            raise LedgerNotFoundError(str(ledger_id))
        return ledger

    def get_ledger(self, ledger_id: UUID) -> LedgerInfo:
        return LedgerInfo.from_model(self._get_orm(ledger_id))

    def require_active(self, ledger_id: UUID) -> Ledger:
        """
        Return the ORM ledger iff it exists and is ACTIVE.

        Raises:
            LedgerNotFoundError: Unknown ledger.
            ValidationError: Ledger is suspended or archived.
        """
        ledger = self._get_orm(ledger_id)
        if not ledger.is_active:
            raise ValidationError(
                f"Ledger {ledger_id} is {getattr(ledger.status, 'value', ledger.status)}",
                field="ledger_id",
            )
        return ledger

    def resolve_currency(self, ledger: Ledger, requested: str | None) -> str:
        """
        The currency a write on ``ledger`` uses.

        Raises:
            InvalidCurrencyError: ``requested`` is not an ISO 4217 code.
            CurrencyMismatchError: ``requested`` differs from the ledger's currency.
        """
        expected = validate_currency(ledger.currency)
        if requested is None:
            return expected
        actual = validate_currency(requested)
        if actual != expected:
            raise CurrencyMismatchError(expected, actual)
        return actual

    def update_settings(self, ledger_id: UUID, changes: dict[str, Any]) -> LedgerInfo:
        """Merge ``changes`` into the ledger settings.  A None value removes the key."""
        ledger = self._get_orm(ledger_id)
        merged = dict(ledger.settings or {})
        for key, value in changes.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        ledger.settings = _normalize_settings(merged)
        self.session.flush()

        logger.info(
            "ledger_settings_updated",
            extra={"ledger_id": str(ledger_id), "changed_keys": sorted(changes)},
        )
        return LedgerInfo.from_model(ledger)

    def set_status(self, ledger_id: UUID, status: LedgerStatus | str) -> LedgerInfo:
        try:
            new_status = LedgerStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown ledger status: {status}", field="status")

        ledger = self._get_orm(ledger_id)
        old_status = getattr(ledger.status, "value", ledger.status)
        ledger.status = new_status
        self.session.flush()

        logger.info(
            "ledger_status_changed",
            extra={
                "ledger_id": str(ledger_id),
                "from_status": old_status,
                "to_status": new_status.value,
            },
        )
        return LedgerInfo.from_model(ledger)
