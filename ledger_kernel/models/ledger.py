"""
Module: ledger_kernel.models.ledger
Responsibility: ORM persistence for the tenant-scoped ledger book.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Every Account, Transaction, AccountingPeriod, BankMatch and
      ReconciliationSnapshot belongs to exactly one Ledger.
    - After creation only ``status`` and ``settings`` may change (ORM
      listener in db/immutability.py).

Audit relevance:
    ``settings.default_creator_percent`` decides how revenue is split when a
    sale omits an explicit percentage, so changes to it are audit-logged by
    the API facade.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class LedgerStatus(str, Enum):
    """Ledger lifecycle.  Only ACTIVE ledgers accept new transactions."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class Ledger(TrackedBase):
    """
    Tenant accounting book.

    Guarantees:
        - name is fixed at creation.
        - settings is a JSON object; recognised keys are
          ``default_creator_percent`` (number 0..100) and ``currency``.
    """

    __tablename__ = "ledgers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[LedgerStatus] = mapped_column(
        String(20),
        default=LedgerStatus.ACTIVE,
        nullable=False,
    )

    settings: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Ledger {self.name}: {self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == LedgerStatus.ACTIVE

    @property
    def currency(self) -> str:
        return (self.settings or {}).get("currency", "USD")

    @property
    def default_creator_percent(self) -> Decimal | None:
        """Explicit ledger-wide creator share, or None when not configured."""
        value = (self.settings or {}).get("default_creator_percent")
        return None if value is None else Decimal(str(value))
