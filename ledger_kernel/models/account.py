"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for typed balance buckets within a ledger.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One account per (ledger, type, entity): ``account_key`` is unique per
      ledger, so lazy creation under concurrency cannot produce twins.
    - ``balance`` equals the signed sum of the account's entries, signed by
      the account's normal side.  Only TransactionWriter changes it, with an
      atomic in-database increment in the same transaction as the entries.
    - account_type, entity_id, ledger_id and currency never change after
      creation (ORM listener in db/immutability.py).

Failure modes:
    - IntegrityError on a concurrent duplicate create; AccountService
      re-reads the winner.

Audit relevance:
    Cached balances are checked against entries by
    BalanceSelector.verify_account_balances().
"""

from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    CASH = "cash"
    PLATFORM_REVENUE = "platform_revenue"
    CREATOR_BALANCE = "creator_balance"
    PROCESSING_FEES = "processing_fees"
    EXPENSE = "expense"
    TAX_RESERVE = "tax_reserve"
    REFUND_RESERVE = "refund_reserve"
    OWNER_EQUITY = "owner_equity"


class NormalBalance(str, Enum):
    """Side on which an account's balance increases."""

    DEBIT = "debit"
    CREDIT = "credit"


# Assets and expenses grow with debits; everything else with credits.
# processing_fees holds amounts withheld for the processor, so it is
# credit-normal here.
DEBIT_NORMAL_TYPES: frozenset[AccountType] = frozenset({
    AccountType.CASH,
    AccountType.EXPENSE,
    AccountType.TAX_RESERVE,
    AccountType.REFUND_RESERVE,
})

# Account types that exist once per ledger rather than once per entity.
LEDGER_LEVEL_TYPES: frozenset[AccountType] = frozenset({
    AccountType.CASH,
    AccountType.PLATFORM_REVENUE,
    AccountType.PROCESSING_FEES,
    AccountType.OWNER_EQUITY,
})


def normal_balance_for(account_type: AccountType | str) -> NormalBalance:
    if AccountType(account_type) in DEBIT_NORMAL_TYPES:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


class Account(TrackedBase):
    """
    Typed balance bucket.

    Contract:
        Accounts are created lazily by AccountService the first time a
        transaction touches them.  The ``balance`` column is a cache of the
        entries; callers never write it directly.

    Guarantees:
        - account_key == "<type>:<entity_id or '*'>", unique per ledger.
        - normal_balance is derived from account_type at creation.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("ledger_id", "account_key", name="uq_account_ledger_key"),
        Index("idx_account_ledger_type", "ledger_id", "account_type"),
    )

    ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledgers.id"),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(String(30), nullable=False)

    # Creator id for creator_balance accounts; None for ledger-level accounts
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    account_key: Mapped[str] = mapped_column(String(300), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account {self.account_key} balance={self.balance}>"

    @staticmethod
    def key_for(account_type: AccountType | str, entity_id: str | None) -> str:
        return f"{AccountType(account_type).value}:{entity_id or '*'}"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def custom_split_percent(self) -> Decimal | None:
        value = (self.metadata_ or {}).get("custom_split_percent")
        return None if value is None else Decimal(str(value))

    def signed_amount(self, entry_type: str, amount: int) -> int:
        """Effect of one entry on this account's balance."""
        if entry_type == self.normal_balance:
            return amount
        return -amount
