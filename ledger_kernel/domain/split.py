"""
Split -- revenue allocation between creator, platform and processor.

Responsibility:
    Pure computation of how a gross sale amount is divided, with exact
    cent-level conservation, plus the lookup order for the creator share
    when a caller does not supply one.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by
    SaleRecorder before any write.

Invariants enforced:
    - Conservation: creator_cents + platform_cents == gross_cents - fee_cents
      for every valid input.  The platform share is the remainder, so any
      rounding residue lands there and no cent is lost or duplicated.
    - Rounding is ROUND_HALF_UP on exact Decimal arithmetic.  Floats never
      enter the computation (percent is converted via its string form).

Failure modes:
    - ValidationError if gross <= 0, percent outside [0, 100], or fee
      outside [0, gross].
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ledger_kernel.db.types import DEFAULT_ROUNDING, money_from_int, round_money
from ledger_kernel.exceptions import ValidationError

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class SplitResult:
    """Outcome of a split, all amounts in cents."""

    gross_cents: int
    fee_cents: int
    creator_cents: int
    platform_cents: int
    creator_percent: Decimal

    @property
    def net_cents(self) -> int:
        return self.gross_cents - self.fee_cents

    @property
    def platform_percent(self) -> Decimal:
        return HUNDRED - self.creator_percent

    def breakdown(self) -> dict:
        """Major-unit view used in API responses."""
        return {
            "gross_amount": money_from_int(self.gross_cents),
            "processing_fee": money_from_int(self.fee_cents),
            "net_amount": money_from_int(self.net_cents),
            "creator_amount": money_from_int(self.creator_cents),
            "platform_amount": money_from_int(self.platform_cents),
            "creator_percent": self.creator_percent,
            "platform_percent": self.platform_percent,
        }


def to_percent(value: int | float | str | Decimal, field: str = "creator_percent") -> Decimal:
    """Convert a caller-supplied percentage to Decimal without float artifacts."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        percent = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not percent.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return percent


def calculate_split(
    gross_cents: int,
    creator_percent: int | float | str | Decimal,
    processing_fee_cents: int = 0,
) -> SplitResult:
    """
    Split ``gross_cents`` between creator and platform after the fee.

    net      = gross - fee
    creator  = round_half_up(net * percent / 100)
    platform = net - creator

    Example:
        calculate_split(2999, 80) -> creator 2399, platform 600
    """
    if not isinstance(gross_cents, int) or isinstance(gross_cents, bool) or gross_cents <= 0:
        raise ValidationError("gross amount must be a positive integer", field="amount")
    if (
        not isinstance(processing_fee_cents, int)
        or isinstance(processing_fee_cents, bool)
        or processing_fee_cents < 0
        or processing_fee_cents > gross_cents
    ):
        raise ValidationError(
            "processing fee must be between 0 and the gross amount",
            field="processing_fee",
        )

    percent = to_percent(creator_percent)
    if percent < 0 or percent > HUNDRED:
        raise ValidationError("creator_percent must be between 0 and 100", field="creator_percent")

    net = gross_cents - processing_fee_cents
    creator = int(round_money(Decimal(net) * percent / HUNDRED, 0, DEFAULT_ROUNDING))
    platform = net - creator

    return SplitResult(
        gross_cents=gross_cents,
        fee_cents=processing_fee_cents,
        creator_cents=creator,
        platform_cents=platform,
        creator_percent=percent,
    )


def resolve_creator_percent(
    explicit: int | float | str | Decimal | None,
    account_custom_percent: Decimal | None,
    ledger_default_percent: Decimal | None,
    fallback_percent: int | Decimal,
) -> Decimal:
    """
    Pick the creator share for a sale.

    Order: explicit request value, the creator account's custom split, the
    ledger's ``default_creator_percent``, then the configured fallback.  Each
    stored value is a creator share; nothing is reinterpreted as a platform
    fee.
    """
    for candidate in (explicit, account_custom_percent, ledger_default_percent):
        if candidate is not None:
            return to_percent(candidate)
    return to_percent(fallback_percent)
