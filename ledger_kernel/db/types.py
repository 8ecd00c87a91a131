"""
Module: ledger_kernel.db.types
Responsibility: Column type aliases and money helpers shared by models,
    domain code and services.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/
    or domain/.

Invariants enforced:
    - Amounts are integer minor units (cents) everywhere below the API.
      Conversion to major units happens only through ``money_from_int``.
    - ``round_money`` is the one sanctioned rounding function and uses
      ROUND_HALF_UP.
    - Currency codes are validated against ISO 4217.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, String

from ledger_kernel.exceptions import InvalidCurrencyError

Cents = Annotated[int, BigInteger]
Currency = Annotated[str, String(3)]
PayloadHash = Annotated[str, String(64)]
ShortCode = Annotated[str, String(50)]
ReferenceId = Annotated[str, String(255)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def money_from_int(value: int, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Convert minor units to a major-unit Decimal.

    Example:
        money_from_int(2999) -> Decimal("29.99")
    """
    divisor = Decimal(10) ** decimal_places
    return (Decimal(value) / divisor).quantize(Decimal(1).scaleb(-decimal_places))


def round_money(
    value: Decimal,
    decimal_places: int = 0,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places``.

    With the default of 0 places this rounds a fractional cent amount to
    whole cents.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "ARS", "BRL", "CLP", "CNY", "COP", "CZK", "DKK", "EGP",
    "HKD", "HUF", "IDR", "ILS", "INR", "ISK", "KES", "KRW", "MXN",
    "MYR", "NGN", "NOK", "PEN", "PHP", "PKR", "PLN", "RON", "SAR",
    "SEK", "SGD", "THB", "TRY", "TWD", "UAH", "VND", "ZAR",
})


def validate_currency(currency: str) -> str:
    """
    Return the upper-cased currency code iff it is a known ISO 4217 code.

    Raises:
        InvalidCurrencyError: If the code is empty or unknown.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
