"""
Request validation for the API facade.

Everything arriving at ``LedgerApi`` is untrusted JSON-ish data.  These
helpers turn it into typed values or raise the kernel's ValidationError,
so the kernel only ever sees well-formed input.
"""

import re
from datetime import date
from typing import Any
from uuid import UUID

from ledger_kernel.exceptions import ValidationError

ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_ID_LENGTH = 255
MAX_AMOUNT_CENTS = 100_000_000


def validate_id(value: Any, field: str, max_length: int = MAX_ID_LENGTH) -> str:
    """External identifier: 1..max_length characters of [A-Za-z0-9_-]."""
    if not isinstance(value, str) or not 0 < len(value) <= max_length or not ID_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {field}: must be 1-{max_length} characters of letters, digits, '_' or '-'",
            field=field,
        )
    return value


def optional_id(value: Any, field: str, max_length: int = MAX_ID_LENGTH) -> str | None:
    return None if value is None else validate_id(value, field, max_length)


def validate_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: must be a UUID", field=field)


def validate_amount(value: Any, field: str = "amount", allow_zero: bool = False) -> int:
    """Integer cents in [0, MAX_AMOUNT_CENTS] (strictly positive unless allow_zero)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid {field}: must be an integer number of cents", field=field)
    if value < 0 or value > MAX_AMOUNT_CENTS or (value == 0 and not allow_zero):
        lower = 0 if allow_zero else 1
        raise ValidationError(
            f"Invalid {field}: must be between {lower} and {MAX_AMOUNT_CENTS} cents",
            field=field,
        )
    return value


def optional_date(value: Any, field: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}: expected YYYY-MM-DD", field=field)


def optional_text(value: Any, field: str, max_length: int = 500) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > max_length:
        raise ValidationError(f"Invalid {field}: must be text up to {max_length} characters", field=field)
    return value.strip()


def optional_mapping(value: Any, field: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid {field}: must be an object", field=field)
    return dict(value)
