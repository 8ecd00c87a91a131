"""
Deterministic hashing utilities.

Snapshot integrity hashes and audit payload hashes are computed here and
nowhere else, so every caller agrees on the canonical form.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Serialize types json does not handle natively.

    Raises:
        TypeError: If the object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON.

    Keys sorted, no whitespace, non-ASCII kept as escapes, Decimal/date/UUID
    rendered as strings.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict | list) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form (64 characters)."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_json_native(data: Any) -> Any:
    """
    Round-trip ``data`` through canonical JSON.

    Snapshot data is stored in a JSON column and hashed.  Normalising first
    guarantees the hash computed at creation is the hash recomputed from the
    stored value.
    """
    return json.loads(canonicalize_json(data))
