"""
Metadata -- tagged transaction metadata variants.

Responsibility:
    Gives each transaction kind a typed metadata shape instead of an
    open-ended dict.  Platform-specific fields the ledger does not interpret
    go into the ``extra`` bag.  Reconciliation adds a ``reconciliation``
    marker on match and removes it on unmatch.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Services convert to and from the
    JSON stored in ``Transaction.metadata_`` with ``to_json`` /
    ``parse_metadata``.

Invariants enforced:
    - Every stored metadata object carries a ``kind`` tag naming its variant.
    - Keys owned by a variant are never taken from ``extra``; unknown keys in
      stored JSON are preserved in ``extra`` when parsed back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Any, Union

RECONCILIATION_KEY = "reconciliation"


@dataclass(frozen=True)
class ReconciliationMarker:
    """Added to a transaction's metadata by a bank match."""

    bank_match_id: str
    bank_transaction_id: str
    reconciled_at: str
    method: str = "manual"

    def to_json(self) -> dict[str, Any]:
        return {
            "reconciled": True,
            "bank_match_id": self.bank_match_id,
            "bank_transaction_id": self.bank_transaction_id,
            "reconciled_at": self.reconciled_at,
            "method": self.method,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ReconciliationMarker:
        return cls(
            bank_match_id=data["bank_match_id"],
            bank_transaction_id=data["bank_transaction_id"],
            reconciled_at=data["reconciled_at"],
            method=data.get("method", "manual"),
        )


@dataclass(frozen=True)
class SaleMetadata:
    creator_id: str
    creator_percent: str
    platform_percent: str
    creator_amount: int
    platform_amount: int
    processing_fee: int
    product_id: str | None = None
    product_name: str | None = None
    customer_email: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    reconciliation: ReconciliationMarker | None = None

    kind = "sale"


@dataclass(frozen=True)
class PayoutMetadata:
    creator_id: str
    payout_method: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    reconciliation: ReconciliationMarker | None = None

    kind = "payout"


@dataclass(frozen=True)
class ReversalMetadata:
    original_transaction_id: str
    original_reference_id: str
    reason: str
    extra: dict[str, Any] = field(default_factory=dict)
    reconciliation: ReconciliationMarker | None = None

    kind = "reversal"


@dataclass(frozen=True)
class GenericMetadata:
    """Fallback for transaction kinds without a dedicated shape."""

    extra: dict[str, Any] = field(default_factory=dict)
    reconciliation: ReconciliationMarker | None = None

    kind = "generic"


TransactionMetadata = Union[SaleMetadata, PayoutMetadata, ReversalMetadata, GenericMetadata]

_VARIANTS: dict[str, type] = {
    SaleMetadata.kind: SaleMetadata,
    PayoutMetadata.kind: PayoutMetadata,
    ReversalMetadata.kind: ReversalMetadata,
    GenericMetadata.kind: GenericMetadata,
}

# Extension-bag key the reversal service sets on the original transaction.
REVERSED_BY_KEY = "reversed_by"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def to_json(meta: TransactionMetadata) -> dict[str, Any]:
    """Serialize a variant to the JSON object stored on the transaction."""
    data: dict[str, Any] = {"kind": meta.kind}
    for f in fields(meta):
        if f.name in ("extra", "reconciliation"):
            continue
        value = getattr(meta, f.name)
        if value is not None:
            data[f.name] = _jsonable(value)
    if meta.extra:
        data["extra"] = {k: _jsonable(v) for k, v in meta.extra.items()}
    if meta.reconciliation is not None:
        data[RECONCILIATION_KEY] = meta.reconciliation.to_json()
    return data


def parse_metadata(data: dict[str, Any] | None) -> TransactionMetadata:
    """Parse stored JSON back into its variant."""
    data = dict(data or {})
    cls = _VARIANTS.get(data.pop("kind", GenericMetadata.kind), GenericMetadata)

    marker_data = data.pop(RECONCILIATION_KEY, None)
    marker = ReconciliationMarker.from_json(marker_data) if marker_data else None
    extra = dict(data.pop("extra", {}) or {})

    known = {f.name for f in fields(cls)} - {"extra", "reconciliation"}
    kwargs = {k: data.pop(k) for k in list(data) if k in known}
    # Anything left over was written by an older or foreign producer.
    extra.update(data)
    return cls(**kwargs, extra=extra, reconciliation=marker)


def with_reconciliation(
    stored: dict[str, Any] | None,
    marker: ReconciliationMarker | None,
) -> dict[str, Any]:
    """Return a new metadata dict with the marker set (or removed when None)."""
    meta = parse_metadata(stored)
    return to_json(replace(meta, reconciliation=marker))


def reconciliation_of(stored: dict[str, Any] | None) -> ReconciliationMarker | None:
    return parse_metadata(stored).reconciliation


def with_extra(stored: dict[str, Any] | None, **values: Any) -> dict[str, Any]:
    """Return a new metadata dict with ``values`` merged into the extension bag."""
    meta = parse_metadata(stored)
    return to_json(replace(meta, extra={**meta.extra, **values}))
