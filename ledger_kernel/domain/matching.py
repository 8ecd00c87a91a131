"""
Matching -- auto-match policy for bank reconciliation.

Responsibility:
    Proposes pairings between externally supplied bank lines and unmatched
    ledger transactions.  A pair is proposed only when the amounts are equal
    to the cent, the dates are within the tolerance window, and the pairing is
    unique in both directions.  Every other candidate set is reported as
    ambiguous for a person to resolve with a manual match.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ReconciliationMatcher feeds it and
    applies the proposals through the normal guarded ``match`` path.

Invariants enforced:
    - No bank line is proposed for more than one transaction and no
      transaction for more than one bank line.
    - Ties are never broken by heuristics (closest date, first seen, ...).
    - Output ordering follows input ordering of bank lines, so the same
      input always yields the same plan.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID


@dataclass(frozen=True)
class BankLine:
    bank_transaction_id: str
    amount: int
    posted_date: date
    description: str | None = None


@dataclass(frozen=True)
class MatchCandidate:
    transaction_id: UUID
    reference_id: str
    amount: int
    transaction_date: date


@dataclass(frozen=True)
class ProposedMatch:
    bank_transaction_id: str
    transaction_id: UUID
    amount: int
    date_delta_days: int


@dataclass(frozen=True)
class AmbiguousMatch:
    """
    A bank line with several candidate transactions, or a transaction that
    several bank lines point at.
    """

    bank_transaction_ids: tuple[str, ...]
    transaction_ids: tuple[UUID, ...]
    amount: int


@dataclass(frozen=True)
class AutoMatchPlan:
    proposals: tuple[ProposedMatch, ...]
    ambiguous: tuple[AmbiguousMatch, ...]
    unmatched_bank_lines: tuple[str, ...]


def _within(a: date, b: date, tolerance_days: int) -> bool:
    return abs((a - b).days) <= tolerance_days


def plan_auto_matches(
    bank_lines: list[BankLine],
    candidates: list[MatchCandidate],
    tolerance_days: int,
) -> AutoMatchPlan:
    """
    Build the auto-match plan.

    Raises:
        ValueError: If tolerance_days is negative or bank_transaction_ids
            repeat within ``bank_lines``.
    """
    if tolerance_days < 0:
        raise ValueError("tolerance_days must be >= 0")
    seen: set[str] = set()
    for line in bank_lines:
        if line.bank_transaction_id in seen:
            raise ValueError(f"Duplicate bank_transaction_id: {line.bank_transaction_id}")
        seen.add(line.bank_transaction_id)

    by_line: dict[str, list[MatchCandidate]] = {}
    by_tx: dict[UUID, list[BankLine]] = {}
    for line in bank_lines:
        hits = [
            c for c in candidates
            if c.amount == line.amount
            and _within(c.transaction_date, line.posted_date, tolerance_days)
        ]
        by_line[line.bank_transaction_id] = hits
        for c in hits:
            by_tx.setdefault(c.transaction_id, []).append(line)

    proposals: list[ProposedMatch] = []
    ambiguous: list[AmbiguousMatch] = []
    unmatched: list[str] = []
    reported_tx: set[UUID] = set()

    for line in bank_lines:
        hits = by_line[line.bank_transaction_id]
        if not hits:
            unmatched.append(line.bank_transaction_id)
            continue
        if len(hits) > 1:
            ambiguous.append(
                AmbiguousMatch(
                    bank_transaction_ids=(line.bank_transaction_id,),
                    transaction_ids=tuple(c.transaction_id for c in hits),
                    amount=line.amount,
                )
            )
            continue

        candidate = hits[0]
        competing = by_tx[candidate.transaction_id]
        if len(competing) > 1:
            if candidate.transaction_id not in reported_tx:
                reported_tx.add(candidate.transaction_id)
                ambiguous.append(
                    AmbiguousMatch(
                        bank_transaction_ids=tuple(b.bank_transaction_id for b in competing),
                        transaction_ids=(candidate.transaction_id,),
                        amount=line.amount,
                    )
                )
            continue

        proposals.append(
            ProposedMatch(
                bank_transaction_id=line.bank_transaction_id,
                transaction_id=candidate.transaction_id,
                amount=line.amount,
                date_delta_days=(line.posted_date - candidate.transaction_date).days,
            )
        )

    return AutoMatchPlan(
        proposals=tuple(proposals),
        ambiguous=tuple(ambiguous),
        unmatched_bank_lines=tuple(unmatched),
    )
