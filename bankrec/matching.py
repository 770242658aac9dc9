"""Reconciliation matcher: propose stored transactions for a statement row.

The ranking is a transparent additive heuristic that a reviewer can follow by
hand:

- Hard filter. A stored transaction is eligible only when its amount is within
  ``AMOUNT_TOLERANCE`` of the candidate's and, when both carry a date, the
  dates are at most ``DATE_WINDOW_DAYS`` apart.
- Score. ``TYPE_MATCH_BONUS`` when the debit/credit types agree, plus
  ``max(0, DATE_SCORE_CEILING - days apart)`` when both dates are present.

Already-reconciled transactions stay in the pool (a user may need to re-match
a mis-imported row); they are flagged on the result instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol

from .models import CandidateRecord, MatchCandidate, Transaction, to_cents

AMOUNT_TOLERANCE = Decimal("0.01")
DATE_WINDOW_DAYS = 10
TYPE_MATCH_BONUS = 10
DATE_SCORE_CEILING = 20
MAX_MATCHES = 10


class MatchTarget(Protocol):
    """Anything shaped like a candidate: amount, ISO date and type."""

    @property
    def amount(self) -> Decimal: ...

    @property
    def date(self) -> str | None: ...

    @property
    def type(self) -> str | None: ...


def days_between(a: str | None, b: str | None) -> int | None:
    """Absolute whole days between two ISO dates; ``None`` if either is missing or invalid."""

    if not a or not b:
        return None
    try:
        return abs((date.fromisoformat(a) - date.fromisoformat(b)).days)
    except ValueError:
        return None


def is_eligible(candidate: MatchTarget, stored: Transaction) -> bool:
    if abs(to_cents(stored.amount) - to_cents(candidate.amount)) > AMOUNT_TOLERANCE:
        return False
    days = days_between(candidate.date, stored.date)
    return days is None or days <= DATE_WINDOW_DAYS


def score_match(candidate: MatchTarget, stored: Transaction) -> int:
    score = 0
    if candidate.type and stored.type == candidate.type:
        score += TYPE_MATCH_BONUS
    days = days_between(candidate.date, stored.date)
    if days is not None:
        score += max(0, DATE_SCORE_CEILING - days)
    return score


def find_matches(
    candidate: MatchTarget,
    stored: Iterable[Transaction],
    *,
    limit: int = MAX_MATCHES,
) -> list[MatchCandidate]:
    """Return eligible stored transactions, best score first, at most ``limit``.

    Ties keep the order of ``stored``.
    """

    matches = [
        MatchCandidate(
            transaction=tx,
            score=score_match(candidate, tx),
            days_diff=days_between(candidate.date, tx.date),
            is_reconciled=tx.is_reconciled,
        )
        for tx in stored
        if is_eligible(candidate, tx)
    ]
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:limit]


def rank_candidates(
    candidates: Sequence[CandidateRecord], stored: Sequence[Transaction]
) -> Sequence[CandidateRecord]:
    """Attach ranked matches to every candidate (in place) and return them."""

    for candidate in candidates:
        candidate.matches = find_matches(candidate, stored)
    return candidates


def default_choice(candidate: CandidateRecord) -> str | None:
    """Pre-selected review answer: the top match id when it is unreconciled, else ``None``.

    ``None`` means "create the candidate as a new reconciled transaction".
    """

    if candidate.matches and not candidate.matches[0].is_reconciled:
        return candidate.matches[0].transaction.id
    return None


__all__ = [
    "AMOUNT_TOLERANCE",
    "DATE_SCORE_CEILING",
    "DATE_WINDOW_DAYS",
    "MAX_MATCHES",
    "TYPE_MATCH_BONUS",
    "MatchTarget",
    "days_between",
    "default_choice",
    "find_matches",
    "is_eligible",
    "rank_candidates",
    "score_match",
]
