"""
Similarity and sub-score calculators.

Pure functions comparing a document with a transaction on amount, currency,
date and embedding distance. Every score is in [0, 1]. Document amounts are
unsigned and transaction amounts are signed, so amounts are always compared
by absolute value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol, Sequence, Union

import numpy as np

from ..schemas import DocumentType

logger = logging.getLogger(__name__)

# Cosine distance thresholds (0 = identical, 2 = opposite)
PERFECT_MATCH_DISTANCE = 0.15
STRONG_MATCH_DISTANCE = 0.35
GOOD_MATCH_DISTANCE = 0.45
WEAK_MATCH_DISTANCE = 0.6

# Amounts agreeing within this absolute difference are treated as exact
EXACT_AMOUNT_TOLERANCE = Decimal("0.01")
# Same-currency amounts this close are a perfect financial match; covers
# independent cent rounding on the document and the bank side
PERFECT_AMOUNT_TOLERANCE = Decimal("0.02")

NEUTRAL_SCORE = 0.5

# Relative difference -> score, checked in order
_AMOUNT_TIERS = (
    (0.01, 0.98),
    (0.02, 0.95),
    (0.025, 0.92),
    (0.03, 0.90),
    (0.05, 0.85),
    (0.10, 0.60),
    (0.20, 0.30),
)


class Comparable(Protocol):
    """Anything carrying an amount and currency with optional base conversion."""

    amount: Optional[float]
    currency: Optional[str]
    base_amount: Optional[float]
    base_currency: Optional[str]


@dataclass(frozen=True)
class DateBand:
    """Inclusive window of days relative to the document date."""

    days_before: int
    days_after: int

    def bounds(self, anchor: date) -> tuple[date, date]:
        return anchor - timedelta(days=self.days_before), anchor + timedelta(days=self.days_after)


# Tight, asymmetric: accounts for the ~3 day bank posting delay
PERFECT_EXPENSE_BAND = DateBand(days_before=93, days_after=10)
PERFECT_INVOICE_BAND = DateBand(days_before=10, days_after=123)
SEMANTIC_EXPENSE_BAND = DateBand(days_before=63, days_after=17)
SEMANTIC_INVOICE_BAND = DateBand(days_before=17, days_after=93)
CONSERVATIVE_BAND = DateBand(days_before=33, days_after=48)


def perfect_band(document_type: DocumentType) -> DateBand:
    if document_type == DocumentType.INVOICE:
        return PERFECT_INVOICE_BAND
    return PERFECT_EXPENSE_BAND


def semantic_band(document_type: DocumentType) -> DateBand:
    if document_type == DocumentType.INVOICE:
        return SEMANTIC_INVOICE_BAND
    return SEMANTIC_EXPENSE_BAND


def conservative_band(document_type: DocumentType) -> DateBand:
    return CONSERVATIVE_BAND


# Embeddings


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine distance between two embedding vectors, in [0, 2].

    A zero-length vector has no direction; it is treated as orthogonal.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding dimensions differ: {va.shape} vs {vb.shape}")

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 1.0

    similarity = float(np.dot(va, vb)) / norm
    return float(min(2.0, max(0.0, 1.0 - similarity)))


def embedding_similarity(distance: Optional[float]) -> float:
    """Convert a cosine distance to a similarity score.

    Missing embeddings yield a neutral score rather than zero, so an
    otherwise strong financial match is not killed by absent semantics.
    """
    if distance is None:
        return NEUTRAL_SCORE
    return max(0.0, 1.0 - distance)


# Amounts


Money = Union[Decimal, float, int, str]


def to_decimal(value: Optional[Money]) -> Optional[Decimal]:
    """Parse an amount to Decimal through its string form.

    Floats go through str() so 23.46 becomes Decimal("23.46") rather than
    its binary expansion.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_cents(value: Money) -> int:
    """Absolute amount in whole cents, rounded half up."""
    amount = abs(to_decimal(value))  # type: ignore[arg-type]
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def amounts_agree(
    a: Optional[Money],
    b: Optional[Money],
    tolerance: Decimal = EXACT_AMOUNT_TOLERANCE,
) -> bool:
    """True when two amounts agree in absolute value within `tolerance`."""
    da = to_decimal(a)
    db = to_decimal(b)
    if da is None or db is None:
        return False
    return abs(abs(da) - abs(db)) <= tolerance


def base_amount_tolerance(base_amount: float) -> float:
    """Looser tolerance for base-currency amount comparison."""
    return max(50.0, abs(base_amount) * 0.15)


def cross_currency_tolerance(amount: float) -> float:
    """Size-tiered tolerance for comparing converted (base currency) amounts."""
    amount = abs(amount)
    if amount < 100:
        return max(10.0, amount * 0.04)
    if amount < 1000:
        return max(15.0, amount * 0.02)
    return max(25.0, amount * 0.015)


def _tiered_difference_score(amount1: float, amount2: float) -> float:
    """Score the relative difference between two absolute amounts."""
    a = abs(amount1)
    b = abs(amount2)
    largest = max(a, b)
    if largest == 0:
        return 1.0 if a == b else 0.0

    diff = abs(a - b)
    if diff == 0:
        return 1.0

    pct = diff / largest
    for limit, score in _AMOUNT_TIERS:
        if pct <= limit:
            return score
    return 0.0


def has_base_reconciliation(item1: Comparable, item2: Comparable) -> bool:
    """Both sides carry base amounts in the same non-empty base currency."""
    return bool(
        item1.base_amount
        and item2.base_amount
        and item1.base_currency
        and item2.base_currency
        and item1.base_currency == item2.base_currency
    )


def is_cross_currency_match(item1: Comparable, item2: Comparable) -> bool:
    """Different currencies whose base amounts agree within tolerance."""
    if not item1.currency or not item2.currency or item1.currency == item2.currency:
        return False
    if not has_base_reconciliation(item1, item2):
        return False

    base1 = abs(item1.base_amount)  # type: ignore[arg-type]
    base2 = abs(item2.base_amount)  # type: ignore[arg-type]
    average = (base1 + base2) / 2
    tolerance = cross_currency_tolerance(average)
    is_match = abs(base1 - base2) < tolerance

    logger.debug(
        "Cross-currency check %s/%s -> %s/%s: base %.2f vs %.2f (tolerance %.2f) -> %s",
        item1.currency,
        item1.base_currency,
        item2.currency,
        item2.base_currency,
        base1,
        base2,
        tolerance,
        is_match,
    )
    return is_match


def calculate_amount_score(document: Comparable, transaction: Comparable) -> float:
    """
    Score amount agreement between a document and a transaction.

    Priority:
    1. Same currency: exact within 0.01, else tiered relative difference
       with an exact-currency bonus
    2. Different currencies reconciled by base currency: tiered on base
       amounts, floored when within the looser base tolerance
    3. Different currencies without conversion: heavily penalized
    4. Missing currency on one side: plain tiered score
    """
    amount1 = document.amount
    amount2 = transaction.amount

    if not amount1 or not amount2:
        return NEUTRAL_SCORE

    currency1 = document.currency
    currency2 = transaction.currency

    if currency1 and currency2 and currency1 == currency2:
        if amounts_agree(amount1, amount2):
            return 1.0
        return min(1.0, _tiered_difference_score(amount1, amount2) * 1.1)

    if currency1 and currency2 and has_base_reconciliation(document, transaction):
        base1 = document.base_amount or 0.0
        base2 = transaction.base_amount or 0.0
        score = min(1.0, _tiered_difference_score(base1, base2) * 1.03)
        if abs(abs(base1) - abs(base2)) <= base_amount_tolerance(base1):
            score = max(score, 0.3)
        return score

    if currency1 and currency2:
        # Unresolved currency difference
        return _tiered_difference_score(amount1, amount2) * 0.4

    return _tiered_difference_score(amount1, amount2)


def is_perfect_financial_match(document: Comparable, transaction: Comparable) -> bool:
    """Same currency and amounts within PERFECT_AMOUNT_TOLERANCE (absolute)."""
    if not document.currency or document.currency != transaction.currency:
        return False
    if not document.amount or not transaction.amount:
        return False
    return amounts_agree(document.amount, transaction.amount, PERFECT_AMOUNT_TOLERANCE)


def is_excellent_cross_currency_match(document: Comparable, transaction: Comparable) -> bool:
    """Different currencies, but base currency and base amount agree exactly."""
    if not document.currency or not transaction.currency:
        return False
    if document.currency == transaction.currency:
        return False
    return has_base_reconciliation(document, transaction) and amounts_agree(
        document.base_amount, transaction.base_amount
    )


# Currency


def calculate_currency_score(document: Comparable, transaction: Comparable) -> float:
    """Score currency agreement.

    Identical codes score 1.0. A difference bridged by a shared base currency
    earns partial credit; an unbridged difference scores near zero.
    """
    currency1 = document.currency
    currency2 = transaction.currency

    if not currency1 or not currency2:
        return NEUTRAL_SCORE
    if currency1 == currency2:
        return 1.0
    if has_base_reconciliation(document, transaction):
        return 0.7
    return 0.1


# Dates


def calculate_date_score(
    document_date: date,
    transaction_date: date,
    document_type: Optional[DocumentType] = None,
) -> float:
    """
    Score date alignment, aware of document type polarity.

    Invoices are paid after they are issued; expense receipts are usually
    captured after the card transaction. Transactions appear ~3 days after
    they happen.
    """
    signed = (transaction_date - document_date).days
    diff = abs(signed)
    doc_type = document_type or DocumentType.EXPENSE

    if doc_type == DocumentType.INVOICE:
        if signed > 0:
            # Common payment terms, shifted by the posting delay
            if 24 <= signed <= 38:
                return 0.98  # Net 30
            if 55 <= signed <= 68:
                return 0.96  # Net 60
            if 85 <= signed <= 98:
                return 0.94  # Net 90
            if 10 <= signed <= 20:
                return 0.95  # Net 15
            if 3 <= signed <= 11:
                return 0.93  # Net 7
            if signed <= 6:
                return 0.99
            if signed <= 123:
                return max(0.7, 0.9 - (signed - 33) * 0.002)
        elif signed >= -10:
            # Advance payment
            return 0.85
    else:
        if signed < 0:
            adjusted = diff + 3
            if adjusted <= 4:
                return 0.99
            if adjusted <= 10:
                return 0.95
            if adjusted <= 33:
                return 0.9
            if adjusted <= 63:
                return 0.8
            if adjusted <= 93:
                return 0.7
        elif signed <= 10:
            # Receipt captured before the transaction posted
            return 0.85

    if diff == 0:
        return 1.0
    if diff <= 1:
        return 0.95
    if diff <= 3:
        return 0.85
    if diff <= 7:
        return 0.75
    if diff <= 14:
        return 0.6
    if diff <= 30:
        return max(0.3, 1 - (diff / 30) * 0.7)
    return 0.1
