"""
Weight profiles and the ordered confidence rule list.

Confidence is a weighted sum of the four sub-scores, then adjusted by a
fixed sequence of rules:

1. Floor cascade: the first matching floor wins
2. Penalties: unresolved currency mismatch, weak date alignment
3. Embedding boost
4. Cross-currency and recurring floors
5. Merchant gate: unproven pairs are capped, proven pairs may earn a bonus
6. Clamp to [0, 1]

The merchant gate is last so no later rule can lift a capped confidence.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..schemas import MerchantPattern

# Unproven merchants never reach the auto-match threshold
UNPROVEN_MERCHANT_CAP = 0.85
PROVEN_MERCHANT_BONUS = 0.03


@dataclass(frozen=True)
class Weights:
    """Sub-score weights. Sum to 1.0."""

    embedding: float
    amount: float
    currency: float
    date: float


class WeightProfile(str, Enum):
    """
    Weight set chosen per candidate before scoring.

    DEFAULT: semantics dominate
    PERFECT_FINANCIAL: amount and currency already agree, so semantics are
        de-emphasized and date separates recurring charges from one merchant
    """

    DEFAULT = "default"
    PERFECT_FINANCIAL = "perfect_financial"

    @property
    def weights(self) -> Weights:
        return _WEIGHTS[self]


_WEIGHTS = {
    WeightProfile.DEFAULT: Weights(embedding=0.50, amount=0.35, currency=0.10, date=0.05),
    WeightProfile.PERFECT_FINANCIAL: Weights(embedding=0.25, amount=0.45, currency=0.15, date=0.15),
}


@dataclass(frozen=True)
class ScoringContext:
    """Everything the rules may look at for one (document, transaction) pair."""

    embedding_score: float
    amount_score: float
    currency_score: float
    date_score: float
    is_perfect_financial: bool = False
    is_excellent_cross_currency: bool = False
    # Different currencies with no shared base currency to bridge them
    currency_unresolved: bool = False
    is_recurring: bool = False
    merchant_pattern: MerchantPattern = MerchantPattern.not_evaluated()

    @property
    def profile(self) -> WeightProfile:
        if self.is_perfect_financial:
            return WeightProfile.PERFECT_FINANCIAL
        return WeightProfile.DEFAULT

    @property
    def is_financial_identity(self) -> bool:
        return self.is_perfect_financial or self.is_excellent_cross_currency

    def weighted_sum(self) -> float:
        w = self.profile.weights
        return (
            self.embedding_score * w.embedding
            + self.amount_score * w.amount
            + self.currency_score * w.currency
            + self.date_score * w.date
        )


@dataclass(frozen=True)
class FloorRule:
    """Raise confidence to `floor` when the evidence predicate holds."""

    name: str
    applies: Callable[[ScoringContext], bool]
    floor: float


@dataclass(frozen=True)
class AdjustmentRule:
    """Transform confidence when the predicate holds."""

    name: str
    applies: Callable[[ScoringContext], bool]
    adjust: Callable[[ScoringContext, float], float]


# Strongest evidence first; only the first match applies
FLOOR_CASCADE: tuple[FloorRule, ...] = (
    FloorRule(
        "perfect_strong_semantic",
        lambda c: c.is_perfect_financial and c.embedding_score > 0.80 and c.date_score > 0.70,
        0.96,
    ),
    FloorRule(
        "cross_currency_strong_semantic",
        lambda c: c.is_excellent_cross_currency
        and c.embedding_score > 0.80
        and c.date_score > 0.70,
        0.95,
    ),
    FloorRule(
        "perfect_good_date",
        lambda c: c.is_perfect_financial and c.date_score > 0.50,
        0.93,
    ),
    FloorRule(
        "financial_identity_semantic",
        lambda c: c.is_financial_identity and c.embedding_score > 0.70 and c.date_score > 0.40,
        0.88,
    ),
    FloorRule(
        "strong_all_round",
        lambda c: c.amount_score > 0.85 and c.embedding_score > 0.75 and c.date_score > 0.30,
        0.82,
    ),
)


def _currency_penalty(c: ScoringContext, confidence: float) -> float:
    return confidence * (0.95 if c.embedding_score >= 0.85 else 0.90)


def _merchant_is_proven_with_bonus(c: ScoringContext) -> bool:
    pattern = c.merchant_pattern
    return pattern.can_auto_match and pattern.accuracy >= 0.95 and pattern.confirmed_count >= 5


ADJUSTMENTS: tuple[AdjustmentRule, ...] = (
    AdjustmentRule("currency_mismatch_penalty", lambda c: c.currency_unresolved, _currency_penalty),
    AdjustmentRule("weak_date_penalty", lambda c: c.date_score < 0.2, lambda c, v: v * 0.85),
    AdjustmentRule(
        "strong_embedding_boost",
        lambda c: c.embedding_score > 0.85,
        lambda c, v: min(1.0, v + 0.08),
    ),
    AdjustmentRule(
        "good_embedding_boost",
        lambda c: 0.75 < c.embedding_score <= 0.85,
        lambda c, v: min(1.0, v + 0.05),
    ),
    AdjustmentRule(
        "cross_currency_floor",
        lambda c: c.is_excellent_cross_currency and c.embedding_score >= 0.80,
        lambda c, v: max(v, 0.85),
    ),
    AdjustmentRule(
        "recurring_floor",
        lambda c: c.is_recurring and c.is_perfect_financial and c.embedding_score > 0.70,
        lambda c, v: max(v, 0.92),
    ),
    # Final word for unproven merchants
    AdjustmentRule(
        "unproven_merchant_cap",
        lambda c: not c.merchant_pattern.can_auto_match,
        lambda c, v: min(v, UNPROVEN_MERCHANT_CAP),
    ),
    AdjustmentRule(
        "proven_merchant_bonus",
        _merchant_is_proven_with_bonus,
        lambda c, v: v + PROVEN_MERCHANT_BONUS,
    ),
)

MERCHANT_GATE_RULES = frozenset({"unproven_merchant_cap", "proven_merchant_bonus"})


def apply_rules(
    context: ScoringContext,
    confidence: float,
    include_merchant_gate: bool = True,
) -> tuple[float, list[str]]:
    """
    Run the floor cascade and adjustments over a base confidence.

    Returns:
        (confidence clamped to [0, 1], names of the rules that fired)
    """
    fired: list[str] = []

    for floor_rule in FLOOR_CASCADE:
        if floor_rule.applies(context):
            if floor_rule.floor > confidence:
                confidence = floor_rule.floor
            fired.append(floor_rule.name)
            break

    for rule in ADJUSTMENTS:
        if not include_merchant_gate and rule.name in MERCHANT_GATE_RULES:
            continue
        if rule.applies(context):
            confidence = rule.adjust(context, confidence)
            fired.append(rule.name)

    return max(0.0, min(1.0, confidence)), fired
