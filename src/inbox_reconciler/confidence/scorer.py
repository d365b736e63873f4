"""
Confidence scoring, best-candidate selection and match-type assignment.
"""

import logging
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

from ..config import MatchingConfig
from ..matching.similarity import (
    calculate_amount_score,
    calculate_currency_score,
    calculate_date_score,
    embedding_similarity,
    has_base_reconciliation,
    is_excellent_cross_currency_match,
    is_perfect_financial_match,
)
from ..schemas import DocumentRecord, MatchType, MerchantPattern, TransactionRecord
from .rules import ScoringContext, apply_rules

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ScoredCandidate(Generic[T]):
    """A retrieved candidate with its scoring context and final confidence."""

    candidate: T
    document: DocumentRecord
    transaction: TransactionRecord
    embedding_distance: Optional[float]
    context: ScoringContext
    confidence: float
    rules_fired: list[str] = field(default_factory=list)

    @property
    def is_perfect_financial(self) -> bool:
        return self.context.is_perfect_financial

    @property
    def date_score(self) -> float:
        return self.context.date_score

    @property
    def amount_score(self) -> float:
        return self.context.amount_score


def build_context(
    document: DocumentRecord,
    transaction: TransactionRecord,
    embedding_distance: Optional[float],
    merchant_pattern: Optional[MerchantPattern] = None,
) -> ScoringContext:
    """Compute sub-scores and match flags for one pair."""
    if document.date is not None:
        date_score = calculate_date_score(document.date, transaction.date, document.effective_type)
    else:
        date_score = 0.5

    currency_unresolved = bool(
        document.currency
        and transaction.currency
        and document.currency != transaction.currency
        and not has_base_reconciliation(document, transaction)
    )

    return ScoringContext(
        embedding_score=embedding_similarity(embedding_distance),
        amount_score=calculate_amount_score(document, transaction),
        currency_score=calculate_currency_score(document, transaction),
        date_score=date_score,
        is_perfect_financial=is_perfect_financial_match(document, transaction),
        is_excellent_cross_currency=is_excellent_cross_currency_match(document, transaction),
        currency_unresolved=currency_unresolved,
        is_recurring=transaction.recurring,
        merchant_pattern=merchant_pattern or MerchantPattern.not_evaluated(),
    )


class ConfidenceScorer:
    """
    Scores candidates and picks the best one.

    Confidence = weighted sub-scores (weight profile chosen per pair), then
    the ordered rule list in confidence.rules.
    """

    def __init__(self, matching: Optional[MatchingConfig] = None):
        self.matching = matching or MatchingConfig()

    def score(self, context: ScoringContext, include_merchant_gate: bool = True) -> float:
        confidence, _ = apply_rules(context, context.weighted_sum(), include_merchant_gate)
        return confidence

    def score_candidate(
        self,
        candidate: T,
        document: DocumentRecord,
        transaction: TransactionRecord,
        embedding_distance: Optional[float],
        merchant_pattern: Optional[MerchantPattern] = None,
    ) -> ScoredCandidate[T]:
        context = build_context(document, transaction, embedding_distance, merchant_pattern)
        confidence, fired = apply_rules(context, context.weighted_sum())
        return ScoredCandidate(
            candidate=candidate,
            document=document,
            transaction=transaction,
            embedding_distance=embedding_distance,
            context=context,
            confidence=confidence,
            rules_fired=fired,
        )

    @staticmethod
    def is_better(challenger: ScoredCandidate, best: ScoredCandidate) -> bool:
        """
        Whether a challenger replaces the current best.

        In priority order:
        1. Confidence higher by more than 0.001
        2. Perfect financial match over a non-perfect best, at most 0.05 lower
        3. Confidence within 0.01 and date score better by more than 0.1
        4. Both perfect, confidence within 0.01, date better by more than 0.05
        5. Confidence within 0.005 and amount score better by more than 0.05
        """
        delta = abs(challenger.confidence - best.confidence)

        if challenger.confidence > best.confidence + 0.001:
            return True
        if (
            challenger.is_perfect_financial
            and not best.is_perfect_financial
            and challenger.confidence >= best.confidence - 0.05
        ):
            return True
        if delta <= 0.01 and challenger.date_score > best.date_score + 0.1:
            return True
        if (
            challenger.is_perfect_financial
            and best.is_perfect_financial
            and delta <= 0.01
            and challenger.date_score > best.date_score + 0.05
        ):
            return True
        if delta <= 0.005 and challenger.amount_score > best.amount_score + 0.05:
            return True
        return False

    def select_best(
        self, scored: list[ScoredCandidate[T]], threshold: float
    ) -> Optional[ScoredCandidate[T]]:
        """Best candidate at or above the suggestion threshold, in retrieval order."""
        best: Optional[ScoredCandidate[T]] = None
        for item in scored:
            if item.confidence < threshold:
                continue
            if best is None or self.is_better(item, best):
                best = item
        return best

    def match_type(self, scored: ScoredCandidate) -> MatchType:
        """
        Decision tag for a selected candidate.

        auto_matched requires a proven merchant, strong semantics, good date
        alignment and financial identity on top of the confidence threshold.
        """
        context = scored.context
        if scored.confidence >= self.matching.auto_match_threshold:
            if (
                context.merchant_pattern.can_auto_match
                and context.embedding_score >= 0.85
                and context.date_score >= 0.7
                and context.is_financial_identity
            ):
                return MatchType.AUTO_MATCHED
            return MatchType.HIGH_CONFIDENCE
        if scored.confidence >= self.matching.high_confidence_threshold:
            return MatchType.HIGH_CONFIDENCE
        return MatchType.SUGGESTED
