"""
Merchant pattern analysis for the auto-match gate.

A (document, transaction) pair may only be auto-matched when semantically
similar pairs from the same team have a strong confirmed track record.
Everything else is capped below the auto-match threshold by the scorer.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..config import MerchantPatternConfig
from ..schemas import (
    FEEDBACK_STATUSES,
    DocumentRecord,
    MerchantPattern,
    SuggestionStatus,
    TransactionRecord,
)
from ..state_store.base import CandidateStore, MerchantHistoryFilter, SuggestionOutcome

logger = logging.getLogger(__name__)

# (document id, merchant key, similarity bucket) -> verdict
PatternMemo = dict[tuple[str, str, float], MerchantPattern]


def similarity_bucket(similarity: float) -> float:
    """Quantize a similarity to 0.05 steps for memoization."""
    return round(similarity * 20) / 20


def evaluate_history(
    history: Sequence[SuggestionOutcome],
    config: Optional[MerchantPatternConfig] = None,
) -> MerchantPattern:
    """
    Judge whether a merchant pair has earned auto-matching.

    All of these must hold:
    - at least `min_history` outcomes
    - at least `min_confirmed` confirmations
    - accuracy (confirmed / total) >= `min_accuracy`
    - at most `max_negative` declined or unmatched outcomes
    - mean confirmed confidence >= `min_avg_confidence`
    """
    config = config or MerchantPatternConfig()
    total = len(history)
    confirmed = [o.confidence_score for o in history if o.status == SuggestionStatus.CONFIRMED]
    negatives = sum(
        1 for o in history if o.status in (SuggestionStatus.DECLINED, SuggestionStatus.UNMATCHED)
    )
    accuracy = len(confirmed) / total if total else 0.0

    def verdict(can_auto_match: bool, reason: str) -> MerchantPattern:
        return MerchantPattern(
            can_auto_match=can_auto_match,
            accuracy=accuracy,
            confirmed_count=len(confirmed),
            total_count=total,
            reason=reason,
        )

    if total < config.min_history:
        return verdict(False, "insufficient_history")
    if len(confirmed) < config.min_confirmed:
        return verdict(False, "insufficient_confirmations")
    if accuracy < config.min_accuracy:
        return verdict(False, "low_accuracy")
    if negatives > config.max_negative:
        return verdict(False, "too_many_negatives")
    if sum(confirmed) / len(confirmed) < config.min_avg_confidence:
        return verdict(False, "low_historical_confidence")
    return verdict(True, "proven_merchant")


class MerchantPatternAnalyzer:
    """Looks up and judges merchant history for candidate pairs."""

    def __init__(self, store: CandidateStore, config: Optional[MerchantPatternConfig] = None):
        self.store = store
        self.config = config or MerchantPatternConfig()

    def analyze(
        self,
        team_id: str,
        document: DocumentRecord,
        transaction: TransactionRecord,
        embedding_similarity: float,
        memo: Optional[PatternMemo] = None,
    ) -> MerchantPattern:
        """
        Verdict for one pair.

        Pairs below the similarity trigger, or missing either embedding, are
        not evaluated. Results are memoized in `memo` when one is supplied.
        """
        if embedding_similarity < self.config.min_similarity:
            return MerchantPattern.not_evaluated()
        if not document.embedding or not transaction.embedding:
            return MerchantPattern.not_evaluated()

        key = (document.id, transaction.merchant_key, similarity_bucket(embedding_similarity))
        if memo is not None and key in memo:
            return memo[key]

        history = self.store.query_merchant_history(
            MerchantHistoryFilter(
                team_id=team_id,
                document_embedding=document.embedding,
                transaction_embedding=transaction.embedding,
                max_distance=self.config.max_distance,
                created_after=datetime.now(timezone.utc)
                - timedelta(days=self.config.lookback_days),
                statuses=FEEDBACK_STATUSES,
                limit=self.config.history_limit,
            )
        )
        pattern = evaluate_history(history, self.config)
        logger.debug(
            "Merchant pattern for %s/%s: %s (%d/%d confirmed)",
            document.id,
            transaction.merchant_key,
            pattern.reason,
            pattern.confirmed_count,
            pattern.total_count,
        )

        if memo is not None:
            memo[key] = pattern
        return pattern
