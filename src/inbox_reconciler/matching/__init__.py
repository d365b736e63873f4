"""Matching: similarity scores, tiered retrieval and merchant patterns.

The orchestrator lives in inbox_reconciler.matching.engine.
"""

from .merchant_patterns import MerchantPatternAnalyzer, evaluate_history
from .retrieval import CandidateRetriever, rank_transaction_candidates

__all__ = [
    "CandidateRetriever",
    "MerchantPatternAnalyzer",
    "evaluate_history",
    "rank_transaction_candidates",
]
