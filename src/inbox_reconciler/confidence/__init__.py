"""
Confidence scoring module.

Weighs sub-scores into a match confidence, applies the ordered rule list,
and selects the best candidate.
"""

from .rules import ScoringContext, WeightProfile, Weights, apply_rules
from .scorer import ConfidenceScorer, ScoredCandidate, build_context

__all__ = [
    "ConfidenceScorer",
    "ScoredCandidate",
    "ScoringContext",
    "WeightProfile",
    "Weights",
    "apply_rules",
    "build_context",
]
