"""
Schemas module.

Records owned by storage collaborators and the derived results the
matching engine produces.
"""

from .records import (
    DISMISSAL_STATUSES,
    FEEDBACK_STATUSES,
    DocumentCandidate,
    DocumentRecord,
    DocumentType,
    MatchSuggestion,
    MatchType,
    SuggestionStatus,
    TransactionCandidate,
    TransactionRecord,
    TransactionStatus,
)
from .results import MatchResult, MerchantPattern, TeamCalibrationData, round_score

__all__ = [
    "DISMISSAL_STATUSES",
    "FEEDBACK_STATUSES",
    "DocumentCandidate",
    "DocumentRecord",
    "DocumentType",
    "MatchResult",
    "MatchSuggestion",
    "MatchType",
    "MerchantPattern",
    "SuggestionStatus",
    "TeamCalibrationData",
    "TransactionCandidate",
    "TransactionRecord",
    "TransactionStatus",
    "round_score",
]
