"""
Derived judgment objects: match results, merchant patterns, calibration.

None of these are persisted; they are recomputed on every invocation.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from .records import MatchType


def round_score(value: float) -> float:
    """Round a score to three decimals for the external result shape."""
    return round(value * 1000) / 1000


@dataclass
class MatchResult:
    """Best match for a document (or transaction) with its score breakdown."""

    name: Optional[str]
    amount: Optional[float]
    currency: Optional[str]
    date: Optional[date]
    embedding_score: float
    amount_score: float
    currency_score: float
    date_score: float
    confidence_score: float
    match_type: MatchType
    is_already_matched: bool = False
    transaction_id: Optional[str] = None
    document_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire shape used by calling code."""
        data: dict[str, Any] = {}
        if self.transaction_id is not None:
            data["transactionId"] = self.transaction_id
        if self.document_id is not None:
            data["documentId"] = self.document_id
        data.update(
            {
                "name": self.name,
                "amount": self.amount,
                "currency": self.currency,
                "date": self.date.isoformat() if self.date else None,
                "embeddingScore": self.embedding_score,
                "amountScore": self.amount_score,
                "currencyScore": self.currency_score,
                "dateScore": self.date_score,
                "confidenceScore": self.confidence_score,
                "matchType": self.match_type.value,
                "isAlreadyMatched": self.is_already_matched,
            }
        )
        return data


@dataclass(frozen=True)
class MerchantPattern:
    """Historical verdict on whether a merchant pair has earned auto-matching."""

    can_auto_match: bool
    accuracy: float
    confirmed_count: int
    total_count: int
    reason: str

    @classmethod
    def not_evaluated(cls) -> "MerchantPattern":
        """Pattern for candidates whose history was not consulted."""
        return cls(
            can_auto_match=False,
            accuracy=0.0,
            confirmed_count=0,
            total_count=0,
            reason="not_evaluated",
        )


@dataclass
class TeamCalibrationData:
    """Rolling per-team outcome statistics and the calibrated thresholds."""

    team_id: str
    total_suggestions: int
    confirmed_suggestions: int
    declined_suggestions: int
    unmatched_suggestions: int
    avg_confidence_confirmed: float
    avg_confidence_declined: float
    auto_match_accuracy: float
    calibrated_auto_threshold: float
    calibrated_suggested_threshold: float
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "teamId": self.team_id,
            "totalSuggestions": self.total_suggestions,
            "confirmedSuggestions": self.confirmed_suggestions,
            "declinedSuggestions": self.declined_suggestions,
            "unmatchedSuggestions": self.unmatched_suggestions,
            "avgConfidenceConfirmed": self.avg_confidence_confirmed,
            "avgConfidenceDeclined": self.avg_confidence_declined,
            "autoMatchAccuracy": self.auto_match_accuracy,
            "calibratedAutoThreshold": self.calibrated_auto_threshold,
            "calibratedSuggestedThreshold": self.calibrated_suggested_threshold,
            "lastUpdated": self.last_updated,
        }
