"""
State Store (SQLite-based).

Persistent storage for teams, inbox documents, bank transactions, their
attachments, and the match suggestions the engine proposes.

The engine only depends on the CandidateStore and SuggestionStore
interfaces; StateStore implements both.
"""

from .base import (
    AmountMatch,
    CandidateStore,
    DocumentFilter,
    MatchClause,
    MerchantHistoryFilter,
    SuggestionOutcome,
    SuggestionScores,
    SuggestionStore,
    TransactionFilter,
)
from .sqlite_store import StateStore

__all__ = [
    "AmountMatch",
    "CandidateStore",
    "DocumentFilter",
    "MatchClause",
    "MerchantHistoryFilter",
    "StateStore",
    "SuggestionOutcome",
    "SuggestionScores",
    "SuggestionStore",
    "TransactionFilter",
]
