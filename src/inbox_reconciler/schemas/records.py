"""
Canonical records consumed and produced by the matching engine (SSOT).

Documents and transactions are owned by their storage collaborators; the
engine only reads them. MatchSuggestion is the only entity the engine
creates or mutates.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional


class DocumentType(str, Enum):
    """Kind of inbox document. Drives date-polarity in scoring."""

    INVOICE = "invoice"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    """Bank transaction lifecycle status. Only POSTED is matchable."""

    POSTED = "posted"
    PENDING = "pending"
    EXCLUDED = "excluded"
    ARCHIVED = "archived"


class SuggestionStatus(str, Enum):
    """
    Lifecycle of a persisted match suggestion.

    PENDING: awaiting user review
    CONFIRMED: user (or auto-match) accepted the pairing
    DECLINED: user rejected the suggestion
    UNMATCHED: a confirmed pairing was later removed by the user
    EXPIRED: pending suggestion aged out without review
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    UNMATCHED = "unmatched"
    EXPIRED = "expired"


# Outcomes that count as user feedback for calibration and merchant history
FEEDBACK_STATUSES = (
    SuggestionStatus.CONFIRMED,
    SuggestionStatus.DECLINED,
    SuggestionStatus.UNMATCHED,
)

# Outcomes that block the pair from ever being suggested again
DISMISSAL_STATUSES = (
    SuggestionStatus.DECLINED,
    SuggestionStatus.UNMATCHED,
)


class MatchType(str, Enum):
    """Decision tag attached to a match."""

    AUTO_MATCHED = "auto_matched"
    HIGH_CONFIDENCE = "high_confidence"
    SUGGESTED = "suggested"


@dataclass
class DocumentRecord:
    """An inbox item: a captured receipt, invoice or bill."""

    id: str
    team_id: str
    display_name: Optional[str] = None
    amount: Optional[float] = None  # Unsigned
    currency: Optional[str] = None
    base_amount: Optional[float] = None  # Team-normalized
    base_currency: Optional[str] = None
    date: Optional[date] = None
    website: Optional[str] = None
    document_type: Optional[DocumentType] = None
    embedding: Optional[list[float]] = None
    transaction_id: Optional[str] = None  # Set once linked
    created_at: Optional[str] = None

    @property
    def effective_type(self) -> DocumentType:
        """Unset document type is treated as an expense receipt."""
        return self.document_type or DocumentType.EXPENSE

    @property
    def is_matchable(self) -> bool:
        """Matching needs both an embedding and a date."""
        return bool(self.embedding) and self.date is not None


@dataclass
class TransactionRecord:
    """A bank transaction. Amounts are signed."""

    id: str
    team_id: str
    name: str
    amount: float
    currency: str
    date: date
    base_amount: Optional[float] = None
    base_currency: Optional[str] = None
    counterparty_name: Optional[str] = None
    merchant_name: Optional[str] = None
    description: Optional[str] = None
    embedding: Optional[list[float]] = None
    status: TransactionStatus = TransactionStatus.POSTED
    recurring: bool = False

    @property
    def merchant_key(self) -> str:
        """Normalized merchant identity used to bucket pattern lookups."""
        source = self.merchant_name or self.counterparty_name or self.name or ""
        return " ".join(source.lower().split())


@dataclass
class TransactionCandidate:
    """A transaction retrieved for a document, with its embedding distance."""

    transaction: TransactionRecord
    embedding_distance: Optional[float] = None
    is_already_matched: bool = False
    tier: int = 0


@dataclass
class DocumentCandidate:
    """A document retrieved for a transaction, with its embedding distance."""

    document: DocumentRecord
    embedding_distance: Optional[float] = None
    is_already_matched: bool = False
    tier: int = 0


@dataclass
class MatchSuggestion:
    """Persisted, reviewable match proposal."""

    id: int
    team_id: str
    document_id: str
    transaction_id: str
    confidence_score: float
    amount_score: float
    currency_score: float
    date_score: float
    embedding_score: float
    match_type: MatchType
    status: SuggestionStatus
    created_at: str
    updated_at: str
    match_details: dict[str, Any] = field(default_factory=dict)
    user_action_at: Optional[str] = None
    user_id: Optional[str] = None
