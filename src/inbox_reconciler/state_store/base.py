"""
Collaborator interfaces consumed by the matching engine.

The engine never talks to a database directly. It issues filters against a
CandidateStore and reads/writes suggestions through a SuggestionStore.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from ..schemas import (
    DocumentCandidate,
    DocumentRecord,
    MatchSuggestion,
    MatchType,
    SuggestionStatus,
    TransactionCandidate,
    TransactionRecord,
)


@dataclass(frozen=True)
class AmountMatch:
    """Absolute amount within tolerance, optionally in a given currency."""

    amount: float
    tolerance: Union[Decimal, float]
    currency: Optional[str] = None


@dataclass(frozen=True)
class MatchClause:
    """
    One conjunctive retrieval condition.

    Every predicate that is set must hold. A filter carrying several clauses
    matches a row when any clause does.
    """

    max_distance: Optional[float] = None
    amount: Optional[AmountMatch] = None
    base_amount: Optional[AmountMatch] = None


@dataclass
class TransactionFilter:
    """Predicates for one retrieval tier against the transaction store."""

    team_id: str
    embedding: list[float]
    date_from: date
    date_to: date
    limit: int
    clauses: tuple[MatchClause, ...] = ()
    exclude_ids: frozenset[str] = frozenset()
    # Transactions with a pending suggestion for any other document are skipped
    document_id: Optional[str] = None
    include_already_matched: bool = False
    # Ordering: exact amount+currency first, then date proximity, then distance
    reference_date: Optional[date] = None
    reference_amount: Optional[float] = None
    reference_currency: Optional[str] = None


@dataclass
class DocumentFilter:
    """Predicates for one retrieval tier against the document store."""

    team_id: str
    embedding: list[float]
    date_from: date
    date_to: date
    limit: int
    clauses: tuple[MatchClause, ...] = ()
    exclude_ids: frozenset[str] = frozenset()
    # Documents with a pending suggestion for any other transaction are skipped
    transaction_id: Optional[str] = None
    include_already_matched: bool = False
    # Date proximity ordering by default, embedding distance when set
    order_by_distance: bool = False
    reference_date: Optional[date] = None


@dataclass
class MerchantHistoryFilter:
    """Historical outcomes for merchant pairs semantically close to a pair."""

    team_id: str
    document_embedding: list[float]
    transaction_embedding: list[float]
    max_distance: float
    created_after: datetime
    statuses: tuple[SuggestionStatus, ...]
    limit: int


@dataclass
class SuggestionOutcome:
    """A single historical (status, confidence) observation."""

    status: SuggestionStatus
    confidence_score: float
    match_type: Optional[MatchType] = None
    created_at: Optional[str] = None


@dataclass
class SuggestionScores:
    """Fields written by a suggestion upsert."""

    confidence_score: float
    amount_score: float
    currency_score: float
    date_score: float
    embedding_score: float
    match_type: MatchType
    match_details: dict[str, Any] = field(default_factory=dict)


class CandidateStore(ABC):
    """Read access to documents and transactions."""

    @abstractmethod
    def get_document(self, team_id: str, document_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def get_transaction(self, team_id: str, transaction_id: str) -> Optional[TransactionRecord]:
        pass

    @abstractmethod
    def query_transactions(self, flt: TransactionFilter) -> list[TransactionCandidate]:
        pass

    @abstractmethod
    def query_documents(self, flt: DocumentFilter) -> list[DocumentCandidate]:
        pass

    @abstractmethod
    def query_merchant_history(self, flt: MerchantHistoryFilter) -> list[SuggestionOutcome]:
        pass

    @abstractmethod
    def get_team_base_currency(self, team_id: str) -> Optional[str]:
        pass


class SuggestionStore(ABC):
    """Persistence of match suggestions and their lifecycle."""

    @abstractmethod
    def upsert_suggestion(
        self,
        team_id: str,
        document_id: str,
        transaction_id: str,
        scores: SuggestionScores,
        status: SuggestionStatus = SuggestionStatus.PENDING,
    ) -> MatchSuggestion:
        pass

    @abstractmethod
    def get_suggestion(self, suggestion_id: int, team_id: str) -> Optional[MatchSuggestion]:
        pass

    @abstractmethod
    def query_suggestions(
        self,
        team_id: str,
        statuses: Iterable[SuggestionStatus],
        created_after: datetime,
    ) -> list[SuggestionOutcome]:
        pass

    @abstractmethod
    def was_dismissed(self, team_id: str, document_id: str, transaction_id: str) -> bool:
        pass

    @abstractmethod
    def update_suggestion_status(
        self,
        suggestion_id: int,
        team_id: str,
        status: SuggestionStatus,
        user_id: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    def link_document(self, team_id: str, document_id: str, transaction_id: str) -> None:
        pass

    @abstractmethod
    def unlink_document(self, team_id: str, document_id: str, transaction_id: str) -> None:
        pass

    @abstractmethod
    def get_pending_suggestion_for_document(
        self, team_id: str, document_id: str
    ) -> Optional[MatchSuggestion]:
        pass

    @abstractmethod
    def expire_pending_suggestions(self, team_id: str, created_before: datetime) -> int:
        pass
