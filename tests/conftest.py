"""Test fixtures and utilities."""

from datetime import date
from pathlib import Path

import pytest

from inbox_reconciler.config import Config
from inbox_reconciler.schemas import (
    DocumentRecord,
    DocumentType,
    MatchType,
    SuggestionStatus,
    TransactionRecord,
)
from inbox_reconciler.state_store import StateStore, SuggestionScores

# Small embeddings; cosine distance between them is what matters
COFFEE = [1.0, 0.0, 0.0, 0.0]
COFFEE_NEAR = [0.98, 0.2, 0.0, 0.0]  # distance ~0.02
SOFTWARE = [0.0, 1.0, 0.0, 0.0]  # orthogonal to COFFEE, distance 1.0
HOSTING = [0.0, 0.0, 1.0, 0.0]


def make_document(
    doc_id: str = "doc-1",
    team_id: str = "team-1",
    amount: float | None = 23.45,
    currency: str | None = "EUR",
    doc_date: date | None = date(2024, 1, 15),
    embedding: list[float] | None = None,
    document_type: DocumentType | None = DocumentType.EXPENSE,
    **kwargs,
) -> DocumentRecord:
    """Build an inbox document with sensible defaults."""
    return DocumentRecord(
        id=doc_id,
        team_id=team_id,
        display_name=kwargs.pop("display_name", "Coffee Shop"),
        amount=amount,
        currency=currency,
        date=doc_date,
        document_type=document_type,
        embedding=list(COFFEE) if embedding is None else embedding,
        **kwargs,
    )


def make_transaction(
    txn_id: str = "txn-1",
    team_id: str = "team-1",
    amount: float = -23.45,
    currency: str = "EUR",
    txn_date: date = date(2024, 1, 15),
    embedding: list[float] | None = None,
    **kwargs,
) -> TransactionRecord:
    """Build a bank transaction with sensible defaults."""
    return TransactionRecord(
        id=txn_id,
        team_id=team_id,
        name=kwargs.pop("name", "COFFEE SHOP"),
        amount=amount,
        currency=currency,
        date=txn_date,
        embedding=list(COFFEE) if embedding is None else embedding,
        **kwargs,
    )


def make_scores(
    confidence: float = 0.9, match_type: MatchType = MatchType.HIGH_CONFIDENCE
) -> SuggestionScores:
    return SuggestionScores(
        confidence_score=confidence,
        amount_score=1.0,
        currency_score=1.0,
        date_score=0.95,
        embedding_score=0.9,
        match_type=match_type,
    )


def seed_outcomes(
    store: StateStore,
    statuses: list[SuggestionStatus],
    team_id: str = "team-1",
    confidence: float = 0.95,
    embedding: list[float] | None = None,
    prefix: str = "hist",
) -> list[int]:
    """
    Create historical (document, transaction) pairs with reviewed suggestions.

    Historical transactions are dated a year back so they never show up as
    candidates for current documents.
    """
    ids = []
    for i, status in enumerate(statuses):
        doc = make_document(
            f"{prefix}-doc-{i}",
            team_id=team_id,
            doc_date=date(2023, 1, 1),
            embedding=embedding,
        )
        txn = make_transaction(
            f"{prefix}-txn-{i}",
            team_id=team_id,
            txn_date=date(2023, 1, 1),
            embedding=embedding,
        )
        store.upsert_document(doc)
        store.upsert_transaction(txn)
        suggestion = store.upsert_suggestion(team_id, doc.id, txn.id, make_scores(confidence))
        if status != SuggestionStatus.PENDING:
            store.update_suggestion_status(suggestion.id, team_id, status)
        ids.append(suggestion.id)
    return ids


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with one EUR team."""
    state_store = StateStore(temp_db)
    state_store.upsert_team("team-1", "EUR", "Acme")
    return state_store


@pytest.fixture
def config(temp_db) -> Config:
    """Default config pointing at the temporary database."""
    return Config(state_db_path=temp_db)
