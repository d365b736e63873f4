"""Tests for the reconciliation engine."""

import sqlite3
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

import inbox_reconciler.matching.engine as engine_module
from inbox_reconciler.config import Config, MatchingConfig
from inbox_reconciler.matching.engine import (
    InvalidStatusTransitionError,
    MatchState,
    ReconciliationEngine,
    SuggestionNotFoundError,
)
from inbox_reconciler.schemas import DocumentType, MatchType, SuggestionStatus
from inbox_reconciler.state_store import StateStore

from conftest import make_document, make_scores, make_transaction, seed_outcomes


@pytest.fixture
def engine(store, config):
    return ReconciliationEngine(store, config)


@pytest.fixture
def pair(store):
    """A same-amount, same-date, same-merchant document and transaction."""
    store.upsert_document(make_document())
    store.upsert_transaction(make_transaction())


@pytest.fixture
def proven_invoice(store):
    """Net 30 invoice for a merchant with five confirmed historical matches."""
    seed_outcomes(store, [SuggestionStatus.CONFIRMED] * 5)
    store.upsert_document(
        make_document(
            "inv-1",
            amount=1200.0,
            doc_date=date(2024, 1, 15),
            document_type=DocumentType.INVOICE,
        )
    )
    store.upsert_transaction(make_transaction("pay-1", amount=-1200.0, txn_date=date(2024, 2, 14)))


class TestConstruction:
    def test_store_must_hold_suggestions(self):
        with pytest.raises(TypeError):
            ReconciliationEngine(object())

    def test_default_config(self, store):
        engine = ReconciliationEngine(store)
        assert engine.config.matching.auto_match_threshold == 0.9


class TestDocumentMatching:
    """Tests for document -> transaction matching."""

    @pytest.mark.usefixtures("pair")
    def test_best_match(self, engine):
        result = engine.find_best_transaction_match("team-1", "doc-1")

        assert result is not None
        assert result.transaction_id == "txn-1"
        assert result.name == "COFFEE SHOP"
        assert result.amount_score == 1.0
        assert result.currency_score == 1.0

    @pytest.mark.usefixtures("pair")
    def test_unproven_merchant_capped(self, engine):
        """Perfect amount, currency and date without history stays reviewable."""
        result = engine.find_best_transaction_match("team-1", "doc-1")

        assert result.confidence_score <= 0.85
        assert result.match_type != MatchType.AUTO_MATCHED
        assert result.match_type == MatchType.HIGH_CONFIDENCE

    @pytest.mark.usefixtures("pair")
    def test_deterministic(self, engine):
        first = engine.find_best_transaction_match("team-1", "doc-1")
        second = engine.find_best_transaction_match("team-1", "doc-1")
        assert first.to_dict() == second.to_dict()

    @pytest.mark.usefixtures("proven_invoice")
    def test_proven_merchant_invoice(self, engine):
        result = engine.find_best_transaction_match("team-1", "inv-1")

        assert result.transaction_id == "pay-1"
        assert result.confidence_score >= 0.95
        assert result.date_score == 0.98
        assert result.match_type == MatchType.AUTO_MATCHED

    def test_one_percent_gap_never_auto_matches(self, store, engine):
        """A proven merchant still needs the amounts to agree to the cent."""
        seed_outcomes(store, [SuggestionStatus.CONFIRMED] * 5)
        store.upsert_document(make_document(amount=1000.0))
        store.upsert_transaction(make_transaction(amount=-1010.0))

        attempt = engine.match_document("team-1", "doc-1")

        assert attempt.best.transaction.id == "txn-1"
        assert attempt.best.context.merchant_pattern.can_auto_match
        assert not attempt.best.is_perfect_financial
        assert attempt.result.match_type == MatchType.HIGH_CONFIDENCE

    def test_two_cents_difference(self, store, engine):
        store.upsert_document(make_document())
        store.upsert_transaction(make_transaction(amount=-23.47))

        result = engine.find_best_transaction_match("team-1", "doc-1")
        assert result.amount_score == 1.0

    def test_null_amount_is_neutral(self, store, engine):
        store.upsert_document(make_document(amount=None))
        store.upsert_transaction(make_transaction())

        result = engine.find_best_transaction_match("team-1", "doc-1")
        assert result is None or result.amount_score == 0.5

    def test_exotic_currency_without_conversion(self, store, engine):
        store.upsert_document(make_document(amount=15000.0, currency="JPY"))
        store.upsert_transaction(make_transaction(amount=-100.5, currency="USD"))

        assert engine.find_best_transaction_match("team-1", "doc-1") is None

    def test_confidence_bounded(self, store, engine):
        store.upsert_document(make_document(amount=1e9))
        store.upsert_transaction(make_transaction(amount=-1e9))
        store.upsert_transaction(make_transaction("txn-2", amount=-0.01))

        result = engine.find_best_transaction_match("team-1", "doc-1")
        assert 0.0 <= result.confidence_score <= 1.0

    def test_missing_document(self, engine):
        attempt = engine.match_document("team-1", "nope")
        assert attempt.state == MatchState.FAILED
        assert attempt.result is None

    def test_document_without_embedding(self, store, engine):
        store.upsert_document(make_document(embedding=[]))
        store.upsert_transaction(make_transaction())

        assert engine.find_best_transaction_match("team-1", "doc-1") is None

    def test_no_candidates(self, store, engine):
        store.upsert_document(make_document())
        attempt = engine.match_document("team-1", "doc-1")
        assert attempt.state == MatchState.NO_CANDIDATES

    @pytest.mark.usefixtures("pair")
    def test_attempt_trace(self, engine):
        attempt = engine.match_document("team-1", "doc-1")

        assert attempt.matched
        assert attempt.candidates_considered == 1
        assert attempt.suggested_threshold == 0.6
        assert "unproven_merchant_cap" in attempt.best.rules_fired

    def test_malformed_candidate_skipped(self, store, engine, monkeypatch):
        store.upsert_document(make_document())
        store.upsert_transaction(make_transaction("txn-bad"))
        store.upsert_transaction(make_transaction("txn-good"))
        real_build_context = engine_module.build_context

        def build_context(document, transaction, distance, merchant_pattern=None):
            if transaction.id == "txn-bad":
                raise ValueError("malformed record")
            return real_build_context(document, transaction, distance, merchant_pattern)

        monkeypatch.setattr(engine_module, "build_context", build_context)

        result = engine.find_best_transaction_match("team-1", "doc-1")
        assert result.transaction_id == "txn-good"


class TestStoreFailures:
    """Store failures degrade to no match."""

    def test_load_failure(self, config):
        store = MagicMock(spec=StateStore)
        store.get_document.side_effect = sqlite3.OperationalError("database is locked")
        engine = ReconciliationEngine(store, config)

        assert engine.find_best_transaction_match("team-1", "doc-1") is None
        attempt = engine.match_document("team-1", "doc-1")
        assert attempt.state == MatchState.FAILED
        assert "database is locked" in attempt.error

    def test_retrieval_failure(self, config):
        store = MagicMock(spec=StateStore)
        store.get_document.return_value = make_document()
        store.get_team_base_currency.return_value = "EUR"
        store.query_transactions.side_effect = sqlite3.OperationalError("disk I/O error")
        engine = ReconciliationEngine(store, config)

        assert engine.find_best_transaction_match("team-1", "doc-1") is None

    def test_reverse_failure(self, config):
        store = MagicMock(spec=StateStore)
        store.get_transaction.side_effect = RuntimeError("connection reset")
        engine = ReconciliationEngine(store, config)

        assert engine.find_best_document_match("team-1", "txn-1") is None


class TestTransactionMatching:
    """Tests for transaction -> document matching."""

    @pytest.mark.usefixtures("pair")
    def test_best_document(self, engine):
        result = engine.find_best_document_match("team-1", "txn-1")

        assert result.document_id == "doc-1"
        assert result.name == "Coffee Shop"
        assert result.amount == 23.45
        assert result.to_dict()["documentId"] == "doc-1"

    def test_missing_transaction(self, engine):
        assert engine.find_best_document_match("team-1", "nope") is None


class TestDismissal:
    """Dismissed pairs are never suggested again."""

    @pytest.mark.usefixtures("pair")
    def test_declined_pair_not_returned(self, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        engine.decline_suggestion(suggestion.id, "team-1")

        assert engine.find_best_transaction_match("team-1", "doc-1") is None
        assert engine.match_document("team-1", "doc-1").state == MatchState.DISMISSED

    @pytest.mark.usefixtures("pair")
    def test_unmatched_pair_not_returned(self, store, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        engine.confirm_suggestion(suggestion.id, "team-1")
        engine.unmatch_suggestion(suggestion.id, "team-1")

        assert store.get_document("team-1", "doc-1").transaction_id is None
        assert engine.find_best_transaction_match("team-1", "doc-1") is None
        assert engine.find_best_document_match("team-1", "txn-1") is None


class TestCalibrationIntegration:
    def test_cold_start(self, engine):
        data = engine.get_team_calibration("team-1")
        assert data.calibrated_suggested_threshold == 0.6

    def test_many_confirmations(self, store, engine):
        seed_outcomes(store, [SuggestionStatus.CONFIRMED] * 20)
        data = engine.get_team_calibration("team-1")

        assert data.calibrated_suggested_threshold < 0.6
        assert data.auto_match_accuracy > 0.95


class TestSuggestions:
    """Tests for the suggestion lifecycle."""

    @pytest.mark.usefixtures("pair")
    def test_suggest_creates_pending(self, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")

        assert suggestion.status == SuggestionStatus.PENDING
        assert suggestion.match_type == MatchType.HIGH_CONFIDENCE
        assert suggestion.match_details["direction"] == "document_to_transaction"
        assert suggestion.match_details["tier"] == 1
        assert suggestion.match_details["merchantPattern"]["reason"] == "insufficient_history"

    @pytest.mark.usefixtures("pair")
    def test_suggest_is_idempotent(self, store, engine):
        first = engine.suggest_for_document("team-1", "doc-1")
        second = engine.suggest_for_document("team-1", "doc-1")

        assert first.id == second.id
        assert len(store.list_suggestions("team-1")) == 1

    @pytest.mark.usefixtures("pair")
    def test_suggest_for_transaction(self, engine):
        suggestion = engine.suggest_for_transaction("team-1", "txn-1")

        assert suggestion.document_id == "doc-1"
        assert suggestion.match_details["direction"] == "transaction_to_document"

    def test_suggest_without_match(self, store, engine):
        store.upsert_document(make_document())
        assert engine.suggest_for_document("team-1", "doc-1") is None

    @pytest.mark.usefixtures("pair")
    def test_pending_suggestion_blocks_other_documents(self, store, engine):
        engine.suggest_for_document("team-1", "doc-1")
        store.upsert_document(make_document("doc-2"))

        assert engine.find_best_transaction_match("team-1", "doc-2") is None

    @pytest.mark.usefixtures("pair")
    def test_get_pending_suggestion(self, engine):
        created = engine.suggest_for_document("team-1", "doc-1")
        assert engine.get_pending_suggestion("team-1", "doc-1").id == created.id

    @pytest.mark.usefixtures("pair")
    def test_confirm_links_document(self, store, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        confirmed = engine.confirm_suggestion(suggestion.id, "team-1", "user-7")

        assert confirmed.status == SuggestionStatus.CONFIRMED
        assert confirmed.user_id == "user-7"
        assert confirmed.user_action_at is not None
        assert store.get_document("team-1", "doc-1").transaction_id == "txn-1"
        assert engine.get_pending_suggestion("team-1", "doc-1") is None

    @pytest.mark.usefixtures("pair")
    def test_confirm_twice_rejected(self, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        engine.confirm_suggestion(suggestion.id, "team-1")

        with pytest.raises(InvalidStatusTransitionError):
            engine.confirm_suggestion(suggestion.id, "team-1")

    @pytest.mark.usefixtures("pair")
    def test_unmatch_requires_confirmed(self, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        with pytest.raises(InvalidStatusTransitionError):
            engine.unmatch_suggestion(suggestion.id, "team-1")

    def test_unknown_suggestion(self, engine):
        with pytest.raises(SuggestionNotFoundError):
            engine.decline_suggestion(999, "team-1")

    @pytest.mark.usefixtures("pair")
    def test_suggestion_scoped_to_team(self, engine):
        suggestion = engine.suggest_for_document("team-1", "doc-1")
        with pytest.raises(SuggestionNotFoundError):
            engine.confirm_suggestion(suggestion.id, "team-2")

    @pytest.mark.usefixtures("proven_invoice")
    def test_auto_match_attaches(self, store, engine):
        suggestion = engine.suggest_for_document("team-1", "inv-1")

        assert suggestion.match_type == MatchType.AUTO_MATCHED
        assert suggestion.status == SuggestionStatus.CONFIRMED
        assert store.get_document("team-1", "inv-1").transaction_id == "pay-1"
        assert suggestion.match_details["merchantPattern"]["reason"] == "proven_merchant"

    @pytest.mark.usefixtures("proven_invoice")
    def test_auto_attach_disabled(self, store, temp_db):
        config = Config(matching=MatchingConfig(auto_attach=False), state_db_path=temp_db)
        engine = ReconciliationEngine(store, config)

        suggestion = engine.suggest_for_document("team-1", "inv-1")

        assert suggestion.match_type == MatchType.AUTO_MATCHED
        assert suggestion.status == SuggestionStatus.PENDING
        assert store.get_document("team-1", "inv-1").transaction_id is None

    @pytest.mark.usefixtures("pair")
    def test_expire_stale(self, store, engine):
        old = datetime.now(timezone.utc) - timedelta(days=40)
        stale = store.upsert_suggestion("team-1", "doc-1", "txn-1", make_scores(), now=old)

        assert engine.expire_stale_suggestions("team-1") == 1
        assert store.get_suggestion(stale.id, "team-1").status == SuggestionStatus.EXPIRED

    @pytest.mark.usefixtures("pair")
    def test_expire_keeps_recent(self, engine):
        engine.suggest_for_document("team-1", "doc-1")
        assert engine.expire_stale_suggestions("team-1", older_than_days=7) == 0

    @pytest.mark.usefixtures("pair")
    def test_expire_zero_days_is_not_the_default(self, store, engine):
        minute_ago = datetime.now(timezone.utc) - timedelta(minutes=1)
        store.upsert_suggestion("team-1", "doc-1", "txn-1", make_scores(), now=minute_ago)

        assert engine.expire_stale_suggestions("team-1", older_than_days=0) == 1

    @pytest.mark.usefixtures("pair")
    def test_expired_suggestion_refreshed(self, store, engine):
        old = datetime.now(timezone.utc) - timedelta(days=40)
        stale = store.upsert_suggestion("team-1", "doc-1", "txn-1", make_scores(), now=old)
        engine.expire_stale_suggestions("team-1")

        refreshed = engine.suggest_for_document("team-1", "doc-1")

        assert refreshed.id == stale.id
        assert refreshed.status == SuggestionStatus.PENDING
