"""Tests for the ReconciliationService.

These tests verify:
- Batch runs over unlinked documents with per-outcome counts
- Dry runs persist nothing
- Idempotent reruns (no duplicate suggestions, dismissed pairs stay dismissed)
- Fatal errors mark the run FAILED without raising
"""

from unittest.mock import MagicMock

import pytest

from inbox_reconciler.schemas import SuggestionStatus
from inbox_reconciler.services.reconciliation import (
    ReconciliationService,
    ReconciliationState,
)

from conftest import SOFTWARE, make_document, make_transaction


@pytest.fixture
def service(store, config):
    return ReconciliationService(store, config)


@pytest.fixture
def inbox(store):
    """One matchable pair, one orphan document and one document without a date."""
    store.upsert_document(make_document("doc-1"))
    store.upsert_transaction(make_transaction("txn-1"))
    store.upsert_document(
        make_document("doc-2", amount=999.0, embedding=list(SOFTWARE), display_name="Software")
    )
    store.upsert_document(make_document("doc-3", doc_date=None))


@pytest.mark.usefixtures("inbox")
class TestRun:
    """Tests for a normal run."""

    def test_counts(self, service, store):
        result = service.run("team-1")

        assert result.success
        assert result.state == ReconciliationState.COMPLETED
        assert result.documents_processed == 2
        assert result.documents_skipped == 1
        assert result.suggestions_created == 1
        assert result.auto_matched == 0
        assert result.no_match == 1
        assert result.errors == []

        pending = store.list_suggestions("team-1", SuggestionStatus.PENDING)
        assert [(s.document_id, s.transaction_id) for s in pending] == [("doc-1", "txn-1")]

    def test_rerun_is_idempotent(self, service, store):
        service.run("team-1")
        service.run("team-1")

        assert len(store.list_suggestions("team-1")) == 1

    def test_dry_run_persists_nothing(self, service, store):
        result = service.run("team-1", dry_run=True)

        assert result.dry_run is True
        assert result.suggestions_created == 1
        assert store.list_suggestions("team-1") == []

    def test_limit(self, service):
        result = service.run("team-1", limit=1)
        assert result.documents_processed + result.documents_skipped == 1

    def test_declined_pair_counts_as_dismissed(self, service, store):
        service.run("team-1")
        suggestion = store.list_suggestions("team-1")[0]
        store.update_suggestion_status(suggestion.id, "team-1", SuggestionStatus.DECLINED)

        result = service.run("team-1")

        assert result.dismissed == 1
        assert result.suggestions_created == 0

    def test_to_dict(self, service):
        data = service.run("team-1").to_dict()
        assert data["state"] == "COMPLETED"
        assert data["team_id"] == "team-1"


class TestFailures:
    """Tests for error handling."""

    def test_fatal_error(self, config):
        store = MagicMock()
        store.list_unlinked_documents.side_effect = RuntimeError("database is locked")
        service = ReconciliationService(store, config, engine=MagicMock())

        result = service.run("team-1")

        assert not result.success
        assert result.state == ReconciliationState.FAILED
        assert result.errors == ["Fatal error: database is locked"]

    def test_persist_error_is_recorded(self, store, config):
        store.upsert_document(make_document("doc-1"))
        engine = MagicMock()
        engine.persist_attempt.side_effect = RuntimeError("boom")
        service = ReconciliationService(store, config, engine=engine)

        result = service.run("team-1")

        assert result.success
        assert result.documents_processed == 1
        assert result.errors == ["Document doc-1: boom"]
