"""Tests for bulk record loading."""

from datetime import date

import pytest

from inbox_reconciler.schemas import DocumentType, TransactionStatus
from inbox_reconciler.state_store.loader import (
    RecordLoadError,
    document_from_dict,
    load_file,
    load_records,
    transaction_from_dict,
)

RECORDS_YAML = """
teams:
  - {id: team-1, name: Acme, base_currency: EUR}
transactions:
  - id: txn-1
    team_id: team-1
    name: COFFEE SHOP
    amount: -23.45
    currency: EUR
    date: 2024-01-15
    recurring: true
    embedding: [1.0, 0.0, 0.0, 0.0]
documents:
  - id: doc-1
    team_id: team-1
    display_name: Coffee Shop
    amount: 23.45
    currency: EUR
    date: 2024-01-15
    document_type: invoice
    embedding: [1.0, 0.0, 0.0, 0.0]
"""


class TestRecordParsing:
    """Tests for dict -> record conversion."""

    def test_document_minimal(self):
        doc = document_from_dict({"id": "doc-1", "team_id": "team-1"})
        assert doc.amount is None
        assert doc.date is None
        assert doc.embedding is None

    def test_document_string_date(self):
        doc = document_from_dict(
            {"id": "doc-1", "team_id": "team-1", "date": "2024-01-15T10:00:00Z"}
        )
        assert doc.date == date(2024, 1, 15)

    def test_document_requires_team(self):
        with pytest.raises(RecordLoadError):
            document_from_dict({"id": "doc-1"})

    def test_transaction_requires_amount(self):
        with pytest.raises(RecordLoadError):
            transaction_from_dict(
                {"id": "t", "team_id": "x", "name": "n", "currency": "EUR", "date": "2024-01-01"}
            )

    def test_transaction_status_default(self):
        txn = transaction_from_dict(
            {
                "id": "t",
                "team_id": "x",
                "name": "n",
                "amount": "-5.5",
                "currency": "EUR",
                "date": "2024-01-01",
            }
        )
        assert txn.status == TransactionStatus.POSTED
        assert txn.amount == -5.5

    def test_unknown_document_type(self):
        with pytest.raises(ValueError):
            document_from_dict({"id": "d", "team_id": "x", "document_type": "bill"})


class TestLoadRecords:
    """Tests for loading into the store."""

    def test_load_file(self, temp_db, tmp_path):
        from inbox_reconciler.state_store import StateStore

        path = tmp_path / "records.yaml"
        path.write_text(RECORDS_YAML)
        store = StateStore(temp_db)

        counts = load_file(store, path)

        assert counts == {"teams": 1, "documents": 1, "transactions": 1}
        assert store.get_team_base_currency("team-1") == "EUR"
        doc = store.get_document("team-1", "doc-1")
        assert doc.document_type == DocumentType.INVOICE
        assert doc.date == date(2024, 1, 15)
        assert store.get_transaction("team-1", "txn-1").recurring is True

    def test_load_twice_is_idempotent(self, store):
        data = {"documents": [{"id": "doc-1", "team_id": "team-1", "amount": 5}]}
        load_records(store, data)
        load_records(store, data)
        assert store.get_stats("team-1")["documents_total"] == 1

    def test_non_mapping_rejected(self, store, tmp_path):
        path = tmp_path / "records.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(RecordLoadError):
            load_file(store, path)
