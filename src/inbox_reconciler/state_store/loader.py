"""
Bulk loading of teams, documents and transactions into a StateStore.

Input is a mapping, usually read from YAML:

    teams:
      - {id: team-1, name: Acme, base_currency: EUR}
    documents:
      - {id: doc-1, team_id: team-1, amount: 23.45, currency: EUR,
         date: 2024-01-15, document_type: expense, embedding: [...]}
    transactions:
      - {id: txn-1, team_id: team-1, name: Coffee, amount: -23.45,
         currency: EUR, date: 2024-01-16, embedding: [...]}
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from ..schemas import DocumentRecord, DocumentType, TransactionRecord, TransactionStatus
from .sqlite_store import StateStore

logger = logging.getLogger(__name__)


class RecordLoadError(ValueError):
    """Raised when an input record is missing required fields."""

    pass


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_float(value: Any) -> Optional[float]:
    return None if value is None or value == "" else float(value)


def _require(data: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise RecordLoadError(f"Record {data.get('id', '?')} missing fields: {', '.join(missing)}")


def document_from_dict(data: dict[str, Any]) -> DocumentRecord:
    _require(data, "id", "team_id")
    return DocumentRecord(
        id=str(data["id"]),
        team_id=str(data["team_id"]),
        display_name=data.get("display_name"),
        amount=_as_float(data.get("amount")),
        currency=data.get("currency"),
        base_amount=_as_float(data.get("base_amount")),
        base_currency=data.get("base_currency"),
        date=_as_date(data.get("date")),
        website=data.get("website"),
        document_type=DocumentType(data["document_type"]) if data.get("document_type") else None,
        embedding=[float(x) for x in data["embedding"]] if data.get("embedding") else None,
        transaction_id=data.get("transaction_id"),
    )


def transaction_from_dict(data: dict[str, Any]) -> TransactionRecord:
    _require(data, "id", "team_id", "name", "amount", "currency", "date")
    return TransactionRecord(
        id=str(data["id"]),
        team_id=str(data["team_id"]),
        name=data["name"],
        amount=float(data["amount"]),
        currency=data["currency"],
        date=_as_date(data["date"]),  # type: ignore[arg-type]
        base_amount=_as_float(data.get("base_amount")),
        base_currency=data.get("base_currency"),
        counterparty_name=data.get("counterparty_name"),
        merchant_name=data.get("merchant_name"),
        description=data.get("description"),
        embedding=[float(x) for x in data["embedding"]] if data.get("embedding") else None,
        status=TransactionStatus(data.get("status", TransactionStatus.POSTED.value)),
        recurring=bool(data.get("recurring", False)),
    )


def load_records(store: StateStore, data: dict[str, Any]) -> dict[str, int]:
    """Upsert every team, document and transaction in `data`. Returns counts."""
    counts = {"teams": 0, "documents": 0, "transactions": 0}

    for team in data.get("teams") or []:
        _require(team, "id")
        store.upsert_team(str(team["id"]), team.get("base_currency"), team.get("name"))
        counts["teams"] += 1

    for item in data.get("transactions") or []:
        store.upsert_transaction(transaction_from_dict(item))
        counts["transactions"] += 1

    for item in data.get("documents") or []:
        store.upsert_document(document_from_dict(item))
        counts["documents"] += 1

    logger.info(
        "Loaded %d teams, %d documents, %d transactions",
        counts["teams"],
        counts["documents"],
        counts["transactions"],
    )
    return counts


def load_file(store: StateStore, path: Path) -> dict[str, int]:
    """Load records from a YAML (or JSON) file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise RecordLoadError(f"{path}: expected a mapping at the top level")
    return load_records(store, data)
