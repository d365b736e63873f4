"""
SQLite-based state store implementation.

Tables:
- teams: Team base currency
- inbox_documents: Captured receipts and invoices with embeddings
- transactions: Bank transactions with embeddings
- transaction_attachments: Confirmed document <-> transaction links
- match_suggestions: Reviewable match proposals (see migrations)

Embeddings are stored as JSON arrays. A `cosine_distance(a, b)` SQL function
is registered on every connection so retrieval tiers can filter and order by
semantic distance inside the query.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ..matching.similarity import EXACT_AMOUNT_TOLERANCE, cosine_distance, to_cents
from ..schemas import (
    DocumentCandidate,
    DocumentRecord,
    DISMISSAL_STATUSES,
    DocumentType,
    FEEDBACK_STATUSES,
    MatchSuggestion,
    MatchType,
    SuggestionStatus,
    TransactionCandidate,
    TransactionRecord,
    TransactionStatus,
)
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

logger = logging.getLogger(__name__)


def _now() -> str:
    return _timestamp(datetime.now(timezone.utc))


def _timestamp(value: datetime) -> str:
    """Format a datetime the way stored timestamps are formatted (UTC, Z suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed precision keeps stored timestamps lexically ordered
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value[:10]) if value else None


def _dump_embedding(embedding: list[float] | None) -> str | None:
    return json.dumps([float(x) for x in embedding]) if embedding else None


def _load_embedding(value: str | None) -> list[float] | None:
    return json.loads(value) if value else None


def _sql_cosine_distance(a: str | None, b: str | None) -> float | None:
    """SQL-callable cosine distance over JSON-encoded embeddings."""
    if not a or not b:
        return None
    try:
        return cosine_distance(json.loads(a), json.loads(b))
    except ValueError as e:
        # Rows with unusable embeddings never satisfy a distance predicate
        logger.warning("Skipping embedding comparison: %s", e)
        return None


def _document_from_row(row: sqlite3.Row) -> DocumentRecord:
    return DocumentRecord(
        id=row["id"],
        team_id=row["team_id"],
        display_name=row["display_name"],
        amount=row["amount"],
        currency=row["currency"],
        base_amount=row["base_amount"],
        base_currency=row["base_currency"],
        date=_parse_date(row["date"]),
        website=row["website"],
        document_type=DocumentType(row["document_type"]) if row["document_type"] else None,
        embedding=_load_embedding(row["embedding"]),
        transaction_id=row["transaction_id"],
        created_at=row["created_at"],
    )


def _transaction_from_row(row: sqlite3.Row) -> TransactionRecord:
    return TransactionRecord(
        id=row["id"],
        team_id=row["team_id"],
        name=row["name"],
        amount=row["amount"],
        currency=row["currency"],
        date=_parse_date(row["date"]),  # type: ignore[arg-type]
        base_amount=row["base_amount"],
        base_currency=row["base_currency"],
        counterparty_name=row["counterparty_name"],
        merchant_name=row["merchant_name"],
        description=row["description"],
        embedding=_load_embedding(row["embedding"]),
        status=TransactionStatus(row["status"]),
        recurring=bool(row["recurring"]),
    )


def _suggestion_from_row(row: sqlite3.Row) -> MatchSuggestion:
    return MatchSuggestion(
        id=row["id"],
        team_id=row["team_id"],
        document_id=row["document_id"],
        transaction_id=row["transaction_id"],
        confidence_score=row["confidence_score"],
        amount_score=row["amount_score"],
        currency_score=row["currency_score"],
        date_score=row["date_score"],
        embedding_score=row["embedding_score"],
        match_type=MatchType(row["match_type"]),
        status=SuggestionStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        match_details=json.loads(row["match_details"]) if row["match_details"] else {},
        user_action_at=row["user_action_at"],
        user_id=row["user_id"],
    )


def _outcome_from_row(row: sqlite3.Row) -> SuggestionOutcome:
    return SuggestionOutcome(
        status=SuggestionStatus(row["status"]),
        confidence_score=row["confidence_score"],
        match_type=MatchType(row["match_type"]) if row["match_type"] else None,
        created_at=row["created_at"],
    )


def _amount_sql(column: str, currency_column: str, match: AmountMatch) -> tuple[str, list[Any]]:
    """Absolute-amount predicate for one AmountMatch, compared in whole cents."""
    sql = f"({column} IS NOT NULL AND ABS(ROUND(ABS({column}) * 100) - ?) <= ?"
    params: list[Any] = [to_cents(match.amount), to_cents(match.tolerance)]
    if match.currency:
        sql += f" AND {currency_column} = ?"
        params.append(match.currency)
    return sql + ")", params


def _clauses_sql(
    clauses: tuple[MatchClause, ...],
    distance_sql: str,
    amount_columns: tuple[str, str],
    base_columns: tuple[str, str],
) -> tuple[str, list[Any]]:
    """OR together the conjunctive clauses of a retrieval filter."""
    parts: list[str] = []
    params: list[Any] = []
    for clause in clauses:
        terms: list[str] = []
        if clause.max_distance is not None:
            terms.append(f"{distance_sql} < ?")
            params.append(clause.max_distance)
        if clause.amount is not None:
            sql, amount_params = _amount_sql(*amount_columns, clause.amount)
            terms.append(sql)
            params.extend(amount_params)
        if clause.base_amount is not None:
            sql, base_params = _amount_sql(*base_columns, clause.base_amount)
            terms.append(sql)
            params.extend(base_params)
        parts.append("(" + " AND ".join(terms or ["1"]) + ")")
    return "(" + " OR ".join(parts) + ")", params


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


class StateStore(CandidateStore, SuggestionStore):
    """
    SQLite-based state store for the reconciliation engine.

    Provides persistent tracking of:
    - Teams, inbox documents and bank transactions
    - Document <-> transaction attachments
    - Match suggestions and their review outcomes

    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory and the distance function."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.create_function("cosine_distance", 2, _sql_cosine_distance, deterministic=True)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS teams (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    base_currency TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS inbox_documents (
                    id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL,
                    display_name TEXT,
                    amount REAL,  -- Unsigned
                    currency TEXT,
                    base_amount REAL,
                    base_currency TEXT,
                    date TEXT,  -- YYYY-MM-DD
                    website TEXT,
                    document_type TEXT,  -- invoice, expense
                    embedding TEXT,  -- JSON array
                    transaction_id TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    amount REAL NOT NULL,  -- Signed
                    currency TEXT NOT NULL,
                    base_amount REAL,
                    base_currency TEXT,
                    date TEXT NOT NULL,  -- YYYY-MM-DD
                    counterparty_name TEXT,
                    merchant_name TEXT,
                    description TEXT,
                    embedding TEXT,  -- JSON array
                    status TEXT NOT NULL DEFAULT 'posted',
                    recurring INTEGER NOT NULL DEFAULT 0
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transaction_attachments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id TEXT NOT NULL,
                    transaction_id TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (transaction_id, document_id),
                    FOREIGN KEY (transaction_id) REFERENCES transactions(id),
                    FOREIGN KEY (document_id) REFERENCES inbox_documents(id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_team_date ON inbox_documents(team_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_team_date ON transactions(team_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_attachments_transaction ON transaction_attachments(transaction_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Teams

    def upsert_team(self, team_id: str, base_currency: str | None, name: str | None = None) -> None:
        """Insert or update a team."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO teams (id, name, base_currency) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name,
                    base_currency = excluded.base_currency
            """,
                (team_id, name, base_currency),
            )

    def get_team_base_currency(self, team_id: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT base_currency FROM teams WHERE id = ?", (team_id,)).fetchone()
            return row["base_currency"] if row else None

    # Documents

    def upsert_document(self, record: DocumentRecord) -> None:
        """Insert or update an inbox document. The link column is left untouched on update."""
        created_at = record.created_at or _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO inbox_documents
                (id, team_id, display_name, amount, currency, base_amount, base_currency,
                 date, website, document_type, embedding, transaction_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    display_name = excluded.display_name,
                    amount = excluded.amount,
                    currency = excluded.currency,
                    base_amount = excluded.base_amount,
                    base_currency = excluded.base_currency,
                    date = excluded.date,
                    website = excluded.website,
                    document_type = excluded.document_type,
                    embedding = excluded.embedding
            """,
                (
                    record.id,
                    record.team_id,
                    record.display_name,
                    record.amount,
                    record.currency,
                    record.base_amount,
                    record.base_currency,
                    record.date.isoformat() if record.date else None,
                    record.website,
                    record.document_type.value if record.document_type else None,
                    _dump_embedding(record.embedding),
                    record.transaction_id,
                    created_at,
                ),
            )

    def get_document(self, team_id: str, document_id: str) -> DocumentRecord | None:
        """Get a document by ID, scoped to its team."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM inbox_documents WHERE id = ? AND team_id = ?",
                (document_id, team_id),
            ).fetchone()
            return _document_from_row(row) if row else None

    def list_unlinked_documents(self, team_id: str, limit: int | None = None) -> list[DocumentRecord]:
        """Documents not yet attached to a transaction, oldest first."""
        sql = """
            SELECT * FROM inbox_documents
            WHERE team_id = ? AND transaction_id IS NULL
            ORDER BY created_at, id
        """
        params: list[Any] = [team_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._transaction() as conn:
            return [_document_from_row(row) for row in conn.execute(sql, params).fetchall()]

    # Transactions

    def upsert_transaction(self, record: TransactionRecord) -> None:
        """Insert or update a bank transaction."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO transactions
                (id, team_id, name, amount, currency, base_amount, base_currency, date,
                 counterparty_name, merchant_name, description, embedding, status, recurring)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    amount = excluded.amount,
                    currency = excluded.currency,
                    base_amount = excluded.base_amount,
                    base_currency = excluded.base_currency,
                    date = excluded.date,
                    counterparty_name = excluded.counterparty_name,
                    merchant_name = excluded.merchant_name,
                    description = excluded.description,
                    embedding = excluded.embedding,
                    status = excluded.status,
                    recurring = excluded.recurring
            """,
                (
                    record.id,
                    record.team_id,
                    record.name,
                    record.amount,
                    record.currency,
                    record.base_amount,
                    record.base_currency,
                    record.date.isoformat(),
                    record.counterparty_name,
                    record.merchant_name,
                    record.description,
                    _dump_embedding(record.embedding),
                    record.status.value,
                    1 if record.recurring else 0,
                ),
            )

    def get_transaction(self, team_id: str, transaction_id: str) -> TransactionRecord | None:
        """Get a transaction by ID, scoped to its team."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ? AND team_id = ?",
                (transaction_id, team_id),
            ).fetchone()
            return _transaction_from_row(row) if row else None

    # Candidate retrieval

    def query_transactions(self, flt: TransactionFilter) -> list[TransactionCandidate]:
        """Posted transactions with embeddings matching one retrieval tier."""
        where = [
            "t.team_id = ?",
            "t.status = ?",
            "t.embedding IS NOT NULL",
            "t.date BETWEEN ? AND ?",
        ]
        params: list[Any] = [
            _dump_embedding(flt.embedding),
            flt.team_id,
            TransactionStatus.POSTED.value,
            flt.date_from.isoformat(),
            flt.date_to.isoformat(),
        ]

        if not flt.include_already_matched:
            where.append(
                "NOT EXISTS (SELECT 1 FROM transaction_attachments ta WHERE ta.transaction_id = t.id)"
            )
        if flt.document_id is not None:
            where.append(
                """NOT EXISTS (
                    SELECT 1 FROM match_suggestions ms
                    WHERE ms.transaction_id = t.id AND ms.team_id = t.team_id
                      AND ms.status = ? AND ms.document_id != ?
                )"""
            )
            params.extend([SuggestionStatus.PENDING.value, flt.document_id])
        if flt.exclude_ids:
            where.append(f"t.id NOT IN ({_placeholders(flt.exclude_ids)})")
            params.extend(sorted(flt.exclude_ids))

        outer = "1"
        if flt.clauses:
            outer, clause_params = _clauses_sql(
                flt.clauses,
                "embedding_distance",
                ("amount", "currency"),
                ("base_amount", "base_currency"),
            )
            params.extend(clause_params)

        order: list[str] = []
        if flt.reference_amount is not None:
            exact = "ABS(ROUND(ABS(amount) * 100) - ?) <= ?"
            params.extend([to_cents(flt.reference_amount), to_cents(EXACT_AMOUNT_TOLERANCE)])
            if flt.reference_currency:
                exact += " AND currency = ?"
                params.append(flt.reference_currency)
            order.append(f"CASE WHEN {exact} THEN 0 ELSE 1 END")
        if flt.reference_date is not None:
            order.append("ABS(julianday(date) - julianday(?))")
            params.append(flt.reference_date.isoformat())
        order.extend(["embedding_distance", "id"])
        params.append(flt.limit)

        sql = f"""
            SELECT * FROM (
                SELECT t.*,
                       cosine_distance(t.embedding, ?) AS embedding_distance,
                       EXISTS (SELECT 1 FROM transaction_attachments ta
                               WHERE ta.transaction_id = t.id) AS is_already_matched
                FROM transactions t
                WHERE {" AND ".join(where)}
            )
            WHERE {outer}
            ORDER BY {", ".join(order)}
            LIMIT ?
        """
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [
                TransactionCandidate(
                    transaction=_transaction_from_row(row),
                    embedding_distance=row["embedding_distance"],
                    is_already_matched=bool(row["is_already_matched"]),
                )
                for row in rows
            ]

    def query_documents(self, flt: DocumentFilter) -> list[DocumentCandidate]:
        """Inbox documents with embeddings and dates matching one retrieval tier."""
        where = [
            "d.team_id = ?",
            "d.embedding IS NOT NULL",
            "d.date IS NOT NULL",
            "d.date BETWEEN ? AND ?",
        ]
        params: list[Any] = [
            _dump_embedding(flt.embedding),
            flt.team_id,
            flt.date_from.isoformat(),
            flt.date_to.isoformat(),
        ]

        if not flt.include_already_matched:
            where.append("d.transaction_id IS NULL")
        if flt.transaction_id is not None:
            where.append(
                """NOT EXISTS (
                    SELECT 1 FROM match_suggestions ms
                    WHERE ms.document_id = d.id AND ms.team_id = d.team_id
                      AND ms.status = ? AND ms.transaction_id != ?
                )"""
            )
            params.extend([SuggestionStatus.PENDING.value, flt.transaction_id])
        if flt.exclude_ids:
            where.append(f"d.id NOT IN ({_placeholders(flt.exclude_ids)})")
            params.extend(sorted(flt.exclude_ids))

        outer = "1"
        if flt.clauses:
            outer, clause_params = _clauses_sql(
                flt.clauses,
                "embedding_distance",
                ("amount", "currency"),
                ("base_amount", "base_currency"),
            )
            params.extend(clause_params)

        if flt.order_by_distance or flt.reference_date is None:
            order = "embedding_distance, id"
        else:
            order = "ABS(julianday(date) - julianday(?)), embedding_distance, id"
            params.append(flt.reference_date.isoformat())
        params.append(flt.limit)

        sql = f"""
            SELECT * FROM (
                SELECT d.*,
                       cosine_distance(d.embedding, ?) AS embedding_distance,
                       d.transaction_id IS NOT NULL AS is_already_matched
                FROM inbox_documents d
                WHERE {" AND ".join(where)}
            )
            WHERE {outer}
            ORDER BY {order}
            LIMIT ?
        """
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [
                DocumentCandidate(
                    document=_document_from_row(row),
                    embedding_distance=row["embedding_distance"],
                    is_already_matched=bool(row["is_already_matched"]),
                )
                for row in rows
            ]

    def query_merchant_history(self, flt: MerchantHistoryFilter) -> list[SuggestionOutcome]:
        """Newest outcomes for pairs whose document and transaction are both near the given pair."""
        statuses = [s.value for s in flt.statuses]
        sql = f"""
            SELECT ms.status, ms.confidence_score, ms.match_type, ms.created_at
            FROM match_suggestions ms
            JOIN inbox_documents d ON d.id = ms.document_id
            JOIN transactions t ON t.id = ms.transaction_id
            WHERE ms.team_id = ?
              AND ms.status IN ({_placeholders(statuses)})
              AND ms.created_at >= ?
              AND d.embedding IS NOT NULL
              AND t.embedding IS NOT NULL
              AND cosine_distance(d.embedding, ?) < ?
              AND cosine_distance(t.embedding, ?) < ?
            ORDER BY ms.created_at DESC, ms.id DESC
            LIMIT ?
        """
        params = [
            flt.team_id,
            *statuses,
            _timestamp(flt.created_after),
            _dump_embedding(flt.document_embedding),
            flt.max_distance,
            _dump_embedding(flt.transaction_embedding),
            flt.max_distance,
            flt.limit,
        ]
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [_outcome_from_row(row) for row in rows]

    # Suggestions

    def upsert_suggestion(
        self,
        team_id: str,
        document_id: str,
        transaction_id: str,
        scores: SuggestionScores,
        status: SuggestionStatus = SuggestionStatus.PENDING,
        now: datetime | None = None,
    ) -> MatchSuggestion:
        """
        Insert or refresh the suggestion for a (document, transaction) pair.

        Only pending or expired rows are refreshed. Rows the user has already
        acted on keep their scores and status; the stored row is returned.
        """
        timestamp = _timestamp(now) if now else _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO match_suggestions
                (team_id, document_id, transaction_id, confidence_score, amount_score,
                 currency_score, date_score, embedding_score, match_type, match_details,
                 status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(document_id, transaction_id) DO UPDATE SET
                    confidence_score = excluded.confidence_score,
                    amount_score = excluded.amount_score,
                    currency_score = excluded.currency_score,
                    date_score = excluded.date_score,
                    embedding_score = excluded.embedding_score,
                    match_type = excluded.match_type,
                    match_details = excluded.match_details,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                WHERE match_suggestions.status IN ('pending', 'expired')
            """,
                (
                    team_id,
                    document_id,
                    transaction_id,
                    scores.confidence_score,
                    scores.amount_score,
                    scores.currency_score,
                    scores.date_score,
                    scores.embedding_score,
                    scores.match_type.value,
                    json.dumps(scores.match_details),
                    status.value,
                    timestamp,
                    timestamp,
                ),
            )
            row = conn.execute(
                "SELECT * FROM match_suggestions WHERE document_id = ? AND transaction_id = ?",
                (document_id, transaction_id),
            ).fetchone()
            return _suggestion_from_row(row)

    def get_suggestion(self, suggestion_id: int, team_id: str) -> MatchSuggestion | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM match_suggestions WHERE id = ? AND team_id = ?",
                (suggestion_id, team_id),
            ).fetchone()
            return _suggestion_from_row(row) if row else None

    def list_suggestions(
        self, team_id: str, status: SuggestionStatus | None = None
    ) -> list[MatchSuggestion]:
        """All suggestions for a team, newest first, optionally by status."""
        sql = "SELECT * FROM match_suggestions WHERE team_id = ?"
        params: list[Any] = [team_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, id DESC"
        with self._transaction() as conn:
            return [_suggestion_from_row(row) for row in conn.execute(sql, params).fetchall()]

    def query_suggestions(
        self,
        team_id: str,
        statuses: Iterable[SuggestionStatus],
        created_after: datetime,
    ) -> list[SuggestionOutcome]:
        """Outcomes in the given statuses created at or after a cutoff."""
        values = [s.value for s in statuses]
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT status, confidence_score, match_type, created_at
                FROM match_suggestions
                WHERE team_id = ? AND status IN ({_placeholders(values)}) AND created_at >= ?
                ORDER BY created_at DESC
            """,
                [team_id, *values, _timestamp(created_after)],
            ).fetchall()
            return [_outcome_from_row(row) for row in rows]

    def was_dismissed(self, team_id: str, document_id: str, transaction_id: str) -> bool:
        """True if the user declined or unmatched this exact pair."""
        values = [s.value for s in DISMISSAL_STATUSES]
        with self._transaction() as conn:
            row = conn.execute(
                f"""
                SELECT 1 FROM match_suggestions
                WHERE team_id = ? AND document_id = ? AND transaction_id = ?
                  AND status IN ({_placeholders(values)})
            """,
                (team_id, document_id, transaction_id, *values),
            ).fetchone()
            return row is not None

    def update_suggestion_status(
        self,
        suggestion_id: int,
        team_id: str,
        status: SuggestionStatus,
        user_id: str | None = None,
    ) -> None:
        """Move a suggestion to a new status. Feedback statuses record the user action time."""
        now = _now()
        user_action_at = now if status in FEEDBACK_STATUSES else None
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE match_suggestions
                SET status = ?, updated_at = ?,
                    user_action_at = COALESCE(?, user_action_at),
                    user_id = COALESCE(?, user_id)
                WHERE id = ? AND team_id = ?
            """,
                (status.value, now, user_action_at, user_id, suggestion_id, team_id),
            )

    def get_pending_suggestion_for_document(
        self, team_id: str, document_id: str
    ) -> MatchSuggestion | None:
        """Highest-confidence pending suggestion for a document."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM match_suggestions
                WHERE team_id = ? AND document_id = ? AND status = ?
                ORDER BY confidence_score DESC, updated_at DESC
                LIMIT 1
            """,
                (team_id, document_id, SuggestionStatus.PENDING.value),
            ).fetchone()
            return _suggestion_from_row(row) if row else None

    def expire_pending_suggestions(self, team_id: str, created_before: datetime) -> int:
        """Expire pending suggestions created before a cutoff. Returns rows changed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE match_suggestions SET status = ?, updated_at = ?
                WHERE team_id = ? AND status = ? AND created_at < ?
            """,
                (
                    SuggestionStatus.EXPIRED.value,
                    _now(),
                    team_id,
                    SuggestionStatus.PENDING.value,
                    _timestamp(created_before),
                ),
            )
            return cursor.rowcount

    # Attachments

    def link_document(self, team_id: str, document_id: str, transaction_id: str) -> None:
        """Attach a document to a transaction."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE inbox_documents SET transaction_id = ? WHERE id = ? AND team_id = ?",
                (transaction_id, document_id, team_id),
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO transaction_attachments
                (team_id, transaction_id, document_id, created_at)
                VALUES (?, ?, ?, ?)
            """,
                (team_id, transaction_id, document_id, _now()),
            )

    def unlink_document(self, team_id: str, document_id: str, transaction_id: str) -> None:
        """Remove the attachment between a document and a transaction."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE inbox_documents SET transaction_id = NULL
                WHERE id = ? AND team_id = ? AND transaction_id = ?
            """,
                (document_id, team_id, transaction_id),
            )
            conn.execute(
                """
                DELETE FROM transaction_attachments
                WHERE team_id = ? AND transaction_id = ? AND document_id = ?
            """,
                (team_id, transaction_id, document_id),
            )

    # Statistics

    def get_stats(self, team_id: str) -> dict[str, Any]:
        """Get reconciliation statistics for a team."""
        with self._transaction() as conn:
            docs = conn.execute(
                "SELECT COUNT(*) as count FROM inbox_documents WHERE team_id = ?", (team_id,)
            ).fetchone()
            unlinked = conn.execute(
                "SELECT COUNT(*) as count FROM inbox_documents WHERE team_id = ? AND transaction_id IS NULL",
                (team_id,),
            ).fetchone()
            transactions = conn.execute(
                "SELECT COUNT(*) as count FROM transactions WHERE team_id = ?", (team_id,)
            ).fetchone()
            by_status = conn.execute(
                """
                SELECT status, COUNT(*) as count FROM match_suggestions
                WHERE team_id = ? GROUP BY status
            """,
                (team_id,),
            ).fetchall()

            suggestions = {status.value: 0 for status in SuggestionStatus}
            for row in by_status:
                suggestions[row["status"]] = row["count"]

            return {
                "documents_total": docs["count"] if docs else 0,
                "documents_unlinked": unlinked["count"] if unlinked else 0,
                "transactions_total": transactions["count"] if transactions else 0,
                "suggestions": suggestions,
            }
