"""
Migration 001: Add match_suggestions table.

One row per (document, transaction) pair the engine has proposed, with the
score breakdown it was proposed with and its review status.
"""

import sqlite3

VERSION = 1
NAME = "match_suggestions"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create match_suggestions table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS match_suggestions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            team_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            transaction_id TEXT NOT NULL,
            confidence_score REAL NOT NULL,
            amount_score REAL NOT NULL,
            currency_score REAL NOT NULL,
            date_score REAL NOT NULL,
            embedding_score REAL NOT NULL,
            match_type TEXT NOT NULL,  -- auto_matched, high_confidence, suggested
            match_details TEXT,  -- JSON
            status TEXT NOT NULL DEFAULT 'pending',  -- pending, confirmed, declined, unmatched, expired
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (document_id, transaction_id),
            FOREIGN KEY (document_id) REFERENCES inbox_documents(id),
            FOREIGN KEY (transaction_id) REFERENCES transactions(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_match_suggestions_team_status ON match_suggestions(team_id, status)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_match_suggestions_transaction ON match_suggestions(transaction_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove match_suggestions table."""
    conn.execute("DROP TABLE IF EXISTS match_suggestions")
