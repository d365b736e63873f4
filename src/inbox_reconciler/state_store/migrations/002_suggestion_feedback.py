"""
Migration 002: Record who reviewed a suggestion and when.
"""

import sqlite3

VERSION = 2
NAME = "suggestion_feedback"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add user_action_at and user_id to match_suggestions."""
    columns = {row[1] for row in conn.execute("PRAGMA table_info(match_suggestions)")}
    if "user_action_at" not in columns:
        conn.execute("ALTER TABLE match_suggestions ADD COLUMN user_action_at TEXT")
    if "user_id" not in columns:
        conn.execute("ALTER TABLE match_suggestions ADD COLUMN user_id TEXT")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_match_suggestions_created ON match_suggestions(team_id, created_at)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the review columns (SQLite >= 3.35)."""
    conn.execute("DROP INDEX IF EXISTS idx_match_suggestions_created")
    conn.execute("ALTER TABLE match_suggestions DROP COLUMN user_id")
    conn.execute("ALTER TABLE match_suggestions DROP COLUMN user_action_at")
