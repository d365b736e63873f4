"""
Database migrations module.

Versioned, ordered schema changes for the SQLite state store. Applied
versions are tracked in a migrations table.
"""

from .runner import Migration, MigrationRunner, get_all_migrations

__all__ = ["Migration", "MigrationRunner", "get_all_migrations"]
