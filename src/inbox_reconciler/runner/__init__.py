"""
CLI runner module.

Provides commands:
- init-config: Write a default configuration file
- load: Load teams, documents and transactions
- match-document / match-transaction: Find the best match
- suggest: Persist the best match as a suggestion
- calibration: Show calibrated thresholds
- confirm / decline / unmatch: Review suggestions
- expire: Expire stale pending suggestions
- reconcile: Batch suggestions for a team's inbox
- status: Statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
