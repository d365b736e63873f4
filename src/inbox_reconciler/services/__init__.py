"""Batch services built on the reconciliation engine."""

from inbox_reconciler.services.reconciliation import (
    ReconciliationRunResult,
    ReconciliationService,
    ReconciliationState,
)

__all__ = ["ReconciliationRunResult", "ReconciliationService", "ReconciliationState"]
