"""Batch reconciliation service.

Walks every unlinked inbox document of a team and turns the engine's best
match into a pending suggestion (or an attached match when auto-matched).

The run is idempotent:
- Suggestions are upserted per (document, transaction) pair
- Declined and unmatched pairs are never re-suggested
- Already-linked documents are skipped
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from inbox_reconciler.matching.engine import MatchState, ReconciliationEngine
from inbox_reconciler.schemas import MatchType, SuggestionStatus

if TYPE_CHECKING:
    from inbox_reconciler.config import Config
    from inbox_reconciler.state_store import StateStore

logger = logging.getLogger(__name__)


class ReconciliationState(str, Enum):
    """Possible states for a reconciliation run."""

    LOADING = "LOADING"
    MATCHING = "MATCHING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class ReconciliationRunResult:
    """Result of a reconciliation run."""

    state: ReconciliationState
    team_id: str
    dry_run: bool = False
    documents_processed: int = 0
    documents_skipped: int = 0
    suggestions_created: int = 0
    auto_matched: int = 0
    no_match: int = 0
    dismissed: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if the run completed; per-document errors are allowed."""
        return self.state == ReconciliationState.COMPLETED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "team_id": self.team_id,
            "dry_run": self.dry_run,
            "documents_processed": self.documents_processed,
            "documents_skipped": self.documents_skipped,
            "suggestions_created": self.suggestions_created,
            "auto_matched": self.auto_matched,
            "no_match": self.no_match,
            "dismissed": self.dismissed,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }


class ReconciliationService:
    """Runs the matching engine over a team's inbox.

    Usage:
        service = ReconciliationService(state_store, config)
        result = service.run("team-1")
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        engine: ReconciliationEngine | None = None,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            state_store: State store for documents, transactions and suggestions.
            config: Application configuration.
            engine: Engine to use; built from state_store and config when omitted.
        """
        self.store = state_store
        self.config = config
        self.engine = engine or ReconciliationEngine(state_store, config)

    def run(
        self, team_id: str, dry_run: bool = False, limit: int | None = None
    ) -> ReconciliationRunResult:
        """Match every unlinked document of a team.

        Args:
            team_id: Team to reconcile.
            dry_run: If True, match only; nothing is persisted or linked.
            limit: Process at most this many documents.

        Returns:
            ReconciliationRunResult with counts and per-document errors.
        """
        start_time = time.time()
        result = ReconciliationRunResult(
            state=ReconciliationState.LOADING, team_id=team_id, dry_run=dry_run
        )

        try:
            documents = self.store.list_unlinked_documents(team_id, limit=limit)
            logger.info("Reconciling %d unlinked documents for team %s", len(documents), team_id)

            result.state = ReconciliationState.MATCHING
            for document in documents:
                if not document.is_matchable:
                    result.documents_skipped += 1
                    continue
                result.documents_processed += 1
                self._process_document(result, team_id, document.id, dry_run)

            result.state = ReconciliationState.COMPLETED
            logger.info(
                "Reconciliation completed: %d processed, %d suggestions, %d auto-matched, %d errors",
                result.documents_processed,
                result.suggestions_created,
                result.auto_matched,
                len(result.errors),
            )

        except Exception as e:
            logger.exception("Reconciliation failed: %s", e)
            result.state = ReconciliationState.FAILED
            result.errors.append(f"Fatal error: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result

    def _process_document(
        self,
        result: ReconciliationRunResult,
        team_id: str,
        document_id: str,
        dry_run: bool,
    ) -> None:
        if dry_run:
            attempt = self.engine.match_document(team_id, document_id)
            self._count_attempt(result, attempt.state, attempt.error, document_id)
            if attempt.result is not None:
                result.suggestions_created += 1
                if attempt.result.match_type == MatchType.AUTO_MATCHED:
                    result.auto_matched += 1
            return

        try:
            attempt = self.engine.match_document(team_id, document_id)
            self._count_attempt(result, attempt.state, attempt.error, document_id)
            if not attempt.matched:
                return

            suggestion = self.engine.persist_attempt(attempt)
            if suggestion is None:
                return
            result.suggestions_created += 1
            if (
                suggestion.match_type == MatchType.AUTO_MATCHED
                and suggestion.status == SuggestionStatus.CONFIRMED
            ):
                result.auto_matched += 1
        except Exception as e:
            logger.exception("Failed to persist suggestion for document %s", document_id)
            result.errors.append(f"Document {document_id}: {e}")

    @staticmethod
    def _count_attempt(
        result: ReconciliationRunResult, state: MatchState, error: str | None, document_id: str
    ) -> None:
        if state in (MatchState.NO_CANDIDATES, MatchState.BELOW_THRESHOLD):
            result.no_match += 1
        elif state == MatchState.DISMISSED:
            result.dismissed += 1
        elif state == MatchState.FAILED:
            result.errors.append(f"Document {document_id}: {error or 'match failed'}")
