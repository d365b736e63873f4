"""Reconciliation engine: matches inbox documents with bank transactions.

Each invocation walks a small state machine:

    LOAD_SOURCE -> RETRIEVE_CANDIDATES -> SCORE_ALL -> SELECT_BEST
        -> CHECK_DISMISSAL -> MATCHED

with early exits to FAILED, NO_CANDIDATES, BELOW_THRESHOLD and DISMISSED.
The same machine runs for both directions. Matching is best-effort: store
failures during a match attempt are logged and degrade to no match.

Suggestion lifecycle operations (confirm, decline, unmatch, expire) are
caller-driven and raise on invalid requests.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from ..calibration.engine import TeamCalibrator
from ..config import Config
from ..confidence.rules import ScoringContext
from ..confidence.scorer import ConfidenceScorer, ScoredCandidate, build_context
from ..schemas import (
    DocumentRecord,
    MatchResult,
    MatchSuggestion,
    MatchType,
    MerchantPattern,
    SuggestionStatus,
    TeamCalibrationData,
    TransactionRecord,
    round_score,
)
from ..state_store.base import CandidateStore, SuggestionScores, SuggestionStore
from .merchant_patterns import MerchantPatternAnalyzer, PatternMemo
from .retrieval import CandidateRetriever

logger = logging.getLogger(__name__)


class ReconcilerError(Exception):
    """Base error for caller-driven reconciliation operations."""

    pass


class SuggestionNotFoundError(ReconcilerError):
    """Suggestion does not exist for the team."""

    pass


class InvalidStatusTransitionError(ReconcilerError):
    """Requested status change is not allowed from the current status."""

    pass


class MatchState(str, Enum):
    """State of a single match attempt."""

    LOAD_SOURCE = "load_source"
    RETRIEVE_CANDIDATES = "retrieve_candidates"
    SCORE_ALL = "score_all"
    SELECT_BEST = "select_best"
    CHECK_DISMISSAL = "check_dismissal"
    MATCHED = "matched"
    # Terminal without a match
    FAILED = "failed"
    NO_CANDIDATES = "no_candidates"
    BELOW_THRESHOLD = "below_threshold"
    DISMISSED = "dismissed"


class MatchDirection(str, Enum):
    DOCUMENT_TO_TRANSACTION = "document_to_transaction"
    TRANSACTION_TO_DOCUMENT = "transaction_to_document"


@dataclass
class MatchAttempt:
    """Trace of one match attempt."""

    direction: MatchDirection
    team_id: str
    source_id: str
    state: MatchState = MatchState.LOAD_SOURCE
    candidates_considered: int = 0
    suggested_threshold: Optional[float] = None
    best: Optional[ScoredCandidate] = None
    result: Optional[MatchResult] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def matched(self) -> bool:
        return self.state == MatchState.MATCHED


class ReconciliationEngine:
    """
    Finds the best counterpart for a document or a transaction and manages
    the suggestions produced from those matches.

    Components:
    - CandidateRetriever: tiered candidate pools
    - MerchantPatternAnalyzer: history-based auto-match gate
    - TeamCalibrator: adaptive suggestion threshold
    - ConfidenceScorer: confidence, selection, match type
    """

    def __init__(
        self,
        state_store: CandidateStore,
        config: Optional[Config] = None,
        suggestion_store: Optional[SuggestionStore] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            state_store: Candidate store (usually a StateStore, which is also
                the suggestion store)
            config: Application configuration
            suggestion_store: Separate suggestion store, defaults to state_store
        """
        self.config = config or Config()
        self.store = state_store
        if suggestion_store is None:
            if not isinstance(state_store, SuggestionStore):
                raise TypeError("state_store must also be a SuggestionStore")
            suggestion_store = state_store
        self.suggestions = suggestion_store

        self.retriever = CandidateRetriever(state_store, self.config.matching)
        self.patterns = MerchantPatternAnalyzer(state_store, self.config.merchant_patterns)
        self.calibrator = TeamCalibrator(
            suggestion_store, self.config.calibration, self.config.matching
        )
        self.scorer = ConfidenceScorer(self.config.matching)

    # Matching

    def find_best_transaction_match(
        self,
        team_id: str,
        document_id: str,
        include_already_matched: Optional[bool] = None,
    ) -> Optional[MatchResult]:
        """Best transaction for an inbox document, or None."""
        return self.match_document(team_id, document_id, include_already_matched).result

    def find_best_document_match(
        self,
        team_id: str,
        transaction_id: str,
        include_already_matched: Optional[bool] = None,
    ) -> Optional[MatchResult]:
        """Best inbox document for a transaction, or None."""
        return self.match_transaction(team_id, transaction_id, include_already_matched).result

    def get_team_calibration(self, team_id: str) -> TeamCalibrationData:
        return self.calibrator.get(team_id)

    def match_document(
        self,
        team_id: str,
        document_id: str,
        include_already_matched: Optional[bool] = None,
    ) -> MatchAttempt:
        """Run the match state machine for a document."""
        attempt = MatchAttempt(MatchDirection.DOCUMENT_TO_TRANSACTION, team_id, document_id)
        include = self._include_already_matched(include_already_matched)
        started = time.monotonic()

        try:
            document = self.store.get_document(team_id, document_id)
            if document is None:
                logger.warning("Document %s not found for team %s", document_id, team_id)
                return self._finish(attempt, MatchState.FAILED, started, "document not found")
            if not document.is_matchable:
                logger.warning("Document %s has no embedding or date; skipping", document_id)
                return self._finish(
                    attempt, MatchState.FAILED, started, "document missing embedding or date"
                )

            attempt.state = MatchState.RETRIEVE_CANDIDATES
            candidates = self.retriever.find_transaction_candidates(document, include)
            attempt.candidates_considered = len(candidates)
            if not candidates:
                logger.debug("No transaction candidates for document %s", document_id)
                return self._finish(attempt, MatchState.NO_CANDIDATES, started)

            attempt.state = MatchState.SCORE_ALL
            memo: PatternMemo = {}
            pairs = [(c, document, c.transaction) for c in candidates]
            scored = self._score_all(team_id, pairs, memo)

            return self._select(attempt, scored, started)

        except Exception as e:
            logger.exception("Matching failed for document %s: %s", document_id, e)
            return self._finish(attempt, MatchState.FAILED, started, str(e))

    def match_transaction(
        self,
        team_id: str,
        transaction_id: str,
        include_already_matched: Optional[bool] = None,
    ) -> MatchAttempt:
        """Run the match state machine for a transaction."""
        attempt = MatchAttempt(MatchDirection.TRANSACTION_TO_DOCUMENT, team_id, transaction_id)
        include = self._include_already_matched(include_already_matched)
        started = time.monotonic()

        try:
            transaction = self.store.get_transaction(team_id, transaction_id)
            if transaction is None:
                logger.warning("Transaction %s not found for team %s", transaction_id, team_id)
                return self._finish(attempt, MatchState.FAILED, started, "transaction not found")
            if not transaction.embedding:
                logger.warning("Transaction %s has no embedding; skipping", transaction_id)
                return self._finish(
                    attempt, MatchState.FAILED, started, "transaction missing embedding"
                )

            attempt.state = MatchState.RETRIEVE_CANDIDATES
            candidates = self.retriever.find_document_candidates(transaction, include)
            attempt.candidates_considered = len(candidates)
            if not candidates:
                logger.debug("No document candidates for transaction %s", transaction_id)
                return self._finish(attempt, MatchState.NO_CANDIDATES, started)

            attempt.state = MatchState.SCORE_ALL
            memo: PatternMemo = {}
            pairs = [(c, c.document, transaction) for c in candidates]
            scored = self._score_all(team_id, pairs, memo)

            return self._select(attempt, scored, started)

        except Exception as e:
            logger.exception("Matching failed for transaction %s: %s", transaction_id, e)
            return self._finish(attempt, MatchState.FAILED, started, str(e))

    def _include_already_matched(self, override: Optional[bool]) -> bool:
        if override is None:
            return self.config.matching.include_already_matched
        return override

    def _score_all(
        self,
        team_id: str,
        pairs: list[tuple[Any, DocumentRecord, TransactionRecord]],
        memo: PatternMemo,
    ) -> list[ScoredCandidate]:
        """
        Score every candidate pair.

        A preliminary pass without the merchant gate ranks candidates; only the
        top `max_lookups` consult merchant history, the rest stay not_evaluated.
        """
        preliminary: list[tuple[float, Any, DocumentRecord, TransactionRecord, ScoringContext]] = []
        for candidate, document, transaction in pairs:
            try:
                context = build_context(document, transaction, candidate.embedding_distance)
                score = self.scorer.score(context, include_merchant_gate=False)
            except (ValueError, TypeError, ArithmeticError) as e:
                logger.warning(
                    "Skipping candidate %s/%s: %s", document.id, transaction.id, e
                )
                continue
            preliminary.append((score, candidate, document, transaction, context))

        order = sorted(range(len(preliminary)), key=lambda i: -preliminary[i][0])
        eligible = set(order[: self.config.merchant_patterns.max_lookups])

        scored: list[ScoredCandidate] = []
        for index, (_, candidate, document, transaction, context) in enumerate(preliminary):
            pattern = MerchantPattern.not_evaluated()
            if index in eligible:
                pattern = self.patterns.analyze(
                    team_id, document, transaction, context.embedding_score, memo
                )
            scored.append(
                self.scorer.score_candidate(
                    candidate, document, transaction, candidate.embedding_distance, pattern
                )
            )
        return scored

    def _select(
        self, attempt: MatchAttempt, scored: list[ScoredCandidate], started: float
    ) -> MatchAttempt:
        attempt.state = MatchState.SELECT_BEST
        calibration = self.calibrator.get(attempt.team_id)
        threshold = calibration.calibrated_suggested_threshold
        attempt.suggested_threshold = threshold

        best = self.scorer.select_best(scored, threshold)
        if best is None:
            logger.debug(
                "No candidate for %s above threshold %.3f", attempt.source_id, threshold
            )
            return self._finish(attempt, MatchState.BELOW_THRESHOLD, started)

        attempt.state = MatchState.CHECK_DISMISSAL
        if self.suggestions.was_dismissed(attempt.team_id, best.document.id, best.transaction.id):
            logger.info(
                "Best match %s/%s was previously dismissed",
                best.document.id,
                best.transaction.id,
            )
            return self._finish(attempt, MatchState.DISMISSED, started)

        attempt.best = best
        attempt.result = self._to_result(attempt.direction, best)
        logger.info(
            "Matched %s -> %s (confidence %.3f, %s)",
            attempt.source_id,
            attempt.result.transaction_id or attempt.result.document_id,
            attempt.result.confidence_score,
            attempt.result.match_type.value,
        )
        return self._finish(attempt, MatchState.MATCHED, started)

    @staticmethod
    def _finish(
        attempt: MatchAttempt, state: MatchState, started: float, error: Optional[str] = None
    ) -> MatchAttempt:
        attempt.state = state
        attempt.error = error
        attempt.duration_ms = int((time.monotonic() - started) * 1000)
        return attempt

    def _to_result(self, direction: MatchDirection, best: ScoredCandidate) -> MatchResult:
        context = best.context
        candidate = best.candidate
        common = dict(
            embedding_score=round_score(context.embedding_score),
            amount_score=round_score(context.amount_score),
            currency_score=round_score(context.currency_score),
            date_score=round_score(context.date_score),
            confidence_score=round_score(best.confidence),
            match_type=self.scorer.match_type(best),
            is_already_matched=candidate.is_already_matched,
        )
        if direction == MatchDirection.DOCUMENT_TO_TRANSACTION:
            transaction = best.transaction
            return MatchResult(
                name=transaction.name,
                amount=transaction.amount,
                currency=transaction.currency,
                date=transaction.date,
                transaction_id=transaction.id,
                **common,
            )
        document = best.document
        return MatchResult(
            name=document.display_name,
            amount=document.amount,
            currency=document.currency,
            date=document.date,
            document_id=document.id,
            **common,
        )

    # Suggestions

    def suggest_for_document(self, team_id: str, document_id: str) -> Optional[MatchSuggestion]:
        """Match a document and persist the best match as a suggestion."""
        return self.persist_attempt(self.match_document(team_id, document_id))

    def suggest_for_transaction(
        self, team_id: str, transaction_id: str
    ) -> Optional[MatchSuggestion]:
        """Match a transaction and persist the best match as a suggestion."""
        return self.persist_attempt(self.match_transaction(team_id, transaction_id))

    def persist_attempt(self, attempt: MatchAttempt) -> Optional[MatchSuggestion]:
        if not attempt.matched or attempt.best is None or attempt.result is None:
            return None

        best = attempt.best
        result = attempt.result
        pattern = best.context.merchant_pattern
        scores = SuggestionScores(
            confidence_score=result.confidence_score,
            amount_score=result.amount_score,
            currency_score=result.currency_score,
            date_score=result.date_score,
            embedding_score=result.embedding_score,
            match_type=result.match_type,
            match_details={
                "direction": attempt.direction.value,
                "tier": best.candidate.tier,
                "embeddingDistance": best.embedding_distance,
                "suggestedThreshold": attempt.suggested_threshold,
                "isPerfectFinancialMatch": best.context.is_perfect_financial,
                "isExcellentCrossCurrencyMatch": best.context.is_excellent_cross_currency,
                "weightProfile": best.context.profile.value,
                "rulesFired": best.rules_fired,
                "merchantPattern": {
                    "canAutoMatch": pattern.can_auto_match,
                    "accuracy": pattern.accuracy,
                    "confirmedCount": pattern.confirmed_count,
                    "totalCount": pattern.total_count,
                    "reason": pattern.reason,
                },
            },
        )

        suggestion = self.suggestions.upsert_suggestion(
            attempt.team_id, best.document.id, best.transaction.id, scores
        )
        logger.info(
            "Suggestion %d for %s/%s is %s",
            suggestion.id,
            suggestion.document_id,
            suggestion.transaction_id,
            suggestion.status.value,
        )

        if (
            result.match_type == MatchType.AUTO_MATCHED
            and self.config.matching.auto_attach
            and suggestion.status == SuggestionStatus.PENDING
        ):
            suggestion = self.confirm_suggestion(suggestion.id, attempt.team_id)
            logger.info("Auto-attached document %s", suggestion.document_id)
        return suggestion

    def get_pending_suggestion(self, team_id: str, document_id: str) -> Optional[MatchSuggestion]:
        return self.suggestions.get_pending_suggestion_for_document(team_id, document_id)

    def confirm_suggestion(
        self, suggestion_id: int, team_id: str, user_id: Optional[str] = None
    ) -> MatchSuggestion:
        """Accept a pending suggestion and attach the document to the transaction."""
        suggestion = self._transition(
            suggestion_id, team_id, SuggestionStatus.PENDING, SuggestionStatus.CONFIRMED, user_id
        )
        self.suggestions.link_document(team_id, suggestion.document_id, suggestion.transaction_id)
        return self._reload(suggestion_id, team_id)

    def decline_suggestion(
        self, suggestion_id: int, team_id: str, user_id: Optional[str] = None
    ) -> MatchSuggestion:
        """Reject a pending suggestion. The pair is never suggested again."""
        self._transition(
            suggestion_id, team_id, SuggestionStatus.PENDING, SuggestionStatus.DECLINED, user_id
        )
        return self._reload(suggestion_id, team_id)

    def unmatch_suggestion(
        self, suggestion_id: int, team_id: str, user_id: Optional[str] = None
    ) -> MatchSuggestion:
        """Undo a confirmed match. Counts as negative feedback and blocks the pair."""
        suggestion = self._transition(
            suggestion_id, team_id, SuggestionStatus.CONFIRMED, SuggestionStatus.UNMATCHED, user_id
        )
        self.suggestions.unlink_document(
            team_id, suggestion.document_id, suggestion.transaction_id
        )
        return self._reload(suggestion_id, team_id)

    def expire_stale_suggestions(self, team_id: str, older_than_days: Optional[int] = None) -> int:
        """Expire pending suggestions older than the cutoff. Returns the count expired."""
        days = (
            self.config.suggestions.expire_after_days if older_than_days is None else older_than_days
        )
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        count = self.suggestions.expire_pending_suggestions(team_id, cutoff)
        logger.info("Expired %d pending suggestions older than %d days", count, days)
        return count

    def _transition(
        self,
        suggestion_id: int,
        team_id: str,
        expected: SuggestionStatus,
        target: SuggestionStatus,
        user_id: Optional[str],
    ) -> MatchSuggestion:
        suggestion = self.suggestions.get_suggestion(suggestion_id, team_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        if suggestion.status != expected:
            raise InvalidStatusTransitionError(
                f"Cannot move suggestion {suggestion_id} from "
                f"{suggestion.status.value} to {target.value}"
            )
        self.suggestions.update_suggestion_status(suggestion_id, team_id, target, user_id)
        self.calibrator.invalidate(team_id)
        return suggestion

    def _reload(self, suggestion_id: int, team_id: str) -> MatchSuggestion:
        suggestion = self.suggestions.get_suggestion(suggestion_id, team_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        return suggestion
