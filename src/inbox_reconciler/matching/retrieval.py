"""
Tiered candidate retrieval.

Document -> transactions runs four tiers, most precise first, and stops once
enough candidates are pooled. Transaction -> documents runs an exact tier
and falls back to an embedding tier only when the exact tier is empty.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import cmp_to_key
from typing import Optional

from ..config import MatchingConfig
from ..schemas import DocumentCandidate, DocumentRecord, TransactionCandidate, TransactionRecord
from ..state_store.base import (
    AmountMatch,
    CandidateStore,
    DocumentFilter,
    MatchClause,
    TransactionFilter,
)
from .similarity import (
    EXACT_AMOUNT_TOLERANCE,
    GOOD_MATCH_DISTANCE,
    STRONG_MATCH_DISTANCE,
    WEAK_MATCH_DISTANCE,
    amounts_agree,
    conservative_band,
    cross_currency_tolerance,
    perfect_band,
    semantic_band,
)

logger = logging.getLogger(__name__)

# Reverse direction date windows (days relative to the transaction)
REVERSE_EXACT_DAYS_BEFORE = 30
REVERSE_EXACT_DAYS_AFTER = 7
REVERSE_SEMANTIC_DAYS = 90


def strong_amount_window(amount: float) -> float:
    return max(50.0, abs(amount) * 0.10)


def good_amount_window(amount: float) -> float:
    return max(100.0, abs(amount) * 0.20)


def _is_exact(document: DocumentRecord, candidate: TransactionCandidate) -> bool:
    transaction = candidate.transaction
    return bool(
        document.currency
        and document.currency == transaction.currency
        and amounts_agree(document.amount, transaction.amount)
    )


def _relative_amount_difference(document: DocumentRecord, transaction: TransactionRecord) -> float:
    if not document.amount:
        return float("inf")
    return abs(abs(transaction.amount) - abs(document.amount)) / abs(document.amount)


def rank_transaction_candidates(
    document: DocumentRecord, candidates: list[TransactionCandidate]
) -> list[TransactionCandidate]:
    """
    Order pooled candidates for scoring.

    1. Exact amount and currency first
    2. Closer date, when dates differ by more than a day
    3. Closer amount, between two non-exact candidates
    4. Smaller embedding distance
    """

    def days_apart(candidate: TransactionCandidate) -> int:
        if document.date is None:
            return 0
        return abs((candidate.transaction.date - document.date).days)

    def compare(a: TransactionCandidate, b: TransactionCandidate) -> int:
        exact_a, exact_b = _is_exact(document, a), _is_exact(document, b)
        if exact_a != exact_b:
            return -1 if exact_a else 1

        days_a, days_b = days_apart(a), days_apart(b)
        if abs(days_a - days_b) > 1:
            return -1 if days_a < days_b else 1

        if not exact_a and not exact_b:
            diff_a = _relative_amount_difference(document, a.transaction)
            diff_b = _relative_amount_difference(document, b.transaction)
            if diff_a != diff_b:
                return -1 if diff_a < diff_b else 1

        dist_a = a.embedding_distance if a.embedding_distance is not None else float("inf")
        dist_b = b.embedding_distance if b.embedding_distance is not None else float("inf")
        if dist_a != dist_b:
            return -1 if dist_a < dist_b else 1
        return 0

    return sorted(candidates, key=cmp_to_key(compare))


class CandidateRetriever:
    """Builds tier filters and pools candidates from a CandidateStore."""

    def __init__(self, store: CandidateStore, matching: Optional[MatchingConfig] = None):
        self.store = store
        self.matching = matching or MatchingConfig()

    def _usable_base(self, document: DocumentRecord) -> bool:
        """Document base amount can be trusted for base-currency tiers."""
        if not document.base_amount or not document.base_currency:
            return False
        team_currency = self.store.get_team_base_currency(document.team_id)
        return team_currency is None or team_currency == document.base_currency

    def find_transaction_candidates(
        self,
        document: DocumentRecord,
        include_already_matched: bool = False,
    ) -> list[TransactionCandidate]:
        """Pool transaction candidates for a document across up to four tiers."""
        if not document.embedding or document.date is None:
            return []

        limits = self.matching.tier_limits
        target = self.matching.target_candidates
        doc_type = document.effective_type
        amount = abs(document.amount) if document.amount else None
        usable_base = self._usable_base(document)

        pool: list[TransactionCandidate] = []

        def run_tier(tier: int, clauses: tuple[MatchClause, ...], band, limit: int) -> int:
            date_from, date_to = band.bounds(document.date)
            found = self.store.query_transactions(
                TransactionFilter(
                    team_id=document.team_id,
                    embedding=document.embedding,
                    date_from=date_from,
                    date_to=date_to,
                    limit=limit,
                    clauses=clauses,
                    exclude_ids=frozenset(c.transaction.id for c in pool),
                    document_id=document.id,
                    include_already_matched=include_already_matched,
                    reference_date=document.date,
                    reference_amount=amount,
                    reference_currency=document.currency,
                )
            )
            for candidate in found:
                candidate.tier = tier
            pool.extend(found)
            logger.debug("Tier %d for document %s: %d candidates", tier, document.id, len(found))
            return len(found)

        # Tier 1: perfect financial match
        exact_clauses: list[MatchClause] = []
        if amount and document.currency:
            exact_clauses.append(
                MatchClause(
                    max_distance=WEAK_MATCH_DISTANCE,
                    amount=AmountMatch(amount, EXACT_AMOUNT_TOLERANCE, document.currency),
                )
            )
        if usable_base:
            exact_clauses.append(
                MatchClause(
                    max_distance=WEAK_MATCH_DISTANCE,
                    base_amount=AmountMatch(
                        abs(document.base_amount),  # type: ignore[arg-type]
                        EXACT_AMOUNT_TOLERANCE,
                        document.base_currency,
                    ),
                )
            )
        tier1_count = 0
        if exact_clauses:
            tier1_count = run_tier(1, tuple(exact_clauses), perfect_band(doc_type), limits[0])

        # Tier 2: base currency within the cross-currency tolerance
        if tier1_count < limits[0] and usable_base:
            base = abs(document.base_amount)  # type: ignore[arg-type]
            run_tier(
                2,
                (
                    MatchClause(
                        max_distance=WEAK_MATCH_DISTANCE,
                        base_amount=AmountMatch(
                            base, cross_currency_tolerance(base), document.base_currency
                        ),
                    ),
                ),
                perfect_band(doc_type),
                limits[1],
            )

        # Tier 3: strong semantic
        if len(pool) < target:
            run_tier(
                3,
                (
                    MatchClause(
                        max_distance=STRONG_MATCH_DISTANCE,
                        amount=AmountMatch(amount, strong_amount_window(amount)) if amount else None,
                    ),
                ),
                semantic_band(doc_type),
                limits[2],
            )

        # Tier 4: good semantic, conservative window
        if len(pool) < target:
            run_tier(
                4,
                (
                    MatchClause(
                        max_distance=GOOD_MATCH_DISTANCE,
                        amount=AmountMatch(amount, good_amount_window(amount)) if amount else None,
                    ),
                ),
                conservative_band(doc_type),
                limits[3],
            )

        return rank_transaction_candidates(document, pool)

    def find_document_candidates(
        self,
        transaction: TransactionRecord,
        include_already_matched: bool = False,
    ) -> list[DocumentCandidate]:
        """Documents for a transaction: exact tier, else the embedding tier."""
        if not transaction.embedding:
            return []

        exact_limit, semantic_limit = self.matching.reverse_tier_limits
        amount = abs(transaction.amount)
        exact = AmountMatch(amount, EXACT_AMOUNT_TOLERANCE, transaction.currency)

        found = self.store.query_documents(
            DocumentFilter(
                team_id=transaction.team_id,
                embedding=transaction.embedding,
                date_from=transaction.date - timedelta(days=REVERSE_EXACT_DAYS_BEFORE),
                date_to=transaction.date + timedelta(days=REVERSE_EXACT_DAYS_AFTER),
                limit=exact_limit,
                clauses=(MatchClause(amount=exact),),
                transaction_id=transaction.id,
                include_already_matched=include_already_matched,
                reference_date=transaction.date,
            )
        )
        for candidate in found:
            candidate.tier = 1
        if found:
            return found

        found = self.store.query_documents(
            DocumentFilter(
                team_id=transaction.team_id,
                embedding=transaction.embedding,
                date_from=transaction.date - timedelta(days=REVERSE_SEMANTIC_DAYS),
                date_to=transaction.date + timedelta(days=REVERSE_SEMANTIC_DAYS),
                limit=semantic_limit,
                clauses=(
                    MatchClause(max_distance=WEAK_MATCH_DISTANCE, amount=exact),
                    MatchClause(
                        max_distance=STRONG_MATCH_DISTANCE,
                        amount=AmountMatch(amount, strong_amount_window(amount)),
                    ),
                    MatchClause(
                        max_distance=GOOD_MATCH_DISTANCE,
                        amount=AmountMatch(amount, good_amount_window(amount)),
                    ),
                ),
                transaction_id=transaction.id,
                include_already_matched=include_already_matched,
                order_by_distance=True,
                reference_date=transaction.date,
            )
        )
        for candidate in found:
            candidate.tier = 2
        logger.debug(
            "Embedding tier for transaction %s: %d candidates", transaction.id, len(found)
        )
        return found
