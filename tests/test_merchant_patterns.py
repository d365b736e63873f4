"""Tests for merchant pattern analysis."""

from unittest.mock import MagicMock

from inbox_reconciler.config import MerchantPatternConfig
from inbox_reconciler.matching import MerchantPatternAnalyzer, evaluate_history
from inbox_reconciler.matching.merchant_patterns import similarity_bucket
from inbox_reconciler.schemas import SuggestionStatus
from inbox_reconciler.state_store import SuggestionOutcome

from conftest import HOSTING, make_document, make_transaction, seed_outcomes

CONFIRMED = SuggestionStatus.CONFIRMED
DECLINED = SuggestionStatus.DECLINED


def history(confirmed: int, declined: int = 0, confidence: float = 0.95):
    return [SuggestionOutcome(CONFIRMED, confidence) for _ in range(confirmed)] + [
        SuggestionOutcome(DECLINED, confidence) for _ in range(declined)
    ]


class TestEvaluateHistory:
    """Tests for the history verdict."""

    def test_empty_history(self):
        pattern = evaluate_history([])
        assert not pattern.can_auto_match
        assert pattern.reason == "insufficient_history"

    def test_insufficient_confirmations(self):
        pattern = evaluate_history(history(2, 1))
        assert not pattern.can_auto_match
        assert pattern.reason == "insufficient_confirmations"

    def test_low_accuracy(self):
        pattern = evaluate_history(history(8, 2))
        assert pattern.reason == "low_accuracy"
        assert pattern.accuracy == 0.8

    def test_too_many_negatives(self):
        pattern = evaluate_history(history(18, 2))
        assert pattern.reason == "too_many_negatives"

    def test_low_confidence(self):
        pattern = evaluate_history(history(3, confidence=0.7))
        assert pattern.reason == "low_historical_confidence"

    def test_proven(self):
        pattern = evaluate_history(history(5))
        assert pattern.can_auto_match
        assert pattern.reason == "proven_merchant"
        assert pattern.confirmed_count == 5
        assert pattern.total_count == 5
        assert pattern.accuracy == 1.0

    def test_one_negative_allowed(self):
        pattern = evaluate_history(history(10, 1))
        assert pattern.can_auto_match

    def test_custom_config(self):
        config = MerchantPatternConfig(min_history=10, min_confirmed=10)
        assert evaluate_history(history(5), config).reason == "insufficient_history"


class TestSimilarityBucket:
    def test_rounds_to_nearest_step(self):
        assert similarity_bucket(0.83) == 0.85
        assert similarity_bucket(0.81) == 0.8
        assert similarity_bucket(1.0) == 1.0


class TestMerchantPatternAnalyzer:
    """Tests for history lookups."""

    def test_low_similarity_not_evaluated(self):
        store = MagicMock()
        analyzer = MerchantPatternAnalyzer(store)

        pattern = analyzer.analyze("team-1", make_document(), make_transaction(), 0.5)

        assert pattern.reason == "not_evaluated"
        store.query_merchant_history.assert_not_called()

    def test_missing_embedding_not_evaluated(self):
        store = MagicMock()
        analyzer = MerchantPatternAnalyzer(store)
        document = make_document(embedding=[])

        pattern = analyzer.analyze("team-1", document, make_transaction(), 0.9)

        assert pattern.reason == "not_evaluated"
        store.query_merchant_history.assert_not_called()

    def test_memo_avoids_repeat_lookups(self):
        store = MagicMock()
        store.query_merchant_history.return_value = history(5)
        analyzer = MerchantPatternAnalyzer(store)
        memo = {}

        first = analyzer.analyze("team-1", make_document(), make_transaction(), 0.91, memo)
        second = analyzer.analyze("team-1", make_document(), make_transaction("txn-2"), 0.89, memo)

        assert first.can_auto_match
        assert second is first
        assert store.query_merchant_history.call_count == 1

    def test_lookup_filter(self):
        store = MagicMock()
        store.query_merchant_history.return_value = []
        analyzer = MerchantPatternAnalyzer(store)

        analyzer.analyze("team-1", make_document(), make_transaction(), 0.9)

        flt = store.query_merchant_history.call_args[0][0]
        assert flt.team_id == "team-1"
        assert flt.max_distance == 0.15
        assert flt.limit == 20
        assert set(flt.statuses) == {
            SuggestionStatus.CONFIRMED,
            SuggestionStatus.DECLINED,
            SuggestionStatus.UNMATCHED,
        }

    def test_proven_from_store_history(self, store):
        seed_outcomes(store, [CONFIRMED] * 5)
        analyzer = MerchantPatternAnalyzer(store)

        pattern = analyzer.analyze("team-1", make_document(), make_transaction(), 1.0)

        assert pattern.can_auto_match
        assert pattern.confirmed_count == 5

    def test_unrelated_history_ignored(self, store):
        seed_outcomes(store, [CONFIRMED] * 5, embedding=list(HOSTING))
        analyzer = MerchantPatternAnalyzer(store)

        pattern = analyzer.analyze("team-1", make_document(), make_transaction(), 1.0)

        assert not pattern.can_auto_match
        assert pattern.reason == "insufficient_history"

    def test_declines_count_against(self, store):
        seed_outcomes(store, [CONFIRMED] * 3 + [DECLINED] * 2)
        analyzer = MerchantPatternAnalyzer(store)

        pattern = analyzer.analyze("team-1", make_document(), make_transaction(), 1.0)

        assert not pattern.can_auto_match
        assert pattern.reason == "low_accuracy"
