"""
Per-team threshold calibration from suggestion feedback.

Only the suggestion threshold adapts. The auto-match threshold is fixed;
auto-matching is gated by merchant history instead.

compute_calibration() is a pure function over (status, confidence) history.
TeamCalibrator loads that history from a SuggestionStore and optionally
caches the result per team for a configured TTL.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from ..config import CalibrationConfig, MatchingConfig
from ..schemas import FEEDBACK_STATUSES, SuggestionStatus, TeamCalibrationData

if TYPE_CHECKING:
    from ..state_store.base import SuggestionOutcome, SuggestionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Nudge:
    """A bounded threshold adjustment and the bound it moves toward."""

    name: str
    delta: float
    bound: float


def apply_nudge(threshold: float, nudge: Nudge, max_adjustment: float) -> float:
    """
    Move the threshold toward the nudge's bound without crossing it.

    A nudge whose bound is already passed leaves the threshold unchanged.
    """
    delta = max(-max_adjustment, min(max_adjustment, nudge.delta))
    if delta < 0:
        if threshold <= nudge.bound:
            return threshold
        return max(nudge.bound, threshold + delta)
    if delta > 0:
        if threshold >= nudge.bound:
            return threshold
        return min(nudge.bound, threshold + delta)
    return threshold


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _accuracy_nudge(accuracy: float, confirmed: int, declined: int) -> Optional[Nudge]:
    if accuracy >= 0.95 and confirmed >= 5:
        return Nudge("accuracy_high", -0.03, 0.65)
    if accuracy < 0.5 and declined >= 3:
        return Nudge("accuracy_low", 0.03, 0.85)
    return None


def _gap_nudge(
    avg_confirmed: float, avg_negative: float, confirmed: int, negatives: int
) -> Optional[Nudge]:
    if confirmed < 3 or negatives < 3 or avg_confirmed <= 0 or avg_negative <= 0:
        return None
    gap = avg_confirmed - avg_negative
    if gap > 0.20:
        return Nudge("gap_wide", -0.03, 0.55)
    if gap > 0.12:
        return Nudge("gap_good", -0.02, 0.58)
    if gap < 0.05:
        return Nudge("gap_narrow", 0.03, 0.82)
    return None


def _volume_leniency_nudge(confirmed: int, accuracy: float) -> Optional[Nudge]:
    if confirmed >= 20 and accuracy >= 0.90:
        return Nudge("volume_leniency", -0.03, 0.55)
    return None


def _volume_conservatism_nudge(negatives: int, accuracy: float) -> Optional[Nudge]:
    if negatives >= 8 and accuracy < 0.70:
        return Nudge("volume_conservatism", 0.03, 0.85)
    return None


def compute_calibration(
    team_id: str,
    history: Sequence[SuggestionOutcome],
    calibration: Optional[CalibrationConfig] = None,
    matching: Optional[MatchingConfig] = None,
    now: Optional[datetime] = None,
) -> TeamCalibrationData:
    """
    Derive a team's suggestion threshold from terminal-status history.

    Args:
        team_id: Team the history belongs to
        history: Outcomes with status confirmed, declined or unmatched
        calibration: Sample minimums and step size
        matching: Default and fixed thresholds
        now: Timestamp recorded as last_updated

    Returns:
        TeamCalibrationData; cold-start defaults below the sample minimum
    """
    calibration = calibration or CalibrationConfig()
    matching = matching or MatchingConfig()
    now = now or datetime.now(timezone.utc)
    last_updated = now.isoformat().replace("+00:00", "Z")

    default_threshold = matching.default_suggested_threshold
    auto_threshold = matching.auto_match_threshold

    terminal = [o for o in history if o.status in FEEDBACK_STATUSES]
    total = len(terminal)

    if total < calibration.min_samples:
        return TeamCalibrationData(
            team_id=team_id,
            total_suggestions=total,
            confirmed_suggestions=0,
            declined_suggestions=0,
            unmatched_suggestions=0,
            avg_confidence_confirmed=0.0,
            avg_confidence_declined=0.0,
            auto_match_accuracy=0.0,
            calibrated_auto_threshold=auto_threshold,
            calibrated_suggested_threshold=default_threshold,
            last_updated=last_updated,
        )

    confirmed = [o.confidence_score for o in terminal if o.status == SuggestionStatus.CONFIRMED]
    declined = [o.confidence_score for o in terminal if o.status == SuggestionStatus.DECLINED]
    unmatched = [o.confidence_score for o in terminal if o.status == SuggestionStatus.UNMATCHED]

    negatives = declined + unmatched if unmatched else declined
    avg_confirmed = _mean(confirmed)
    avg_negative = _mean(negatives)
    accuracy = len(confirmed) / total
    negative_count = len(declined) + len(unmatched)

    nudges: list[Callable[[], Optional[Nudge]]] = [
        lambda: _accuracy_nudge(accuracy, len(confirmed), len(declined)),
        lambda: _gap_nudge(avg_confirmed, avg_negative, len(confirmed), negative_count),
        lambda: _volume_leniency_nudge(len(confirmed), accuracy),
        lambda: _volume_conservatism_nudge(negative_count, accuracy),
    ]

    threshold = default_threshold
    for rule in nudges:
        nudge = rule()
        if nudge is None:
            continue
        adjusted = apply_nudge(threshold, nudge, calibration.max_adjustment)
        logger.debug(
            "Calibration %s for team %s: %.3f -> %.3f", nudge.name, team_id, threshold, adjusted
        )
        threshold = adjusted

    return TeamCalibrationData(
        team_id=team_id,
        total_suggestions=total,
        confirmed_suggestions=len(confirmed),
        declined_suggestions=len(declined),
        unmatched_suggestions=len(unmatched),
        avg_confidence_confirmed=avg_confirmed,
        avg_confidence_declined=avg_negative,
        auto_match_accuracy=accuracy,
        calibrated_auto_threshold=auto_threshold,
        calibrated_suggested_threshold=threshold,
        last_updated=last_updated,
    )


class TeamCalibrator:
    """Loads feedback history and computes calibration, with an optional TTL cache."""

    def __init__(
        self,
        store: SuggestionStore,
        calibration: Optional[CalibrationConfig] = None,
        matching: Optional[MatchingConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.calibration = calibration or CalibrationConfig()
        self.matching = matching or MatchingConfig()
        self._clock = clock
        self._cache: dict[str, tuple[float, TeamCalibrationData]] = {}

    def get(self, team_id: str) -> TeamCalibrationData:
        """Calibration for a team, served from cache while fresh."""
        ttl = self.calibration.cache_ttl_seconds
        if ttl > 0:
            cached = self._cache.get(team_id)
            if cached and self._clock() - cached[0] < ttl:
                return cached[1]

        now = datetime.now(timezone.utc)
        history = self.store.query_suggestions(
            team_id,
            FEEDBACK_STATUSES,
            created_after=now - timedelta(days=self.calibration.window_days),
        )
        data = compute_calibration(team_id, history, self.calibration, self.matching, now)
        logger.debug(
            "Team %s calibration: %d samples, suggested threshold %.3f",
            team_id,
            data.total_suggestions,
            data.calibrated_suggested_threshold,
        )

        if ttl > 0:
            self._cache[team_id] = (self._clock(), data)
        return data

    def invalidate(self, team_id: Optional[str] = None) -> None:
        """Drop cached calibration for one team, or for all teams."""
        if team_id is None:
            self._cache.clear()
        else:
            self._cache.pop(team_id, None)
