"""
Configuration management (SSOT).

This module defines ALL configuration for the reconciliation engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- The auto-match threshold is fixed; only the suggestion threshold adapts
- Calibration is derived from suggestion history, never stored
- Merchant pattern rules are strict: a merchant must earn auto-matching
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class MatchingConfig:
    """Candidate retrieval and decision settings."""

    # Fixed auto-match threshold (never calibrated)
    auto_match_threshold: float = 0.90
    # Lower bound for the high_confidence match type
    high_confidence_threshold: float = 0.72
    # Suggestion threshold used before a team has enough history
    default_suggested_threshold: float = 0.60
    # Stop tiered retrieval once this many candidates are pooled
    target_candidates: int = 15
    # Per-tier caps: perfect, perfect base currency, strong semantic, good semantic
    tier_limits: tuple[int, int, int, int] = (5, 5, 10, 10)
    # Reverse direction caps: exact tier, embedding tier
    reverse_tier_limits: tuple[int, int] = (5, 20)
    # Confirm and link auto_matched results when suggesting
    auto_attach: bool = True
    # Consider transactions/documents that are already linked
    include_already_matched: bool = False


@dataclass
class CalibrationConfig:
    """Team calibration settings."""

    # Trailing window of suggestion outcomes (days)
    window_days: int = 90
    # Minimum terminal-status samples before any adjustment
    min_samples: int = 5
    # Max threshold change per nudge
    max_adjustment: float = 0.03
    # Cache calibration per team for this many seconds (0 disables)
    cache_ttl_seconds: int = 0


@dataclass
class MerchantPatternConfig:
    """Merchant history settings for the auto-match gate."""

    # Embedding similarity that triggers a history lookup
    min_similarity: float = 0.75
    # Both sides of a historical pair must be this close (cosine distance)
    max_distance: float = 0.15
    # History lookback (days, ~6 months)
    lookback_days: int = 180
    # Newest N historical outcomes considered
    history_limit: int = 20
    # Samples needed to render any judgment
    min_history: int = 3
    min_confirmed: int = 3
    min_accuracy: float = 0.90
    max_negative: int = 1
    min_avg_confidence: float = 0.85
    # Only the top-N candidates by preliminary score get a lookup
    max_lookups: int = 10


@dataclass
class SuggestionConfig:
    """Suggestion lifecycle settings."""

    # Pending suggestions older than this are expired by `expire`
    expire_after_days: int = 30


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    merchant_patterns: MerchantPatternConfig = field(default_factory=MerchantPatternConfig)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        matching = self.matching
        if not 0.0 < matching.default_suggested_threshold <= 1.0:
            errors.append("matching.default_suggested_threshold must be in (0, 1]")
        if matching.auto_match_threshold < matching.high_confidence_threshold:
            errors.append("matching.auto_match_threshold must be >= high_confidence_threshold")
        if matching.high_confidence_threshold < matching.default_suggested_threshold:
            errors.append(
                "matching.high_confidence_threshold must be >= default_suggested_threshold"
            )
        if len(matching.tier_limits) != 4 or any(n <= 0 for n in matching.tier_limits):
            errors.append("matching.tier_limits must be four positive integers")
        if len(matching.reverse_tier_limits) != 2 or any(
            n <= 0 for n in matching.reverse_tier_limits
        ):
            errors.append("matching.reverse_tier_limits must be two positive integers")
        if matching.target_candidates <= 0:
            errors.append("matching.target_candidates must be positive")

        if self.calibration.window_days <= 0:
            errors.append("calibration.window_days must be positive")
        if not 0.0 < self.calibration.max_adjustment <= 0.1:
            errors.append("calibration.max_adjustment must be in (0, 0.1]")
        if self.calibration.cache_ttl_seconds < 0:
            errors.append("calibration.cache_ttl_seconds must be >= 0")

        patterns = self.merchant_patterns
        if patterns.min_history < 1:
            errors.append("merchant_patterns.min_history must be >= 1")
        if patterns.max_lookups < 0:
            errors.append("merchant_patterns.max_lookups must be >= 0")

        if self.suggestions.expire_after_days <= 0:
            errors.append("suggestions.expire_after_days must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass  # Keep default
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECONCILER_DB_PATH
    - RECONCILER_AUTO_ATTACH (true/false)
    - RECONCILER_INCLUDE_ALREADY_MATCHED (true/false)
    - RECONCILER_CALIBRATION_WINDOW_DAYS
    - RECONCILER_CALIBRATION_CACHE_TTL (seconds)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    matching_data = data.get("matching", {})
    defaults = MatchingConfig()
    matching = MatchingConfig(
        auto_match_threshold=matching_data.get(
            "auto_match_threshold", defaults.auto_match_threshold
        ),
        high_confidence_threshold=matching_data.get(
            "high_confidence_threshold", defaults.high_confidence_threshold
        ),
        default_suggested_threshold=matching_data.get(
            "default_suggested_threshold", defaults.default_suggested_threshold
        ),
        target_candidates=matching_data.get("target_candidates", defaults.target_candidates),
        tier_limits=tuple(matching_data.get("tier_limits", defaults.tier_limits)),
        reverse_tier_limits=tuple(
            matching_data.get("reverse_tier_limits", defaults.reverse_tier_limits)
        ),
        auto_attach=_env_bool(
            "RECONCILER_AUTO_ATTACH", matching_data.get("auto_attach", defaults.auto_attach)
        ),
        include_already_matched=_env_bool(
            "RECONCILER_INCLUDE_ALREADY_MATCHED",
            matching_data.get("include_already_matched", defaults.include_already_matched),
        ),
    )

    calibration_data = data.get("calibration", {})
    calibration = CalibrationConfig(
        window_days=_env_int(
            "RECONCILER_CALIBRATION_WINDOW_DAYS", calibration_data.get("window_days", 90)
        ),
        min_samples=calibration_data.get("min_samples", 5),
        max_adjustment=calibration_data.get("max_adjustment", 0.03),
        cache_ttl_seconds=_env_int(
            "RECONCILER_CALIBRATION_CACHE_TTL", calibration_data.get("cache_ttl_seconds", 0)
        ),
    )

    pattern_data = data.get("merchant_patterns", {})
    pattern_defaults = MerchantPatternConfig()
    merchant_patterns = MerchantPatternConfig(
        **{
            key: pattern_data.get(key, getattr(pattern_defaults, key))
            for key in pattern_defaults.__dataclass_fields__
        }
    )

    suggestion_data = data.get("suggestions", {})
    suggestions = SuggestionConfig(
        expire_after_days=suggestion_data.get("expire_after_days", 30),
    )

    state_db = os.environ.get("RECONCILER_DB_PATH", data.get("state_db_path", "data/state.db"))

    return Config(
        matching=matching,
        calibration=calibration,
        merchant_patterns=merchant_patterns,
        suggestions=suggestions,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Inbox reconciliation engine configuration
#
# The auto-match threshold is fixed. Only the suggestion threshold is
# calibrated per team from confirmed/declined/unmatched history.

matching:
  auto_match_threshold: 0.90               # Auto-match decision threshold (not calibrated)
  high_confidence_threshold: 0.72          # Lower bound for high_confidence
  default_suggested_threshold: 0.60        # Cold-start suggestion threshold
  target_candidates: 15                    # Stop retrieval once pooled
  tier_limits: [5, 5, 10, 10]              # Per-tier caps (document -> transaction)
  reverse_tier_limits: [5, 20]             # Per-tier caps (transaction -> document)
  auto_attach: true                        # Confirm + link auto_matched results
  include_already_matched: false

calibration:
  window_days: 90                          # Trailing outcome window
  min_samples: 5                           # Cold-start below this
  max_adjustment: 0.03                     # Max change per nudge
  cache_ttl_seconds: 0                     # 0 = recompute on every call

# A merchant pair must earn auto-matching through confirmed history
merchant_patterns:
  min_similarity: 0.75
  max_distance: 0.15
  lookback_days: 180
  history_limit: 20
  min_history: 3
  min_confirmed: 3
  min_accuracy: 0.90
  max_negative: 1
  min_avg_confidence: 0.85
  max_lookups: 10

suggestions:
  expire_after_days: 30

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
