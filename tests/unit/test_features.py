"""
Unit tests for models/features.py
"""

import datetime as dt
import logging
import math

import pytest

from trade_decision_engine.core.data_types import MarketRegime
from trade_decision_engine.models.features import (
    BASELINE_WEIGHTS,
    FEATURE_NAMES,
    encode_regime,
    encode_vix_regime,
    sanitize_features,
    seasonal_features,
)


class TestFeatureSchema:
    """Tests for the canonical feature schema."""

    def test_names_follow_weight_order(self):
        assert FEATURE_NAMES == tuple(BASELINE_WEIGHTS)
        assert FEATURE_NAMES[0] == "score_market_condition"
        assert FEATURE_NAMES[-1] == "sector_momentum"

    def test_names_unique(self):
        assert len(set(FEATURE_NAMES)) == len(FEATURE_NAMES)

    def test_bearish_weights(self):
        """Test that volatility and overbought features weigh against success."""
        assert BASELINE_WEIGHTS["vix_level"] < 0
        assert BASELINE_WEIGHTS["rsi_value"] < 0
        assert BASELINE_WEIGHTS["atr_percent"] < 0


class TestSanitizeFeatures:
    """Tests for sanitize_features."""

    def test_dense_in_schema_order(self):
        clean = sanitize_features({"rsi_value": 40.0})
        assert tuple(clean) == FEATURE_NAMES
        assert clean["rsi_value"] == 40.0
        assert clean["regime"] == 0.0

    def test_unknown_keys_dropped(self):
        clean = sanitize_features({"a": 1.0, "b": 2.0}, names=("a",))
        assert clean == {"a": 1.0}

    def test_non_finite_replaced(self, caplog):
        """Test that NaN and infinities become 0 with a warning."""
        with caplog.at_level(logging.WARNING, logger="trade_decision_engine.models.features"):
            clean = sanitize_features(
                {"a": math.nan, "b": math.inf, "c": -math.inf, "d": 2.5},
                names=("a", "b", "c", "d"),
            )
        assert clean == {"a": 0.0, "b": 0.0, "c": 0.0, "d": 2.5}
        assert "a, b, c" in caplog.text

    def test_non_numeric_replaced(self):
        assert sanitize_features({"a": "high", "b": None}, names=("a", "b")) == {"a": 0.0, "b": 0.0}

    def test_numeric_strings_accepted(self):
        assert sanitize_features({"a": "1.5"}, names=("a",)) == {"a": 1.5}


class TestEncoders:
    """Tests for regime and VIX encoders."""

    def test_encode_regime(self):
        assert encode_regime(MarketRegime.BULL) == 2.0
        assert encode_regime("choppy") == 1.0
        assert encode_regime("CRASH") == 0.0

    @pytest.mark.parametrize(
        "vix,expected",
        [(10.0, 0.0), (14.99, 0.0), (15.0, 1.0), (24.9, 1.0), (25.0, 2.0), (34.9, 2.0), (35.0, 3.0), (80.0, 3.0)],
    )
    def test_encode_vix_regime(self, vix, expected):
        assert encode_vix_regime(vix) == expected


class TestSeasonalFeatures:
    """Tests for seasonal_features."""

    def test_month_start_in_earnings_season(self):
        features = seasonal_features(dt.date(2024, 1, 3))  # Wednesday
        assert features["day_of_week"] == 2.0
        assert features["month_of_year"] == 1.0
        assert features["quarter"] == 1.0
        assert features["is_earnings_season"] == 1.0
        assert features["is_month_start"] == 1.0
        assert features["is_month_end"] == 0.0
        assert features["is_year_start"] == 1.0

    def test_month_end_outside_earnings_season(self):
        features = seasonal_features(dt.date(2024, 3, 27))
        assert features["quarter"] == 1.0
        assert features["is_earnings_season"] == 0.0
        assert features["is_month_start"] == 0.0
        assert features["is_month_end"] == 1.0
        assert features["is_year_start"] == 0.0

    def test_month_end_boundary(self):
        """Test the last five calendar days count as month end."""
        assert seasonal_features(dt.date(2024, 2, 25))["is_month_end"] == 1.0  # leap February
        assert seasonal_features(dt.date(2024, 2, 24))["is_month_end"] == 0.0
        assert seasonal_features(dt.date(2023, 12, 27))["is_month_end"] == 1.0

    def test_weekend_clamped_to_friday(self):
        assert seasonal_features(dt.date(2024, 6, 8))["day_of_week"] == 4.0  # Saturday
        assert seasonal_features(dt.date(2024, 6, 9))["day_of_week"] == 4.0  # Sunday

    def test_quarters(self):
        assert seasonal_features(dt.date(2024, 12, 10))["quarter"] == 4.0
        assert seasonal_features(dt.date(2024, 7, 10))["quarter"] == 3.0

    def test_keys_in_schema(self):
        assert set(seasonal_features(dt.date(2024, 5, 15))) <= set(FEATURE_NAMES)
