"""
Feature schema for the trade classifier.

Defines the canonical, ordered feature names, the hand-set baseline weights
and the helpers that turn raw inputs into a dense, finite feature vector.

Feature groups:
- Criterion scores (0-10 per checklist criterion)
- Market context (regime, VIX, SPY trend)
- Technicals (RSI, ATR, distance to moving averages)
- Volume, sector relative strength, support/resistance
- Multi-timeframe, divergence, pattern and trend flags
- Seasonal and macro context
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from collections.abc import Mapping, Sequence

from trade_decision_engine.core.data_types import MarketRegime

logger = logging.getLogger(__name__)

FeatureVector = Mapping[str, float]

# Hand-set baseline weights; the key order is the canonical feature order.
BASELINE_WEIGHTS: dict[str, float] = {
    # Criterion scores
    "score_market_condition": 0.30,
    "score_sector_condition": 0.25,
    "score_company_condition": 0.20,
    "score_catalyst": 0.35,
    "score_patterns_gaps": 0.30,
    "score_support_resistance": 0.35,
    "score_price_movement": 0.25,
    "score_volume": 0.30,
    "score_ma_fibonacci": 0.25,
    "score_rsi": 0.20,
    # Market context
    "regime": 0.50,
    "regime_confidence": 0.02,
    "vix_level": -0.05,
    "spy_above_50sma": 0.30,
    "spy_above_200sma": 0.40,
    "golden_cross": 0.20,
    # Technicals (low RSI is bullish for mean-reversion entries)
    "rsi_value": -0.15,
    "atr_percent": -0.10,
    "price_vs_200sma": 0.02,
    "price_vs_50sma": 0.02,
    "price_vs_20ema": 0.01,
    # Volume
    "rvol": 0.15,
    "obv_trend": 0.20,
    "cmf_value": 0.50,
    # Sector
    "sector_rs_20d": 0.15,
    "sector_rs_60d": 0.10,
    # Support/resistance
    "rr_ratio": 0.20,
    "near_support": 0.25,
    # Multi-timeframe
    "mtf_daily_score": 0.10,
    "mtf_4h_score": 0.10,
    "mtf_combined_score": 0.15,
    "mtf_alignment": 0.30,
    # Divergence
    "divergence_type": 0.35,
    "divergence_strength": 0.20,
    # Pattern
    "pattern_type": 0.20,
    "gap_percent": 0.05,
    "bull_flag_detected": 0.25,
    "hammer_detected": 0.20,
    # Trend
    "higher_highs": 0.20,
    "higher_lows": 0.25,
    "trend_status": 0.25,
    # Seasonality
    "day_of_week": 0.02,
    "month_of_year": 0.01,
    "quarter": 0.02,
    "is_earnings_season": 0.10,
    "is_month_start": 0.05,
    "is_month_end": 0.05,
    "is_year_start": 0.10,
    # VIX context
    "vix_percentile": -0.02,
    "vix_regime": -0.10,
    # Market momentum
    "spy_10d_return": 0.05,
    "spy_20d_return": 0.05,
    "spy_rsi": -0.10,
    # Breadth
    "sector_momentum": 0.15,
}

FEATURE_NAMES: tuple[str, ...] = tuple(BASELINE_WEIGHTS)

BASELINE_INTERCEPT = -4.0
BASELINE_MEAN = 5.0
BASELINE_STD = 3.0

_REGIME_CODES = {
    MarketRegime.BULL: 2.0,
    MarketRegime.CHOPPY: 1.0,
    MarketRegime.CRASH: 0.0,
}

# Earnings seasons: Jan-Feb, Apr-May, Jul-Aug, Oct-Nov
_EARNINGS_MONTHS = frozenset({1, 2, 4, 5, 7, 8, 10, 11})


def sanitize_features(
    vector: FeatureVector,
    names: Sequence[str] = FEATURE_NAMES,
) -> dict[str, float]:
    """Project a raw vector onto a fixed schema.

    Missing keys become 0.0, unknown keys are dropped and non-finite values
    (NaN, +/-inf) are replaced by 0.0.

    Args:
        vector: Raw feature mapping.
        names: Ordered feature schema.

    Returns:
        Dense mapping over ``names`` in schema order.
    """
    clean: dict[str, float] = {}
    bad: list[str] = []
    for name in names:
        value = vector.get(name, 0.0)
        try:
            value = float(value)
        except (TypeError, ValueError):
            bad.append(name)
            value = 0.0
        if not math.isfinite(value):
            bad.append(name)
            value = 0.0
        clean[name] = value

    if bad:
        logger.warning(f"Replaced non-finite feature values with 0.0: {', '.join(bad)}")
    return clean


def encode_regime(regime: MarketRegime | str) -> float:
    """Encode a market regime as BULL=2, CHOPPY=1, CRASH=0."""
    return _REGIME_CODES[MarketRegime.parse(regime)]


def encode_vix_regime(vix_level: float) -> float:
    """Bucket a VIX level: <15 calm, <25 normal, <35 elevated, else extreme."""
    if vix_level < 15:
        return 0.0
    if vix_level < 25:
        return 1.0
    if vix_level < 35:
        return 2.0
    return 3.0


def seasonal_features(date: dt.date) -> dict[str, float]:
    """Calendar features for a signal date.

    Day of week is 0 (Monday) to 4 (Friday), weekend dates clamp to Friday.
    Month start covers days 1-5, month end the last five calendar days.
    """
    next_month = date.replace(day=28) + dt.timedelta(days=4)
    days_in_month = (next_month - dt.timedelta(days=next_month.day)).day

    return {
        "day_of_week": float(min(4, date.weekday())),
        "month_of_year": float(date.month),
        "quarter": float((date.month - 1) // 3 + 1),
        "is_earnings_season": 1.0 if date.month in _EARNINGS_MONTHS else 0.0,
        "is_month_start": 1.0 if date.day <= 5 else 0.0,
        "is_month_end": 1.0 if date.day >= days_in_month - 4 else 0.0,
        "is_year_start": 1.0 if date.month == 1 else 0.0,
    }
