"""
Pytest fixtures for the Trade Decision Engine tests.
"""

import datetime as dt
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from trade_decision_engine.core.data_types import PriceBar  # noqa: E402


START_DATE = dt.date(2024, 1, 1)


def make_bar(date, open_, high, low, close, volume=1_000_000.0):
    """Build a single validated bar."""
    return PriceBar(date=date, open=open_, high=high, low=low, close=close, volume=volume)


def flat_bars(count, start=START_DATE, price=100.0, half_range=1.25):
    """Flat series with a constant true range of 2 x half_range."""
    return [
        make_bar(start + dt.timedelta(days=i), price, price + half_range, price - half_range, price)
        for i in range(count)
    ]


@pytest.fixture
def bar_factory():
    """Factory for single bars."""
    return make_bar


@pytest.fixture
def flat_series():
    """Factory for flat series (ATR 2.5 with the default half range)."""
    return flat_bars


@pytest.fixture
def history():
    """Twenty-one flat bars: signal on index 19, entry on index 20 at 100.

    With ATR 2.5 and the default 2 ATR stop the trade geometry is
    stop 95, TP1 110, TP2 115, TP3 120.
    """
    return flat_bars(21)


@pytest.fixture
def signal_date(history):
    """Signal date of the ``history`` fixture."""
    return history[19].date


@pytest.fixture
def strong_features():
    """Feature vector well above the baseline means."""
    return {
        "score_market_condition": 9.0,
        "score_sector_condition": 8.0,
        "score_company_condition": 8.0,
        "score_catalyst": 9.0,
        "score_patterns_gaps": 8.0,
        "score_support_resistance": 9.0,
        "score_price_movement": 8.0,
        "score_volume": 8.0,
        "score_ma_fibonacci": 8.0,
        "score_rsi": 8.0,
        "regime": 2.0,
        "spy_above_50sma": 1.0,
        "spy_above_200sma": 1.0,
        "rsi_value": 45.0,
        "rvol": 2.0,
    }


@pytest.fixture
def sample_examples():
    """Linearly separable labelled examples over two features."""
    examples = []
    for i in range(40):
        label = i % 2
        catalyst = 7.0 + (i % 5) * 0.5 if label else 2.0 + (i % 5) * 0.5
        examples.append(({"score_catalyst": catalyst, "rsi_value": 50.0 - catalyst}, label))
    return examples
