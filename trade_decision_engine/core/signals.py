"""
Soft signal vocabulary.

A soft signal is a trade idea sourced from non-technical information
(insider buying, congressional trades, analyst upgrades, institutional
options blocks, portfolio accumulation by known investors). Signals whose
reason describes a chart setup are categorized as technical and are not
soft signals.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class SignalCategory(str, Enum):
    """Signal source category."""

    INSIDER = "insider"
    POLITICIAN = "politician"
    ANALYST = "analyst"
    INSTITUTIONAL = "institutional"
    PORTFOLIO = "portfolio"
    TECHNICAL = "technical"
    OTHER = "other"


SOFT_CATEGORIES = frozenset(
    {
        SignalCategory.INSIDER,
        SignalCategory.POLITICIAN,
        SignalCategory.ANALYST,
        SignalCategory.INSTITUTIONAL,
        SignalCategory.PORTFOLIO,
    }
)


def categorize_signal(reason: str) -> SignalCategory:
    """Categorize a free-text signal reason by keyword rules.

    Rules are checked in priority order, so "politician insider purchase"
    is an insider signal.
    """
    text = reason.lower()

    if (
        "insider purchase" in text
        or "insider buying" in text
        or "directors insider" in text
        or ("ceo" in text and "purchase" in text)
    ):
        return SignalCategory.INSIDER

    if any(k in text for k in ("politician", "congressman", "rep.", "senator")):
        return SignalCategory.POLITICIAN

    if any(k in text for k in ("analyst upgrade", "buy rating", "star rating")):
        return SignalCategory.ANALYST

    if "options block" in text or "put selling" in text or ("$" in text and "block" in text):
        return SignalCategory.INSTITUTIONAL

    if "portfolio accumulation" in text:
        return SignalCategory.PORTFOLIO

    if any(k in text for k in ("technical", "breakout", "rsi", "macd", "consolidation")):
        return SignalCategory.TECHNICAL

    return SignalCategory.OTHER


def is_soft_signal(category: SignalCategory) -> bool:
    """Check whether a category counts as a soft signal."""
    return category in SOFT_CATEGORIES


class SoftSignal(BaseModel):
    """A candidate trade idea supplied by the caller."""

    ticker: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    signal_date: dt.date = Field(..., description="Date the signal was observed")
    reason: str = Field(default="", description="Free-text reason for the signal")

    model_config = ConfigDict(frozen=True)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        """Validate and normalize ticker."""
        return v.upper().strip()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def category(self) -> SignalCategory:
        return categorize_signal(self.reason)

    @property
    def is_soft(self) -> bool:
        return is_soft_signal(self.category)
