"""
Pydantic models and type definitions shared by the decision engine.

Defines the common vocabulary of the three analytical components: daily
price bars, market regimes and trade exit reasons, plus helpers to validate
and build date-ascending price series.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from trade_decision_engine.core.exceptions import DataValidationError, InvalidConfigError


class MarketRegime(str, Enum):
    """Coarse market-state classification used to scale risk budgets."""

    BULL = "BULL"
    CHOPPY = "CHOPPY"
    CRASH = "CRASH"

    @classmethod
    def parse(cls, value: "MarketRegime | str") -> "MarketRegime":
        """Parse a regime from its name, case-insensitively."""
        if isinstance(value, MarketRegime):
            return value
        return cls(str(value).strip().upper())


class ExitReason(str, Enum):
    """Reason a simulated trade was closed."""

    STOP_LOSS = "STOP_LOSS"
    TP3 = "TP3"
    TIME_EXIT = "TIME_EXIT"


class PriceBar(BaseModel):
    """One daily trading session with strict OHLC validation."""

    date: dt.date = Field(..., description="Session date")
    open: float = Field(..., ge=0, description="Open price")
    high: float = Field(..., ge=0, description="High price")
    low: float = Field(..., ge=0, description="Low price")
    close: float = Field(..., ge=0, description="Close price")
    volume: float = Field(default=0.0, ge=0, description="Session volume")

    model_config = ConfigDict(frozen=True)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Any:
        """Accept datetimes and pandas timestamps as session dates."""
        if isinstance(v, pd.Timestamp):
            return v.date()
        if isinstance(v, dt.datetime):
            return v.date()
        return v

    @model_validator(mode="after")
    def validate_ohlc_relationship(self) -> "PriceBar":
        """Validate OHLC relationship: low <= open,close <= high."""
        if self.low > self.open or self.low > self.close:
            raise ValueError(f"Low price ({self.low}) must be <= open ({self.open}) and close ({self.close})")
        if self.high < self.open or self.high < self.close:
            raise ValueError(f"High price ({self.high}) must be >= open ({self.open}) and close ({self.close})")
        if self.low > self.high:
            raise ValueError(f"Low price ({self.low}) must be <= high price ({self.high})")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "date": self.date.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceBar":
        """Create PriceBar from dictionary."""
        return cls(
            date=dt.date.fromisoformat(data["date"]) if isinstance(data.get("date"), str) else data["date"],
            open=data["open"],
            high=data["high"],
            low=data["low"],
            close=data["close"],
            volume=data.get("volume", 0.0),
        )


PriceSeries = Sequence[PriceBar]


class FrozenConfig(BaseModel):
    """Immutable configuration validated once at construction.

    Pydantic validation failures are re-raised as ``InvalidConfigError`` so
    callers handle one exception type for bad configuration.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise InvalidConfigError(
                f"Invalid {self.__class__.__name__}: {e.error_count()} error(s)",
                config_key=".".join(str(p) for p in e.errors()[0]["loc"]) or None,
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


def validate_price_series(bars: Iterable[PriceBar]) -> list[PriceBar]:
    """Check that bars are strictly date-ascending with no duplicates.

    Args:
        bars: Candidate price series for one ticker.

    Returns:
        The bars as a list.

    Raises:
        DataValidationError: If dates are out of order or duplicated.
    """
    series = list(bars)
    for prev, bar in zip(series, series[1:]):
        if bar.date == prev.date:
            raise DataValidationError(
                f"Duplicate session date {bar.date.isoformat()} in price series",
                field="date",
                value=bar.date,
            )
        if bar.date < prev.date:
            raise DataValidationError(
                "Price series must be in ascending date order",
                field="date",
                value=bar.date,
                expected=f"> {prev.date.isoformat()}",
            )
    return series


_OHLCV_COLUMNS = ("open", "high", "low", "close")


def price_series_from_frame(frame: pd.DataFrame) -> list[PriceBar]:
    """Build a validated price series from a pandas DataFrame.

    The frame may carry dates either in a ``date`` column or in its index.
    Column names are matched case-insensitively; ``volume`` is optional.

    Raises:
        DataValidationError: If required columns are missing, a row violates
            the OHLC relationship, or dates are unordered/duplicated.
    """
    df = frame.rename(columns={c: str(c).strip().lower() for c in frame.columns})
    if "date" not in df.columns:
        df = df.reset_index()
        df = df.rename(columns={df.columns[0]: "date"})

    missing = [c for c in _OHLCV_COLUMNS if c not in df.columns]
    if missing:
        raise DataValidationError(
            f"Price frame is missing columns: {', '.join(missing)}",
            field="columns",
            expected="open, high, low, close",
        )

    dates = pd.to_datetime(df["date"])
    volumes = df["volume"] if "volume" in df.columns else pd.Series(0.0, index=df.index)

    bars = []
    for i, (when, o, h, l, c, v) in enumerate(
        zip(dates, df["open"], df["high"], df["low"], df["close"], volumes)
    ):
        try:
            bars.append(
                PriceBar(
                    date=when.date(),
                    open=float(o),
                    high=float(h),
                    low=float(l),
                    close=float(c),
                    volume=float(v) if pd.notna(v) else 0.0,
                )
            )
        except ValueError as e:
            raise DataValidationError(
                f"Invalid price bar at row {i}: {e}",
                field="row",
                value=i,
            ) from e

    return validate_price_series(bars)
