"""
Trade outcome simulation for soft-signal backtesting.

Replays daily price bars forward from a signal date and produces one
realized trade outcome under an ATR-based stop/target scheme:
- Entry at the open of the first session after the signal date
- Stop at entry - ATR x stop multiple (the risk unit R)
- Staged partial exits at TP1 (33%), TP2 (33%) and TP3 (remainder)
- Time exit at the close after the maximum holding period

The exit rules live in an explicit state machine (OPEN -> PARTIAL_33 ->
PARTIAL_66 -> CLOSED) so per-bar transition order is independently testable.
Simulation is a pure function of (bars, config).
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import Field, model_validator

from trade_decision_engine.core.data_types import ExitReason, FrozenConfig, PriceBar
from trade_decision_engine.monitoring.logger import log_simulation

logger = logging.getLogger(__name__)

# R at or above which a trade counts as a win
WIN_THRESHOLD_R = 1.0


class SimulatorConfig(FrozenConfig):
    """Stop/target geometry and data requirements.

    Attributes:
        stop_multiple: Stop distance in ATRs.
        tp1_multiple: First target in R.
        tp2_multiple: Second target in R.
        tp3_multiple: Final target in R.
        max_holding_days: Sessions after entry before a time exit.
        atr_period: ATR lookback window.
        min_bars: Minimum series length.
        tp1_fraction: Position fraction sold at TP1.
        tp2_fraction: Position fraction sold at TP2.
    """

    stop_multiple: float = Field(default=2.0, gt=0)
    tp1_multiple: float = Field(default=2.0, gt=0)
    tp2_multiple: float = Field(default=3.0, gt=0)
    tp3_multiple: float = Field(default=4.0, gt=0)
    max_holding_days: int = Field(default=45, ge=1)
    atr_period: int = Field(default=14, ge=1)
    min_bars: int = Field(default=20, ge=1)
    tp1_fraction: float = Field(default=0.33, gt=0, lt=1)
    tp2_fraction: float = Field(default=0.33, gt=0, lt=1)

    @model_validator(mode="after")
    def validate_geometry(self) -> "SimulatorConfig":
        if not self.tp1_multiple < self.tp2_multiple < self.tp3_multiple:
            raise ValueError("Profit targets must be strictly ascending (tp1 < tp2 < tp3)")
        if self.tp1_fraction + self.tp2_fraction >= 1:
            raise ValueError("Partial exit fractions must leave a remainder for TP3")
        return self

    @property
    def tp3_fraction(self) -> float:
        return 1.0 - self.tp1_fraction - self.tp2_fraction


# =============================================================================
# Volatility
# =============================================================================


def true_range(bar: PriceBar, prev_close: float) -> float:
    """max(high - low, |high - prev_close|, |low - prev_close|)."""
    return max(bar.high - bar.low, abs(bar.high - prev_close), abs(bar.low - prev_close))


def compute_atr(bars: Sequence[PriceBar], period: int = 14) -> float:
    """
    Average True Range over the last ``period`` bars.

    The first bar of the series uses its own close as previous close.

    Args:
        bars: Date-ascending bars ending at the measurement date
        period: Lookback window

    Returns:
        Mean true range, or 0.0 for an empty series
    """
    if not bars:
        return 0.0
    ranges = [true_range(bars[0], bars[0].close)]
    ranges.extend(true_range(bar, prev.close) for prev, bar in zip(bars, bars[1:]))
    window = ranges[-period:]
    return sum(window) / len(window)


# =============================================================================
# Exit state machine
# =============================================================================


class PositionState(str, Enum):
    """Fraction of the position still open."""

    OPEN = "OPEN"
    PARTIAL_33 = "PARTIAL_33"
    PARTIAL_66 = "PARTIAL_66"
    CLOSED = "CLOSED"


class ExitEventType(str, Enum):
    """Kind of exit fill."""

    STOP_LOSS = "STOP_LOSS"
    TP1 = "TP1"
    TP2 = "TP2"
    TP3 = "TP3"
    TIME_EXIT = "TIME_EXIT"


@dataclass(frozen=True)
class ExitEvent:
    """One exit fill of a slice of the position."""

    event_type: ExitEventType
    date: dt.date
    price: float
    fraction: float
    r_multiple: float

    @property
    def r_contribution(self) -> float:
        return self.fraction * self.r_multiple


class ExitStateMachine:
    """
    Partial-exit state machine for one long position.

    Per bar the checks run stop -> TP1 -> TP2 -> TP3. The stop closes the
    whole remainder and pre-empts the targets on that bar. Each target fires
    at most once; CLOSED is absorbing.
    """

    def __init__(self, entry_price: float, stop_distance: float, config: SimulatorConfig) -> None:
        if stop_distance <= 0:
            raise ValueError("stop_distance must be positive")
        self.entry_price = entry_price
        self.stop_distance = stop_distance
        self.config = config

        self.stop_loss = entry_price - stop_distance
        self.tp1 = entry_price + stop_distance * config.tp1_multiple
        self.tp2 = entry_price + stop_distance * config.tp2_multiple
        self.tp3 = entry_price + stop_distance * config.tp3_multiple

        self.state = PositionState.OPEN
        self.remaining = 1.0
        self.events: list[ExitEvent] = []
        self.exit_reason: ExitReason | None = None

    @property
    def is_closed(self) -> bool:
        return self.state == PositionState.CLOSED

    @property
    def realized_r(self) -> float:
        """Sum of each exited slice's signed R contribution."""
        return sum(event.r_contribution for event in self.events)

    def _r_at(self, price: float) -> float:
        return (price - self.entry_price) / self.stop_distance

    def _fill(self, event_type: ExitEventType, date: dt.date, price: float, fraction: float, r: float) -> ExitEvent:
        event = ExitEvent(event_type=event_type, date=date, price=price, fraction=fraction, r_multiple=r)
        self.events.append(event)
        self.remaining -= fraction
        return event

    def _close_remainder(self, event_type: ExitEventType, date: dt.date, price: float, r: float) -> ExitEvent:
        event = self._fill(event_type, date, price, self.remaining, r)
        self.remaining = 0.0
        self.state = PositionState.CLOSED
        self.exit_reason = ExitReason(event_type.value)
        return event

    def step(self, bar: PriceBar) -> list[ExitEvent]:
        """Apply one session; returns the fills it triggered in order."""
        if self.is_closed:
            return []

        if bar.low <= self.stop_loss:
            price = min(bar.open, self.stop_loss)
            return [self._close_remainder(ExitEventType.STOP_LOSS, bar.date, price, self._r_at(price))]

        fills = []
        if self.state == PositionState.OPEN and bar.high >= self.tp1:
            fills.append(
                self._fill(ExitEventType.TP1, bar.date, self.tp1, self.config.tp1_fraction, self.config.tp1_multiple)
            )
            self.state = PositionState.PARTIAL_33

        if self.state == PositionState.PARTIAL_33 and bar.high >= self.tp2:
            fills.append(
                self._fill(ExitEventType.TP2, bar.date, self.tp2, self.config.tp2_fraction, self.config.tp2_multiple)
            )
            self.state = PositionState.PARTIAL_66

        if bar.high >= self.tp3:
            fills.append(self._close_remainder(ExitEventType.TP3, bar.date, self.tp3, self.config.tp3_multiple))

        return fills

    def close(self, date: dt.date, price: float, event_type: ExitEventType = ExitEventType.TIME_EXIT) -> ExitEvent | None:
        """Close whatever remains at ``price``; no-op when already closed."""
        if self.is_closed:
            return None
        return self._close_remainder(event_type, date, price, self._r_at(price))


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class TradeOutcome:
    """Realized result of simulating one signal."""

    ticker: str
    signal_date: dt.date
    entry_date: dt.date
    entry_price: float
    exit_date: dt.date
    exit_price: float
    exit_reason: ExitReason
    stop_loss: float
    stop_distance: float
    atr: float
    tp1: float
    tp2: float
    tp3: float
    realized_r: float
    blended_exit_price: float
    percent_return: float
    holding_days: int
    is_win: bool
    max_favorable_r: float = 0.0
    max_adverse_r: float = 0.0
    exits: tuple[ExitEvent, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ticker": self.ticker,
            "signal_date": self.signal_date.isoformat(),
            "entry_date": self.entry_date.isoformat(),
            "entry_price": self.entry_price,
            "exit_date": self.exit_date.isoformat(),
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason.value,
            "stop_loss": self.stop_loss,
            "stop_distance": self.stop_distance,
            "atr": self.atr,
            "tp1": self.tp1,
            "tp2": self.tp2,
            "tp3": self.tp3,
            "realized_r": self.realized_r,
            "blended_exit_price": self.blended_exit_price,
            "percent_return": self.percent_return,
            "holding_days": self.holding_days,
            "is_win": self.is_win,
            "max_favorable_r": self.max_favorable_r,
            "max_adverse_r": self.max_adverse_r,
            "exits": [
                {
                    "type": e.event_type.value,
                    "date": e.date.isoformat(),
                    "price": e.price,
                    "fraction": e.fraction,
                    "r_multiple": e.r_multiple,
                }
                for e in self.exits
            ],
        }


def _signal_index(bars: Sequence[PriceBar], signal_date: dt.date) -> int:
    """Index of the last bar dated on or before the signal date, or -1."""
    index = -1
    for i, bar in enumerate(bars):
        if bar.date > signal_date:
            break
        index = i
    return index


class TradeSimulator:
    """
    Replays price history to produce trade outcomes.

    Returns ``None`` (never raises) for the normal insufficient-data cases.
    """

    def __init__(self, config: SimulatorConfig | None = None) -> None:
        self.config = config or SimulatorConfig()

    def simulate(
        self,
        ticker: str,
        signal_date: dt.date,
        bars: Sequence[PriceBar],
    ) -> TradeOutcome | None:
        """
        Simulate one signal.

        Args:
            ticker: Ticker symbol
            signal_date: Date the signal was observed
            bars: Date-ascending daily bars for the ticker

        Returns:
            TradeOutcome, or None when history is insufficient
        """
        cfg = self.config

        if len(bars) < cfg.min_bars:
            logger.debug(f"{ticker} {signal_date}: only {len(bars)} bars (< {cfg.min_bars})")
            return None

        signal_idx = _signal_index(bars, signal_date)
        bars_before = sum(1 for bar in bars if bar.date < signal_date)
        if bars_before < cfg.atr_period:
            logger.debug(f"{ticker} {signal_date}: insufficient history before signal date")
            return None

        entry_idx = signal_idx + 1
        if entry_idx >= len(bars):
            logger.debug(f"{ticker} {signal_date}: no session after signal date")
            return None

        atr = compute_atr(bars[: signal_idx + 1], cfg.atr_period)
        if atr <= 0:
            logger.debug(f"{ticker} {signal_date}: ATR is zero")
            return None

        entry_bar = bars[entry_idx]
        entry_price = entry_bar.open
        if entry_price <= 0:
            logger.debug(f"{ticker} {signal_date}: non-positive entry price")
            return None

        stop_distance = atr * cfg.stop_multiple
        machine = ExitStateMachine(entry_price, stop_distance, cfg)

        holding_days = 0
        last_bar = entry_bar
        max_favorable = 0.0
        max_adverse = 0.0

        for bar in bars[entry_idx + 1 : entry_idx + 1 + cfg.max_holding_days]:
            holding_days += 1
            last_bar = bar
            max_favorable = max(max_favorable, (bar.high - entry_price) / stop_distance)
            max_adverse = min(max_adverse, (bar.low - entry_price) / stop_distance)

            machine.step(bar)
            if machine.is_closed:
                break
            if holding_days >= cfg.max_holding_days:
                machine.close(bar.date, bar.close)

        # Series ran out before an exit: close at the last available bar
        machine.close(last_bar.date, last_bar.close)

        realized_r = machine.realized_r
        final = machine.events[-1]
        blended_exit = entry_price + realized_r * stop_distance

        outcome = TradeOutcome(
            ticker=ticker,
            signal_date=signal_date,
            entry_date=entry_bar.date,
            entry_price=entry_price,
            exit_date=final.date,
            exit_price=final.price,
            exit_reason=machine.exit_reason or ExitReason.TIME_EXIT,
            stop_loss=machine.stop_loss,
            stop_distance=stop_distance,
            atr=atr,
            tp1=machine.tp1,
            tp2=machine.tp2,
            tp3=machine.tp3,
            realized_r=realized_r,
            blended_exit_price=blended_exit,
            percent_return=(blended_exit - entry_price) / entry_price * 100,
            holding_days=holding_days,
            is_win=realized_r >= WIN_THRESHOLD_R,
            max_favorable_r=max_favorable,
            max_adverse_r=max_adverse,
            exits=tuple(machine.events),
        )
        logger.debug(
            f"{ticker} {signal_date}: {outcome.exit_reason.value} after {holding_days} days, "
            f"R={realized_r:.2f}"
        )
        return outcome

    def simulate_batch(
        self,
        requests: Iterable[tuple[str, dt.date, Sequence[PriceBar]]],
    ) -> list[TradeOutcome | None]:
        """Simulate independent (ticker, signal_date, bars) requests in order."""
        outcomes = [self.simulate(ticker, signal_date, bars) for ticker, signal_date, bars in requests]
        completed = [o for o in outcomes if o is not None]
        log_simulation(
            f"Simulated {len(outcomes)} signals, {len(completed)} with sufficient data",
            level="INFO",
            total=len(outcomes),
            completed=len(completed),
            wins=sum(1 for o in completed if o.is_win),
        )
        return outcomes


def simulate_trade(
    ticker: str,
    signal_date: dt.date,
    bars: Sequence[PriceBar],
    config: SimulatorConfig | None = None,
) -> TradeOutcome | None:
    """Simulate one signal with the given (or default) configuration."""
    return TradeSimulator(config).simulate(ticker, signal_date, bars)
