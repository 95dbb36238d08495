"""
Outcome analytics for simulated soft-signal trades.

Aggregates TradeOutcome batches into win rate, R statistics, profit factor
and exit-reason counts, optionally grouped by a label such as the signal
category.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from trade_decision_engine.backtest.simulator import TradeOutcome
from trade_decision_engine.core.data_types import ExitReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutcomeSummary:
    """Aggregate statistics over a batch of outcomes."""

    total: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    average_r: float = 0.0
    total_r: float = 0.0
    average_return_pct: float = 0.0
    average_holding_days: float = 0.0
    profit_factor: float = 0.0
    expectancy_r: float = 0.0
    max_consecutive_losses: int = 0
    exit_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total": self.total,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "average_r": self.average_r,
            "total_r": self.total_r,
            "average_return_pct": self.average_return_pct,
            "average_holding_days": self.average_holding_days,
            "profit_factor": self.profit_factor,
            "expectancy_r": self.expectancy_r,
            "max_consecutive_losses": self.max_consecutive_losses,
            "exit_reasons": dict(self.exit_reasons),
        }


def _max_consecutive_losses(outcomes: Sequence[TradeOutcome]) -> int:
    longest = current = 0
    for outcome in outcomes:
        current = 0 if outcome.is_win else current + 1
        longest = max(longest, current)
    return longest


def summarize_outcomes(outcomes: Iterable[TradeOutcome | None]) -> OutcomeSummary:
    """
    Summarize completed outcomes; ``None`` entries are skipped.

    Win rate is in percent. Profit factor is gross positive R over gross
    negative R, ``inf`` with winners and no losing R, and 0 with no trades.
    """
    trades = [o for o in outcomes if o is not None]
    if not trades:
        return OutcomeSummary()

    r_values = np.array([o.realized_r for o in trades], dtype=float)
    wins = sum(1 for o in trades if o.is_win)
    gross_profit = float(r_values[r_values > 0].sum())
    gross_loss = float(abs(r_values[r_values < 0].sum()))

    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = float("inf") if gross_profit > 0 else 0.0

    win_rate = wins / len(trades)
    winners = r_values[r_values > 0]
    losers = r_values[r_values <= 0]
    avg_win = float(winners.mean()) if len(winners) else 0.0
    avg_loss = float(abs(losers.mean())) if len(losers) else 0.0
    hit_rate = len(winners) / len(trades)

    return OutcomeSummary(
        total=len(trades),
        wins=wins,
        losses=len(trades) - wins,
        win_rate=win_rate * 100,
        average_r=float(r_values.mean()),
        total_r=float(r_values.sum()),
        average_return_pct=float(np.mean([o.percent_return for o in trades])),
        average_holding_days=float(np.mean([o.holding_days for o in trades])),
        profit_factor=profit_factor,
        expectancy_r=hit_rate * avg_win - (1 - hit_rate) * avg_loss,
        max_consecutive_losses=_max_consecutive_losses(trades),
        exit_reasons=dict(Counter(o.exit_reason.value for o in trades)),
    )


def stop_loss_frequency(outcomes: Iterable[TradeOutcome | None]) -> float:
    """Fraction of completed outcomes that exited at the stop."""
    trades = [o for o in outcomes if o is not None]
    if not trades:
        return 0.0
    return sum(1 for o in trades if o.exit_reason == ExitReason.STOP_LOSS) / len(trades)


def outcomes_to_frame(outcomes: Iterable[TradeOutcome | None]) -> pd.DataFrame:
    """One row per completed outcome, without the per-exit detail."""
    rows = []
    for outcome in outcomes:
        if outcome is None:
            continue
        row = outcome.to_dict()
        row.pop("exits")
        rows.append(row)
    frame = pd.DataFrame(rows)
    for column in ("signal_date", "entry_date", "exit_date"):
        if column in frame.columns:
            frame[column] = pd.to_datetime(frame[column])
    return frame


def summarize_by(
    outcomes: Sequence[TradeOutcome | None],
    labels: Sequence[str],
) -> dict[str, OutcomeSummary]:
    """
    Summarize outcomes per label.

    Args:
        outcomes: Outcomes (``None`` entries are skipped)
        labels: Parallel label per outcome, e.g. the signal category

    Returns:
        Summary per label, in first-seen label order
    """
    if len(outcomes) != len(labels):
        raise ValueError(f"Got {len(outcomes)} outcomes but {len(labels)} labels")

    groups: dict[str, list[TradeOutcome | None]] = {}
    for outcome, label in zip(outcomes, labels):
        groups.setdefault(label, []).append(outcome)
    return {label: summarize_outcomes(group) for label, group in groups.items()}
