"""
Portfolio risk allocation.

Turns a proposed entry/stop into an approved share count subject to
per-trade, per-sector, per-regime and total-portfolio risk budgets, and
suggests trims/closures when the portfolio exceeds its regime ceiling.

Risk of an open position is ``|current_price - stop_loss| x quantity``,
expressed as a fraction of equity. Budget exhaustion and invalid trade
geometry are reported as rejected decisions, never raised.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from trade_decision_engine.core.data_types import MarketRegime
from trade_decision_engine.core.exceptions import RiskError, ValidationError
from trade_decision_engine.monitoring.logger import log_risk
from trade_decision_engine.risk.budget import DEFAULT_RISK_BUDGET, RiskBudget

logger = logging.getLogger(__name__)

# Stop assumed for positions opened without one (7% below entry)
DEFAULT_STOP_FRACTION = 0.93
# Notional above this share of equity draws a warning
MAX_POSITION_VALUE_FRACTION = 0.25
# Never trim more than this share of a position in one suggestion
MAX_TRIM_FRACTION = 0.5
# Sector risk above this share of its limit draws a recommendation
SECTOR_WARNING_FRACTION = 0.8


class OpenPosition(BaseModel):
    """An open long position."""

    ticker: str = Field(..., min_length=1, max_length=10)
    quantity: float = Field(..., gt=0)
    entry_price: float = Field(..., gt=0)
    current_price: float = Field(..., ge=0, description="Mark price; defaults to entry price")
    stop_loss: float = Field(..., ge=0, description="Stop price; defaults to 7% below entry")
    sector: str = Field(default="Unknown")
    regime_at_entry: MarketRegime | None = None
    correlation_group: str | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def fill_price_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            entry = data.get("entry_price")
            if data.get("current_price") is None:
                data["current_price"] = entry
            if data.get("stop_loss") is None and entry is not None:
                data["stop_loss"] = float(entry) * DEFAULT_STOP_FRACTION
        return data

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return v.upper().strip()

    @field_validator("regime_at_entry", mode="before")
    @classmethod
    def parse_regime(cls, v: Any) -> Any:
        if isinstance(v, str):
            return MarketRegime.parse(v)
        return v

    @property
    def risk_per_share(self) -> float:
        return abs(self.current_price - self.stop_loss)

    @property
    def risk_dollars(self) -> float:
        """Dollar risk to the stop at the current mark."""
        return self.risk_per_share * self.quantity

    @property
    def is_stopped(self) -> bool:
        return self.current_price <= self.stop_loss


@dataclass(frozen=True)
class SectorExposure:
    """Risk fraction and open position count in one sector."""

    risk: float = 0.0
    count: int = 0


@dataclass(frozen=True)
class PortfolioExposure:
    """Current portfolio risk, recomputed on demand from open positions."""

    equity: float
    regime: MarketRegime
    total_risk: float
    open_positions: int
    by_sector: dict[str, SectorExposure]
    by_regime: dict[MarketRegime, float]
    by_correlation_group: dict[str, float]
    available_risk_budget: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "equity": self.equity,
            "regime": self.regime.value,
            "total_risk": self.total_risk,
            "open_positions": self.open_positions,
            "by_sector": {s: {"risk": e.risk, "count": e.count} for s, e in self.by_sector.items()},
            "by_regime": {r.value: risk for r, risk in self.by_regime.items()},
            "by_correlation_group": dict(self.by_correlation_group),
            "available_risk_budget": self.available_risk_budget,
        }


def compute_exposure(
    positions: Iterable[OpenPosition],
    equity: float,
    regime: MarketRegime | str,
    budget: RiskBudget = DEFAULT_RISK_BUDGET,
) -> PortfolioExposure:
    """
    Aggregate open-position risk as fractions of equity.

    Positions without a recorded entry regime are attributed to the
    current regime. Available budget is the smaller of total-budget and
    current-regime headroom, floored at zero.

    Args:
        positions: Open positions
        equity: Account equity (must be positive)
        regime: Current market regime
        budget: Risk budget

    Returns:
        PortfolioExposure snapshot

    Raises:
        ValidationError: If equity is not positive.
    """
    if equity <= 0:
        raise ValidationError("Equity must be positive", field_name="equity", invalid_value=equity)

    regime = MarketRegime.parse(regime)
    positions = list(positions)

    sector_risk: dict[str, float] = {}
    sector_count: dict[str, int] = {}
    by_regime = {r: 0.0 for r in MarketRegime}
    by_group: dict[str, float] = {}
    total_risk = 0.0

    for position in positions:
        fraction = position.risk_dollars / equity
        total_risk += fraction

        sector_risk[position.sector] = sector_risk.get(position.sector, 0.0) + fraction
        sector_count[position.sector] = sector_count.get(position.sector, 0) + 1

        by_regime[position.regime_at_entry or regime] += fraction

        if position.correlation_group:
            by_group[position.correlation_group] = by_group.get(position.correlation_group, 0.0) + fraction

    regime_limit = budget.regime_limit(regime)
    available = max(0.0, min(budget.max_total_risk - total_risk, regime_limit - total_risk))

    return PortfolioExposure(
        equity=equity,
        regime=regime,
        total_risk=total_risk,
        open_positions=len(positions),
        by_sector={s: SectorExposure(risk=sector_risk[s], count=sector_count[s]) for s in sector_risk},
        by_regime=by_regime,
        by_correlation_group=by_group,
        available_risk_budget=available,
    )


# =============================================================================
# Sizing
# =============================================================================


@dataclass(frozen=True)
class SizingDecision:
    """Approved (or rejected) position size for a proposed trade."""

    shares: int
    dollar_risk: float
    portfolio_risk_fraction: float
    position_value: float
    approved: bool
    rejection_reason: str | None = None
    warnings: list[str] = field(default_factory=list)
    risk_adjustment: float = 1.0

    @classmethod
    def rejected(cls, reason: str, warnings: Sequence[str] = (), risk_adjustment: float = 0.0) -> "SizingDecision":
        return cls(
            shares=0,
            dollar_risk=0.0,
            portfolio_risk_fraction=0.0,
            position_value=0.0,
            approved=False,
            rejection_reason=reason,
            warnings=list(warnings),
            risk_adjustment=risk_adjustment,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "shares": self.shares,
            "dollar_risk": self.dollar_risk,
            "portfolio_risk_fraction": self.portfolio_risk_fraction,
            "position_value": self.position_value,
            "approved": self.approved,
            "rejection_reason": self.rejection_reason,
            "warnings": list(self.warnings),
            "risk_adjustment": self.risk_adjustment,
        }


def _reject(reason: str, warnings: Sequence[str] = (), risk_adjustment: float = 0.0) -> SizingDecision:
    logger.info(f"Sizing rejected: {reason}")
    return SizingDecision.rejected(reason, warnings, risk_adjustment)


def size_position(
    entry: float,
    stop: float,
    sector: str | None,
    budget: RiskBudget,
    exposure: PortfolioExposure,
) -> SizingDecision:
    """
    Size a new long position against current exposure.

    Starts from ``equity x max_risk_per_trade`` and applies, in order, the
    regime, sector and total-portfolio scale-downs (multiplied together).

    Args:
        entry: Planned entry price
        stop: Planned stop price (must be below entry)
        sector: Sector of the new position, if known
        budget: Risk budget
        exposure: Current portfolio exposure

    Returns:
        SizingDecision; rejections carry a reason, approvals may carry warnings
    """
    if entry <= stop:
        return _reject("Invalid stop loss - must be below entry price")
    if exposure.equity <= 0:
        return _reject("Equity must be positive")

    per_trade = budget.max_risk_per_trade
    risk_per_share = entry - stop
    adjustment = 1.0
    warnings: list[str] = []

    # (a) regime ceiling
    regime_limit = budget.regime_limit(exposure.regime)
    if exposure.total_risk + per_trade > regime_limit:
        adjustment *= max(0.0, (regime_limit - exposure.total_risk) / per_trade)
        warnings.append(f"Regime ({exposure.regime.value}) limits reducing size to {adjustment * 100:.0f}%")

    # (b) sector ceiling
    if sector:
        info = exposure.by_sector.get(sector, SectorExposure())
        if info.risk >= budget.max_per_sector:
            return _reject(f"Sector {sector} at maximum risk ({info.risk * 100:.1f}%)", risk_adjustment=adjustment)
        if info.count >= budget.max_positions_per_sector:
            return _reject(f"Maximum positions in sector {sector} ({info.count})", risk_adjustment=adjustment)
        remaining_sector = budget.max_per_sector - info.risk
        if remaining_sector < per_trade:
            adjustment *= remaining_sector / per_trade
            warnings.append("Sector concentration reducing size")

    # (c) total portfolio headroom
    available = exposure.available_risk_budget
    if available <= 0:
        return _reject("Portfolio at maximum risk capacity", risk_adjustment=adjustment)
    if available < per_trade:
        adjustment *= available / per_trade
        warnings.append("Near maximum portfolio risk, reducing size")

    max_dollar_risk = exposure.equity * per_trade * adjustment
    shares = math.floor(max_dollar_risk / risk_per_share)
    # floating-point guard
    if shares > 0 and shares * risk_per_share > max_dollar_risk:
        shares -= 1
    if shares <= 0:
        return _reject("Calculated position too small", warnings, adjustment)

    dollar_risk = shares * risk_per_share
    position_value = shares * entry
    if position_value > exposure.equity * MAX_POSITION_VALUE_FRACTION:
        warnings.append("Position exceeds 25% of portfolio - consider reducing")

    return SizingDecision(
        shares=shares,
        dollar_risk=dollar_risk,
        portfolio_risk_fraction=dollar_risk / exposure.equity,
        position_value=position_value,
        approved=True,
        warnings=warnings,
        risk_adjustment=adjustment,
    )


# =============================================================================
# Adjustments
# =============================================================================


@dataclass(frozen=True)
class TrimSuggestion:
    """Reduce an open position."""

    ticker: str
    current_shares: float
    suggested_trim: int
    reason: str


@dataclass(frozen=True)
class CloseSuggestion:
    """Close an open position."""

    ticker: str
    reason: str


@dataclass(frozen=True)
class AdjustmentPlan:
    """Suggested trims, closures and general recommendations."""

    trim_positions: list[TrimSuggestion] = field(default_factory=list)
    close_positions: list[CloseSuggestion] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.trim_positions or self.close_positions or self.recommendations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trim_positions": [vars(t) for t in self.trim_positions],
            "close_positions": [vars(c) for c in self.close_positions],
            "recommendations": list(self.recommendations),
        }


def suggest_adjustments(
    positions: Iterable[OpenPosition],
    equity: float,
    regime: MarketRegime | str,
    budget: RiskBudget = DEFAULT_RISK_BUDGET,
) -> AdjustmentPlan:
    """
    Suggest trims when exposure exceeds the regime ceiling, and closures for
    positions at or through their stop.

    Trims walk positions by descending dollar risk until the excess is
    covered; a single trim never exceeds half of the position.
    """
    positions = list(positions)
    exposure = compute_exposure(positions, equity, regime, budget)
    regime_limit = budget.regime_limit(exposure.regime)

    trims: list[TrimSuggestion] = []
    closes: list[CloseSuggestion] = []
    recommendations: list[str] = []

    if exposure.total_risk > regime_limit:
        excess = exposure.total_risk - regime_limit
        recommendations.append(
            f"Portfolio {excess * 100:.1f}% over risk limit for {exposure.regime.value} regime"
        )

        risk_to_reduce = excess * equity
        for position in sorted(positions, key=lambda p: p.risk_dollars, reverse=True):
            if risk_to_reduce <= 0:
                break
            if position.risk_per_share <= 0:
                continue
            shares_needed = math.ceil(risk_to_reduce / position.risk_per_share)
            trim = min(shares_needed, math.floor(position.quantity * MAX_TRIM_FRACTION))
            if trim > 0:
                trims.append(
                    TrimSuggestion(
                        ticker=position.ticker,
                        current_shares=position.quantity,
                        suggested_trim=trim,
                        reason="Reduce portfolio risk to regime limits",
                    )
                )
                risk_to_reduce -= trim * position.risk_per_share

    for position in positions:
        if position.is_stopped:
            closes.append(
                CloseSuggestion(
                    ticker=position.ticker,
                    reason=f"At or below stop loss (${position.stop_loss:.2f})",
                )
            )

    return AdjustmentPlan(trim_positions=trims, close_positions=closes, recommendations=recommendations)


# =============================================================================
# Stateful facade
# =============================================================================


_REGIME_SIZE_ADJUSTMENT = {
    MarketRegime.BULL: 1.0,
    MarketRegime.CHOPPY: 0.75,
    MarketRegime.CRASH: 0.5,
}


@dataclass(frozen=True)
class TradeRiskAnalysis:
    """Risk impact of a proposed trade."""

    can_enter: bool
    reason: str | None
    sizing: SizingDecision
    trade_risk: float
    new_total_risk: float
    sector_risk: float
    regime_adjustment: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_enter": self.can_enter,
            "reason": self.reason,
            "sizing": self.sizing.to_dict(),
            "trade_risk": self.trade_risk,
            "new_total_risk": self.new_total_risk,
            "sector_risk": self.sector_risk,
            "regime_adjustment": self.regime_adjustment,
        }


@dataclass(frozen=True)
class RiskSummary:
    """Portfolio risk overview."""

    equity: float
    regime: MarketRegime
    exposure: PortfolioExposure
    utilization_percent: float
    risk_capacity: str
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "equity": self.equity,
            "regime": self.regime.value,
            "exposure": self.exposure.to_dict(),
            "utilization_percent": self.utilization_percent,
            "risk_capacity": self.risk_capacity,
            "recommendations": list(self.recommendations),
        }


class PortfolioRiskAllocator:
    """
    Portfolio risk manager bound to an account state.

    Wraps the pure exposure/sizing/adjustment functions with the current
    equity, positions, regime and budget.
    """

    def __init__(
        self,
        equity: float,
        positions: Iterable[OpenPosition] = (),
        regime: MarketRegime | str = MarketRegime.CHOPPY,
        budget: RiskBudget = DEFAULT_RISK_BUDGET,
    ) -> None:
        self.equity = equity
        self.positions = list(positions)
        self.regime = MarketRegime.parse(regime)
        self.budget = budget

    def update_state(
        self,
        equity: float,
        positions: Iterable[OpenPosition],
        regime: MarketRegime | str | None = None,
    ) -> None:
        """Replace the account state; the regime is kept when omitted."""
        self.equity = equity
        self.positions = list(positions)
        if regime is not None:
            self.regime = MarketRegime.parse(regime)

    def calculate_exposure(self) -> PortfolioExposure:
        return compute_exposure(self.positions, self.equity, self.regime, self.budget)

    def size_position(self, entry: float, stop: float, sector: str | None = None) -> SizingDecision:
        """Size a new trade; non-positive equity is a rejection."""
        if self.equity <= 0:
            return _reject("Equity must be positive")
        return size_position(entry, stop, sector, self.budget, self.calculate_exposure())

    def analyze_trade_risk(self, entry: float, stop: float, sector: str | None = None) -> TradeRiskAnalysis:
        """Size a trade and report its effect on portfolio and sector risk."""
        sizing = self.size_position(entry, stop, sector)
        trade_risk = sizing.portfolio_risk_fraction

        if self.equity > 0:
            exposure = self.calculate_exposure()
            total_risk = exposure.total_risk
            sector_info = exposure.by_sector.get(sector or "", SectorExposure())
        else:
            total_risk = 0.0
            sector_info = SectorExposure()

        return TradeRiskAnalysis(
            can_enter=sizing.approved and sizing.shares > 0,
            reason=sizing.rejection_reason,
            sizing=sizing,
            trade_risk=trade_risk,
            new_total_risk=total_risk + trade_risk,
            sector_risk=sector_info.risk + trade_risk,
            regime_adjustment=_REGIME_SIZE_ADJUSTMENT[self.regime],
        )

    def risk_summary(self) -> RiskSummary:
        """Utilization of the regime ceiling with recommendations."""
        exposure = self.calculate_exposure()
        regime_limit = self.budget.regime_limit(self.regime)
        utilization = exposure.total_risk / regime_limit * 100 if regime_limit > 0 else 100.0

        recommendations = []
        if utilization > 80:
            recommendations.append("Consider reducing position sizes or closing trades")
        if self.regime == MarketRegime.CRASH:
            recommendations.append("Market in CRASH regime - minimize new positions")
        elif self.regime == MarketRegime.CHOPPY:
            recommendations.append("Choppy market - be selective, require higher conviction")

        for sector, info in exposure.by_sector.items():
            if info.risk > self.budget.max_per_sector * SECTOR_WARNING_FRACTION:
                recommendations.append(f"High concentration in {sector} - avoid adding")

        for group, risk in exposure.by_correlation_group.items():
            if risk > self.budget.max_correlated_risk:
                recommendations.append(
                    f"Correlated group {group} at {risk * 100:.1f}% risk "
                    f"(limit {self.budget.max_correlated_risk * 100:.1f}%)"
                )

        if utilization < 50:
            capacity = "HIGH"
        elif utilization < 80:
            capacity = "MODERATE"
        else:
            capacity = "LOW"
            log_risk(
                f"Risk capacity LOW: {utilization:.0f}% of {self.regime.value} limit used",
                utilization_percent=utilization,
            )

        return RiskSummary(
            equity=self.equity,
            regime=self.regime,
            exposure=exposure,
            utilization_percent=utilization,
            risk_capacity=capacity,
            recommendations=recommendations,
        )

    def suggest_adjustments(self) -> AdjustmentPlan:
        return suggest_adjustments(self.positions, self.equity, self.regime, self.budget)


# =============================================================================
# Helpers
# =============================================================================


def calculate_kelly_size(win_rate: float, avg_win_r: float, avg_loss_r: float = 1.0) -> float:
    """
    Quarter-Kelly risk fraction.

    Kelly = (p x avg_win - (1 - p) x avg_loss) / avg_win, floored at 0.

    Args:
        win_rate: Win rate in percent
        avg_win_r: Average winning trade in R
        avg_loss_r: Average losing trade in R

    Raises:
        RiskError: If the win rate is outside [0, 100].
    """
    if not 0 <= win_rate <= 100:
        raise RiskError(f"Win rate must be within [0, 100], got {win_rate}", details={"win_rate": win_rate})
    if avg_win_r <= 0:
        return 0.0
    p_win = win_rate / 100
    kelly = (p_win * avg_win_r - (1 - p_win) * avg_loss_r) / avg_win_r
    return max(0.0, kelly * 0.25)


def calculate_risk_adjusted_size(
    equity: float,
    entry: float,
    stop: float,
    risk_fraction: float,
    probability: float,
    regime: MarketRegime | str,
) -> tuple[int, float]:
    """
    Shares and dollar risk scaled by model probability and regime.

    Probability below 60 halves the risk, below 70 takes 75% of it; CHOPPY
    scales by 0.75 and CRASH by 0.5.

    Returns:
        Tuple of (shares, dollar risk)
    """
    adjusted = risk_fraction
    if probability < 60:
        adjusted *= 0.5
    elif probability < 70:
        adjusted *= 0.75

    regime = MarketRegime.parse(regime)
    if regime != MarketRegime.BULL:
        adjusted *= _REGIME_SIZE_ADJUSTMENT[regime]

    risk_per_share = entry - stop
    if risk_per_share <= 0:
        return 0, 0.0
    shares = math.floor(equity * adjusted / risk_per_share)
    return shares, shares * risk_per_share
