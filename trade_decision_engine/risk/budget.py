"""
Risk budgets and named presets.

All limits are fractions of account equity (0.01 = 1%).
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator, model_validator

from trade_decision_engine.core.data_types import FrozenConfig, MarketRegime
from trade_decision_engine.core.exceptions import InvalidConfigError


class RiskBudget(FrozenConfig):
    """Portfolio risk limits."""

    max_risk_per_trade: float = Field(..., gt=0, le=1, description="Max risk per trade")
    max_total_risk: float = Field(..., gt=0, le=1, description="Max total open risk")
    max_per_sector: float = Field(..., gt=0, le=1, description="Max risk per sector")
    max_positions_per_sector: int = Field(..., ge=1, description="Max open positions per sector")
    max_correlated_risk: float = Field(..., gt=0, le=1, description="Max risk in one correlated group")
    max_per_regime: dict[MarketRegime, float] = Field(..., description="Max total risk by current regime")

    @field_validator("max_per_regime", mode="before")
    @classmethod
    def parse_regime_keys(cls, v: dict) -> dict:
        if isinstance(v, dict):
            return {MarketRegime.parse(k): limit for k, limit in v.items()}
        return v

    @model_validator(mode="after")
    def validate_regimes(self) -> "RiskBudget":
        missing = [r.value for r in MarketRegime if r not in self.max_per_regime]
        if missing:
            raise ValueError(f"max_per_regime is missing regimes: {', '.join(missing)}")
        if any(not 0 <= limit <= 1 for limit in self.max_per_regime.values()):
            raise ValueError("max_per_regime limits must be within [0, 1]")
        return self

    def regime_limit(self, regime: MarketRegime | str) -> float:
        """Max total risk allowed in a regime."""
        return self.max_per_regime[MarketRegime.parse(regime)]


CONSERVATIVE_RISK_BUDGET = RiskBudget(
    max_risk_per_trade=0.005,
    max_total_risk=0.03,
    max_per_sector=0.01,
    max_positions_per_sector=2,
    max_correlated_risk=0.015,
    max_per_regime={
        MarketRegime.BULL: 0.04,
        MarketRegime.CHOPPY: 0.025,
        MarketRegime.CRASH: 0.01,
    },
)

DEFAULT_RISK_BUDGET = RiskBudget(
    max_risk_per_trade=0.01,
    max_total_risk=0.06,
    max_per_sector=0.02,
    max_positions_per_sector=3,
    max_correlated_risk=0.03,
    max_per_regime={
        MarketRegime.BULL: 0.08,
        MarketRegime.CHOPPY: 0.05,
        MarketRegime.CRASH: 0.02,
    },
)

AGGRESSIVE_RISK_BUDGET = RiskBudget(
    max_risk_per_trade=0.02,
    max_total_risk=0.10,
    max_per_sector=0.04,
    max_positions_per_sector=5,
    max_correlated_risk=0.05,
    max_per_regime={
        MarketRegime.BULL: 0.12,
        MarketRegime.CHOPPY: 0.08,
        MarketRegime.CRASH: 0.04,
    },
)


class RiskPreset(str, Enum):
    """Named risk budget presets."""

    CONSERVATIVE = "conservative"
    DEFAULT = "default"
    AGGRESSIVE = "aggressive"


_PRESETS = {
    RiskPreset.CONSERVATIVE: CONSERVATIVE_RISK_BUDGET,
    RiskPreset.DEFAULT: DEFAULT_RISK_BUDGET,
    RiskPreset.AGGRESSIVE: AGGRESSIVE_RISK_BUDGET,
}


def get_risk_budget(preset: RiskPreset | str = RiskPreset.DEFAULT) -> RiskBudget:
    """
    Resolve a preset to its risk budget.

    Raises:
        InvalidConfigError: If the preset name is unknown.
    """
    try:
        key = preset if isinstance(preset, RiskPreset) else RiskPreset(str(preset).strip().lower())
    except ValueError as e:
        raise InvalidConfigError(
            f"Unknown risk preset: {preset}",
            config_key="risk.preset",
            details={"valid": [p.value for p in RiskPreset]},
        ) from e
    return _PRESETS[key]
