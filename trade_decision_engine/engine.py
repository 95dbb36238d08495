"""
Engine context.

Bundles the active model parameters and the component configurations into one
immutable object that callers pass around explicitly. Loading a parameter
snapshot happens once, in :meth:`EngineContext.from_settings`; every other
operation is pure given the context.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from trade_decision_engine.backtest.simulator import SimulatorConfig, TradeOutcome, simulate_trade
from trade_decision_engine.config.settings import Settings
from trade_decision_engine.core.data_types import MarketRegime, PriceBar
from trade_decision_engine.models.features import FeatureVector
from trade_decision_engine.models.logistic import ModelParameters, score
from trade_decision_engine.models.persistence import load_parameters, resolve_active_parameters
from trade_decision_engine.models.veto import VetoConfig, VetoResult, evaluate_veto
from trade_decision_engine.monitoring.logger import LogCategory, get_logger
from trade_decision_engine.risk.allocator import OpenPosition, PortfolioRiskAllocator, SizingDecision
from trade_decision_engine.risk.budget import DEFAULT_RISK_BUDGET, RiskBudget

logger = get_logger("trade_decision_engine.engine", LogCategory.SYSTEM)


@dataclass(frozen=True)
class EngineContext:
    """Active parameters plus classifier, simulator and risk configuration."""

    parameters: ModelParameters | None = None
    veto_config: VetoConfig = field(default_factory=VetoConfig)
    simulator_config: SimulatorConfig = field(default_factory=SimulatorConfig)
    risk_budget: RiskBudget = DEFAULT_RISK_BUDGET

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineContext":
        """Build a context from settings, loading the configured snapshot."""
        params = load_parameters(settings.model.parameters_path)
        context = cls(
            parameters=params,
            veto_config=settings.model.to_veto_config(),
            simulator_config=settings.simulator.to_config(),
            risk_budget=settings.risk.to_budget(),
        )
        logger.with_context(model_version=context.active_parameters.version).info(
            f"Engine context ready (baseline={context.using_baseline}, risk preset={settings.risk.preset})"
        )
        return context

    @property
    def active_parameters(self) -> ModelParameters:
        return resolve_active_parameters(self.parameters)

    @property
    def using_baseline(self) -> bool:
        """True when no trained snapshot is in effect."""
        return self.parameters is None or not self.parameters.is_trained

    def with_parameters(self, parameters: ModelParameters | None) -> "EngineContext":
        """Copy of this context with other parameters, e.g. after training."""
        return replace(self, parameters=parameters)

    def score(self, features: FeatureVector) -> float:
        """Win probability in percent."""
        return score(features, self.active_parameters)

    def veto(self, features: FeatureVector, ticker: str, signal_date: dt.date | str) -> VetoResult:
        return evaluate_veto(features, ticker, signal_date, self.active_parameters, self.veto_config)

    def simulate(self, ticker: str, signal_date: dt.date, bars: Sequence[PriceBar]) -> TradeOutcome | None:
        return simulate_trade(ticker, signal_date, bars, self.simulator_config)

    def size(
        self,
        entry: float,
        stop: float,
        equity: float,
        positions: Iterable[OpenPosition] = (),
        regime: MarketRegime | str = MarketRegime.BULL,
        sector: str | None = None,
    ) -> SizingDecision:
        """Size a new position against the context's risk budget."""
        allocator = PortfolioRiskAllocator(equity, positions, regime, self.risk_budget)
        return allocator.size_position(entry, stop, sector)
