"""
Backtest module.

Contains the ATR-based trade outcome simulator with its partial-exit state
machine, and analytics over simulated outcomes.
"""

from .analyzer import (
    OutcomeSummary,
    outcomes_to_frame,
    stop_loss_frequency,
    summarize_by,
    summarize_outcomes,
)
from .simulator import (
    ExitEvent,
    ExitEventType,
    ExitStateMachine,
    PositionState,
    SimulatorConfig,
    TradeOutcome,
    TradeSimulator,
    compute_atr,
    simulate_trade,
    true_range,
)

__all__ = [
    # Simulator
    "ExitEvent",
    "ExitEventType",
    "ExitStateMachine",
    "PositionState",
    "SimulatorConfig",
    "TradeOutcome",
    "TradeSimulator",
    "compute_atr",
    "simulate_trade",
    "true_range",
    # Analytics
    "OutcomeSummary",
    "outcomes_to_frame",
    "stop_loss_frequency",
    "summarize_by",
    "summarize_outcomes",
]
