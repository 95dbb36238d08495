"""
Risk module.

Contains risk budgets and presets, and the portfolio risk allocator that
sizes new positions and suggests trims/closures.
"""

from .allocator import (
    AdjustmentPlan,
    CloseSuggestion,
    OpenPosition,
    PortfolioExposure,
    PortfolioRiskAllocator,
    RiskSummary,
    SectorExposure,
    SizingDecision,
    TradeRiskAnalysis,
    TrimSuggestion,
    calculate_kelly_size,
    calculate_risk_adjusted_size,
    compute_exposure,
    size_position,
    suggest_adjustments,
)
from .budget import (
    AGGRESSIVE_RISK_BUDGET,
    CONSERVATIVE_RISK_BUDGET,
    DEFAULT_RISK_BUDGET,
    RiskBudget,
    RiskPreset,
    get_risk_budget,
)

__all__ = [
    # Budgets
    "AGGRESSIVE_RISK_BUDGET",
    "CONSERVATIVE_RISK_BUDGET",
    "DEFAULT_RISK_BUDGET",
    "RiskBudget",
    "RiskPreset",
    "get_risk_budget",
    # Allocator
    "AdjustmentPlan",
    "CloseSuggestion",
    "OpenPosition",
    "PortfolioExposure",
    "PortfolioRiskAllocator",
    "RiskSummary",
    "SectorExposure",
    "SizingDecision",
    "TradeRiskAnalysis",
    "TrimSuggestion",
    "calculate_kelly_size",
    "calculate_risk_adjusted_size",
    "compute_exposure",
    "size_position",
    "suggest_adjustments",
]
