"""
Core layer for the decision engine.

Contains the shared type definitions, soft-signal vocabulary and the
exception hierarchy used across all modules.
"""

from .data_types import (
    ExitReason,
    FrozenConfig,
    MarketRegime,
    PriceBar,
    PriceSeries,
    price_series_from_frame,
    validate_price_series,
)
from .exceptions import (
    ConfigParseError,
    ConfigurationError,
    DataError,
    DataNotFoundError,
    DataValidationError,
    DecisionEngineError,
    InvalidConfigError,
    MissingConfigError,
    ModelError,
    ModelLoadError,
    RiskError,
    TrainingError,
    ValidationError,
)
from .signals import (
    SOFT_CATEGORIES,
    SignalCategory,
    SoftSignal,
    categorize_signal,
    is_soft_signal,
)

__all__ = [
    # Data types
    "ExitReason",
    "FrozenConfig",
    "MarketRegime",
    "PriceBar",
    "PriceSeries",
    "price_series_from_frame",
    "validate_price_series",
    # Signals
    "SOFT_CATEGORIES",
    "SignalCategory",
    "SoftSignal",
    "categorize_signal",
    "is_soft_signal",
    # Exceptions
    "DecisionEngineError",
    "ValidationError",
    "DataError",
    "DataNotFoundError",
    "DataValidationError",
    "ModelError",
    "ModelLoadError",
    "TrainingError",
    "RiskError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    "ConfigParseError",
]
