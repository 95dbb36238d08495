"""
Custom exception hierarchy for the decision engine.

Exceptions are reserved for genuine faults:
- Validation errors (bad caller input)
- Data errors (malformed or missing price history and input files)
- Model errors (training, parameter decoding)
- Risk errors (inconsistent risk inputs)
- Configuration errors (invalid, missing, unparseable)

Insufficient history, rejected sizing requests and a missing trained model
are NOT exceptions: they are reported as ``None`` results, rejection
decisions and a baseline fallback respectively.
"""

from __future__ import annotations

from typing import Any


def _with_context(details: dict[str, Any] | None, **context: Any) -> dict[str, Any]:
    """Copy ``details`` and add every context entry that is set."""
    merged = dict(details or {})
    merged.update({key: value for key, value in context.items() if value is not None and value != ""})
    return merged


class DecisionEngineError(Exception):
    """Base exception for all decision engine errors.

    Carries a message, an error code (the class name unless given) and a
    details mapping that ``to_dict`` exposes for JSON output and logs.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details = dict(details or {})

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.details:
            text += f" - Details: {self.details}"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(DecisionEngineError):
    """Raised when caller input is invalid.

    Examples:
        - Non-positive equity passed to exposure aggregation

    Args:
        message: Human-readable error message.
        field_name: Name of the offending input.
        invalid_value: The rejected value (stringified in details).
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        invalid_value: Any = None,
        **kwargs: Any,
    ) -> None:
        details = _with_context(
            kwargs.pop("details", None),
            field_name=field_name,
            invalid_value=None if invalid_value is None else str(invalid_value),
        )
        super().__init__(message, details=details, **kwargs)
        self.field_name = field_name
        self.invalid_value = invalid_value


# =============================================================================
# Data Errors
# =============================================================================


class DataError(DecisionEngineError):
    """Base exception for data-related errors."""


class DataNotFoundError(DataError):
    """Raised when an input file or series is missing."""

    def __init__(
        self,
        message: str,
        symbol: str | None = None,
        data_type: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = _with_context(kwargs.pop("details", None), symbol=symbol, data_type=data_type)
        super().__init__(message, details=details, **kwargs)
        self.symbol = symbol
        self.data_type = data_type


class DataValidationError(DataError):
    """Raised when data fails validation checks.

    Examples:
        - Price series not in ascending date order, or with duplicate sessions
        - Bar whose high/low do not bracket its open/close
        - Missing OHLC columns, malformed JSON input, unparseable dates
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = _with_context(
            kwargs.pop("details", None),
            field=field,
            value=None if value is None else str(value),
            expected=expected,
        )
        super().__init__(message, details=details, **kwargs)
        self.field = field
        self.value = value
        self.expected = expected


# =============================================================================
# Model Errors
# =============================================================================


class ModelError(DecisionEngineError):
    """Base exception for classifier errors."""

    def __init__(self, message: str, model_version: str | None = None, **kwargs: Any) -> None:
        details = _with_context(kwargs.pop("details", None), model_version=model_version)
        super().__init__(message, details=details, **kwargs)
        self.model_version = model_version


class ModelLoadError(ModelError):
    """Raised when a parameter snapshot cannot be decoded.

    The loader converts this into a baseline fallback; only the strict
    decoding helpers let it escape.
    """

    def __init__(self, message: str, path: str | None = None, **kwargs: Any) -> None:
        details = _with_context(kwargs.pop("details", None), path=path)
        super().__init__(message, details=details, **kwargs)
        self.path = path


class TrainingError(ModelError):
    """Raised when training inputs are inconsistent or training diverges."""


# =============================================================================
# Risk Errors
# =============================================================================


class RiskError(DecisionEngineError):
    """Raised when risk inputs are inconsistent (not for budget rejections)."""


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DecisionEngineError):
    """Base exception for configuration errors."""

    def __init__(self, message: str, config_key: str | None = None, **kwargs: Any) -> None:
        details = _with_context(kwargs.pop("details", None), config_key=config_key)
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid.

    Examples:
        - Negative learning rate
        - Profit targets not strictly ascending
        - Unknown risk preset
    """


class MissingConfigError(ConfigurationError):
    """Raised when a configuration file that was asked for does not exist."""


class ConfigParseError(ConfigurationError):
    """Raised when a configuration file cannot be parsed."""

    def __init__(self, message: str, file_path: str | None = None, **kwargs: Any) -> None:
        details = _with_context(kwargs.pop("details", None), file_path=file_path)
        super().__init__(message, details=details, **kwargs)
        self.file_path = file_path
