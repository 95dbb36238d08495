"""
Monitoring module.

Provides structured logging with JSON/text formatters and categorized
context loggers.
"""

from .logger import (
    ContextLogger,
    JsonFormatter,
    LogCategory,
    LogFormat,
    StructuredLogRecord,
    TextFormatter,
    get_logger,
    log_model,
    log_risk,
    log_simulation,
    log_system,
    setup_logging,
)

__all__ = [
    "ContextLogger",
    "JsonFormatter",
    "LogCategory",
    "LogFormat",
    "StructuredLogRecord",
    "TextFormatter",
    "get_logger",
    "log_model",
    "log_risk",
    "log_simulation",
    "log_system",
    "setup_logging",
]
