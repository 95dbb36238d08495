"""
Structured logging for the decision engine.

Provides:
- JSON and human-readable log formats
- Contextual metadata and correlation IDs
- Log categories for the different components
- Rotating file handlers

Library modules log through ``logging.getLogger(__name__)`` and never install
handlers; applications call :func:`setup_logging` once at start-up.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class LogCategory(str, Enum):
    """Log categories for different components."""

    SYSTEM = "SYSTEM"
    DATA = "DATA"
    MODEL = "MODEL"
    SIMULATION = "SIMULATION"
    RISK = "RISK"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    TEXT = "text"


# Optional fields emitted only when set
_OPTIONAL_FIELDS = (
    "logger_name",
    "location",
    "correlation_id",
    "ticker",
    "model_version",
    "extra_data",
    "exception",
)


class StructuredLogRecord(BaseModel):
    """Structured log record with metadata.

    Both formatters render through this model, so JSON and text output carry
    the same fields.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: str
    category: LogCategory
    message: str
    logger_name: str | None = None
    location: str | None = None
    correlation_id: str | None = None
    ticker: str | None = None
    model_version: str | None = None
    extra_data: dict[str, Any] = Field(default_factory=dict)
    exception: str | None = None

    model_config = ConfigDict(protected_namespaces=())

    @classmethod
    def from_log_record(
        cls,
        record: logging.LogRecord,
        default_category: LogCategory = LogCategory.SYSTEM,
        exception: str | None = None,
    ) -> "StructuredLogRecord":
        """Lift a stdlib record, including attributes injected by ContextLogger."""
        return cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
            level=record.levelname,
            category=getattr(record, "category", None) or default_category,
            message=record.getMessage(),
            logger_name=record.name,
            location=f"{record.module}:{record.funcName}:{record.lineno}",
            correlation_id=getattr(record, "correlation_id", None),
            ticker=getattr(record, "ticker", None),
            model_version=getattr(record, "model_version", None),
            extra_data=getattr(record, "extra_data", None) or {},
            exception=exception,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "category": self.category.value,
            "message": self.message,
        }
        for name in _OPTIONAL_FIELDS:
            value = getattr(self, name)
            if value:
                data[name] = value
        return data

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        """Convert to human-readable text."""
        parts = [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{self.level:8s}]",
            f"[{self.category.value:10s}]",
        ]
        if self.correlation_id:
            parts.append(f"[{self.correlation_id[:8]}]")
        if self.ticker:
            parts.append(f"[{self.ticker}]")
        parts.append(self.message)
        if self.extra_data:
            parts.append(f"| {self.extra_data}")
        text = " ".join(parts)
        if self.exception:
            text += "\n" + self.exception
        return text


class _StructuredFormatter(logging.Formatter):
    """Formatter base that renders records through StructuredLogRecord."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        """Initialize the formatter.

        Args:
            category: Category for records not logged through a ContextLogger.
        """
        super().__init__()
        self.category = category

    def structure(self, record: logging.LogRecord) -> StructuredLogRecord:
        exception = self.formatException(record.exc_info) if record.exc_info else None
        return StructuredLogRecord.from_log_record(record, self.category, exception)


class JsonFormatter(_StructuredFormatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        return self.structure(record).to_json()


class TextFormatter(_StructuredFormatter):
    """Human-readable text formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        return self.structure(record).to_text()


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps category, correlation ID and context on records.

    ``context`` may hold ``ticker``, ``model_version`` and ``extra_data``;
    per-call ``extra`` entries take precedence over it.
    """

    def __init__(
        self,
        logger: logging.Logger,
        category: LogCategory = LogCategory.SYSTEM,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(logger, {})
        self.category = category
        self.correlation_id = correlation_id or str(uuid4())
        self.context = dict(context or {})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {
            **self.context,
            **kwargs.get("extra", {}),
            "category": self.category.value,
            "correlation_id": self.correlation_id,
        }
        return msg, kwargs

    def with_context(
        self,
        ticker: str | None = None,
        model_version: str | None = None,
        **extra_data: Any,
    ) -> "ContextLogger":
        """Derive a logger with the same correlation ID and more context.

        Args:
            ticker: Ticker the following records concern.
            model_version: Parameter version the following records concern.
            **extra_data: Merged into the inherited ``extra_data``.
        """
        context = dict(self.context)
        if ticker:
            context["ticker"] = ticker
        if model_version:
            context["model_version"] = model_version
        if extra_data:
            context["extra_data"] = {**context.get("extra_data", {}), **extra_data}
        return ContextLogger(self.logger, self.category, self.correlation_id, context)


def setup_logging(
    level: str = "INFO",
    log_format: LogFormat | str = LogFormat.JSON,
    log_file: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 30,
) -> None:
    """Configure the root logger: stderr always, plus a rotating file when asked.

    Replaces any handlers already installed on the root logger. A log file
    that cannot be opened is reported on stderr and skipped.

    Args:
        level: Level name, case-insensitive.
        log_format: ``json`` or ``text``.
        log_file: Optional log file; parent directories are created.
        max_bytes: Size at which the file is rotated.
        backup_count: Rotated files to keep.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.getLevelName(level.upper()))
    root_logger.handlers.clear()

    formatter: logging.Formatter
    if LogFormat(log_format) == LogFormat.JSON:
        formatter = JsonFormatter()
    else:
        formatter = TextFormatter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            handlers.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count))
        except OSError as e:
            logging.getLogger(__name__).warning(f"File logging disabled, cannot open {log_file}: {e}")

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


@lru_cache(maxsize=32)
def get_logger(
    name: str,
    category: LogCategory = LogCategory.SYSTEM,
    correlation_id: str | None = None,
) -> ContextLogger:
    """Cached ContextLogger for a component; one correlation ID per component."""
    return ContextLogger(logging.getLogger(name), category, correlation_id)


def _emit(component: str, category: LogCategory, message: str, level: str, **extra: Any) -> None:
    logger = get_logger(f"trade_decision_engine.{component}", category)
    logger.log(logging.getLevelName(level.upper()), message, extra=extra)


def log_system(message: str, level: str = "INFO", **kwargs: Any) -> None:
    """Log a system message."""
    _emit("system", LogCategory.SYSTEM, message, level, extra_data=kwargs)


def log_model(message: str, model_version: str, level: str = "INFO", **kwargs: Any) -> None:
    """Log a classifier message tagged with the parameter version."""
    _emit("model", LogCategory.MODEL, message, level, model_version=model_version, extra_data=kwargs)


def log_simulation(message: str, ticker: str | None = None, level: str = "INFO", **kwargs: Any) -> None:
    """Log a trade simulation message."""
    _emit("simulation", LogCategory.SIMULATION, message, level, ticker=ticker, extra_data=kwargs)


def log_risk(message: str, level: str = "WARNING", **kwargs: Any) -> None:
    """Log a risk message; warnings by default."""
    _emit("risk", LogCategory.RISK, message, level, extra_data=kwargs)
