"""
Central configuration management using Pydantic settings.

Provides type-safe configuration with validation, environment variable
support, and YAML configuration file loading.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trade_decision_engine.backtest.simulator import SimulatorConfig
from trade_decision_engine.core.data_types import MarketRegime
from trade_decision_engine.core.exceptions import ConfigParseError, InvalidConfigError
from trade_decision_engine.models.veto import VetoConfig
from trade_decision_engine.risk.budget import RiskBudget, get_risk_budget

CONFIG_DIR = Path(__file__).resolve().parent


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or text)")
    file_path: Path | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10 * 1024 * 1024, gt=0, description="Rotate after this many bytes")
    backup_count: int = Field(default=30, ge=0, description="Rotated files to keep")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "text"}:
            raise ValueError(f"Unknown log format: {v}")
        return fmt


class ModelSettings(BaseModel):
    """Classifier and veto configuration settings."""

    parameters_path: Path | None = Field(
        default=None,
        description="Trained parameter snapshot (JSON); baseline is used when unset or invalid",
    )
    veto_threshold: float = Field(default=0.60, ge=0, le=1, description="P(loss) above which a signal is vetoed")
    caution_threshold: float = Field(default=0.50, ge=0, le=1, description="P(loss) above which a signal needs caution")
    high_confidence_threshold: float = Field(
        default=0.65, ge=0, le=1, description="P(loss) above which a veto is very high confidence"
    )

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "ModelSettings":
        if not self.caution_threshold <= self.veto_threshold <= self.high_confidence_threshold:
            raise ValueError("Thresholds must satisfy caution <= veto <= high_confidence")
        return self

    def to_veto_config(self) -> VetoConfig:
        """Build the veto configuration from these settings."""
        return VetoConfig(
            veto_threshold=self.veto_threshold,
            caution_threshold=self.caution_threshold,
            high_confidence_threshold=self.high_confidence_threshold,
        )


class SimulatorSettings(BaseModel):
    """Trade simulator configuration settings."""

    stop_multiple: float = Field(default=2.0, gt=0, description="Stop distance in ATRs")
    tp1_multiple: float = Field(default=2.0, gt=0, description="First target in R")
    tp2_multiple: float = Field(default=3.0, gt=0, description="Second target in R")
    tp3_multiple: float = Field(default=4.0, gt=0, description="Final target in R")
    max_holding_days: int = Field(default=45, ge=1, description="Time exit horizon in sessions")
    atr_period: int = Field(default=14, ge=1, description="ATR lookback window")
    min_bars: int = Field(default=20, ge=1, description="Minimum bars in a series")

    def to_config(self) -> SimulatorConfig:
        """Build a validated simulator configuration from these settings."""
        return SimulatorConfig(**self.model_dump())


class RiskSettings(BaseModel):
    """Risk budget configuration settings."""

    preset: str = Field(default="default", description="Risk budget preset (conservative, default, aggressive)")
    default_regime: MarketRegime = Field(default=MarketRegime.BULL, description="Regime assumed when none is given")

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        preset = v.lower()
        if preset not in {"conservative", "default", "aggressive"}:
            raise ValueError(f"Unknown risk preset: {v}")
        return preset

    @field_validator("default_regime", mode="before")
    @classmethod
    def parse_regime(cls, v: Any) -> Any:
        if isinstance(v, str):
            return MarketRegime.parse(v)
        return v

    def to_budget(self) -> RiskBudget:
        """Resolve the configured preset to a risk budget."""
        return get_risk_budget(self.preset)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application settings
    app_version: str = "1.0.0"
    environment: str = Field(default="development", description="Environment (development, staging, production)")

    # Component settings
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    simulator: SimulatorSettings = Field(default_factory=SimulatorSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Settings":
        """Create settings with a YAML file overlaid on env/defaults.

        Raises:
            InvalidConfigError: If the YAML values fail validation.
            ConfigParseError: If the file is not valid YAML.
        """
        overrides = load_yaml_config(config_path)
        try:
            return cls(**overrides)
        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid configuration in {config_path}: {e.error_count()} error(s)",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file.

    A missing file yields an empty mapping.

    Raises:
        ConfigParseError: If the file cannot be parsed or is not a mapping.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Failed to parse YAML: {e}", file_path=str(config_path)) from e
    if not isinstance(data, dict):
        raise ConfigParseError("Top-level YAML document must be a mapping", file_path=str(config_path))
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Loads base settings from environment variables and the .env file, then
    overlays ``settings.yaml`` from the config directory when present.
    """
    return Settings.from_yaml(CONFIG_DIR / "settings.yaml")
