"""Configuration module."""

from .settings import (
    CONFIG_DIR,
    LoggingSettings,
    ModelSettings,
    RiskSettings,
    Settings,
    SimulatorSettings,
    get_settings,
    load_yaml_config,
)

__all__ = [
    "CONFIG_DIR",
    "LoggingSettings",
    "ModelSettings",
    "RiskSettings",
    "Settings",
    "SimulatorSettings",
    "get_settings",
    "load_yaml_config",
]
