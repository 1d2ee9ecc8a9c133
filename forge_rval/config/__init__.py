"""Configuration management for forge-rval."""

from .settings import (
    ForgeRvalConfig,
    EngineConfig,
    ReferenceConfig,
    ToleranceSettings,
    RunConfig,
    LoggingConfig,
    TolerancePreset,
    get_default_config,
)

__all__ = [
    "ForgeRvalConfig",
    "EngineConfig",
    "ReferenceConfig",
    "ToleranceSettings",
    "RunConfig",
    "LoggingConfig",
    "TolerancePreset",
    "get_default_config",
]
