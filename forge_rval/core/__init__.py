"""Core functionality for forge-rval."""

from .exceptions import (
    ForgeRvalError,
    ConfigurationError,
    TestSpecError,
    FixtureError,
    UnsupportedDistributionError,
    MissingParameterError,
    EngineExecutionError,
    OutputParseError,
    MissingStatisticError,
)

__all__ = [
    "ForgeRvalError",
    "ConfigurationError",
    "TestSpecError",
    "FixtureError",
    "UnsupportedDistributionError",
    "MissingParameterError",
    "EngineExecutionError",
    "OutputParseError",
    "MissingStatisticError",
]
