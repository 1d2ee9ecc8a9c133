"""
forge-rval: cross-validation of forge Monte Carlo analytics against R.

Runs the same distribution through the forge engine and an independent R
reference, then decides per case whether the two outputs agree within a
declared statistical tolerance.
"""

__version__ = "0.1.0"

# Configuration
from .config.settings import ForgeRvalConfig

# Import key exception classes
from .core.exceptions import (
    ForgeRvalError,
    ConfigurationError,
    TestSpecError,
    FixtureError,
    EngineExecutionError,
    OutputParseError,
)

# Validation
from .validation import (
    ToleranceSpec,
    SummaryStatistics,
    TestSpec,
    TestSuite,
    ValidationPipeline,
    SuiteReport,
    ForgeCliEngine,
    RscriptValidator,
    load_test_suite,
    load_test_directory,
    run_test_case,
)

__all__ = [
    # Version info
    "__version__",

    # Configuration
    "ForgeRvalConfig",

    # Exceptions
    "ForgeRvalError",
    "ConfigurationError",
    "TestSpecError",
    "FixtureError",
    "EngineExecutionError",
    "OutputParseError",

    # Validation
    "ToleranceSpec",
    "SummaryStatistics",
    "TestSpec",
    "TestSuite",
    "ValidationPipeline",
    "SuiteReport",
    "ForgeCliEngine",
    "RscriptValidator",
    "load_test_suite",
    "load_test_directory",
    "run_test_case",
]
