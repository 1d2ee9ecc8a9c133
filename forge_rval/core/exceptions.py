"""
Exception classes for forge-rval.

Provides rich error information with actionable suggestions. These exceptions
never cross a test-case boundary: the pipeline converts each of them into a
Skip or Error verdict for the case that raised it.
"""

from typing import List, Optional, Dict, Any


class ForgeRvalError(Exception):
    """
    Base exception class for forge-rval with rich error information.

    Provides structured error information including suggestions for resolution
    and an error code for log filtering.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error message with suggestions."""
        message = self.message

        if self.error_code:
            message = f"[{self.error_code}] {message}"

        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"

        return message


class ConfigurationError(ForgeRvalError):
    """Exception raised for configuration issues."""

    def __init__(self, config_key: Optional[str] = None, reason: Optional[str] = None, **kwargs):
        if config_key and reason:
            message = f"Invalid configuration for '{config_key}': {reason}"
        elif config_key:
            message = f"Invalid configuration for '{config_key}'"
        else:
            message = reason or "Configuration error"

        suggestions = [
            "Check configuration file syntax",
            "Check environment variable formatting (FORGE_RVAL_*)",
            "Use ForgeRvalConfig().model_dump() to inspect current settings",
        ]

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="CONFIG",
            context={"config_key": config_key},
            **kwargs
        )


class TestSpecError(ForgeRvalError):
    """Exception raised when a test-suite document cannot be loaded."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        source: Optional[str] = None,
        test_name: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        where = source or "<string>"
        if test_name:
            message = f"Invalid test '{test_name}' in {where}: {reason}"
        else:
            message = f"Invalid test suite {where}: {reason}"

        suggestions = [
            "Check the YAML syntax of the test file",
            "Tests must live under a top-level 'tests' mapping",
            "'iterations' must be a positive integer and 'seed' non-negative",
        ]

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="TEST_SPEC",
            context={"source": source, "test_name": test_name, "reason": reason},
            **kwargs
        )


class FixtureError(ForgeRvalError):
    """
    Exception raised when a test case cannot be translated into an engine fixture.

    The case is structurally not constructible; the pipeline reports it as a
    Skip, never as an Error.
    """

    def __init__(
        self,
        reason: str,
        distribution: Optional[str] = None,
        parameter: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault('suggestions', [
            "Supported distributions: normal, uniform, lognormal, triangular, pert",
        ])
        kwargs.setdefault('error_code', "FIXTURE")
        super().__init__(
            message=reason,
            context={"distribution": distribution, "parameter": parameter},
            **kwargs
        )
        self.distribution = distribution
        self.parameter = parameter


class UnsupportedDistributionError(FixtureError):
    """The target engine has no equivalent for the requested distribution."""

    def __init__(self, distribution: str, reason: Optional[str] = None, **kwargs):
        super().__init__(
            reason=reason or f"Unsupported distribution: {distribution}",
            distribution=distribution,
            error_code="UNSUPPORTED_DISTRIBUTION",
            **kwargs
        )


class MissingParameterError(FixtureError):
    """A parameter required by the distribution is absent from the test spec."""

    def __init__(self, distribution: str, parameter: str, **kwargs):
        super().__init__(
            reason=f"Missing '{parameter}' param",
            distribution=distribution,
            parameter=parameter,
            suggestions=[
                f"Add '{parameter}' under 'params' for the {distribution} test",
            ],
            error_code="MISSING_PARAMETER",
            **kwargs
        )


class EngineExecutionError(ForgeRvalError):
    """Exception raised when an external engine cannot be invoked or fails."""

    def __init__(
        self,
        engine: str,
        reason: str,
        timed_out: bool = False,
        exit_code: Optional[int] = None,
        **kwargs
    ):
        suggestions = []
        if timed_out:
            suggestions.append("Increase the timeout_seconds setting for this engine")
        else:
            suggestions.extend([
                f"Check that the {engine} executable is installed and on PATH",
                "Run the failing command by hand to inspect its output",
            ])

        kwargs.pop('suggestions', None)

        super().__init__(
            message=reason,
            suggestions=suggestions,
            error_code="ENGINE_TIMEOUT" if timed_out else "ENGINE",
            context={"engine": engine, "timed_out": timed_out, "exit_code": exit_code},
            **kwargs
        )
        self.engine = engine
        self.timed_out = timed_out
        self.exit_code = exit_code


class OutputParseError(ForgeRvalError):
    """Exception raised when engine output is malformed or lacks required fields."""

    def __init__(self, source: str, reason: str, **kwargs):
        kwargs.pop('suggestions', None)
        super().__init__(
            message=reason,
            suggestions=[
                f"Inspect the raw {source} output for the failing case",
                "Check that the engine version emits the expected JSON layout",
            ],
            error_code="OUTPUT_PARSE",
            context={"source": source},
            **kwargs
        )
        self.source = source


class MissingStatisticError(ForgeRvalError):
    """A statistic required for comparison is absent on one side."""

    def __init__(self, statistic: str, side: str, **kwargs):
        kwargs.pop('suggestions', None)
        super().__init__(
            message=f"Missing {statistic} in {side} statistics",
            error_code="MISSING_STATISTIC",
            context={"statistic": statistic, "side": side},
            **kwargs
        )
        self.statistic = statistic
        self.side = side
