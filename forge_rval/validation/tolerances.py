"""
Tolerance model for comparing stochastic outputs.

Outputs of two independent Monte Carlo implementations never agree bit for
bit, so agreement is declared per statistic as a maximum relative deviation.
Two presets are provided:

- stochastic (default): for genuinely random outputs
  (mean 1%, std 5%, percentiles 2%, KS p-value >= 0.05, CI bounds 2%)
- deterministic: for outputs expected to reproduce exactly (0.1% across the
  numeric fields)

A zero tolerance means an exact match is required.
"""

import sys
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import TolerancePreset
from ..core.exceptions import ConfigurationError

# Expected values below this magnitude are treated as zero
EPSILON = sys.float_info.epsilon


class ToleranceSpec(BaseModel):
    """Agreement thresholds for one comparison case."""
    model_config = ConfigDict(frozen=True)

    mean: float = Field(default=0.01, ge=0)
    std: float = Field(default=0.05, ge=0)
    percentiles: float = Field(default=0.02, ge=0)
    ks_pvalue: float = Field(default=0.05, ge=0)
    ci_bounds: float = Field(default=0.02, ge=0)

    @classmethod
    def stochastic(cls) -> "ToleranceSpec":
        """Tolerance for stochastic outputs (the defaults)."""
        return cls()

    @classmethod
    def deterministic(cls) -> "ToleranceSpec":
        """Tolerance for outputs expected to be reproducible."""
        return cls(
            mean=0.001,
            std=0.001,
            percentiles=0.001,
            ks_pvalue=0.05,
            ci_bounds=0.001,
        )

    @classmethod
    def preset(cls, name: Union[str, TolerancePreset]) -> "ToleranceSpec":
        """Resolve a named preset."""
        try:
            preset = TolerancePreset(name)
        except ValueError:
            raise ConfigurationError(
                config_key="tolerance.preset",
                reason=f"unknown preset '{name}' (expected 'stochastic' or 'deterministic')",
            ) from None

        if preset == TolerancePreset.DETERMINISTIC:
            return cls.deterministic()
        return cls.stochastic()

    def merged_with(self, override: Optional["ToleranceOverride"]) -> "ToleranceSpec":
        """Return a copy where every field set on ``override`` replaces this one."""
        if override is None:
            return self
        updates = override.model_dump(exclude_none=True)
        if not updates:
            return self
        return self.model_copy(update=updates)


class ToleranceOverride(BaseModel):
    """Per-case tolerance override; unset fields fall back to the suite default."""
    model_config = ConfigDict(frozen=True)

    mean: Optional[float] = Field(default=None, ge=0)
    std: Optional[float] = Field(default=None, ge=0)
    percentiles: Optional[float] = Field(default=None, ge=0)
    ks_pvalue: Optional[float] = Field(default=None, ge=0)
    ci_bounds: Optional[float] = Field(default=None, ge=0)


def within_tolerance(actual: float, expected: float, tolerance: float) -> bool:
    """
    Check whether ``actual`` agrees with ``expected`` within ``tolerance``.

    When ``expected`` is effectively zero the relative ratio is undefined, so
    the tolerance is applied to ``|actual|`` as an absolute bound instead.
    A value always agrees with itself.
    """
    if actual == expected:
        return True
    if abs(expected) < EPSILON:
        return abs(actual) <= tolerance
    return abs(actual - expected) / abs(expected) <= tolerance


def relative_difference(actual: float, expected: float) -> float:
    """Relative difference used for reporting; ``|actual|`` when expected is ~0."""
    if abs(expected) < EPSILON:
        return abs(actual)
    return abs(actual - expected) / abs(expected)
