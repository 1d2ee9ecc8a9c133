"""
Summary-statistic comparison between forge and the R reference.

Compares mean, standard deviation and a fixed set of percentiles, in that
order, and stops at the first mismatch. When both sides carry raw samples a
two-sample KS test is run last.

Percentiles of two independent random streams are noisier than the mean, so
by default a percentile only counts as a mismatch when it fails both a
relative check (tolerance floored at 10%) and an absolute check (half the
reference standard deviation).
"""

import types
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .statistical_tests import ks_test
from .tolerances import EPSILON, ToleranceSpec, relative_difference, within_tolerance
from ..core.exceptions import MissingStatisticError
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PERCENTILES = (5, 10, 25, 50, 75, 90, 95)


def percentile_label(percentile: float) -> str:
    """Label used as percentile key: 5 -> '5', 2.5 -> '2.5'."""
    return f"{float(percentile):g}"


@dataclass(frozen=True)
class SummaryStatistics:
    """Summary of one side's simulation output."""

    mean: Optional[float] = None
    std: Optional[float] = None
    percentiles: Mapping[str, float] = field(default_factory=dict)
    samples: Optional[Tuple[float, ...]] = None

    def __post_init__(self):
        object.__setattr__(
            self, 'percentiles', types.MappingProxyType(dict(self.percentiles))
        )
        if self.samples is not None:
            object.__setattr__(self, 'samples', tuple(float(x) for x in self.samples))

    @classmethod
    def from_samples(
        cls,
        samples: Sequence[float],
        percentiles: Sequence[float] = DEFAULT_PERCENTILES,
    ) -> "SummaryStatistics":
        """Build summary statistics from a raw sample (population std)."""
        values = np.asarray(samples, dtype=float)
        if values.size == 0:
            return cls(mean=0.0, std=0.0, samples=())

        return cls(
            mean=float(np.mean(values)),
            std=float(np.std(values, ddof=0)),
            percentiles={
                percentile_label(p): float(np.percentile(values, p)) for p in percentiles
            },
            samples=tuple(values.tolist()),
        )

    def to_dict(self) -> Dict:
        return {
            'mean': self.mean,
            'std': self.std,
            'percentiles': dict(self.percentiles),
            'n_samples': len(self.samples) if self.samples is not None else None,
        }


@dataclass(frozen=True)
class PercentilePolicy:
    """How percentiles are compared."""

    lenient_percentiles: bool = True
    percentile_floor: float = 0.10
    percentile_std_fraction: float = 0.5
    checked_percentiles: Tuple[str, ...] = ("5", "50", "95")

    @classmethod
    def from_run_config(cls, run_config) -> "PercentilePolicy":
        return cls(
            lenient_percentiles=run_config.lenient_percentiles,
            percentile_floor=run_config.percentile_floor,
            percentile_std_fraction=run_config.percentile_std_fraction,
            checked_percentiles=tuple(run_config.checked_percentiles),
        )


@dataclass
class StatisticComparison:
    """Result of comparing one statistic between forge and R."""

    statistic: str  # "Mean", "Std", "P5", "KS"
    target_value: float
    reference_value: float
    tolerance: float
    passed: bool
    difference_pct: float = 0.0
    detail: Optional[str] = None

    @property
    def message(self) -> str:
        if self.detail is not None:
            return self.detail
        return (
            f"{self.statistic} mismatch: forge={self.target_value:.4f}, "
            f"R={self.reference_value:.4f} (diff={self.difference_pct:.2f}%, "
            f"tol={self.tolerance * 100:.1f}%)"
        )

    def to_dict(self) -> Dict:
        return {
            'statistic': self.statistic,
            'target_value': self.target_value,
            'reference_value': self.reference_value,
            'difference_pct': self.difference_pct,
            'tolerance': self.tolerance,
            'passed': self.passed,
        }


@dataclass
class ComparisonOutcome:
    """All comparisons performed for one case, up to the first mismatch."""

    target: SummaryStatistics
    reference: SummaryStatistics
    comparisons: List[StatisticComparison] = field(default_factory=list)

    @property
    def failure(self) -> Optional[StatisticComparison]:
        for comparison in self.comparisons:
            if not comparison.passed:
                return comparison
        return None

    @property
    def passed(self) -> bool:
        return self.failure is None

    @property
    def summary(self) -> str:
        if self.failure is not None:
            return self.failure.message
        return f"mean={self.target.mean:.2f} std={self.target.std:.2f} (within tolerance)"


def compare_scalar(
    statistic: str,
    target: float,
    reference: float,
    tolerance: float,
) -> StatisticComparison:
    """Compare a single scalar with a relative tolerance."""
    return StatisticComparison(
        statistic=statistic,
        target_value=target,
        reference_value=reference,
        tolerance=tolerance,
        passed=within_tolerance(target, reference, tolerance),
        difference_pct=relative_difference(target, reference) * 100,
    )


def compare_percentile(
    label: str,
    target: float,
    reference: float,
    tolerance: float,
    reference_std: float,
    policy: PercentilePolicy = PercentilePolicy(),
) -> StatisticComparison:
    """
    Compare one percentile.

    With the lenient policy the percentile passes if it is within the floored
    relative tolerance OR within ``percentile_std_fraction * reference_std``
    in absolute terms; the tolerance reported is the floored one.
    """
    statistic = f"P{label}"
    if not policy.lenient_percentiles:
        return compare_scalar(statistic, target, reference, tolerance)

    effective = max(tolerance, policy.percentile_floor)
    abs_tolerance = reference_std * policy.percentile_std_fraction
    abs_diff = abs(target - reference)
    rel_diff = abs_diff / abs(reference) if abs(reference) > EPSILON else abs_diff

    return StatisticComparison(
        statistic=statistic,
        target_value=target,
        reference_value=reference,
        tolerance=effective,
        passed=not (rel_diff > effective and abs_diff > abs_tolerance),
        difference_pct=rel_diff * 100,
    )


def compare_distributions(
    target_samples: Sequence[float],
    reference_samples: Sequence[float],
    min_pvalue: float,
) -> StatisticComparison:
    """KS check on raw samples; fails when the p-value is below ``min_pvalue``."""
    result = ks_test(target_samples, reference_samples, alpha=min_pvalue)
    passed = result.p_value >= min_pvalue
    detail = None
    if not passed:
        detail = (
            f"KS mismatch: D={result.statistic:.4f}, p={result.p_value:.4f} "
            f"(min p={min_pvalue:.3f})"
        )
    return StatisticComparison(
        statistic="KS",
        target_value=result.statistic,
        reference_value=result.p_value,
        tolerance=min_pvalue,
        passed=passed,
        difference_pct=result.statistic * 100,
        detail=detail,
    )


def _require(stats: SummaryStatistics, name: str, side: str) -> float:
    value = getattr(stats, name)
    if value is None:
        raise MissingStatisticError(statistic=name, side=side)
    return value


def compare_summary_statistics(
    target: SummaryStatistics,
    reference: SummaryStatistics,
    tolerance: ToleranceSpec,
    policy: PercentilePolicy = PercentilePolicy(),
) -> ComparisonOutcome:
    """
    Compare forge output against the R reference.

    Args:
        target: Statistics from forge
        reference: Statistics from R
        tolerance: Effective tolerance for the case
        policy: Percentile comparison policy

    Returns:
        ComparisonOutcome whose last comparison is the first mismatch, if any

    Raises:
        MissingStatisticError: If mean or std is missing on either side
    """
    target_mean = _require(target, 'mean', 'forge')
    target_std = _require(target, 'std', 'forge')
    reference_mean = _require(reference, 'mean', 'R')
    reference_std = _require(reference, 'std', 'R')

    outcome = ComparisonOutcome(target=target, reference=reference)

    outcome.comparisons.append(
        compare_scalar("Mean", target_mean, reference_mean, tolerance.mean)
    )
    if not outcome.passed:
        return outcome

    outcome.comparisons.append(
        compare_scalar("Std", target_std, reference_std, tolerance.std)
    )
    if not outcome.passed:
        return outcome

    for label in policy.checked_percentiles:
        if label not in target.percentiles or label not in reference.percentiles:
            logger.debug("Percentile not comparable", percentile=label)
            continue
        outcome.comparisons.append(
            compare_percentile(
                label,
                target.percentiles[label],
                reference.percentiles[label],
                tolerance.percentiles,
                reference_std,
                policy,
            )
        )
        if not outcome.passed:
            return outcome

    if target.samples and reference.samples:
        outcome.comparisons.append(
            compare_distributions(target.samples, reference.samples, tolerance.ks_pvalue)
        )

    return outcome
