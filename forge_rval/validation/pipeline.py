"""
Validation pipeline: runs each test case through forge and R and collects
one verdict per case.

Each case moves through a fixed sequence of steps, and the first step that
cannot complete decides the verdict:

    no distribution          -> SKIP
    build fixture            -> SKIP on FixtureError
    run forge                -> ERROR "Forge failed: ..."
    run R validator          -> ERROR "R validator failed: ..." / "R returned error: ..."
    parse R statistics       -> ERROR "Failed to parse R statistics"
    compare                  -> FAIL on first mismatch, otherwise PASS

Nothing is retried, and no exception escapes a case.

Usage:
    from forge_rval.validation import ValidationPipeline, ForgeCliEngine, RscriptValidator

    pipeline = ValidationPipeline(ForgeCliEngine(config.engine), RscriptValidator(config.reference), config)
    report = pipeline.run(specs)
    sys.exit(report.exit_code(config.run.fail_on_error))
"""

import tempfile
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .comparison import PercentilePolicy, compare_summary_statistics
from .engines import (
    ReferenceRequest,
    ReferenceValidator,
    TargetEngine,
    parse_reference_statistics,
)
from .fixtures import build_fixture
from .test_spec import TestSpec, TestSuite
from .verdicts import (
    ErrorVerdict,
    FailVerdict,
    PassVerdict,
    SkipVerdict,
    Verdict,
    VerdictStatus,
)
from ..config.settings import ForgeRvalConfig
from ..core.exceptions import (
    EngineExecutionError,
    FixtureError,
    MissingStatisticError,
    OutputParseError,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

NOT_MONTE_CARLO = "No distribution specified (not a Monte Carlo test)"
FAIL_FAST_SKIP = "Not run (fail-fast after earlier failure)"


@dataclass
class SuiteReport:
    """Ordered verdicts for one run, in input order."""

    verdicts: List[Verdict]
    elapsed_seconds: float = 0.0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    start_time: datetime = field(default_factory=datetime.now)

    def _count(self, status: VerdictStatus) -> int:
        return sum(1 for v in self.verdicts if v.status == status)

    @property
    def total(self) -> int:
        return len(self.verdicts)

    @property
    def passed(self) -> int:
        return self._count(VerdictStatus.PASS)

    @property
    def failed(self) -> int:
        return self._count(VerdictStatus.FAIL)

    @property
    def errors(self) -> int:
        return self._count(VerdictStatus.ERROR)

    @property
    def skipped(self) -> int:
        return self._count(VerdictStatus.SKIP)

    def is_successful(self, fail_on_error: bool = False) -> bool:
        """The run fails on any FAIL verdict, and on ERROR when ``fail_on_error``."""
        if self.failed:
            return False
        if fail_on_error and self.errors:
            return False
        return True

    def exit_code(self, fail_on_error: bool = False) -> int:
        return 0 if self.is_successful(fail_on_error) else 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            'session_id': self.session_id,
            'start_time': self.start_time.isoformat(),
            'elapsed_seconds': self.elapsed_seconds,
            'total': self.total,
            'passed': self.passed,
            'failed': self.failed,
            'errors': self.errors,
            'skipped': self.skipped,
            'verdicts': [v.to_dict() for v in self.verdicts],
        }


def _log_verdict(verdict: Verdict) -> Verdict:
    if verdict.status == VerdictStatus.ERROR:
        logger.warning("Case errored", case=verdict.name, error=verdict.message)
    else:
        logger.info("Case finished", case=verdict.name, status=verdict.status.value)
    return verdict


def _run_monte_carlo_case(
    spec: TestSpec,
    target: TargetEngine,
    reference: ReferenceValidator,
    config: ForgeRvalConfig,
) -> Verdict:
    name = spec.name

    try:
        fixture = build_fixture(spec)
    except FixtureError as e:
        logger.debug("Fixture not constructible", case=name, reason=e.message)
        return SkipVerdict(name, f"Cannot build formula: {e.message}")
    logger.debug("Fixture built", case=name, formula=fixture.formula)

    with tempfile.TemporaryDirectory(
        prefix="forge_rval_", dir=config.run.temp_dir
    ) as temp_dir:
        try:
            target_stats = target.simulate(fixture, spec.seed, workdir=Path(temp_dir))
        except (EngineExecutionError, OutputParseError) as e:
            return ErrorVerdict(name, f"Forge failed: {e.message}")
        logger.debug("Forge statistics received", case=name, mean=target_stats.mean)

        request = ReferenceRequest(
            distribution=spec.distribution,
            params=dict(spec.params),
            seed=spec.seed,
            iterations=spec.iterations,
        )
        validator = spec.r_validator or config.reference.default_validator
        try:
            reference_result = reference.validate(validator, request)
        except (EngineExecutionError, OutputParseError) as e:
            return ErrorVerdict(name, f"R validator failed: {e.message}")

    if not reference_result.success:
        return ErrorVerdict(name, f"R returned error: {reference_result.error or 'Unknown'}")

    try:
        reference_stats = parse_reference_statistics(reference_result.results)
    except OutputParseError as e:
        return ErrorVerdict(name, f"Failed to parse R statistics: {e.message}")
    if reference_stats is None:
        return ErrorVerdict(name, "Failed to parse R statistics")
    logger.debug("R statistics received", case=name, validator=validator, mean=reference_stats.mean)

    try:
        outcome = compare_summary_statistics(
            target_stats,
            reference_stats,
            spec.effective_tolerance,
            PercentilePolicy.from_run_config(config.run),
        )
    except MissingStatisticError as e:
        return ErrorVerdict(name, e.message)

    if outcome.passed:
        return PassVerdict(name, outcome.summary)
    return FailVerdict(name, outcome.summary, comparison=outcome.failure)


def run_test_case(
    spec: TestSpec,
    target: TargetEngine,
    reference: ReferenceValidator,
    config: ForgeRvalConfig,
) -> Verdict:
    """
    Run one test case and return its verdict.

    Args:
        spec: Test case
        target: Engine under test
        reference: Reference validator
        config: Run configuration (percentile policy, default validator, temp dir)

    Returns:
        Exactly one verdict; never raises for case-level problems
    """
    logger.debug("Case started", case=spec.name)

    if not spec.is_monte_carlo:
        return _log_verdict(SkipVerdict(spec.name, NOT_MONTE_CARLO))

    try:
        verdict = _run_monte_carlo_case(spec, target, reference, config)
    except Exception as e:
        logger.exception("Unexpected error in case", case=spec.name)
        verdict = ErrorVerdict(spec.name, f"Unexpected error: {e}")

    return _log_verdict(verdict)


class ValidationPipeline:
    """Runs test cases against forge and R and aggregates the verdicts."""

    def __init__(
        self,
        target: TargetEngine,
        reference: ReferenceValidator,
        config: Optional[ForgeRvalConfig] = None,
    ):
        self.target = target
        self.reference = reference
        self.config = config or ForgeRvalConfig()

    def run_case(self, spec: TestSpec) -> Verdict:
        return run_test_case(spec, self.target, self.reference, self.config)

    def run(self, specs: Union[TestSuite, Iterable[TestSpec]]) -> SuiteReport:
        """
        Run all cases and return the report.

        Cases run sequentially unless ``run.max_workers > 1``, in which case
        whole cases run on a thread pool. Verdicts are always in input order.
        """
        specs = list(specs)
        started_at = datetime.now()
        start_time = time.time()
        workers = self.config.run.max_workers

        logger.info("Starting validation run", tests=len(specs), workers=workers)

        if workers > 1 and len(specs) > 1:
            if self.config.run.fail_fast:
                logger.debug("fail_fast is ignored when running in parallel")
            verdicts = self._run_parallel(specs, workers)
        else:
            verdicts = self._run_sequential(specs)

        report = SuiteReport(
            verdicts=verdicts,
            elapsed_seconds=time.time() - start_time,
            start_time=started_at,
        )
        logger.info(
            "Validation run completed",
            passed=report.passed,
            failed=report.failed,
            errors=report.errors,
            skipped=report.skipped,
            elapsed=f"{report.elapsed_seconds:.2f}s",
        )
        return report

    def _run_sequential(self, specs: List[TestSpec]) -> List[Verdict]:
        verdicts: List[Verdict] = []
        stop = False

        for spec in specs:
            if stop:
                verdicts.append(_log_verdict(SkipVerdict(spec.name, FAIL_FAST_SKIP)))
                continue

            verdict = self.run_case(spec)
            verdicts.append(verdict)
            if self.config.run.fail_fast and verdict.status == VerdictStatus.FAIL:
                logger.info("Stopping after failure (fail-fast)", case=spec.name)
                stop = True

        return verdicts

    def _run_parallel(self, specs: List[TestSpec], workers: int) -> List[Verdict]:
        verdicts: List[Optional[Verdict]] = [None] * len(specs)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self.run_case, spec): index
                for index, spec in enumerate(specs)
            }
            for future in as_completed(future_to_index):
                verdicts[future_to_index[future]] = future.result()

        return verdicts
