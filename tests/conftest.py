"""
Shared pytest configuration and fixtures for forge-rval tests.

Provides in-memory fakes for the forge engine and the R validator so the
pipeline can be exercised without launching any subprocess.
"""

import os
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pytest
from scipy import stats

from forge_rval.config.settings import ForgeRvalConfig, reset_default_config
from forge_rval.core.exceptions import EngineExecutionError
from forge_rval.validation.comparison import SummaryStatistics
from forge_rval.validation.engines import (
    ReferenceRequest,
    ReferenceResult,
    ReferenceValidator,
    TargetEngine,
)
from forge_rval.validation.test_spec import TestSpec


ENV_VARS = [
    'FORGE_BIN', 'FORGE_RVAL_TIMEOUT', 'FORGE_RVAL_RSCRIPT',
    'FORGE_RVAL_VALIDATORS_DIR', 'FORGE_RVAL_LOG_LEVEL',
    'FORGE_RVAL_MAX_WORKERS', 'FORGE_RVAL_FAIL_ON_ERROR',
]


class FakeTargetEngine(TargetEngine):
    """Target engine returning canned statistics (or raising) per case name."""

    def __init__(self, results: Optional[Dict[str, Union[SummaryStatistics, Exception, Callable]]] = None,
                 default: Optional[SummaryStatistics] = None):
        self.results = results or {}
        self.default = default
        self.calls: List[str] = []
        self.workdirs = []

    def simulate(self, fixture, seed, workdir=None):
        self.calls.append(fixture.name)
        self.workdirs.append(workdir)
        result = self.results.get(fixture.name, self.default)
        if callable(result) and not isinstance(result, SummaryStatistics):
            result = result(fixture, seed)
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise EngineExecutionError(engine="forge", reason=f"no canned result for {fixture.name}")
        return result


class FakeReferenceValidator(ReferenceValidator):
    """Reference validator returning canned results keyed by distribution."""

    def __init__(self, results: Optional[Dict[str, Union[ReferenceResult, Exception]]] = None,
                 default: Optional[ReferenceResult] = None):
        self.results = results or {}
        self.default = default
        self.calls: List[tuple] = []

    def validate(self, validator: str, request: ReferenceRequest) -> ReferenceResult:
        self.calls.append((validator, request))
        result = self.results.get(request.distribution, self.default)
        if isinstance(result, Exception):
            raise result
        return result


def reference_result(mean=100.0, std=15.0, percentiles=None, samples=None, **kwargs) -> ReferenceResult:
    """Successful R result carrying the given statistics."""
    results = {'mean': mean, 'std': std, 'percentiles': percentiles or {}}
    if samples is not None:
        results['samples'] = list(samples)
    return ReferenceResult(
        validator=kwargs.pop('validator', 'monte_carlo_validator.R'),
        version="1.0.0",
        success=True,
        results=results,
        **kwargs
    )


@pytest.fixture(autouse=True)
def clean_environment():
    """Isolate tests from FORGE_* environment variables and cached config."""
    original = {var: os.environ.pop(var, None) for var in ENV_VARS}
    reset_default_config()
    yield
    for var, value in original.items():
        if value is not None:
            os.environ[var] = value
        else:
            os.environ.pop(var, None)
    reset_default_config()


@pytest.fixture
def config(tmp_path):
    """Default configuration with temp files under pytest's tmp_path."""
    return ForgeRvalConfig(run={'temp_dir': tmp_path})


@pytest.fixture
def normal_spec():
    """Monte Carlo spec for N(100, 15)."""
    return TestSpec(
        name="normal_basic",
        distribution="normal",
        params={'mean': 100, 'sd': 15},
        seed=42,
        iterations=10000,
    )


@pytest.fixture
def matching_stats():
    """Forge statistics for N(100, 15) within the default tolerance of R's."""
    return SummaryStatistics(
        mean=99.8,
        std=15.02,
        percentiles={'5': 75.4, '50': 99.9, '95': 124.6},
    )


@pytest.fixture
def r_normal_result():
    """R result for N(100, 15)."""
    return reference_result(
        mean=100.0,
        std=15.0,
        percentiles={'5': 75.3, '50': 100.0, '95': 124.7},
    )


@pytest.fixture(scope="session")
def normal_samples():
    """Two stratified N(100, 15) samples with no shared values."""
    n = 2000
    a = stats.norm.ppf((np.arange(n) + 0.5) / n, loc=100, scale=15)
    b = stats.norm.ppf((np.arange(n) + 0.3) / n, loc=100, scale=15)
    return a, b


@pytest.fixture
def make_target():
    """Factory for FakeTargetEngine."""
    return FakeTargetEngine


@pytest.fixture
def make_reference():
    """Factory for FakeReferenceValidator."""
    return FakeReferenceValidator


@pytest.fixture
def make_reference_result():
    """Factory for successful R results."""
    return reference_result
