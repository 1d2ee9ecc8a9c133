"""
External engines: the forge CLI (target) and R validator scripts (reference).

Both are driven through ``subprocess.run`` with a timeout. A timed-out child
is killed by ``subprocess.run`` and reported as an EngineExecutionError so the
pipeline records an Error verdict for the case.

Engines:
    - ForgeCliEngine: ``forge simulate <fixture> --seed <seed> -o <out.json>``
    - RscriptValidator: ``Rscript <validators_dir>/<script> --json <params>``

The abstract base classes are the seams the pipeline depends on; tests
substitute in-memory fakes.
"""

import json
import math
import os
import shutil
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .comparison import SummaryStatistics
from .fixtures import OUTPUT_VARIABLE, Fixture
from ..config.settings import EngineConfig, ReferenceConfig
from ..core.exceptions import EngineExecutionError, OutputParseError
from ..utils.logging import get_logger

logger = get_logger(__name__)

RELATIVE_FORGE_BINARY = Path("../forge/target/release/forge")


class ExecutionStatus(Enum):
    """Execution status of a reference run."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class ReferenceRequest:
    """Parameters passed to an R validator as JSON."""

    distribution: Optional[str]
    params: Dict[str, float] = field(default_factory=dict)
    seed: int = 42
    iterations: int = 10000

    def to_json(self) -> str:
        return json.dumps(asdict(self))


@dataclass
class ReferenceResult:
    """Structured result returned by an R validator."""

    validator: str
    success: bool
    version: str = ""
    results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    execution_time: float = 0.0

    @property
    def execution_status(self) -> ExecutionStatus:
        return ExecutionStatus.SUCCESS if self.success else ExecutionStatus.FAILED

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of results."""
        return {
            'validator': self.validator,
            'version': self.version,
            'status': self.execution_status.value,
            'error': self.error,
            'execution_time': self.execution_time,
        }


class TargetEngine(ABC):
    """Engine under test."""

    @abstractmethod
    def simulate(
        self,
        fixture: Fixture,
        seed: int,
        workdir: Optional[Path] = None,
    ) -> SummaryStatistics:
        """
        Run the fixture and return summary statistics of its output.

        Raises:
            EngineExecutionError: If the engine cannot be run or fails
            OutputParseError: If its output is malformed
        """


class ReferenceValidator(ABC):
    """Independent reference implementation."""

    @abstractmethod
    def validate(self, validator: str, request: ReferenceRequest) -> ReferenceResult:
        """
        Run a validator for the request.

        A validator that runs but reports failure returns a result with
        ``success=False``; failing to run it at all raises.

        Raises:
            EngineExecutionError: If the validator cannot be run
            OutputParseError: If its output is not the expected JSON
        """


def _run_command(
    args: List[str],
    engine: str,
    timeout: float,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """Run an external command, translating launch failures and timeouts."""
    logger.debug("Running command", engine=engine, command=" ".join(args))
    try:
        return subprocess.run(
            args, capture_output=True, text=True, timeout=timeout, cwd=cwd
        )
    except subprocess.TimeoutExpired:
        timeout_ms = int(timeout * 1000)
        raise EngineExecutionError(
            engine=engine,
            reason=f"{engine} timed out after {timeout_ms}ms",
            timed_out=True,
        ) from None
    except OSError as e:
        raise EngineExecutionError(engine=engine, reason=f"Failed to run {engine}: {e}") from e


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _float_mapping(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    result = {}
    for key, item in value.items():
        number = _as_float(item)
        if number is not None:
            result[str(key)] = number
    return result


def _float_sequence(value: Any, source: str) -> Optional[List[float]]:
    if not isinstance(value, list):
        return None
    numbers = [n for n in (_as_float(item) for item in value) if n is not None]
    if not all(math.isfinite(n) for n in numbers):
        raise OutputParseError(source=source, reason="Non-finite value in samples")
    return numbers


def parse_forge_output(payload: Any) -> SummaryStatistics:
    """
    Extract statistics from ``forge simulate`` JSON output.

    Reads ``monte_carlo_results.outputs.test_output`` and normalises
    percentile keys (``p5`` -> ``5``).
    """
    mc_results = payload.get('monte_carlo_results') if isinstance(payload, dict) else None
    if not isinstance(mc_results, dict):
        raise OutputParseError(source="forge", reason="Missing monte_carlo_results")
    outputs = mc_results.get('outputs')
    if not isinstance(outputs, dict):
        raise OutputParseError(source="forge", reason="Missing outputs")
    output = outputs.get(OUTPUT_VARIABLE)
    if not isinstance(output, dict):
        raise OutputParseError(source="forge", reason=f"Missing {OUTPUT_VARIABLE}")

    mean = _as_float(output.get('mean'))
    if mean is None:
        raise OutputParseError(source="forge", reason="Missing mean")
    std = _as_float(output.get('std_dev'))
    if std is None:
        raise OutputParseError(source="forge", reason="Missing std_dev")

    percentiles = {
        key.lstrip('p'): value
        for key, value in _float_mapping(output.get('percentiles')).items()
    }
    return SummaryStatistics(
        mean=mean,
        std=std,
        percentiles=percentiles,
        samples=_float_sequence(output.get('samples'), "forge") or None,
    )


def parse_reference_statistics(results: Optional[Dict[str, Any]]) -> Optional[SummaryStatistics]:
    """
    Extract statistics from an R validator's ``results`` object.

    Returns None when the mean or standard deviation (``std`` or ``sd``) is
    missing.

    Raises:
        OutputParseError: If ``samples`` holds NaN or infinity
    """
    if not isinstance(results, dict):
        return None

    mean = _as_float(results.get('mean'))
    std = _as_float(results.get('std', results.get('sd')))
    if mean is None or std is None:
        return None

    return SummaryStatistics(
        mean=mean,
        std=std,
        percentiles=_float_mapping(results.get('percentiles')),
        samples=_float_sequence(results.get('samples'), "R") or None,
    )


def extract_summary_statistics(payload: Any) -> Optional[SummaryStatistics]:
    """
    Generic extraction from an analytics JSON object.

    Accepts ``std``, ``stddev`` or ``sd`` for the standard deviation. Returns
    None when none of mean, standard deviation or percentiles is present.
    """
    if not isinstance(payload, dict):
        return None

    mean = _as_float(payload.get('mean'))
    std = None
    for key in ('std', 'stddev', 'sd'):
        if key in payload:
            std = _as_float(payload[key])
            break
    percentiles = _float_mapping(payload.get('percentiles'))

    if mean is None and std is None and not percentiles:
        return None

    return SummaryStatistics(
        mean=mean,
        std=std,
        percentiles=percentiles,
        samples=_float_sequence(payload.get('samples'), "analytics") or None,
    )


def find_forge_binary() -> Optional[Path]:
    """Locate forge: ``FORGE_BIN``, then the sibling release build, then PATH."""
    env_path = os.getenv('FORGE_BIN')
    if env_path and Path(env_path).exists():
        return Path(env_path)

    if RELATIVE_FORGE_BINARY.exists():
        return RELATIVE_FORGE_BINARY

    if shutil.which('forge'):
        return Path('forge')

    return None


class ForgeCliEngine(TargetEngine):
    """Run simulations through the forge command-line tool."""

    def __init__(self, config: Optional[EngineConfig] = None, forge_bin: Optional[Path] = None):
        self.config = config or EngineConfig()
        self._forge_bin = forge_bin or self.config.forge_bin

    @property
    def forge_bin(self) -> Path:
        if self._forge_bin is None:
            self._forge_bin = find_forge_binary()
        if self._forge_bin is None:
            raise EngineExecutionError(
                engine="forge",
                reason="forge binary not found (set FORGE_BIN or pass --binary)",
            )
        return Path(self._forge_bin)

    def simulate(
        self,
        fixture: Fixture,
        seed: int,
        workdir: Optional[Path] = None,
    ) -> SummaryStatistics:
        if workdir is None:
            with tempfile.TemporaryDirectory(prefix="forge_rval_") as temp_dir:
                return self._simulate_in(fixture, seed, Path(temp_dir))
        return self._simulate_in(fixture, seed, Path(workdir))

    def _simulate_in(self, fixture: Fixture, seed: int, workdir: Path) -> SummaryStatistics:
        fixture_path = fixture.write(workdir)
        output_path = fixture_path.with_name(f"{fixture_path.stem}_out.json")

        start_time = time.time()
        result = _run_command(
            [
                str(self.forge_bin), "simulate", str(fixture_path),
                "--seed", str(seed),
                "-o", str(output_path),
            ],
            engine="forge",
            timeout=self.config.timeout_seconds,
            cwd=self.config.working_dir,
        )

        if result.returncode != 0:
            raise EngineExecutionError(
                engine="forge",
                reason=f"Forge exited with error: {result.stderr}\n{result.stdout}",
                exit_code=result.returncode,
            )

        try:
            content = output_path.read_text()
        except OSError as e:
            raise OutputParseError(source="forge", reason=f"Failed to read output file: {e}") from e

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise OutputParseError(source="forge", reason=f"Failed to parse JSON: {e}") from e

        stats = parse_forge_output(payload)
        logger.debug(
            "Forge simulation completed",
            case=fixture.name,
            elapsed=f"{time.time() - start_time:.2f}s",
        )
        return stats


class RscriptValidator(ReferenceValidator):
    """Run R validator scripts through Rscript."""

    def __init__(self, config: Optional[ReferenceConfig] = None):
        self.config = config or ReferenceConfig()

    def script_path(self, validator: str) -> Path:
        return Path(self.config.validators_dir) / validator

    def validate(self, validator: str, request: ReferenceRequest) -> ReferenceResult:
        script = self.script_path(validator)
        if not script.exists():
            raise EngineExecutionError(engine="R", reason=f"R validator not found: {script}")

        start_time = time.time()
        result = _run_command(
            [self.config.rscript_bin, str(script), "--json", request.to_json()],
            engine="R script",
            timeout=self.config.timeout_seconds,
        )
        execution_time = time.time() - start_time

        if result.returncode != 0:
            logger.debug("R validator exited non-zero", validator=validator, exit_code=result.returncode)
            return ReferenceResult(
                validator=validator,
                success=False,
                error=f"R script failed (exit {result.returncode}): {result.stderr}",
                execution_time=execution_time,
            )

        reference = parse_reference_output(result.stdout, validator)
        reference.execution_time = execution_time
        return reference


def parse_reference_output(stdout: str, validator: str) -> ReferenceResult:
    """Parse the JSON document an R validator prints on success."""
    try:
        document = json.loads(stdout)
    except json.JSONDecodeError:
        document = None

    if not isinstance(document, dict) or not isinstance(document.get('success'), bool):
        raise OutputParseError(
            source="R",
            reason=f"Failed to parse R validator JSON: {stdout[:200]}",
        )

    results = document.get('results')
    return ReferenceResult(
        validator=str(document.get('validator', validator)),
        version=str(document.get('version') or ""),
        success=document['success'],
        results=results if isinstance(results, dict) else None,
        error=document.get('error'),
    )


def check_r_available(config: Optional[ReferenceConfig] = None) -> str:
    """
    Check that Rscript runs; returns its version banner.

    Raises:
        EngineExecutionError: If Rscript is not available
    """
    config = config or ReferenceConfig()
    result = _run_command([config.rscript_bin, "--version"], engine="Rscript", timeout=10)

    # Rscript prints its version banner on stderr
    version = (result.stderr or result.stdout).strip()
    if "version" in version or result.returncode == 0:
        return version
    raise EngineExecutionError(engine="Rscript", reason="Rscript not available")


def check_r_package(package: str, config: Optional[ReferenceConfig] = None) -> bool:
    """Check whether an R package can be loaded."""
    config = config or ReferenceConfig()
    result = _run_command(
        [config.rscript_bin, "-e", f"cat(requireNamespace('{package}', quietly=TRUE))"],
        engine="Rscript",
        timeout=config.timeout_seconds,
    )
    return result.stdout.strip() == "TRUE"


def check_forge_available(forge_bin: Union[str, Path]) -> str:
    """
    Check that forge runs; returns its version string.

    Raises:
        EngineExecutionError: If forge fails to report its version
    """
    result = _run_command([str(forge_bin), "--version"], engine="forge", timeout=10)
    if result.returncode != 0:
        raise EngineExecutionError(
            engine="forge",
            reason=f"forge returned non-zero: {result.stderr}",
            exit_code=result.returncode,
        )
    return result.stdout.strip()
