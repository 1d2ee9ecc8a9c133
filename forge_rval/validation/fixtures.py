"""
Translation of a distribution test case into a forge simulation fixture.

R parameterises distributions the way its ``r*`` functions do (e.g. lognormal
by ``meanlog``/``sdlog``), while forge's ``MC.*`` formulas take their own
parameters. This module builds the forge formula for a case and wraps it in
the YAML document ``forge simulate`` consumes.
"""

import math
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

import yaml

from ..core.exceptions import MissingParameterError, UnsupportedDistributionError
from ..utils.logging import get_logger

logger = get_logger(__name__)

FORGE_VERSION = "5.0.0"
OUTPUT_VARIABLE = "test_output"
FIXTURE_PERCENTILES = [5, 10, 25, 50, 75, 90, 95]

# Parameter order for each MC.* function
_DISTRIBUTION_FORMULAS = {
    'normal': ('MC.Normal', ('mean', 'sd')),
    'uniform': ('MC.Uniform', ('min', 'max')),
    'triangular': ('MC.Triangular', ('min', 'mode', 'max')),
    'pert': ('MC.PERT', ('min', 'mode', 'max')),
}


def _format_number(value: float) -> str:
    """Shortest representation, without a trailing '.0' for integral values."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _require_params(
    distribution: str, params: Mapping[str, float], names: Tuple[str, ...]
) -> Tuple[float, ...]:
    values = []
    for name in names:
        if name not in params:
            raise MissingParameterError(distribution=distribution, parameter=name)
        values.append(float(params[name]))
    return tuple(values)


def lognormal_moments(meanlog: float, sdlog: float) -> Tuple[float, float]:
    """
    Convert log-scale lognormal parameters to the distribution's mean and stdev.

    mean     = exp(meanlog + sdlog^2 / 2)
    variance = (exp(sdlog^2) - 1) * exp(2 * meanlog + sdlog^2)
    """
    mean = math.exp(meanlog + sdlog * sdlog / 2.0)
    variance = math.expm1(sdlog * sdlog) * math.exp(2.0 * meanlog + sdlog * sdlog)
    return mean, math.sqrt(variance)


def build_mc_formula(distribution: str, params: Mapping[str, float]) -> str:
    """
    Build the forge ``MC.*`` formula for a distribution.

    Args:
        distribution: Distribution name (case-insensitive)
        params: Parameters using R's naming

    Returns:
        Formula string, e.g. ``=MC.Normal(100, 15)``

    Raises:
        UnsupportedDistributionError: If forge has no equivalent function
        MissingParameterError: If a required parameter is absent
    """
    name = distribution.lower()

    if name == 'lognormal':
        meanlog, sdlog = _require_params(distribution, params, ('meanlog', 'sdlog'))
        mean, stdev = lognormal_moments(meanlog, sdlog)
        return f"=MC.Lognormal({_format_number(mean)}, {_format_number(stdev)})"

    if name == 'exponential':
        raise UnsupportedDistributionError(
            distribution=distribution,
            reason="Exponential distribution not supported by forge",
        )

    if name not in _DISTRIBUTION_FORMULAS:
        raise UnsupportedDistributionError(distribution=distribution)

    # MC.PERT has no shape argument; forge always uses the standard shape
    function, names = _DISTRIBUTION_FORMULAS[name]
    values = _require_params(distribution, params, names)
    return f"={function}({', '.join(_format_number(v) for v in values)})"


@dataclass(frozen=True)
class Fixture:
    """A forge simulation document for one case."""

    name: str
    formula: str
    iterations: int
    seed: int

    @property
    def document(self) -> Dict[str, Any]:
        return {
            '_forge_version': FORGE_VERSION,
            'monte_carlo': {
                'enabled': True,
                'iterations': self.iterations,
                'sampling': 'monte_carlo',
                'seed': self.seed,
                'outputs': [
                    {'variable': OUTPUT_VARIABLE, 'percentiles': list(FIXTURE_PERCENTILES)},
                ],
            },
            'scalars': {
                OUTPUT_VARIABLE: {'value': None, 'formula': self.formula},
            },
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.document, default_flow_style=False, sort_keys=False)

    def write(self, directory: Union[str, Path]) -> Path:
        """Write the fixture to a uniquely named file inside ``directory``."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        prefix = re.sub(r'[^A-Za-z0-9_.-]+', '_', self.name) + '_'
        fd, path = tempfile.mkstemp(prefix=prefix, suffix='.yaml', dir=directory)
        with os.fdopen(fd, 'w') as f:
            f.write(self.to_yaml())

        logger.debug("Fixture written", case=self.name, path=path)
        return Path(path)


def build_fixture(spec) -> Fixture:
    """Build the forge fixture for a Monte Carlo test case."""
    formula = build_mc_formula(spec.distribution, spec.params)
    return Fixture(
        name=spec.name,
        formula=formula,
        iterations=spec.iterations,
        seed=spec.seed,
    )
