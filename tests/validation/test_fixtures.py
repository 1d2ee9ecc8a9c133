"""
Tests for distribution -> forge fixture translation.
"""

import math

import pytest
import yaml
from scipy import stats

from forge_rval.core.exceptions import (
    FixtureError,
    MissingParameterError,
    UnsupportedDistributionError,
)
from forge_rval.validation.fixtures import (
    Fixture,
    build_fixture,
    build_mc_formula,
    lognormal_moments,
)
from forge_rval.validation.test_spec import TestSpec


class TestBuildMcFormula:
    """Test MC.* formula construction."""

    def test_normal(self):
        assert build_mc_formula("normal", {'mean': 100, 'sd': 15}) == "=MC.Normal(100, 15)"

    def test_uniform(self):
        assert build_mc_formula("uniform", {'min': 0, 'max': 1}) == "=MC.Uniform(0, 1)"

    def test_triangular(self):
        formula = build_mc_formula("triangular", {'min': 1, 'mode': 2.5, 'max': 4})
        assert formula == "=MC.Triangular(1, 2.5, 4)"

    def test_pert_has_no_shape_argument(self):
        formula = build_mc_formula("pert", {'min': 10, 'mode': 20, 'max': 40, 'shape': 6})
        assert formula == "=MC.PERT(10, 20, 40)"

    def test_name_is_case_insensitive(self):
        assert build_mc_formula("Normal", {'mean': 1, 'sd': 2}) == "=MC.Normal(1, 2)"
        assert build_mc_formula("PERT", {'min': 1, 'mode': 2, 'max': 3}) == "=MC.PERT(1, 2, 3)"

    def test_lognormal_converts_log_scale_parameters(self):
        formula = build_mc_formula("lognormal", {'meanlog': 0.0, 'sdlog': 0.5})
        mean, stdev = lognormal_moments(0.0, 0.5)
        assert formula == f"=MC.Lognormal({mean!r}, {stdev!r})"

    def test_exponential_not_supported(self):
        with pytest.raises(UnsupportedDistributionError) as exc_info:
            build_mc_formula("exponential", {'rate': 1.0})
        assert exc_info.value.message == "Exponential distribution not supported by forge"

    def test_unknown_distribution(self):
        with pytest.raises(UnsupportedDistributionError) as exc_info:
            build_mc_formula("weibull", {})
        assert exc_info.value.message == "Unsupported distribution: weibull"

    def test_missing_parameter(self):
        with pytest.raises(MissingParameterError) as exc_info:
            build_mc_formula("normal", {'mean': 100})
        assert exc_info.value.message == "Missing 'sd' param"
        assert exc_info.value.parameter == "sd"

    def test_errors_are_fixture_errors(self):
        with pytest.raises(FixtureError):
            build_mc_formula("gamma", {})


class TestLognormalMoments:
    """Test the log-scale to natural-scale conversion."""

    @pytest.mark.parametrize("meanlog,sdlog", [(0.0, 0.5), (1.0, 0.25), (-0.5, 1.2)])
    def test_matches_scipy(self, meanlog, sdlog):
        dist = stats.lognorm(s=sdlog, scale=math.exp(meanlog))
        mean, stdev = lognormal_moments(meanlog, sdlog)

        assert mean == pytest.approx(dist.mean(), rel=1e-12)
        assert stdev == pytest.approx(dist.std(), rel=1e-12)

    def test_zero_sdlog_is_degenerate(self):
        mean, stdev = lognormal_moments(2.0, 0.0)
        assert mean == pytest.approx(math.exp(2.0))
        assert stdev == 0.0


class TestBuildFixture:
    """Test the forge simulation document."""

    @pytest.fixture
    def fixture(self):
        spec = TestSpec(
            name="normal_basic",
            distribution="normal",
            params={'mean': 100, 'sd': 15},
            seed=7,
            iterations=5000,
        )
        return build_fixture(spec)

    def test_fixture_fields(self, fixture):
        assert isinstance(fixture, Fixture)
        assert fixture.formula == "=MC.Normal(100, 15)"
        assert fixture.seed == 7
        assert fixture.iterations == 5000

    def test_document_layout(self, fixture):
        document = yaml.safe_load(fixture.to_yaml())

        assert document['_forge_version'] == "5.0.0"
        monte_carlo = document['monte_carlo']
        assert monte_carlo['enabled'] is True
        assert monte_carlo['iterations'] == 5000
        assert monte_carlo['seed'] == 7
        assert monte_carlo['sampling'] == "monte_carlo"
        assert monte_carlo['outputs'] == [
            {'variable': 'test_output', 'percentiles': [5, 10, 25, 50, 75, 90, 95]}
        ]
        assert document['scalars'] == {
            'test_output': {'value': None, 'formula': "=MC.Normal(100, 15)"}
        }

    def test_write_creates_unique_files(self, fixture, tmp_path):
        first = fixture.write(tmp_path)
        second = fixture.write(tmp_path)

        assert first != second
        assert first.parent == tmp_path
        assert first.suffix == ".yaml"
        assert yaml.safe_load(first.read_text()) == fixture.document

    def test_write_sanitises_name(self, tmp_path):
        fixture = Fixture(name="a/b c", formula="=MC.Normal(0, 1)", iterations=10, seed=1)
        path = fixture.write(tmp_path)

        assert path.parent == tmp_path
        assert path.name.startswith("a_b_c_")

    def test_unsupported_spec_raises(self):
        spec = TestSpec(name="exp", distribution="exponential", params={'rate': 2})
        with pytest.raises(UnsupportedDistributionError):
            build_fixture(spec)
