"""
Tests for the validation pipeline.

The forge engine and the R validator are replaced with in-memory fakes
from conftest.py, so each case exercises the verdict logic only.
"""

import json
import subprocess
import time
from datetime import datetime
from unittest.mock import patch

import pytest

from forge_rval.config.settings import ForgeRvalConfig
from forge_rval.core.exceptions import EngineExecutionError, OutputParseError
from forge_rval.validation.comparison import SummaryStatistics
from forge_rval.validation.engines import ReferenceResult, RscriptValidator
from forge_rval.validation.pipeline import (
    FAIL_FAST_SKIP,
    NOT_MONTE_CARLO,
    SuiteReport,
    ValidationPipeline,
    run_test_case,
)
from forge_rval.validation.test_spec import TestSpec
from forge_rval.validation.tolerances import ToleranceSpec
from forge_rval.validation.verdicts import (
    ErrorVerdict,
    FailVerdict,
    PassVerdict,
    SkipVerdict,
    VerdictStatus,
)


def normal(name, **kwargs):
    return TestSpec(name=name, distribution="normal", params={'mean': 100, 'sd': 15}, **kwargs)


class TestRunTestCase:
    """Test the verdict for a single case."""

    def test_pass(self, normal_spec, matching_stats, r_normal_result, make_target, make_reference, config):
        verdict = run_test_case(
            normal_spec, make_target(default=matching_stats), make_reference(default=r_normal_result), config
        )

        assert verdict == PassVerdict("normal_basic", "mean=99.80 std=15.02 (within tolerance)")

    def test_mean_mismatch_fails(self, normal_spec, r_normal_result, make_target, make_reference, config):
        target = make_target(default=SummaryStatistics(mean=103.0, std=15.0))

        verdict = run_test_case(normal_spec, target, make_reference(default=r_normal_result), config)

        assert isinstance(verdict, FailVerdict)
        assert verdict.message == "Mean mismatch: forge=103.0000, R=100.0000 (diff=3.00%, tol=1.0%)"
        assert verdict.comparison.statistic == "Mean"

    def test_no_distribution_skips(self, make_target, make_reference, config):
        target = make_target()
        spec = TestSpec(name="npv_basic", params={'rate': 0.1})

        verdict = run_test_case(spec, target, make_reference(), config)

        assert verdict == SkipVerdict("npv_basic", NOT_MONTE_CARLO)
        assert target.calls == []

    def test_unsupported_distribution_skips(self, make_target, make_reference, config):
        target = make_target()
        reference = make_reference()
        spec = TestSpec(name="exp", distribution="exponential", params={'rate': 1})

        verdict = run_test_case(spec, target, reference, config)

        assert verdict == SkipVerdict("exp", "Cannot build formula: Exponential distribution not supported by forge")
        assert target.calls == []
        assert reference.calls == []

    def test_missing_parameter_skips(self, make_target, make_reference, config):
        spec = TestSpec(name="n", distribution="normal", params={'mean': 1})

        verdict = run_test_case(spec, make_target(), make_reference(), config)

        assert verdict == SkipVerdict("n", "Cannot build formula: Missing 'sd' param")

    def test_forge_failure_errors(self, normal_spec, make_target, make_reference, config):
        target = make_target(default=EngineExecutionError(engine="forge", reason="Forge exited with error: bad"))
        reference = make_reference()

        verdict = run_test_case(normal_spec, target, reference, config)

        assert verdict == ErrorVerdict("normal_basic", "Forge failed: Forge exited with error: bad")
        assert reference.calls == []

    def test_forge_timeout_errors(self, normal_spec, make_target, make_reference, config):
        timeout = EngineExecutionError(engine="forge", reason="forge timed out after 30000ms", timed_out=True)

        verdict = run_test_case(normal_spec, make_target(default=timeout), make_reference(), config)

        assert verdict.status == VerdictStatus.ERROR
        assert verdict.message == "Forge failed: forge timed out after 30000ms"

    def test_forge_output_parse_errors(self, normal_spec, make_target, make_reference, config):
        target = make_target(default=OutputParseError(source="forge", reason="Missing std_dev"))

        verdict = run_test_case(normal_spec, target, make_reference(), config)

        assert verdict.message == "Forge failed: Missing std_dev"

    def test_r_validator_cannot_run(self, normal_spec, matching_stats, make_target, make_reference, config):
        reference = make_reference(default=EngineExecutionError(engine="R", reason="R validator not found: x.R"))

        verdict = run_test_case(normal_spec, make_target(default=matching_stats), reference, config)

        assert verdict == ErrorVerdict("normal_basic", "R validator failed: R validator not found: x.R")

    def test_r_reports_failure(self, normal_spec, matching_stats, make_target, make_reference, config):
        failed = ReferenceResult(validator="v.R", success=False, error="package 'triangle' missing")

        verdict = run_test_case(normal_spec, make_target(default=matching_stats), make_reference(default=failed), config)

        assert verdict == ErrorVerdict("normal_basic", "R returned error: package 'triangle' missing")

    def test_r_failure_without_message(self, normal_spec, matching_stats, make_target, make_reference, config):
        failed = ReferenceResult(validator="v.R", success=False)

        verdict = run_test_case(normal_spec, make_target(default=matching_stats), make_reference(default=failed), config)

        assert verdict.message == "R returned error: Unknown"

    def test_r_statistics_missing(self, normal_spec, matching_stats, make_target, make_reference, config):
        incomplete = ReferenceResult(validator="v.R", success=True, results={'mean': 100.0})

        verdict = run_test_case(
            normal_spec, make_target(default=matching_stats), make_reference(default=incomplete), config
        )

        assert verdict == ErrorVerdict("normal_basic", "Failed to parse R statistics")

    def test_non_finite_reference_samples_error(self, normal_spec, matching_stats, make_target,
                                                make_reference, make_reference_result, config):
        reference = make_reference(default=make_reference_result(samples=[99.0, float("nan"), 101.0]))

        verdict = run_test_case(normal_spec, make_target(default=matching_stats), reference, config)

        assert verdict == ErrorVerdict(
            "normal_basic", "Failed to parse R statistics: Non-finite value in samples"
        )

    @patch('subprocess.run')
    def test_r_nonzero_exit_is_error_even_with_parseable_stdout(self, mock_run, normal_spec, matching_stats,
                                                                 make_target, config, tmp_path):
        """A crashed R script is an Error even if its partial stdout looks like a success."""
        validators_dir = tmp_path / "validators"
        validators_dir.mkdir()
        (validators_dir / "monte_carlo_validator.R").write_text("# validator\n")
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=1,
            stdout=json.dumps({'success': True, 'results': {'mean': 100, 'std': 15}}),
            stderr="Execution halted",
        )
        config.update(**{'reference.validators_dir': validators_dir})

        verdict = run_test_case(
            normal_spec, make_target(default=matching_stats), RscriptValidator(config.reference), config
        )

        assert isinstance(verdict, ErrorVerdict)
        assert verdict.message.startswith("R returned error: R script failed (exit 1)")

    def test_target_statistics_missing(self, normal_spec, r_normal_result, make_target, make_reference, config):
        target = make_target(default=SummaryStatistics(mean=100.0))

        verdict = run_test_case(normal_spec, target, make_reference(default=r_normal_result), config)

        assert verdict == ErrorVerdict("normal_basic", "Missing std in forge statistics")

    def test_unexpected_exception_errors(self, normal_spec, make_target, make_reference, config):
        target = make_target(default=RuntimeError("kaboom"))

        verdict = run_test_case(normal_spec, target, make_reference(), config)

        assert verdict == ErrorVerdict("normal_basic", "Unexpected error: kaboom")

    def test_request_carries_spec_values(self, make_target, make_reference, matching_stats,
                                         r_normal_result, config):
        spec = normal("n", seed=9, iterations=500)
        reference = make_reference(default=r_normal_result)

        run_test_case(spec, make_target(default=matching_stats), reference, config)

        validator, request = reference.calls[0]
        assert validator == "monte_carlo_validator.R"
        assert request.distribution == "normal"
        assert request.params == {'mean': 100.0, 'sd': 15.0}
        assert request.seed == 9
        assert request.iterations == 500

    def test_spec_validator_is_used(self, make_target, make_reference, matching_stats, r_normal_result, config):
        reference = make_reference(default=r_normal_result)

        run_test_case(normal("n", r_validator="custom.R"), make_target(default=matching_stats), reference, config)

        assert reference.calls[0][0] == "custom.R"

    def test_configured_default_validator(self, make_target, make_reference, matching_stats,
                                          r_normal_result, tmp_path):
        config = ForgeRvalConfig(reference={'default_validator': 'other.R'}, run={'temp_dir': tmp_path})
        reference = make_reference(default=r_normal_result)

        run_test_case(normal("n"), make_target(default=matching_stats), reference, config)

        assert reference.calls[0][0] == "other.R"

    def test_workdir_under_configured_temp_dir(self, normal_spec, matching_stats, r_normal_result,
                                               make_target, make_reference, config, tmp_path):
        target = make_target(default=matching_stats)

        run_test_case(normal_spec, target, make_reference(default=r_normal_result), config)

        workdir = target.workdirs[0]
        assert workdir.parent == tmp_path
        assert not workdir.exists()

    def test_case_tolerance_override(self, r_normal_result, make_target, make_reference, config):
        spec = TestSpec(
            name="loose",
            distribution="normal",
            params={'mean': 100, 'sd': 15},
            tolerance={'mean': 0.05},
        )
        target = make_target(default=SummaryStatistics(mean=103.0, std=15.0))

        verdict = run_test_case(spec, target, make_reference(default=r_normal_result), config)

        assert verdict.status == VerdictStatus.PASS


class TestPercentileLeniency:
    """Percentile checks under the deterministic preset."""

    @pytest.fixture
    def spec(self):
        return TestSpec(
            name="det",
            distribution="normal",
            params={'mean': 100, 'sd': 15},
            default_tolerance=ToleranceSpec.deterministic(),
        )

    @pytest.fixture
    def target(self, make_target):
        """Exact mean and std, P95 off by 5%."""
        return make_target(default=SummaryStatistics(
            mean=100.0, std=15.0, percentiles={'5': 75.3, '50': 100.0, '95': 130.9}
        ))

    def test_lenient_percentiles_pass(self, spec, target, make_reference, r_normal_result, config):
        verdict = run_test_case(spec, target, make_reference(default=r_normal_result), config)
        assert verdict.status == VerdictStatus.PASS

    def test_strict_percentiles_fail(self, spec, target, make_reference, r_normal_result, tmp_path):
        config = ForgeRvalConfig(run={'temp_dir': tmp_path, 'lenient_percentiles': False})

        verdict = run_test_case(spec, target, make_reference(default=r_normal_result), config)

        assert verdict.status == VerdictStatus.FAIL
        assert verdict.comparison.statistic == "P95"


class TestValidationPipeline:
    """Test whole-suite runs."""

    @pytest.fixture
    def specs(self):
        return [
            normal("a"),
            TestSpec(name="b"),
            normal("c"),
            TestSpec(name="d", distribution="exponential", params={'rate': 1}),
        ]

    def test_verdicts_in_input_order(self, specs, matching_stats, r_normal_result,
                                     make_target, make_reference, config):
        pipeline = ValidationPipeline(make_target(default=matching_stats), make_reference(default=r_normal_result), config)

        report = pipeline.run(specs)

        assert [v.name for v in report.verdicts] == ["a", "b", "c", "d"]
        assert [v.status for v in report.verdicts] == [
            VerdictStatus.PASS, VerdictStatus.SKIP, VerdictStatus.PASS, VerdictStatus.SKIP,
        ]
        assert (report.total, report.passed, report.skipped) == (4, 2, 2)

    def test_parallel_preserves_input_order(self, matching_stats, r_normal_result,
                                            make_target, make_reference, tmp_path):
        def slow_first(fixture, seed):
            time.sleep(0.2)
            return matching_stats

        names = [f"case_{i}" for i in range(6)]
        target = make_target(results={'case_0': slow_first}, default=matching_stats)
        config = ForgeRvalConfig(run={'temp_dir': tmp_path, 'max_workers': 4})
        pipeline = ValidationPipeline(target, make_reference(default=r_normal_result), config)

        report = pipeline.run([normal(name) for name in names])

        assert [v.name for v in report.verdicts] == names
        assert report.passed == 6
        assert sorted(target.calls) == names

    def test_parallel_isolates_failures(self, matching_stats, r_normal_result,
                                        make_target, make_reference, tmp_path):
        target = make_target(results={'b': RuntimeError("boom")}, default=matching_stats)
        config = ForgeRvalConfig(run={'temp_dir': tmp_path, 'max_workers': 3})
        pipeline = ValidationPipeline(target, make_reference(default=r_normal_result), config)

        report = pipeline.run([normal("a"), normal("b"), normal("c")])

        assert [v.status for v in report.verdicts] == [
            VerdictStatus.PASS, VerdictStatus.ERROR, VerdictStatus.PASS,
        ]

    def test_fail_fast_skips_remaining(self, matching_stats, r_normal_result,
                                       make_target, make_reference, tmp_path):
        target = make_target(
            results={'a': SummaryStatistics(mean=150.0, std=15.0)},
            default=matching_stats,
        )
        config = ForgeRvalConfig(run={'temp_dir': tmp_path, 'fail_fast': True})
        pipeline = ValidationPipeline(target, make_reference(default=r_normal_result), config)

        report = pipeline.run([normal("a"), normal("b"), normal("c")])

        assert report.verdicts[0].status == VerdictStatus.FAIL
        assert report.verdicts[1:] == [SkipVerdict("b", FAIL_FAST_SKIP), SkipVerdict("c", FAIL_FAST_SKIP)]
        assert target.calls == ["a"]

    def test_fail_fast_ignores_errors(self, matching_stats, r_normal_result,
                                      make_target, make_reference, tmp_path):
        target = make_target(results={'a': RuntimeError("boom")}, default=matching_stats)
        config = ForgeRvalConfig(run={'temp_dir': tmp_path, 'fail_fast': True})
        pipeline = ValidationPipeline(target, make_reference(default=r_normal_result), config)

        report = pipeline.run([normal("a"), normal("b")])

        assert [v.status for v in report.verdicts] == [VerdictStatus.ERROR, VerdictStatus.PASS]

    def test_start_time_is_taken_before_cases_run(self, matching_stats, r_normal_result,
                                                  make_target, make_reference, config):
        case_times = []

        def timed(fixture, seed):
            case_times.append(datetime.now())
            time.sleep(0.01)
            return matching_stats

        target = make_target(default=timed)
        pipeline = ValidationPipeline(target, make_reference(default=r_normal_result), config)

        report = pipeline.run([normal("a"), normal("b")])

        assert report.start_time <= case_times[0]
        assert report.to_dict()['start_time'] == report.start_time.isoformat()

    def test_empty_run(self, make_target, make_reference, config):
        report = ValidationPipeline(make_target(), make_reference(), config).run([])

        assert report.total == 0
        assert report.exit_code() == 0

    def test_run_case(self, normal_spec, matching_stats, r_normal_result, make_target, make_reference, config):
        pipeline = ValidationPipeline(make_target(default=matching_stats), make_reference(default=r_normal_result), config)
        assert pipeline.run_case(normal_spec).status == VerdictStatus.PASS


class TestSuiteReport:
    """Test aggregation and the exit-status gate."""

    @pytest.fixture
    def report(self):
        return SuiteReport(verdicts=[
            PassVerdict("a", "ok"),
            ErrorVerdict("b", "Forge failed: x"),
            SkipVerdict("c", NOT_MONTE_CARLO),
        ], elapsed_seconds=1.5)

    def test_counts(self, report):
        assert (report.total, report.passed, report.failed, report.errors, report.skipped) == (3, 1, 0, 1, 1)

    def test_errors_do_not_fail_by_default(self, report):
        assert report.is_successful()
        assert report.exit_code() == 0

    def test_errors_fail_when_gated(self, report):
        assert not report.is_successful(fail_on_error=True)
        assert report.exit_code(fail_on_error=True) == 1

    def test_failures_always_fail(self):
        report = SuiteReport(verdicts=[FailVerdict("a", "Mean mismatch")])
        assert report.exit_code() == 1
        assert report.exit_code(fail_on_error=True) == 1

    def test_to_dict_is_json_serialisable(self, report):
        document = json.loads(json.dumps(report.to_dict()))

        assert document['total'] == 3
        assert document['errors'] == 1
        assert document['verdicts'][1] == {'status': 'error', 'name': 'b', 'message': 'Forge failed: x'}
