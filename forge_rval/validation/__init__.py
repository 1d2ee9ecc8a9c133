"""
Cross-validation of forge Monte Carlo output against R.

Key Components:
    - tolerances: Tolerance model and presets
    - statistical_tests: Two-sample Kolmogorov-Smirnov test
    - comparison: Summary-statistic comparison
    - test_spec: YAML test-suite loading
    - fixtures: Distribution -> forge fixture translation
    - engines: forge CLI and Rscript collaborators
    - pipeline: Per-case state machine and suite orchestration
    - report: Console and file reporting

Usage:
    import forge_rval.validation as fv

    specs = fv.load_test_directory("tests/analytics")
    pipeline = fv.ValidationPipeline(fv.ForgeCliEngine(), fv.RscriptValidator())
    report = pipeline.run(specs)
    print(fv.format_summary(report))
"""

from .tolerances import (
    EPSILON,
    ToleranceSpec,
    ToleranceOverride,
    within_tolerance,
    relative_difference,
)

from .statistical_tests import (
    KSTestResult,
    TestResult,
    ks_statistic,
    ks_pvalue,
    ks_test,
)

from .comparison import (
    SummaryStatistics,
    PercentilePolicy,
    StatisticComparison,
    ComparisonOutcome,
    compare_scalar,
    compare_percentile,
    compare_distributions,
    compare_summary_statistics,
)

from .test_spec import (
    ExpectedValues,
    TestSpec,
    TestSuite,
    load_test_suite,
    load_test_suite_file,
    load_test_directory,
)

from .fixtures import (
    Fixture,
    build_fixture,
    build_mc_formula,
    lognormal_moments,
)

from .verdicts import (
    VerdictStatus,
    Verdict,
    PassVerdict,
    FailVerdict,
    ErrorVerdict,
    SkipVerdict,
)

from .engines import (
    TargetEngine,
    ReferenceValidator,
    ReferenceRequest,
    ReferenceResult,
    ForgeCliEngine,
    RscriptValidator,
    parse_forge_output,
    parse_reference_statistics,
    extract_summary_statistics,
    check_r_available,
    check_r_package,
    check_forge_available,
    find_forge_binary,
)

from .pipeline import (
    SuiteReport,
    ValidationPipeline,
    run_test_case,
)

from .report import (
    format_verdict,
    format_summary,
    create_verdict_summary_table,
    export_report,
)

__all__ = [
    # Tolerances
    "EPSILON",
    "ToleranceSpec",
    "ToleranceOverride",
    "within_tolerance",
    "relative_difference",
    # Distributional tests
    "KSTestResult",
    "TestResult",
    "ks_statistic",
    "ks_pvalue",
    "ks_test",
    # Comparison
    "SummaryStatistics",
    "PercentilePolicy",
    "StatisticComparison",
    "ComparisonOutcome",
    "compare_scalar",
    "compare_percentile",
    "compare_distributions",
    "compare_summary_statistics",
    # Test specs
    "ExpectedValues",
    "TestSpec",
    "TestSuite",
    "load_test_suite",
    "load_test_suite_file",
    "load_test_directory",
    # Fixtures
    "Fixture",
    "build_fixture",
    "build_mc_formula",
    "lognormal_moments",
    # Verdicts
    "VerdictStatus",
    "Verdict",
    "PassVerdict",
    "FailVerdict",
    "ErrorVerdict",
    "SkipVerdict",
    # Engines
    "TargetEngine",
    "ReferenceValidator",
    "ReferenceRequest",
    "ReferenceResult",
    "ForgeCliEngine",
    "RscriptValidator",
    "parse_forge_output",
    "parse_reference_statistics",
    "extract_summary_statistics",
    "check_r_available",
    "check_r_package",
    "check_forge_available",
    "find_forge_binary",
    # Pipeline
    "SuiteReport",
    "ValidationPipeline",
    "run_test_case",
    # Reporting
    "format_verdict",
    "format_summary",
    "create_verdict_summary_table",
    "export_report",
]
