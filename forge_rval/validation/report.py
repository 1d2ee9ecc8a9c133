"""
Console and file reporting for validation runs.
"""

import json
from pathlib import Path
from typing import Union

import pandas as pd

from .pipeline import SuiteReport
from .verdicts import FailVerdict, Verdict, VerdictStatus
from ..core.exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

COLORS = {
    'green': '\033[32m',
    'red': '\033[31m',
    'yellow': '\033[33m',
    'dim': '\033[2m',
    'bold': '\033[1m',
    'reset': '\033[0m',
}

RULE = "=" * 60


def _paint(text: str, color: str, enabled: bool) -> str:
    if not enabled:
        return text
    return f"{COLORS[color]}{text}{COLORS['reset']}"


def format_verdict(verdict: Verdict, color: bool = True) -> str:
    """Render one verdict as console lines."""
    if verdict.status == VerdictStatus.PASS:
        return f"  {_paint('✓', 'green', color)} {verdict.name}"

    if verdict.status == VerdictStatus.FAIL:
        return (
            f"  {_paint('✗', 'red', color)} {_paint(verdict.name, 'red', color)}\n"
            f"      {verdict.message}"
        )

    if verdict.status == VerdictStatus.ERROR:
        return (
            f"  {_paint('✗', 'red', color)} {_paint(verdict.name, 'red', color)} (error)\n"
            f"      {verdict.message}"
        )

    return (
        f"  {_paint('○', 'yellow', color)} {_paint(verdict.name, 'dim', color)} "
        f"({_paint(verdict.message, 'dim', color)})"
    )


def format_summary(report: SuiteReport, color: bool = True) -> str:
    """
    Render the end-of-run summary, e.g.::

        ============================================================
          PASS 12 passed, 1 skipped in 3.41s
        ============================================================
    """
    elapsed = f"{report.elapsed_seconds:.2f}s"
    errors = f", {report.errors} errors" if report.errors else ""

    if report.failed == 0:
        line = (
            f"  {_paint('PASS', 'green', color)} {report.passed} passed{errors}, "
            f"{report.skipped} skipped in {elapsed}"
        )
    else:
        line = (
            f"  {_paint('FAIL', 'red', color)} {report.passed} passed, "
            f"{report.failed} failed{errors}, {report.skipped} skipped in {elapsed}"
        )

    return "\n".join([RULE, line, RULE])


def create_verdict_summary_table(report: SuiteReport) -> pd.DataFrame:
    """Create summary table of verdicts, one row per case."""
    columns = [
        'Name', 'Status', 'Message', 'Statistic',
        'Target', 'Reference', 'Diff_Pct', 'Tolerance_Pct',
    ]
    data = []
    for verdict in report.verdicts:
        row = {
            'Name': verdict.name,
            'Status': verdict.status.value,
            'Message': verdict.message,
            'Statistic': None,
            'Target': None,
            'Reference': None,
            'Diff_Pct': None,
            'Tolerance_Pct': None,
        }
        if isinstance(verdict, FailVerdict) and verdict.comparison is not None:
            comparison = verdict.comparison
            row.update({
                'Statistic': comparison.statistic,
                'Target': comparison.target_value,
                'Reference': comparison.reference_value,
                'Diff_Pct': comparison.difference_pct,
                'Tolerance_Pct': comparison.tolerance * 100,
            })
        data.append(row)

    return pd.DataFrame(data, columns=columns)


def export_report(report: SuiteReport, path: Union[str, Path]) -> Path:
    """
    Write the report as JSON (``.json``) or CSV (``.csv``).

    Raises:
        ConfigurationError: For any other file extension
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in ('.json', '.csv'):
        raise ConfigurationError(
            config_key="output",
            reason=f"unsupported report format '{path.suffix}' (use .json or .csv)",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == '.json':
        with open(path, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)
    else:
        create_verdict_summary_table(report).to_csv(path, index=False)

    logger.info("Report written", path=str(path), format=suffix.lstrip('.'))
    return path
