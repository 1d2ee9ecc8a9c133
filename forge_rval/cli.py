#!/usr/bin/env python3
"""
Command-line entry point for forge-rval.

Usage:
    forge-rval --help
    forge-rval --all                              # Run every test in tests/analytics
    forge-rval --all -t specs/ -b ./forge         # Custom tests dir and forge binary
    forge-rval --all -j 4 --fail-on-error         # Parallel, errors fail the run
    forge-rval --all -o results.json              # Also export the report

Exit status: 0 when the run passes, 1 when the gate fails, 2 when the run
could not start (configuration, missing forge or R).
"""

import argparse
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from . import __version__
from .config.settings import ForgeRvalConfig
from .core.exceptions import ConfigurationError, EngineExecutionError, ForgeRvalError
from .utils.logging import get_logger, setup_logging
from .validation.engines import (
    ForgeCliEngine,
    RscriptValidator,
    check_r_available,
    find_forge_binary,
)
from .validation.pipeline import ValidationPipeline
from .validation.report import export_report, format_summary, format_verdict
from .validation.test_spec import load_test_directory

logger = get_logger(__name__)

BOLD = '\033[1m'
CYAN = '\033[36m'
RESET = '\033[0m'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forge-rval",
        description="E2E validation of forge analytics against R",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  forge-rval --all
  forge-rval --all --tests tests/analytics --binary ../forge/target/release/forge
  forge-rval --all --jobs 4 --output results.csv
        """
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--all', action='store_true',
                        help='Run all tests')
    parser.add_argument('--tests', '-t', type=Path, default=Path('tests/analytics'),
                        help='Path to test specs directory (default: tests/analytics)')
    parser.add_argument('--binary', '-b', type=Path,
                        help='Path to forge binary (or set FORGE_BIN)')
    parser.add_argument('--validators', type=Path,
                        help='Path to R validators directory (default: validators/r)')
    parser.add_argument('--config', '-c', type=Path,
                        help='YAML configuration file')
    parser.add_argument('--jobs', '-j', type=int,
                        help='Number of test cases to run in parallel')
    parser.add_argument('--fail-on-error', action='store_true',
                        help='Treat errored cases as a failed run')
    parser.add_argument('--fail-fast', action='store_true',
                        help='Stop after the first failing case (sequential runs only)')
    parser.add_argument('--no-color', action='store_true',
                        help='Disable colored output')
    parser.add_argument('--output', '-o', type=Path,
                        help='Export the report (.json or .csv)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')

    return parser


def load_config(args: argparse.Namespace) -> ForgeRvalConfig:
    """Build the run configuration from file, environment and flags."""
    try:
        config = ForgeRvalConfig(config_file=args.config) if args.config else ForgeRvalConfig()
    except FileNotFoundError as e:
        raise ConfigurationError(config_key="config", reason=str(e)) from e
    except ValidationError as e:
        raise ConfigurationError(reason=str(e)) from e

    overrides = {}
    if args.binary is not None:
        overrides['engine.forge_bin'] = args.binary
    if args.validators is not None:
        overrides['reference.validators_dir'] = args.validators
    if args.jobs is not None:
        overrides['run.max_workers'] = args.jobs
    if args.fail_on_error:
        overrides['run.fail_on_error'] = True
    if args.fail_fast:
        overrides['run.fail_fast'] = True

    try:
        config.update(**overrides)
    except ValidationError as e:
        raise ConfigurationError(reason=str(e)) from e

    return config


def resolve_forge_binary(config: ForgeRvalConfig) -> Path:
    forge_bin = config.engine.forge_bin or find_forge_binary()
    if forge_bin is None:
        raise ConfigurationError(
            config_key="engine.forge_bin",
            reason="Forge binary not found. Set FORGE_BIN or use --binary",
        )

    forge_bin = Path(forge_bin)
    if not forge_bin.exists() and shutil.which(str(forge_bin)) is None:
        raise ConfigurationError(
            config_key="engine.forge_bin",
            reason=f"Forge binary not found: {forge_bin}",
        )
    return forge_bin


def run(args: argparse.Namespace) -> int:
    config = load_config(args)
    setup_logging(
        level="DEBUG" if args.verbose else config.logging.level,
        console=config.logging.console_logging,
        file_path=config.logging.log_file if config.logging.file_logging else None,
    )
    color = not args.no_color and sys.stdout.isatty()

    forge_bin = resolve_forge_binary(config)
    config.engine.forge_bin = forge_bin

    try:
        r_version = check_r_available(config.reference)
    except EngineExecutionError:
        raise EngineExecutionError(
            engine="Rscript",
            reason="R (Rscript) not found. Install with:\n"
                   "  macOS: brew install r\n"
                   "  Ubuntu: apt install r-base",
        ) from None

    title = f"{BOLD}forge-rval{RESET}" if color else "forge-rval"
    print(title)
    print(f"  Forge: {forge_bin}")
    print(f"  R: {r_version}")
    print(f"  Tests: {args.tests}")
    print(f"  Validators: {config.reference.validators_dir}")
    print()

    specs = load_test_directory(args.tests, default_tolerance=config.tolerance.default_tolerance())
    print(f"Loaded {len(specs)} tests")
    print()

    if not args.all:
        print("Use --all to run all tests")
        return 0

    print(f"{CYAN}Running tests...{RESET}" if color else "Running tests...")

    pipeline = ValidationPipeline(
        ForgeCliEngine(config.engine),
        RscriptValidator(config.reference),
        config,
    )
    report = pipeline.run(specs)

    for verdict in report.verdicts:
        print(format_verdict(verdict, color=color))
    print()
    print(format_summary(report, color=color))

    if args.output:
        output_path = export_report(report, args.output)
        print(f"\nReport saved to: {output_path}")

    return report.exit_code(config.run.fail_on_error)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI interface."""
    args = build_parser().parse_args(argv)

    try:
        return run(args)
    except ForgeRvalError as e:
        logger.debug("Run aborted", error_code=e.error_code)
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
