#!/usr/bin/env python3
"""
Command-line interface for the policywindow analysis.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .analysis.intervention_analyzer import InterventionAnalysisResults, InterventionAnalyzer
from .config import AnalysisConfig, load_config, load_config_from_file, save_config_to_file
from .core.errors import PolicyWindowError
from .utils.data_processor import DataProcessor, ProcessingConfig


def main(argv: Optional[list] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="policywindow: forecast-based policy window significance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Test the August 2022 window on daily NO2
  policywindow test --data no2.csv --value-column daily_avg --policy-start 2022-08-01

  # Test and scan every month-long window as a sensitivity check
  policywindow scan --data ozone_data-91-23.csv --config ozone.json

  # Generate configuration template
  policywindow config create --output analysis_config.json
        """
    )

    # Global arguments
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress output except errors")
    parser.add_argument("--log-file", help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (("test", "Test the policy window only"),
                            ("scan", "Test the policy window and run the sensitivity scan")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--data", "-d", required=True, help="CSV file with a daily series")
        sub.add_argument("--config", "-c", help="Configuration file path")
        sub.add_argument("--date-column", default="date_local", help="Date column name")
        sub.add_argument("--value-column", default="daily_avg", help="Value column name")
        sub.add_argument("--policy-start", help="Policy window start (YYYY-MM-DD)")
        sub.add_argument("--window-length", type=int, help="Policy window length in days")
        sub.add_argument("--mode", choices=["holdout", "indicator"], help="Fitting mode")
        sub.add_argument("--transform", help="identity, log or log_offset(c)")
        sub.add_argument("--ci-multiplier", type=float, help="Interval half-width in standard errors")
        sub.add_argument("--output", "-o", help="Output directory")
    subparsers.choices["scan"].add_argument("--max-workers", type=int, help="Threads for the scan")

    # Configuration management commands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Configuration operations")

    create_config_parser = config_subparsers.add_parser("create", help="Create configuration template")
    create_config_parser.add_argument("--output", "-o", default="analysis_config.json",
                                      help="Output configuration file path")

    validate_config_parser = config_subparsers.add_parser("validate", help="Validate configuration file")
    validate_config_parser.add_argument("config_file", help="Configuration file to validate")

    show_config_parser = config_subparsers.add_parser("show", help="Show current configuration")
    show_config_parser.add_argument("--config", "-c", help="Configuration file path")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args)

    try:
        if args.command in ("test", "scan"):
            return run_analysis(args)
        elif args.command == "config":
            return handle_config_command(args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except (PolicyWindowError, FileNotFoundError) as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    return 0


def setup_logging(args):
    """Setup logging configuration."""
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if getattr(args, 'log_file', None):
        logging.basicConfig(
            level=level,
            format=log_format,
            handlers=[
                logging.FileHandler(args.log_file),
                logging.StreamHandler(sys.stdout)
            ]
        )
    else:
        logging.basicConfig(level=level, format=log_format)


def handle_config_command(args):
    """Handle configuration management commands."""
    if args.config_command == "create":
        save_config_to_file(AnalysisConfig(), args.output)
        print(f"Configuration template written to {args.output}")
        return 0
    elif args.config_command == "validate":
        return validate_config_file(args.config_file)
    elif args.config_command == "show":
        config = load_config(args.config)
        for key, value in config.to_dict().items():
            print(f"  {key:<20} {value}")
        return 0
    else:
        print("Unknown config command", file=sys.stderr)
        return 1


def validate_config_file(config_file: str) -> int:
    config = load_config_from_file(config_file)
    errors = config.validate()
    if errors:
        print(f"Configuration {config_file} is invalid:")
        for error in errors:
            print(f"  - {error}")
        return 1
    print(f"Configuration {config_file} is valid")
    return 0


def apply_overrides(config: AnalysisConfig, args) -> AnalysisConfig:
    """Override config values with command line arguments."""
    overrides = {
        'policy_start': args.policy_start,
        'window_length_days': args.window_length,
        'mode': args.mode,
        'transform': args.transform,
        'ci_multiplier': args.ci_multiplier,
        'output_dir': args.output,
        'max_workers': getattr(args, 'max_workers', None),
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    config.run_scan = args.command == "scan"
    return config


def run_analysis(args):
    """Run the policy window test, and the scan for the ``scan`` command."""
    config = apply_overrides(load_config(args.config), args)

    processor = DataProcessor(ProcessingConfig(date_column=args.date_column,
                                               value_column=args.value_column))
    series = processor.load_daily_series(args.data)

    results = InterventionAnalyzer(config).run(series)

    output_dir = Path(config.output_dir)
    save_results(results, output_dir)

    result = results.policy_result
    print(f"\nPolicy window {results.policy_window}: estimate={result.estimate:.4f} "
          f"[{result.ci_low:.4f}, {result.ci_high:.4f}] p={result.p_value:.4f}")
    if results.sensitivity is not None:
        rank = results.sensitivity.empirical_rank()
        print(f"Sensitivity scan: {len(results.sensitivity.successes)}/{len(results.sensitivity)} "
              f"windows tested, policy rank={rank if rank is None else round(rank, 3)}")
    print(f"Results saved to: {output_dir}")
    return 0


def save_results(results: InterventionAnalysisResults, output_dir: Path):
    """Write the summary (JSON), residuals and scan (CSV) to ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)

    summary = results.summary()
    if results.config is not None:
        summary['config'] = results.config.to_dict()
    with open(output_dir / "summary.json", 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    results.residuals.to_frame().to_csv(output_dir / "residuals.csv")
    if results.sensitivity is not None:
        results.sensitivity.to_frame().to_csv(output_dir / "sensitivity_scan.csv", index=False)

    logging.info(f"Results written to {output_dir}")


if __name__ == "__main__":
    sys.exit(main())
