"""
Command-line entry point.

Usage:
    code-updater                 # Detect, prompt, update
    code-updater --all           # Update every outdated target without prompting
    code-updater --all --install-missing  # Also install absent CLI packages
    code-updater --status        # Show installed and latest versions only
    code-updater --dry-run --all # Show what would be done
"""

from __future__ import annotations

import argparse
import logging
import sys

from . import __version__
from .config import load_config, validate_config
from .environment import RunContext, detect_environment
from .logging_config import setup_logging
from .render import render_report, render_status
from .targets import all_targets, default_catalog, filter_targets
from .upgrade import EXIT_FATAL, EXIT_OK, check_status, run_update

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="code-updater",
        description="Keep editor extensions and AI coding CLIs up to date",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Exit codes: 0 success, 1 run aborted (config, resolution or download), "
            "2 some targets failed to install or verify."
        ),
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without downloading or installing anything",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Update every outdated target without prompting",
    )
    parser.add_argument(
        "--all-profiles",
        action="store_true",
        help="Also update every additional editor profile",
    )
    parser.add_argument(
        "--install-missing",
        action="store_true",
        help="With --all, also install supported CLI packages that are not installed",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Reinstall even when already up to date",
    )
    parser.add_argument(
        "--only",
        nargs="+",
        metavar="ID",
        default=[],
        help="Restrict the run to these targets (e.g. cursor claude-code)",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Only show installed and latest versions",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only show warnings and errors",
    )
    parser.add_argument(
        "--log-file",
        metavar="PATH",
        help="Also write a debug log to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        config = load_config(args.config, verbose=args.verbose)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_FATAL

    catalog_ids = default_catalog().ids()
    for warning in validate_config(config, catalog_ids):
        logger.warning(warning)

    unknown = sorted(i for i in args.only if i.lower() not in {c.lower() for c in catalog_ids})
    if unknown:
        logger.error(f"Unknown target(s): {', '.join(unknown)}. Known: {', '.join(sorted(catalog_ids))}")
        return EXIT_FATAL

    env = detect_environment(verbose=args.verbose)
    ctx = RunContext(
        config=config,
        env=env,
        dry_run=args.dry_run,
        force=args.force,
        select_all_targets=args.all,
        select_all_profiles=args.all_profiles,
        install_missing=args.install_missing,
        only=tuple(args.only),
        verbose=args.verbose,
    )
    targets = filter_targets(args.only) if args.only else all_targets()

    if args.status or (not env.interactive and not args.all):
        if not args.status:
            logger.info("Non-interactive session: showing status only (use --all to update)")
        render_status(check_status(ctx, targets))
        return EXIT_OK

    try:
        report = run_update(ctx, targets)
    except KeyboardInterrupt:
        print("\n✗ Interrupted", file=sys.stderr)
        return 130

    render_report(report)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
