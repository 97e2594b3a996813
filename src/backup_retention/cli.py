#!/usr/bin/env python3
"""
Command line interface for the backup retention engine.

    backup-retention run [--config PATH] [--dry-run] [--force-tier aggressive] [--format json]
    backup-retention report [--format json]

Exit codes: 0 all pools healthy, 1 a pool reported a non-fatal issue,
2 a pool was unavailable, 3 the configuration is invalid.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from .config.base_config import EnvironmentSettings, load_environment_settings
from .config.pool_config import load_engine_config, parse_tier
from .engine.orchestrator import Orchestrator
from .engine.state import ReportStore
from .errors import PolicyMisconfigured

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 3


def setup_logging(settings: EnvironmentSettings, verbose: bool = False):
    """Configure logging with consistent format."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def _add_common_options(parser: argparse.ArgumentParser, suppress: bool = False):
    """Options accepted both before and after the subcommand."""
    def default(value):
        return argparse.SUPPRESS if suppress else value

    parser.add_argument('--config', type=str, default=default(None),
                        help='Path to the pool configuration YAML')
    parser.add_argument('--format', choices=['human', 'json'], default=default('human'),
                        help='Output format')
    parser.add_argument('-v', '--verbose', action='store_true', default=default(False),
                        help='Enable debug logging')


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    # Subcommand copies leave the top-level values alone unless given
    common = argparse.ArgumentParser(add_help=False)
    _add_common_options(common, suppress=True)

    parser = argparse.ArgumentParser(
        prog='backup-retention',
        description='Tiered retention and space management for backup pools'
    )
    _add_common_options(parser)
    subparsers = parser.add_subparsers(dest='command', help='Command to execute')
    subparsers.required = True

    run_parser = subparsers.add_parser('run', parents=[common],
                                       help='Execute one full retention pass')
    run_parser.add_argument('--force-tier', choices=['moderate', 'aggressive', 'critical'],
                            help='Operator override; never relaxes the automatic tier')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Show what would be deleted without changing anything')
    run_parser.add_argument('--pool', action='append', dest='pools', default=None,
                            help='Only process this pool (repeatable)')

    subparsers.add_parser('report', parents=[common],
                          help='Show the last run report without side effects')

    return parser.parse_args(argv)


def format_bytes(value: Optional[int]) -> str:
    if value is None:
        return "-"
    size = float(value)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024 or unit == "TB":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{value}B"


def format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    seconds = max(int(seconds), 0)
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 2 * 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def render_human(report: Dict[str, Any]) -> str:
    """Render a report dictionary as a table plus a summary."""
    rows = []
    for pool in report.get("pools", []):
        usage = pool.get("usage") or {}
        retention = pool.get("retention") or {}
        creation = pool.get("creation") or {}
        available = retention.get("final_available")
        if available is None:
            available = usage.get("available")
        rows.append([
            pool["pool"],
            pool["kind"],
            pool["severity"].upper(),
            format_bytes(available),
            pool.get("tier") or "-",
            len(retention.get("deleted", [])) if retention else "-",
            format_bytes(retention.get("reclaimed")) if retention else "-",
            creation.get("status", "-"),
            "-" if pool.get("units") is None else pool["units"],
            format_age(pool.get("head_age_seconds")),
            "yes" if pool.get("cloud_mirror") else "no",
        ])

    lines = [tabulate(
        rows,
        headers=["Pool", "Kind", "Status", "Available", "Tier", "Deleted",
                 "Reclaimed", "Creation", "Units", "Newest", "Cloud"],
        tablefmt="simple"
    )]

    issues = [(pool["pool"], issue) for pool in report.get("pools", [])
              for issue in pool.get("issues", [])]
    if issues:
        lines.append("")
        lines.append("Issues:")
        lines.extend(f"  {pool_id}: {issue}" for pool_id, issue in issues)

    if report.get("pending_repositories") is not None:
        lines.append("")
        lines.append(f"Repositories with pending changes: {report['pending_repositories']}")
    if report.get("cancelled"):
        lines.append("Run was cancelled before all pools were processed")

    lines.append("")
    lines.append(f"Overall: {report['severity'].upper()} (finished {report.get('finished_at')})")
    return "\n".join(lines)


def emit(report: Dict[str, Any], output_format: str) -> None:
    if output_format == 'json':
        print(json.dumps(report, indent=2))
    else:
        print(render_human(report))


async def run_command(args, config) -> int:
    cancel_event = asyncio.Event()
    loop = asyncio.get_event_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            pass

    orchestrator = Orchestrator.from_config(config)
    report = await orchestrator.run(
        force_tier=parse_tier(args.force_tier),
        dry_run=args.dry_run,
        pool_ids=args.pools,
        cancel_event=cancel_event,
    )
    emit(report.to_dict(), args.format)
    return report.exit_code


def report_command(args, settings: EnvironmentSettings) -> int:
    stored = ReportStore(settings.state_dir / "last_report.json").load()
    if stored is None:
        print("No previous run recorded", file=sys.stderr)
        return 1
    emit(stored, args.format)
    return int(stored.get("exit_code", 0))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_environment_settings()
    except PolicyMisconfigured as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    setup_logging(settings, args.verbose)

    try:
        config = load_engine_config(args.config, settings)
    except PolicyMisconfigured as e:
        logger.error(f"Configuration error: {e.message}")
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.command == 'report':
        return report_command(args, config.settings)
    return asyncio.run(run_command(args, config))


if __name__ == '__main__':
    sys.exit(main())
