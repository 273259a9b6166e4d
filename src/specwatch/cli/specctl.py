#!/usr/bin/env python3
"""
specctl - specwatch operational CLI

A lightweight CLI for day-2 operations:
- Run the poller (specctl run)
- Poll a single target now (specctl check)
- Diff two local interface descriptions (specctl diff)
- Re-dispatch pending changelog entries (specctl recover)
- Deliver due notifications (specctl deliver)
- Show a target's changelog (specctl changelog)
- Show target health (specctl health)
- Version info (specctl version)
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List

from specwatch import __version__
from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.change_monitor.classifier import SeverityClassifier
from specwatch.change_monitor.health import HealthStatus, HealthStore
from specwatch.change_monitor.queries import ChangelogQueryService
from specwatch.change_monitor.service import CycleStatus, build_service
from specwatch.core.canonical import canonicalize
from specwatch.core.config import get_config
from specwatch.core.errors import SpecwatchError
from specwatch.core.models import ChangeRecord, Severity, max_severity
from specwatch.fetcher import parse_document, validate_document


class Colors:
    """ANSI color codes for terminal output."""

    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


SEVERITY_COLORS = {
    Severity.LOW: Colors.BLUE,
    Severity.MEDIUM: Colors.YELLOW,
    Severity.HIGH: Colors.RED,
    Severity.CRITICAL: Colors.RED + Colors.BOLD,
}

HEALTH_COLORS = {
    HealthStatus.HEALTHY: Colors.GREEN,
    HealthStatus.DEGRADED: Colors.YELLOW,
    HealthStatus.UNREACHABLE: Colors.RED,
    HealthStatus.UNKNOWN: Colors.BLUE,
}


def colorize(text: str, color: str) -> str:
    """Colorize text if stdout is a TTY."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.RESET}"
    return text


def format_record(record: ChangeRecord) -> str:
    """Format one classified change record."""
    severity = record.severity or Severity.LOW
    label = colorize(f"[{severity.value.upper():8}]", SEVERITY_COLORS[severity])
    breaking = colorize(" BREAKING", Colors.RED) if record.breaking else ""
    return f"  {label}{breaking} {record.description or record.location}\n             {record.location}"


def print_records(records: List[ChangeRecord]) -> None:
    """Print classified records, most severe first."""
    for record in sorted(records, key=lambda r: -(r.severity.rank if r.severity else 0)):
        print(format_record(record))


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level="DEBUG" if verbose else os.getenv("LOG_LEVEL", "WARNING"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def cmd_run(args) -> int:
    """
    Run the poller.

    Returns:
        Exit code (0 on success, non-zero on failure)
    """
    service = build_service()

    if args.once:
        try:
            results = await service.run_once()
        finally:
            await service.close()
        for result in results:
            status = result.status.value.upper()
            line = f"{result.target_id}: {status}"
            if result.entry:
                line += f" ({result.entry.summary}, {result.tasks} notification tasks)"
            if result.error:
                line += f" - {result.error}"
            print(line)
        return 1 if any(r.status == CycleStatus.FAILED for r in results) else 0

    try:
        await service.run()
    except asyncio.CancelledError:
        service.stop()
    return 0


async def cmd_check(args) -> int:
    """
    Poll one target now.

    Returns:
        Exit code (0 on success, 1 if the fetch failed, 2 if the target is unknown)
    """
    service = build_service()
    target = service.registry.get_target(args.target_id)
    if target is None:
        print(colorize(f"✗ Unknown target: {args.target_id}", Colors.RED), file=sys.stderr)
        return 2

    print(f"Checking {target.name} ({target.url})...")
    try:
        result = await service.run_cycle(target)
    finally:
        await service.close()

    if result.status == CycleStatus.FAILED:
        print(colorize(f"✗ Check failed: {result.error}", Colors.RED))
        return 1
    if result.status == CycleStatus.BASELINE:
        print(colorize(f"✓ Baseline snapshot recorded ({result.snapshot_id})", Colors.GREEN))
    elif result.status == CycleStatus.CHANGED:
        entry = result.entry
        print(colorize(
            f"✓ Changes detected: {entry.summary} "
            f"(severity: {entry.severity.value}, breaking: {entry.breaking})",
            Colors.YELLOW,
        ))
        print_records(entry.records)
        print(f"\n{result.tasks} notification tasks, entry {entry.entry_id}")
    else:
        print(colorize(f"✓ {result.status.value.capitalize()}", Colors.GREEN))

    if args.deliver and service.worker:
        counts = service.worker.run_once()
        print(f"Delivery: {counts}")
    return 0


def cmd_diff(args) -> int:
    """
    Diff two local interface description files.

    Returns:
        Exit code (0, or 1 when --fail-on-breaking and a breaking change was found)
    """
    order_fields = get_config().diff.order_significant_fields
    documents = []
    for path in (args.old, args.new):
        try:
            raw = Path(path).read_bytes()
            document = parse_document(raw, path)
            validate_document(document, path)
        except (OSError, SpecwatchError) as e:
            print(colorize(f"✗ Cannot load {path}: {e}", Colors.RED), file=sys.stderr)
            return 2
        documents.append(canonicalize(document, order_fields))

    records = SeverityClassifier().classify_all(ChangeAnalyzer().diff(*documents))
    if not records:
        print(colorize("✓ No changes", Colors.GREEN))
        return 0

    severity = max_severity(r.severity for r in records)
    breaking = any(r.breaking for r in records)
    print(colorize(
        f"{len(records)} changes (severity: {severity.value}, breaking: {breaking})",
        Colors.BOLD,
    ))
    print_records(records)

    return 1 if args.fail_on_breaking and breaking else 0


def cmd_recover(args) -> int:
    """Dispatch changelog entries whose dispatch did not complete."""
    service = build_service()
    count = service.recover()
    print(colorize(f"✓ Dispatched {count} pending changelog entries", Colors.GREEN))
    return 0


def cmd_deliver(args) -> int:
    """Deliver due notification tasks once."""
    service = build_service()
    counts = service.worker.run_once()
    print(
        f"Delivered: {counts['delivered']}, retrying: {counts['pending']}, "
        f"failed: {counts['failed']}"
    )
    return 1 if counts["failed"] else 0


def cmd_changelog(args) -> int:
    """Print the most recent changelog entries of a target."""
    service = build_service()
    queries = ChangelogQueryService(service.changelog, service.store)
    page = queries.list_entries(
        target_id=args.target_id,
        limit=args.limit,
        severity=Severity(args.severity) if args.severity else None,
        breaking=True if args.breaking else None,
    )

    if not page.items:
        print(f"No changelog entries for {args.target_id}")
        return 0

    print(colorize(f"\nChangelog for {args.target_id} ({page.total} entries)", Colors.BOLD))
    print(colorize("=" * 60, Colors.BOLD))
    for entry in page.items:
        severity = colorize(entry.severity.value.upper(), SEVERITY_COLORS[entry.severity])
        breaking = colorize(" BREAKING", Colors.RED) if entry.breaking else ""
        print(f"\n{entry.created_at.strftime('%Y-%m-%d %H:%M:%S')}  {severity}{breaking}  {entry.summary}")
        print(f"  entry {entry.entry_id} (impact {entry.impact_score})")
        if args.verbose:
            print_records(entry.records)
    return 0


def cmd_health(args) -> int:
    """Print the health of every polled target."""
    health = HealthStore(get_config().store.database_path)
    records = health.list_all()
    if not records:
        print("No targets polled yet")
        return 0

    for record in records:
        status = colorize(f"[{record.status.value.upper()}]", HEALTH_COLORS[record.status])
        checked = record.last_checked.strftime("%Y-%m-%d %H:%M:%S") if record.last_checked else "never"
        line = f"{record.target_id:30} {status} last checked {checked}"
        if record.last_error:
            line += f" ({record.consecutive_failures} failures: {record.last_error})"
        print(line)
    return 0


def cmd_version(args) -> int:
    """
    Print version information.

    Returns:
        Exit code (always 0)
    """
    print(f"specctl version {__version__}")
    print("specwatch - API change monitoring and notification engine")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for specctl."""
    parser = argparse.ArgumentParser(
        description="specwatch operational CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  specctl run                        # Run the poller continuously
  specctl run --once                 # Poll every active target once
  specctl check petstore             # Poll one target now
  specctl diff old.yaml new.yaml     # Diff two local descriptions
  specctl changelog petstore         # Show recent changes
  specctl version                    # Show version information

Environment variables:
  STORE_DATABASE_PATH                # SQLite database (default: /var/lib/specwatch/specwatch.db)
  SCHEDULER_REGISTRY_PATH            # Target registry YAML (default: /etc/specwatch/targets.yml)
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run the poller")
    run_parser.add_argument("--once", action="store_true", help="Poll every active target once and exit")

    check_parser = subparsers.add_parser("check", help="Poll one target now")
    check_parser.add_argument("target_id", help="Target identifier")
    check_parser.add_argument("--deliver", action="store_true", help="Deliver due notifications afterwards")

    diff_parser = subparsers.add_parser("diff", help="Diff two local interface descriptions")
    diff_parser.add_argument("old", help="Previous description (JSON or YAML)")
    diff_parser.add_argument("new", help="Current description (JSON or YAML)")
    diff_parser.add_argument(
        "--fail-on-breaking",
        action="store_true",
        help="Exit with status 1 if a breaking change is found"
    )

    subparsers.add_parser("recover", help="Dispatch pending changelog entries")
    subparsers.add_parser("deliver", help="Deliver due notification tasks once")

    changelog_parser = subparsers.add_parser("changelog", help="Show a target's changelog")
    changelog_parser.add_argument("target_id", help="Target identifier")
    changelog_parser.add_argument("--limit", type=int, default=10, help="Number of entries (default: 10)")
    changelog_parser.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        help="Only entries with this severity"
    )
    changelog_parser.add_argument("--breaking", action="store_true", help="Only breaking entries")

    subparsers.add_parser("health", help="Show target health")
    subparsers.add_parser("version", help="Show version information")

    return parser


def main(argv=None):
    """Main entry point for specctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    try:
        if args.command == "run":
            return asyncio.run(cmd_run(args))
        elif args.command == "check":
            return asyncio.run(cmd_check(args))
        elif args.command == "diff":
            return cmd_diff(args)
        elif args.command == "recover":
            return cmd_recover(args)
        elif args.command == "deliver":
            return cmd_deliver(args)
        elif args.command == "changelog":
            return cmd_changelog(args)
        elif args.command == "health":
            return cmd_health(args)
        elif args.command == "version":
            return cmd_version(args)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
