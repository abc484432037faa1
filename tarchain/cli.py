"""Command-line interface for tarchain.

Two modes, selected with --snapshot:
- backup: full or incremental archive of a directory
- restore: full archive plus its incrementals, optionally bounded by date
"""

import argparse
import shlex
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from tarchain import __version__
from tarchain.errors import EXIT_SUCCESS, EXIT_USAGE_ERROR
from tarchain.invocation import CreateArchive, RestorePlan
from tarchain.runner import RunResult, run_backup, run_restore
from tarchain.store import DATE_FORMAT


EXIT_GENERAL_ERROR = 1


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}' (expected YYYY-MM-DD)")


def _split_excludes(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog='tarchain',
        description='Full and incremental tar backups with snapshot-chain restore'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to config file (default: ~/.config/tarchain/config.toml)',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print the planned tar commands without running them or creating any directory'
    )
    parser.add_argument(
        '--snapshot',
        required=True,
        choices=['backup', 'restore'],
        help='Operation to perform'
    )

    backup = parser.add_argument_group('backup options')
    backup.add_argument(
        '--action',
        choices=['full', 'incremental'],
        help='Kind of backup'
    )
    backup.add_argument(
        '--archive-dir',
        type=Path,
        metavar='DIR',
        help='Directory to back up'
    )
    backup.add_argument(
        '--exclude-files',
        metavar='A,B,C',
        help='Comma-separated paths, relative to --archive-dir, to exclude'
    )

    restore = parser.add_argument_group('restore options')
    restore.add_argument(
        '--archive-file',
        type=Path,
        metavar='PATH',
        help='Full archive to restore ({name}.tar.gz)'
    )
    restore.add_argument(
        '--snapshot-file',
        type=Path,
        metavar='PATH',
        help='Snapshot state file (default: {name}-snapshot beside the archive)'
    )
    restore.add_argument(
        '--inc-dir',
        type=Path,
        metavar='DIR',
        help='Directory holding incremental archives (default: archive directory)'
    )
    restore.add_argument(
        '--start-date',
        type=_parse_date,
        metavar='DATE',
        help='Replay incrementals dated on or after DATE (YYYY-MM-DD)'
    )
    restore.add_argument(
        '--end-date',
        type=_parse_date,
        metavar='DATE',
        help='Replay incrementals dated on or before DATE (YYYY-MM-DD)'
    )

    parser.add_argument(
        '--output-path',
        type=Path,
        metavar='DIR',
        help='Backup: directory receiving archives. Restore: directory receiving the restored tree'
    )
    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Check per-mode required options; exits with a usage error."""
    if args.snapshot == 'backup':
        required = {'--action': args.action, '--archive-dir': args.archive_dir}
    else:
        required = {'--archive-file': args.archive_file}
    required['--output-path'] = args.output_path
    missing = [flag for flag, value in required.items() if value is None]
    if missing:
        parser.error(f"--snapshot={args.snapshot} requires {', '.join(missing)}")


def _print_commands(commands: List[List[str]]) -> None:
    for cmd in commands:
        print(shlex.join(str(part) for part in cmd))


def _report_failure(result: RunResult) -> int:
    print(f"Error: {result.error_message}", file=sys.stderr)
    if result.execution is not None and result.execution.skipped:
        print(
            f"{result.execution.skipped} remaining step(s) were not run",
            file=sys.stderr,
        )
    return result.exit_code


def cmd_backup(args: argparse.Namespace) -> int:
    """Execute a full or incremental backup."""
    result = run_backup(
        mode=args.action,
        source_dir=args.archive_dir,
        output_dir=args.output_path,
        exclude_patterns=_split_excludes(args.exclude_files),
        config_path=args.config,
        dry_run=args.dry_run,
        console_level='DEBUG' if args.verbose else 'WARNING',
    )
    if not result.success:
        return _report_failure(result)

    plan: CreateArchive = result.plan
    if result.dry_run:
        _print_commands(result.commands)
        return EXIT_SUCCESS

    print(f"Backup completed: {plan.archive_path}")
    if args.verbose:
        print(f"  Snapshot state: {plan.snapshot.path}")
        print(f"  Exclusions: {len(plan.exclusions)}")
        print(f"  Duration: {result.duration_seconds:.2f}s")
    return EXIT_SUCCESS


def cmd_restore(args: argparse.Namespace) -> int:
    """Execute a restore of a full archive and its incrementals."""
    result = run_restore(
        archive_path=args.archive_file,
        output_dir=args.output_path,
        snapshot_path=args.snapshot_file,
        inc_dir=args.inc_dir,
        start_date=args.start_date,
        end_date=args.end_date,
        config_path=args.config,
        dry_run=args.dry_run,
        console_level='DEBUG' if args.verbose else 'WARNING',
    )
    if not result.success:
        return _report_failure(result)

    plan: RestorePlan = result.plan
    if plan.is_full_only:
        print("No incremental archives to apply; restoring the full archive only.")

    if result.dry_run:
        _print_commands(result.commands)
        return EXIT_SUCCESS

    print(f"Restored {plan.base_name} to {plan.extraction_target}")
    if args.verbose:
        for step in plan.incrementals:
            print(f"  Applied: {step.archive_path.name}")
        print(f"  Duration: {result.duration_seconds:.2f}s")
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    _validate_args(parser, args)

    try:
        if args.snapshot == 'backup':
            return cmd_backup(args)
        elif args.snapshot == 'restore':
            return cmd_restore(args)
        else:
            print(f"Unknown snapshot mode: {args.snapshot}", file=sys.stderr)
            return EXIT_USAGE_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
