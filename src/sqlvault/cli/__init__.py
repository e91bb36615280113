"""CLI module for database backup and recovery.

Provides commands to create, inspect, verify, delete and restore backups,
and to drive the automatic backup schedule.

Usage:
    sqlvault --profile local backup --description "Before migration"
    sqlvault list
    sqlvault info backup_20250101_020000_000123_1a2b3c4d
    sqlvault verify backup_20250101_020000_000123_1a2b3c4d
    sqlvault restore backup_20250101_020000_000123_1a2b3c4d --tables orders,order_items
    sqlvault restore backup_20250101_020000_000123_1a2b3c4d --dry-run
    sqlvault schedule --frequency daily
    sqlvault run-scheduled

Commands:
    backup         - Create a backup
    list           - List backups, newest first
    info           - Show one backup record
    verify         - Check a backup's integrity
    delete         - Delete a backup
    restore        - Restore a backup (all tables or --tables)
    test-restore   - Parse and validate a backup without executing it
    coverage       - Show which tables a backup can restore
    schedule       - Configure automatic backups
    run-scheduled  - Run the scheduled backup if it is due
    status         - Show backup directory status
    profiles       - List available profiles

Exit codes:
    0 - success
    1 - failure (nothing was changed by a failed restore)
    2 - restore committed but post-restore verification failed
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from sqlvault.adapters.base import DatabaseClient
from sqlvault.backup.engine import BackupEngine
from sqlvault.backup.models import BackupRecord
from sqlvault.backup.recovery import RecoveryEngine, snapshot_description
from sqlvault.backup.scheduler import BackupScheduler
from sqlvault.config.loader import load_config
from sqlvault.config.models import VaultConfig
from sqlvault.errors import ErrorKind, OperationError, SqlVaultError
from sqlvault.factory import (
    ProfileNotFoundError,
    build_engines,
    create_adapter,
    get_active_profile_name,
    resolve_url,
)

console = Console()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_VERIFICATION = 2


# ============================================================================
# Helpers
# ============================================================================


@dataclass
class _Session:
    """Everything a command needs for one profile."""

    config: VaultConfig
    profile: str
    adapter: DatabaseClient
    backups: BackupEngine
    recovery: RecoveryEngine


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )


def _load_config(args: argparse.Namespace) -> VaultConfig | None:
    try:
        return load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _open_session(args: argparse.Namespace) -> _Session | None:
    """Load config, select the profile and build adapter + engines.

    Prints the problem and returns ``None`` when any step fails.  No
    database connection is made here.
    """
    config = _load_config(args)
    if config is None:
        return None

    try:
        profile = get_active_profile_name(config, args.profile, args.env_prefix)
        adapter = create_adapter(resolve_url(config.profiles[profile]))
        backups, recovery = build_engines(adapter, config)
    except ProfileNotFoundError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return None
    except (ValueError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None

    return _Session(config, profile, adapter, backups, recovery)


def _run(
    handler: Callable[[_Session, argparse.Namespace], Awaitable[int]],
    args: argparse.Namespace,
) -> int:
    """Open a session, run ``handler`` under ``asyncio.run()``, close the adapter."""
    session = _open_session(args)
    if session is None:
        return EXIT_FAILURE

    async def runner() -> int:
        try:
            return await handler(session, args)
        except SqlVaultError as e:
            console.print(f"[red]Error: {e.message}[/red]")
            return EXIT_FAILURE
        finally:
            await session.adapter.close()

    return asyncio.run(runner())


def _exit_code(error: OperationError | None) -> int:
    if error is None:
        return EXIT_OK
    return EXIT_VERIFICATION if error.kind is ErrorKind.VERIFICATION else EXIT_FAILURE


def _format_age(created_at: datetime) -> str:
    seconds = int((datetime.now(timezone.utc) - created_at).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def _print_error(error: OperationError) -> None:
    console.print(f"[bold red]x[/bold red] {error.message}")
    if error.position is not None:
        console.print(
            f"  Failing statement: [bold]#{error.position}[/bold]"
            f" (artifact line {error.line})"
        )


def _record_table(record: BackupRecord) -> Table:
    table = Table(title=f"Backup {record.backup_id}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("File", record.path)
    table.add_row("Created", f"{record.created_at:%Y-%m-%d %H:%M:%S} UTC")
    table.add_row("Description", record.description)
    table.add_row("Size", record.size_human)
    table.add_row("Duration", f"{record.duration:.2f}s")
    table.add_row("Tables", str(record.tables_count))
    table.add_row("Compressed", "yes" if record.compressed else "no")
    table.add_row("Structure / data", (
        f"{'yes' if record.options.include_structure else 'no'} / "
        f"{'yes' if record.options.include_data else 'no'}"
    ))
    table.add_row("Checksum", f"[dim]{record.checksum}[/dim]")
    return table


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(session: _Session, args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure or timeout.
    """
    overrides = {
        "description": args.description,
        "include_structure": not args.no_structure,
        "include_data": not args.no_data,
    }
    if args.no_compress:
        overrides["compress"] = False
    if args.no_verify:
        overrides["verify"] = False
    options = session.backups.default_options(**overrides)

    console.print(f"Backing up profile [bold cyan]{session.profile}[/bold cyan]...", style="dim")
    timeout = session.config.backup.timeout
    try:
        result = await asyncio.wait_for(session.backups.create_backup(options), timeout)
    except asyncio.TimeoutError:
        console.print(f"[bold red]x[/bold red] Backup timed out after {timeout:.0f}s")
        return EXIT_FAILURE

    if not result.success:
        _print_error(result.error)
        return EXIT_FAILURE

    record = result.record
    console.print(
        f"[bold green]v[/bold green] Backup created: [bold]{record.backup_id}[/bold]"
    )
    console.print(
        f"  {record.tables_count} tables, {sum(record.row_counts.values())} rows, "
        f"{result.chunks} chunks, {record.size_human} in {record.duration:.2f}s"
    )
    if result.evicted:
        console.print(f"  [dim]Retention removed: {', '.join(result.evicted)}[/dim]")
    return EXIT_OK


async def _async_list(session: _Session, args: argparse.Namespace) -> int:
    records = session.backups.list_backups()
    if not records:
        console.print("[yellow]No backups found.[/yellow]")
        return EXIT_OK

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Age", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("Tables", justify="right")
    table.add_column("Description")

    for record in records:
        table.add_row(
            record.backup_id,
            f"{record.created_at:%Y-%m-%d %H:%M:%S}",
            _format_age(record.created_at),
            record.size_human,
            str(record.tables_count),
            record.description,
        )
    console.print(table)
    return EXIT_OK


async def _async_info(session: _Session, args: argparse.Namespace) -> int:
    record = session.backups.get_backup(args.backup_id)
    if record is None:
        console.print(f"[red]Error: Backup not found: {args.backup_id}[/red]")
        return EXIT_FAILURE

    console.print(_record_table(record))
    if record.row_counts:
        rows = Table(title="Rows per table", show_header=True, header_style="bold")
        rows.add_column("Table")
        rows.add_column("Rows", justify="right")
        for name, count in record.row_counts.items():
            rows.add_row(name, str(count))
        console.print(rows)
    return EXIT_OK


async def _async_verify(session: _Session, args: argparse.Namespace) -> int:
    report = session.backups.verify_backup(args.backup_id)
    for check, passed in report.checks.items():
        mark = "[green]PASSED[/green]" if passed else "[red]FAILED[/red]"
        console.print(f"  {check:<10} {mark}")

    if report.valid:
        console.print(f"[bold green]v[/bold green] Backup {args.backup_id} is valid")
        return EXIT_OK
    console.print(f"[bold red]x[/bold red] {report.reason}")
    return EXIT_FAILURE


async def _async_delete(session: _Session, args: argparse.Namespace) -> int:
    if not args.yes and not Confirm.ask(f"Delete backup {args.backup_id}?", default=False):
        console.print("Cancelled.")
        return EXIT_OK

    result = await session.backups.delete_backup(args.backup_id)
    if not result.success:
        _print_error(result.error)
        return EXIT_FAILURE
    console.print(f"[bold green]v[/bold green] {result.message}")
    return EXIT_OK


async def _async_restore(session: _Session, args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Returns:
        0 on success, 2 when only post-restore verification failed,
        1 on any other failure.
    """
    tables = [t.strip() for t in args.tables.split(",")] if args.tables else None
    overrides = {"dry_run": args.dry_run}
    if args.no_safety_backup:
        overrides["create_backup"] = False
    if args.no_verify_before:
        overrides["verify_before"] = False
    if args.no_verify_after:
        overrides["verify_after"] = False
    options = session.recovery.default_options(**overrides)

    if not args.yes and not args.dry_run:
        console.print(f"This will restore [bold]{args.backup_id}[/bold] into "
                      f"profile [bold cyan]{session.profile}[/bold cyan].")
        console.print(f"  Tables: {', '.join(tables) if tables else 'all'}")
        if not options.create_backup:
            console.print("  [yellow]WARNING: no safety backup will be taken![/yellow]")
        if not Confirm.ask("Continue?", default=False):
            console.print("Cancelled.")
            return EXIT_OK

    if tables is not None:
        operation = session.recovery.restore_specific_tables(args.backup_id, tables, options)
    else:
        operation = session.recovery.restore(args.backup_id, options)

    timeout = session.config.restore.timeout
    try:
        result = await asyncio.wait_for(operation, timeout)
    except asyncio.TimeoutError:
        console.print(f"[bold red]x[/bold red] Restore timed out after {timeout:.0f}s")
        _print_snapshot_hint(session, args.backup_id)
        return EXIT_FAILURE

    if result.recovery_backup_id:
        console.print(f"  Safety backup: [bold]{result.recovery_backup_id}[/bold]")

    if result.success:
        if result.dry_run:
            console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made.")
            console.print(
                f"  {result.statements_executed} statements would run "
                f"for {len(result.tables_restored)} tables"
            )
        else:
            console.print(
                f"[bold green]v[/bold green] Restored {len(result.tables_restored)} tables "
                f"({result.statements_executed} statements) in {result.duration:.2f}s"
            )
        return EXIT_OK

    _print_error(result.error)
    if result.error.kind is ErrorKind.VERIFICATION:
        console.print(
            "[yellow]The restore was committed. Use the safety backup to revert.[/yellow]"
        )
    return _exit_code(result.error)


def _print_snapshot_hint(session: _Session, backup_id: str) -> None:
    """Point the operator at the safety backup taken for ``backup_id``."""
    description = snapshot_description(backup_id)
    for record in session.backups.list_backups():
        if record.description == description:
            console.print(
                f"  Database state is unknown. Safety backup for manual recovery: "
                f"[bold]{record.backup_id}[/bold]"
            )
            return
    console.print("  Database state is unknown and no safety backup was found.")


async def _async_test_restore(session: _Session, args: argparse.Namespace) -> int:
    result = await session.recovery.test_restore(args.backup_id)
    if not result.success:
        _print_error(result.error)
        return EXIT_FAILURE
    console.print(
        f"[bold green]v[/bold green] Backup {args.backup_id} parses cleanly: "
        f"{result.statements_executed} statements, tables: "
        f"{', '.join(result.tables_restored) or '-'}"
    )
    return EXIT_OK


async def _async_coverage(session: _Session, args: argparse.Namespace) -> int:
    report = await session.recovery.analyze_coverage(args.backup_id)
    if not report.success:
        _print_error(report.error)
        return EXIT_FAILURE

    table = Table(title=f"Coverage of {args.backup_id}", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Table")
    for i, name in enumerate(report.tables, start=1):
        table.add_row(str(i), name)
    console.print(table)

    options = ", ".join(k for k, v in report.recovery_options.items() if v)
    console.print(f"  Recovery options: {options}")
    if report.truncated:
        console.print(
            f"  [yellow]Only the first {session.config.restore.coverage_scan_lines} "
            f"lines were scanned; more tables may follow.[/yellow]"
        )
    return EXIT_OK


async def _async_schedule(session: _Session, args: argparse.Namespace) -> int:
    state = BackupScheduler(session.backups).configure(
        args.frequency, enabled=not args.disable
    )
    status = "enabled" if state.enabled else "disabled"
    console.print(
        f"[bold green]v[/bold green] Schedule {status}: {state.frequency}, "
        f"next run {state.next_run:%Y-%m-%d %H:%M} UTC"
    )
    return EXIT_OK


async def _async_run_scheduled(session: _Session, args: argparse.Namespace) -> int:
    result = await BackupScheduler(session.backups).run_if_due(force=args.force)
    if result is None:
        console.print("[dim]No scheduled backup due.[/dim]")
        return EXIT_OK
    if not result.success:
        _print_error(result.error)
        return EXIT_FAILURE
    console.print(
        f"[bold green]v[/bold green] Scheduled backup created: {result.backup_id}"
    )
    return EXIT_OK


async def _async_status(session: _Session, args: argparse.Namespace) -> int:
    status = session.backups.status()

    table = Table(title="Backup Status", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Profile", f"[bold cyan]{session.profile}[/bold cyan]")
    table.add_row("Directory", status.directory)
    table.add_row("Backups", f"{status.total_backups} (max {session.config.backup.max_backups})")
    table.add_row("Total size", status.total_size_human)
    if status.latest:
        table.add_row(
            "Latest",
            f"{status.latest.backup_id} ({_format_age(status.latest.created_at)})",
        )
    else:
        table.add_row("Latest", "[yellow]none[/yellow]")
    if status.schedule:
        schedule = status.schedule
        table.add_row(
            "Schedule",
            f"{schedule.frequency} ({'enabled' if schedule.enabled else 'disabled'}), "
            f"next run {schedule.next_run:%Y-%m-%d %H:%M} UTC",
        )
    else:
        table.add_row("Schedule", "[dim]not configured[/dim]")
    console.print(table)
    return EXIT_OK


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup. Wraps the async implementation with ``asyncio.run()``."""
    return _run(_async_backup, args)


def cmd_list(args: argparse.Namespace) -> int:
    return _run(_async_list, args)


def cmd_info(args: argparse.Namespace) -> int:
    return _run(_async_info, args)


def cmd_verify(args: argparse.Namespace) -> int:
    return _run(_async_verify, args)


def cmd_delete(args: argparse.Namespace) -> int:
    return _run(_async_delete, args)


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup. Wraps the async implementation with ``asyncio.run()``."""
    return _run(_async_restore, args)


def cmd_test_restore(args: argparse.Namespace) -> int:
    return _run(_async_test_restore, args)


def cmd_coverage(args: argparse.Namespace) -> int:
    return _run(_async_coverage, args)


def cmd_schedule(args: argparse.Namespace) -> int:
    return _run(_async_schedule, args)


def cmd_run_scheduled(args: argparse.Namespace) -> int:
    return _run(_async_run_scheduled, args)


def cmd_status(args: argparse.Namespace) -> int:
    return _run(_async_status, args)


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from sqlvault.toml.

    Reads only the local TOML config -- no database calls.

    Returns:
        0 on success, 1 if the config can't be loaded.
    """
    config = _load_config(args)
    if config is None:
        return EXIT_FAILURE

    try:
        current = get_active_profile_name(config, args.profile, args.env_prefix)
    except ProfileNotFoundError:
        current = None

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Engine")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.url.split("://", 1)[0],
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = selected profile")
    return EXIT_OK


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlvault",
        description="Database backup and recovery",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help="Path to sqlvault.toml (default: ./sqlvault.toml)",
    )
    parser.add_argument(
        "--profile",
        "-p",
        default=None,
        help="Database profile from sqlvault.toml",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_SQLVAULT_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser("backup", help="Create a backup")
    p_backup.add_argument("--description", "-d", default="Manual backup")
    p_backup.add_argument("--no-structure", action="store_true", help="Skip table structure")
    p_backup.add_argument("--no-data", action="store_true", help="Skip table rows")
    p_backup.add_argument("--no-compress", action="store_true", help="Write a plain .sql file")
    p_backup.add_argument("--no-verify", action="store_true", help="Skip post-write verification")
    p_backup.set_defaults(func=cmd_backup)

    # list command
    p_list = subparsers.add_parser("list", help="List backups, newest first")
    p_list.set_defaults(func=cmd_list)

    # info / verify / delete / test-restore / coverage take a backup id
    p_info = subparsers.add_parser("info", help="Show one backup record")
    p_info.add_argument("backup_id")
    p_info.set_defaults(func=cmd_info)

    p_verify = subparsers.add_parser("verify", help="Check a backup's integrity")
    p_verify.add_argument("backup_id")
    p_verify.set_defaults(func=cmd_verify)

    p_delete = subparsers.add_parser("delete", help="Delete a backup")
    p_delete.add_argument("backup_id")
    p_delete.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_delete.set_defaults(func=cmd_delete)

    # restore command
    p_restore = subparsers.add_parser("restore", help="Restore a backup")
    p_restore.add_argument("backup_id")
    p_restore.add_argument(
        "--tables",
        help="Comma-separated list of tables to restore (default: all)",
    )
    p_restore.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and validate without executing anything",
    )
    p_restore.add_argument(
        "--no-safety-backup",
        action="store_true",
        help="Don't back up the current state first",
    )
    p_restore.add_argument("--no-verify-before", action="store_true")
    p_restore.add_argument("--no-verify-after", action="store_true")
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_restore.set_defaults(func=cmd_restore)

    p_test = subparsers.add_parser(
        "test-restore", help="Parse and validate a backup without executing it"
    )
    p_test.add_argument("backup_id")
    p_test.set_defaults(func=cmd_test_restore)

    p_coverage = subparsers.add_parser(
        "coverage", help="Show which tables a backup can restore"
    )
    p_coverage.add_argument("backup_id")
    p_coverage.set_defaults(func=cmd_coverage)

    # schedule commands
    p_schedule = subparsers.add_parser("schedule", help="Configure automatic backups")
    p_schedule.add_argument(
        "--frequency",
        "-f",
        choices=["hourly", "daily", "weekly"],
        default="daily",
    )
    p_schedule.add_argument("--disable", action="store_true", help="Disable the schedule")
    p_schedule.set_defaults(func=cmd_schedule)

    p_run = subparsers.add_parser(
        "run-scheduled", help="Run the scheduled backup if it is due"
    )
    p_run.add_argument("--force", action="store_true", help="Run even if not due")
    p_run.set_defaults(func=cmd_run_scheduled)

    # status / profiles
    p_status = subparsers.add_parser("status", help="Show backup directory status")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 success, 1 failure, 2 verification-only failure).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
