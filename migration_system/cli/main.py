#!/usr/bin/env python3
"""
Migration System CLI

Main command-line interface for applying, rolling back and inspecting
schema migrations.
"""

import argparse
import logging
import sys

from ..error_handling import MigrationSystemError
from .commands import MigrationCLI
from .utils import OUTPUT_FORMATS, CLIUtils


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="migration-system",
        description="Versioned schema migration CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-e",
        "--environment",
        help="Environment name (default: MIGRATION_ENVIRONMENT or development)",
    )
    parser.add_argument("-t", "--target", help="Migration target name")
    parser.add_argument(
        "--migrations",
        action="append",
        dest="migration_dirs",
        help="Migration source directory (repeatable)",
    )
    parser.add_argument(
        "--convention",
        choices=["auto", "script", "changeset"],
        help="Source convention (default: auto)",
    )
    parser.add_argument("--database-url", help="Target database URL")
    parser.add_argument("--backup-dir", help="Directory for pre-run snapshots")
    parser.add_argument(
        "--format",
        choices=OUTPUT_FORMATS,
        default="table",
        help="Output format (default: table)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Apply command
    apply_parser = subparsers.add_parser("apply", help="Apply pending migrations")
    apply_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the pending units without executing them",
    )

    # Rollback command
    rollback_parser = subparsers.add_parser(
        "rollback", help="Roll back applied migrations above a target"
    )
    rollback_parser.add_argument(
        "rollback_target",
        metavar="target",
        help="Unit id (1.0-001), version (1.1) or 0 for an empty schema",
    )
    rollback_parser.add_argument(
        "--confirm", action="store_true", help="Skip the confirmation prompt"
    )

    subparsers.add_parser("status", help="Show applied and pending migrations")
    subparsers.add_parser("validate", help="Validate migration sources")
    subparsers.add_parser("backups", help="List snapshots for the target")
    subparsers.add_parser("config", help="Show resolved configuration")

    # Restore command
    restore_parser = subparsers.add_parser("restore", help="Restore the target from a snapshot")
    restore_parser.add_argument("backup", help="Snapshot path or file name")
    restore_parser.add_argument(
        "--confirm", action="store_true", help="Skip the confirmation prompt"
    )

    # Release lock command
    release_parser = subparsers.add_parser(
        "release-lock", help="Clear a stale migration lock"
    )
    release_parser.add_argument(
        "--confirm", action="store_true", help="Skip the confirmation prompt"
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    overrides = {
        "database_url": args.database_url,
        "migration_dirs": args.migration_dirs,
        "convention": args.convention,
        "backup_dir": args.backup_dir,
    }

    cli = None
    try:
        cli = MigrationCLI(
            environment=args.environment, target=args.target, overrides=overrides
        )
        return execute_command(cli, args)
    except MigrationSystemError as e:
        CLIUtils.print_error(e)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    finally:
        if cli is not None:
            cli.close()


def execute_command(cli: MigrationCLI, args) -> int:
    """Execute the specified command."""

    if args.command == "apply":
        return cmd_apply(cli, args)
    elif args.command == "rollback":
        return cmd_rollback(cli, args)
    elif args.command == "status":
        return cmd_status(cli, args)
    elif args.command == "validate":
        return cmd_validate(cli, args)
    elif args.command == "backups":
        return cmd_backups(cli, args)
    elif args.command == "restore":
        return cmd_restore(cli, args)
    elif args.command == "release-lock":
        return cmd_release_lock(cli, args)
    elif args.command == "config":
        return cmd_config(cli, args)
    else:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1


def _confirmed(args, message: str) -> bool:
    """--confirm, or an interactive yes at the prompt."""
    if args.confirm:
        return True
    if not CLIUtils.is_interactive():
        return False
    return CLIUtils.confirm_action(message)


def _print_run(result, args) -> None:
    if args.format != "table":
        print(CLIUtils.format_data(result.to_dict(), args.format))
        return

    if result.mode == "apply" and result.dry_run:
        print(f"Pending units for '{result.target_id}':")
        for unit_id in result.planned:
            print(f"  - {unit_id}")
    else:
        records = result.applied if result.mode == "apply" else result.rolled_back
        if records:
            CLIUtils.print_table(
                ["Unit", "Description", "Outcome", "Duration (ms)"],
                [
                    [r.unit_id, r.description, r.outcome.value, r.duration_ms]
                    for r in records
                ],
            )
    for warning in result.verification_warnings:
        print(f"! {warning}")
    marker = "✓" if result.succeeded else "✗"
    print(f"{marker} {result.summary()}")


def cmd_apply(cli: MigrationCLI, args) -> int:
    """Execute apply command."""
    result = cli.apply(dry_run=args.dry_run)
    _print_run(result, args)
    return 0 if result.succeeded else 1


def cmd_rollback(cli: MigrationCLI, args) -> int:
    """Execute rollback command."""
    confirm = _confirmed(
        args,
        f"Roll back target '{cli.settings.target_id}' to {args.rollback_target}?",
    )
    result = cli.rollback(args.rollback_target, confirm=confirm)
    _print_run(result, args)
    return 0 if result.succeeded else 1


def cmd_status(cli: MigrationCLI, args) -> int:
    """Execute status command."""
    report = cli.status()

    if args.format != "table":
        print(CLIUtils.format_data(report.to_dict(), args.format))
        return 0

    print(f"Target: {report.target_id}")
    print(f"Current version: {report.current_version or 'empty schema'}")
    if report.lock_holder:
        print(
            f"Locked by: {report.lock_holder['owner']} "
            f"since {report.lock_holder['acquired_at']}"
        )
    print()

    rows = [
        [r.unit_id, r.description, r.outcome.value, r.applied_at, r.executed_by]
        for r in report.state.applied + report.state.failed
    ]
    rows += [[u.unit_id, u.description, "PENDING", "", ""] for u in report.pending]
    CLIUtils.print_table(["Unit", "Description", "State", "Applied at", "By"], rows)

    if report.drifted:
        print(f"\n✗ Modified since applied: {', '.join(report.drifted)}")
    if report.ignored:
        print(f"\n! Ignored (below current version): {', '.join(u.unit_id for u in report.ignored)}")
    if report.missing:
        print(f"\n! Applied without a source: {', '.join(report.missing)}")
    return 0


def cmd_validate(cli: MigrationCLI, args) -> int:
    """Execute validate command."""
    report = cli.validate()

    if args.format != "table":
        print(CLIUtils.format_data(report.to_dict(), args.format))
    else:
        CLIUtils.print_validation_report(report)
        print()
        print(report.get_summary())

    return 0 if report.is_valid else 1


def cmd_backups(cli: MigrationCLI, args) -> int:
    """Execute backups command."""
    backups = cli.list_backups()

    if args.format != "table":
        print(CLIUtils.format_data(backups, args.format))
        return 0

    CLIUtils.print_table(
        ["Location", "Created", "Strategy", "Size (bytes)"],
        [[b["location"], b["created_at"], b["strategy"], b["size_bytes"]] for b in backups],
    )
    return 0


def cmd_restore(cli: MigrationCLI, args) -> int:
    """Execute restore command."""
    confirm = _confirmed(
        args,
        f"Restore target '{cli.settings.target_id}' from {args.backup}? "
        "Current schema and history will be overwritten",
    )
    handle = cli.restore(args.backup, confirm=confirm)
    print(f"✓ Restored '{handle['target_id']}' from {handle['location']}")
    return 0


def cmd_release_lock(cli: MigrationCLI, args) -> int:
    """Execute release-lock command."""
    confirm = _confirmed(args, f"Release the migration lock on '{cli.settings.target_id}'?")
    holder = cli.release_lock(confirm=confirm)
    if holder:
        print(f"✓ Released lock held by {holder['owner']} since {holder['acquired_at']}")
    else:
        print("No lock was held")
    return 0


def cmd_config(cli: MigrationCLI, args) -> int:
    """Execute config command."""
    data = cli.show_config()
    if args.format == "table":
        CLIUtils.print_table(["Setting", "Value"], [[k, v] for k, v in data.items()])
    else:
        print(CLIUtils.format_data(data, args.format))
    return 0


if __name__ == "__main__":
    sys.exit(main())
