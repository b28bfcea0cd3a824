#!/usr/bin/env python3
"""
Aptivo administration CLI

Usage:
    python -m aptivo.cli <command> [options]

Commands:
    db          Database operations (init, check)
    user        Account operations (create-super-admin, set-status)
    system      System operations (config)

Environment:
    DATABASE_URL    SQLAlchemy async connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from aptivo import __version__
from aptivo.cli.db_commands import DbCommand
from aptivo.cli.system_commands import SystemCommand
from aptivo.cli.user_commands import UserCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="aptivo",
        description="Aptivo administration CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s user create-super-admin --email root@example.com --password secret123 --name Root
  %(prog)s user set-status --email student@example.com --status suspended
  %(prog)s system config --check
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")

    db_subparsers.add_parser("init", help="Create missing tables")
    db_subparsers.add_parser("check", help="Show row counts per table")

    # User commands
    user_parser = subparsers.add_parser("user", help="Account operations")
    user_subparsers = user_parser.add_subparsers(dest="user_action")

    admin_parser = user_subparsers.add_parser(
        "create-super-admin", help="Create a super admin, or promote an existing account"
    )
    admin_parser.add_argument("--email", required=True, help="Account email")
    admin_parser.add_argument("--password", help="Password (required for new accounts)")
    admin_parser.add_argument("--name", default="Super Admin", help="Full name for new accounts")

    status_parser = user_subparsers.add_parser("set-status", help="Change an account's status")
    status_parser.add_argument("--email", required=True, help="Account email")
    status_parser.add_argument(
        "--status", required=True, choices=["active", "pending", "suspended", "blocked"]
    )

    # System commands
    system_parser = subparsers.add_parser("system", help="System operations")
    system_subparsers = system_parser.add_subparsers(dest="system_action")

    config_parser = system_subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Validate configuration")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    command_map = {
        "db": DbCommand,
        "user": UserCommand,
        "system": SystemCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](dry_run=parsed.dry_run)
        return handler.execute(parsed)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
