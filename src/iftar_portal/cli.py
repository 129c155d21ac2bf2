#!/usr/bin/env python3
"""Command-line interface for portal administration.

Usage:
    iftar-portal init-db
    iftar-portal create-admin --email admin@example.com --password s3cretpass --name "Admin"
    iftar-portal sweep --older-than 15 --format text
    iftar-portal export --output participants.csv
    iftar-portal serve --port 8000
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .config import PortalConfig
from .database import create_async_engine, create_tables, get_async_session_factory, get_database_url
from .exceptions import PortalError
from .reconciliation import ReconciliationService, ReconciliationStatus

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def init_db_async() -> int:
    engine = create_async_engine(get_database_url())
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()
    return 0


async def create_admin_async(email: str, password: str, full_name: Optional[str] = None) -> int:
    """Create a back-office account.

    Returns:
        Exit code (0 on success, 1 if the account could not be created).
    """
    from .auth import AdminAuthService

    engine = create_async_engine(get_database_url())
    await create_tables(engine)
    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            try:
                admin = await AdminAuthService(session, PortalConfig.from_env()).create_admin(
                    email, password, full_name
                )
                await session.commit()
            except PortalError as e:
                await session.rollback()
                logger.error(e.message)
                return 1
            logger.info(f"Admin {admin.email} created")
            return 0
    finally:
        await engine.dispose()


async def run_sweep_async(
    older_than_minutes: int = 0,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
) -> int:
    """Query the gateway for every pending payment and apply the outcomes.

    Args:
        older_than_minutes: Skip payments initiated more recently.
        output_file: Optional output file path.
        output_format: Output format ('json', 'csv', 'text').
        include_details: Include per-payment items in JSON output.

    Returns:
        Exit code (0 clean, 1 some payments could not be checked, 2 sweep failed).
    """
    engine = create_async_engine(get_database_url())
    await create_tables(engine)
    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            service = ReconciliationService(session, config=PortalConfig.from_env())
            report = await service.sweep_pending(older_than_minutes)
            if report.status == ReconciliationStatus.COMPLETED:
                await session.commit()
            else:
                await session.rollback()

            output = service.generate_report(report, format=output_format, include_details=include_details)
            if output_file:
                with open(output_file, "w") as f:
                    f.write(output)
                logger.info(f"Report written to {output_file}")
            else:
                print(output)

            if report.status != ReconciliationStatus.COMPLETED:
                logger.error(f"Sweep failed: {report.error_message}")
                return 2
            if report.total_errors:
                logger.warning(f"Sweep completed with {report.total_errors} unreachable payments")
                return 1
            return 0
    finally:
        await engine.dispose()


async def export_participants_async(output_file: Optional[str] = None) -> int:
    from .exports import ExportService

    engine = create_async_engine(get_database_url())
    await create_tables(engine)
    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            content = await ExportService(session).participants_csv()
    finally:
        await engine.dispose()

    if output_file:
        with open(output_file, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.info(f"Participants written to {output_file}")
    else:
        print(content, end="")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="iftar-portal",
        description="Administration tools for the Iftar event portal.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    admin_parser = subparsers.add_parser("create-admin", help="Create an admin account")
    admin_parser.add_argument("--email", required=True, help="Admin email")
    admin_parser.add_argument("--password", required=True, help="Admin password (8 characters minimum)")
    admin_parser.add_argument("--name", default=None, help="Admin display name")

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Check pending gateway payments against the gateway",
    )
    sweep_parser.add_argument(
        "--older-than",
        type=int,
        default=0,
        help="Only check payments initiated at least this many minutes ago (default: 0)",
    )
    sweep_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    sweep_parser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text"],
        default="json",
        help="Output format (default: json)",
    )
    sweep_parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Only include summary statistics, not per-payment items",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    export_parser = subparsers.add_parser("export", help="Export participants as CSV")
    export_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "init-db":
        return asyncio.run(init_db_async())

    if parsed_args.command == "create-admin":
        return asyncio.run(create_admin_async(parsed_args.email, parsed_args.password, parsed_args.name))

    if parsed_args.command == "sweep":
        if parsed_args.older_than < 0:
            logger.error("--older-than must be zero or positive")
            return 1
        return asyncio.run(run_sweep_async(
            older_than_minutes=parsed_args.older_than,
            output_file=parsed_args.output,
            output_format=parsed_args.format,
            include_details=not parsed_args.summary_only,
        ))

    if parsed_args.command == "serve":
        import uvicorn

        logger.info(f"Serving on {parsed_args.host}:{parsed_args.port}")
        uvicorn.run("iftar_portal.api:app", host=parsed_args.host, port=parsed_args.port)
        return 0

    if parsed_args.command == "export":
        return asyncio.run(export_participants_async(parsed_args.output))

    return 0


if __name__ == "__main__":
    sys.exit(main())
