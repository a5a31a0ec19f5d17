# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import httpx
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape as rich_escape

from quota_library import (
    ConfigError,
    QuotaFetchError,
    QuotaOrchestrator,
    QuotaReport,
    QuotaSettings,
    load_settings,
)
from quota_library.config import __version__
from quota_library.failure_logger import setup_failure_logger

from .render import build_quota_table, snapshot_to_json

console = Console()
err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-quota",
        description="Show official Claude Code API quota and limits.",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Manual OAuth token override (disables automatic refresh).",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the quota snapshot as JSON."
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging."
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load settings from this .env file (default: ./.env).",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def configure_logging(verbose: bool, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if quiet and not verbose:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_env_files(env_file: Optional[Path] = None) -> None:
    # Existing environment variables always win over .env values
    load_dotenv(env_file or Path.cwd() / ".env", override=False)


async def fetch_quota(
    settings: QuotaSettings, token: Optional[str] = None
) -> QuotaReport:
    async with httpx.AsyncClient() as client:
        orchestrator = QuotaOrchestrator.from_settings(settings, client=client)
        return await orchestrator.run(manual_override=token)


def print_report(report: QuotaReport, as_json: bool = False) -> None:
    if as_json:
        console.print_json(snapshot_to_json(report))
        return

    table = build_quota_table(report.snapshot)
    if table.row_count == 0:
        logging.warning("No quota data returned from API.")
        console.print("Raw response:")
        console.print_json(data=report.snapshot.raw)
        return
    console.print(table)


def print_fatal(error: QuotaFetchError) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {rich_escape(str(error))}")
    err_console.print(rich_escape(error.remediation))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_env_files(args.env_file)
    configure_logging(args.verbose, quiet=args.json)

    try:
        settings = load_settings()
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {rich_escape(str(e))}")
        return 2

    if settings.failure_log_enabled:
        try:
            setup_failure_logger(settings.log_dir)
        except OSError as e:
            logging.warning(f"Failure log disabled: {e}")

    try:
        report = asyncio.run(fetch_quota(settings, token=args.token))
    except QuotaFetchError as e:
        print_fatal(e)
        return 1
    except KeyboardInterrupt:
        err_console.print("Interrupted.")
        return 130

    print_report(report, as_json=args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
