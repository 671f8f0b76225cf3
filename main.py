#!/usr/bin/env python3
"""
GHL Config Exporter
===================

Exports a location's configuration (funnels, workflows, forms, surveys,
tags) to timestamped JSON files.

Usage:
    python main.py                      # Export everything to ./exports/<timestamp>/
    python main.py --only forms tags    # Export selected resources
    python main.py --config my.yaml     # Read settings from a YAML file
    python main.py --help               # Show help

Credentials come from the environment (or a .env file):
    OAUTH_ACCESS_TOKEN                                   static mode
    OAUTH_CLIENT_ID, OAUTH_CLIENT_SECRET, OAUTH_REFRESH_TOKEN   refresh mode
    LOCATION_ID                                          always required
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent))

import httpx
from rich.console import Console
from rich.table import Table

from core.errors import ExportError
from core.exporter import ExportReport, create_exporter, default_resources
from infra.config import ConfigError, ExportSettings, load_settings
from infra.logging import RunContext, configure_logging


EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2

console = Console()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export location configuration to timestamped JSON files"
    )
    parser.add_argument("--config", default="config.yaml", help="YAML settings file")
    parser.add_argument("--env-file", default=None, help=".env file (default: ./.env)")
    parser.add_argument("--output", default=None, help="Root directory for exports")
    parser.add_argument("--only", nargs="+", metavar="NAME", help="Export only these resources")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level",
    )
    parser.add_argument("--log-file", default=None, help="Write JSON logs to this file")
    parser.add_argument(
        "--skip-preflight", action="store_true", help="Do not check location access first"
    )
    return parser.parse_args(argv)


def print_report(report: ExportReport) -> None:
    table = Table(title=f"Export -> {report.output_dir}")
    table.add_column("Resource", style="cyan")
    table.add_column("Status")
    table.add_column("Details")

    for name, count in report.saved.items():
        status = "[yellow]partial[/yellow]" if name in report.incomplete else "[green]saved[/green]"
        table.add_row(name, status, f"{count} items")
    for name, message in report.failed.items():
        table.add_row(name, "[red]failed[/red]", message)

    console.print(table)


async def export(settings: ExportSettings, args: argparse.Namespace) -> ExportReport:
    async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as http:
        exporter = create_exporter(settings, http=http, only=args.only)
        return await exporter.run(preflight=not args.skip_preflight)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level), log_file=args.log_file)
    logger = logging.getLogger("ghl_export.main")

    try:
        settings = load_settings(
            config_path=args.config,
            env_file=args.env_file,
            output_dir=args.output,
        )
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_FATAL

    if args.only:
        known = {r.name for r in default_resources(settings.location_id)}
        unknown = sorted(set(args.only) - known)
        if unknown:
            console.print(
                f"[red]Unknown resources:[/red] {', '.join(unknown)} "
                f"(choose from {', '.join(sorted(known))})"
            )
            return EXIT_FATAL

    with RunContext() as run_id:
        logger.info(
            f"Run {run_id}: exporting {settings.location_id} "
            f"({settings.credential_mode.value} credentials)"
        )
        try:
            report = asyncio.run(export(settings, args))
        except ExportError as e:
            logger.error(f"Fatal: {e}")
            return EXIT_FATAL

    print_report(report)
    return EXIT_OK if report.success else EXIT_PARTIAL


if __name__ == "__main__":
    sys.exit(main())
