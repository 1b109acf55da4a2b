#!/usr/bin/env python3
"""
Main entry point for the formula installer.
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from config.settings import Settings
from formula_installer.core.errors import FormulaInstallerError
from formula_installer.core.executor import InstallExecutor
from formula_installer.core.fetcher import SourceFetcherAdapter
from formula_installer.core.orchestrator import InstallerOrchestrator
from formula_installer.core.records import InstallRecordStore
from formula_installer.integrations.command_runner import SubprocessRunner
from formula_installer.integrations.fetchers import FetcherRegistry, GitFetcher, HttpFetcher
from formula_installer.integrations.formula_loader import FormulaLoader
from formula_installer.integrations.host_probe import HostProbe
from formula_installer.models.installation import InstallStage, STAGE_EXIT_CODES
from formula_installer.utils.logging import setup_root_logger

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Install packages described by declarative formulas"
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file (JSON format)"
    )

    parser.add_argument(
        "--install-root",
        type=Path,
        help="Root directory for installed formulae"
    )

    parser.add_argument(
        "--formula-dir",
        type=Path,
        help="Directory containing <name>.json formula descriptors"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    install = subparsers.add_parser("install", help="Install one or more formulae")
    install.add_argument("formulae", nargs="+", help="Formula names or descriptor paths")
    install.add_argument("--force", action="store_true", help="Reinstall even if already installed")
    install.add_argument(
        "--tool",
        action="append",
        default=[],
        metavar="NAME=VERSION",
        help="Override a probed host tool version (repeatable)"
    )

    uninstall = subparsers.add_parser("uninstall", help="Remove an installed formula")
    uninstall.add_argument("formula", help="Formula name")
    uninstall.add_argument("--version", dest="formula_version", help="Only remove this version")

    subparsers.add_parser("list", help="List installed formulae")

    return parser.parse_args(argv)


def load_config(args) -> Settings:
    """Load configuration from file, environment and command line."""
    config_data: Dict = {}
    if args.config and args.config.exists():
        with open(args.config) as f:
            config_data = json.load(f)

    # Override with command line args
    if args.install_root:
        config_data.setdefault("storage", {})["install_root"] = str(args.install_root)
    if args.formula_dir:
        config_data.setdefault("storage", {})["formula_dir"] = str(args.formula_dir)
    if args.log_level:
        config_data.setdefault("logging", {})["level"] = args.log_level

    return Settings(**config_data)


def build_orchestrator(settings: Settings) -> InstallerOrchestrator:
    """Wire the installer components from settings."""
    http_fetcher = HttpFetcher()
    fetcher = SourceFetcherAdapter(
        fetcher=FetcherRegistry({
            "git": GitFetcher(git_binary=settings.fetch.git_binary),
            "http": http_fetcher,
            "archive": http_fetcher,
        }),
        work_root=settings.storage.work_root,
        timeout_seconds=settings.fetch.timeout_seconds,
    )
    executor = InstallExecutor(
        runner=SubprocessRunner(),
        command_timeout=settings.executor.command_timeout_seconds,
    )
    return InstallerOrchestrator(
        fetcher=fetcher,
        executor=executor,
        record_store=InstallRecordStore(settings.storage.get_records_path()),
        install_root=settings.storage.install_root,
        fetch_retry_attempts=settings.fetch.retry_attempts,
        retry_delay_seconds=settings.fetch.retry_delay_seconds,
        max_retry_delay_seconds=settings.fetch.max_retry_delay_seconds,
        retry_jitter=settings.fetch.retry_jitter,
        max_concurrent_installs=settings.concurrency.max_concurrent_installs,
    )


def parse_tool_overrides(values: List[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for value in values:
        name, sep, version = value.partition("=")
        if not sep or not name or not version:
            raise ValueError(f"Expected NAME=VERSION, got '{value}'")
        overrides[name.strip()] = version.strip()
    return overrides


async def run_install(args, settings: Settings, orchestrator: InstallerOrchestrator) -> int:
    probe = HostProbe(
        tool_probes=settings.host.tool_probes,
        capability_candidates=settings.host.capability_candidates,
        capability_variables=settings.host.capability_variables,
        timeout_seconds=settings.host.probe_timeout_seconds,
    )
    host_env = probe.snapshot(parse_tool_overrides(args.tool))
    loader = FormulaLoader(settings.storage.formula_dir)

    exit_code = 0
    for reference in args.formulae:
        try:
            descriptor = loader.load_descriptor(reference)
        except FormulaInstallerError as e:
            logger.error(f"{reference}: {e}")
            exit_code = exit_code or STAGE_EXIT_CODES[InstallStage.VALIDATING]
            continue

        outcome = await orchestrator.install_descriptor(descriptor, host_env, force=args.force)
        if outcome.succeeded:
            status = "already installed" if outcome.already_installed else "installed"
            logger.info(f"{outcome.formula_name} {outcome.version} {status} at {outcome.record.location}")
        else:
            logger.error(f"{outcome.formula_name} {outcome.version} failed while "
                         f"{outcome.failed_stage.value}: {outcome.error}")
            exit_code = exit_code or outcome.exit_code
    return exit_code


async def run_uninstall(args, orchestrator: InstallerOrchestrator) -> int:
    removed = await orchestrator.uninstall(args.formula, args.formula_version)
    if not removed:
        logger.error(f"{args.formula} is not installed")
        return 1
    for record in removed:
        logger.info(f"Removed {record.name} {record.version}")
    return 0


def run_list(orchestrator: InstallerOrchestrator) -> int:
    for record in orchestrator.record_store.list():
        print(f"{record.name}\t{record.version}\t{record.revision}\t{record.location}")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        settings = load_config(args)
    except Exception as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    # Setup logging
    setup_root_logger(
        settings.logging.file_path,
        settings.logging.level,
        format_string=settings.logging.format,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    logger.debug(f"Arguments: {vars(args)}")

    try:
        orchestrator = build_orchestrator(settings)
        if args.command == "install":
            return await run_install(args, settings, orchestrator)
        if args.command == "uninstall":
            return await run_uninstall(args, orchestrator)
        return run_list(orchestrator)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def cli() -> None:
    # Load environment variables from .env file
    load_dotenv()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
