"""Command line entry point for tierbackup."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from tiercore.logging_utils import configure_console_logging
from tiercore.paths import resolve_config_path
from tiercore.settings import ConfigError, load_config

from .api import BackupService
from .errors import BackupError
from .types import BackupSummary

LOGGER = logging.getLogger("tierbackup.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tierbackup",
        description="Create, verify, rotate and restore tiered backups of a directory",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: $TIERBACKUP_CONFIG or ./backup.config)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Log the intended backup without writing anything")
    mode.add_argument(
        "--restore",
        nargs=2,
        metavar=("ARCHIVE", "RESTORE_DIR"),
        help="Extract ARCHIVE from the destination into RESTORE_DIR",
    )
    mode.add_argument("--list", action="store_true", help="List archives at the destination")
    mode.add_argument("--verify", metavar="ARCHIVE", help="Re-check ARCHIVE against its checksum file")
    parser.add_argument("source", nargs="?", type=Path, help="Directory to back up")
    return parser


def human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            return f"{int(value)}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"  # pragma: no cover


def format_listing(summaries: List[BackupSummary]) -> List[str]:
    lines = []
    for item in summaries:
        flag = "" if item.has_checksum else "  (no checksum)"
        lines.append(f"{human_size(item.size_bytes):>8}  {item.created:%Y-%m-%d %H:%M}  {item.name}{flag}")
    return lines


def _dispatch(service: BackupService, args: argparse.Namespace) -> int:
    if args.list:
        LOGGER.info("Available Backups in %s:", service.destination)
        summaries = service.list_backups()
        if not summaries:
            print("No backups found.", file=sys.stderr)
            return 0
        for line in format_listing(summaries):
            print(line)
        return 0

    if args.restore:
        name, target = args.restore
        result = service.restore(name, Path(target))
        LOGGER.info("Restored backup %s to %s", result["archive"], result["target"])
        return 0

    if args.verify:
        verified = service.verify(args.verify)
        LOGGER.info("Checksum verified successfully for %s", verified.name)
        return 0

    summary = service.run(args.source, dry_run=args.dry_run)
    if summary.backup.dry_run:
        LOGGER.info("[DRY RUN] Would back up: %s -> %s", summary.backup.source, service.destination)
    else:
        removed = len(summary.retention.removed) if summary.retention else 0
        LOGGER.info("SUCCESS: Backup created: %s (%d old backups removed)", summary.backup.name, removed)
    return 0


def cli(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    needs_source = not (args.list or args.restore or args.verify)
    if needs_source and args.source is None:
        parser.error("a source directory is required")
    if not needs_source and args.source is not None:
        parser.error("a source directory cannot be combined with --list, --restore or --verify")

    configure_console_logging(verbose=args.verbose)
    try:
        config = load_config(resolve_config_path(args.config))
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    for line in config.describe():
        LOGGER.debug("config %s", line)

    service = BackupService(config)
    try:
        return _dispatch(service, args)
    except BackupError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
