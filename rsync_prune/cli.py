"""CLI entrypoint and logging setup."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Iterable

from rsync_prune.config import Config, ConfigError, load_config
from rsync_prune.orchestrator import (
    BackupOrchestrator,
    BackupRequest,
    PruneOrchestrator,
    PruneRequest,
)

EXIT_CONFIG_ERROR = 2

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rsync-prune",
        description="Hard-link rsync snapshots with disk-pressure pruning.",
    )
    subparsers = parser.add_subparsers(dest="command")

    prune = subparsers.add_parser("prune", help="delete old snapshots")
    _add_common_args(prune)
    prune.add_argument(
        "--max-disk-util-percent",
        type=int,
        help="prune while disk utilization is above this percentage (default 90)",
    )
    prune.add_argument(
        "--max-age-days",
        type=int,
        help="prune snapshots older than this many days (default 180)",
    )
    prune.add_argument(
        "--min-backups",
        type=int,
        help="never keep fewer than this many snapshot timestamps (default 14)",
    )
    prune.add_argument(
        "--min-free-inodes",
        type=int,
        help="prune while fewer inodes are free (default disabled)",
    )
    prune.add_argument(
        "--purge-each",
        action="store_true",
        default=None,
        help="empty the trash after every removed timestamp",
    )
    prune.add_argument(
        "--dry-run", action="store_true", help="report removals only"
    )

    backup = subparsers.add_parser("backup", help="take a snapshot with rsync")
    _add_common_args(backup)
    backup.add_argument("--host", required=True, help="host name for the snapshot")
    backup.add_argument(
        "source", help="local path or host:/path passed to rsync as the source"
    )
    backup.add_argument(
        "--link-dest-count",
        type=int,
        help="number of recent snapshots used as --link-dest (default 1)",
    )
    backup.add_argument("--ssh-key", help="SSH identity file for remote sources")
    backup.add_argument(
        "--exclude",
        action="append",
        help="rsync exclude pattern (repeatable)",
    )

    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    if not argv:
        parser.print_help()
        raise SystemExit(0)
    args = parser.parse_args(argv)
    if args.command is None:
        parser.error("command required")
    return args


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("backup_dir", help="root of the snapshot tree")
    parser.add_argument("--config", help="path to config.toml")
    parser.add_argument("--log-level", help="override log level")
    parser.add_argument("--log-file", help="also write the log to this file")


def setup_logging(level: str, log_file: Path | None = None) -> None:
    numeric = _parse_level(level)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def main(argv: Iterable[str] | None = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    try:
        config = load_cli_config(args)
    except ConfigError as exc:
        print(f"config error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        setup_logging(config.global_cfg.log_level, config.global_cfg.log_file)
    except OSError as exc:
        print(f"config error: cannot open log file: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    logging.getLogger(__name__).info(
        "event=command_start command=%s backup_dir=%s",
        args.command,
        config.prune.backup_dir,
    )
    if args.command == "prune":
        return PruneOrchestrator(config).run(PruneRequest(dry_run=args.dry_run))
    if args.command == "backup":
        return BackupOrchestrator(config).run(
            BackupRequest(host=args.host, source=args.source)
        )
    return EXIT_CONFIG_ERROR


def load_cli_config(args: argparse.Namespace) -> Config:
    config_path = None
    if args.config:
        config_path = Path(args.config).expanduser()
    config = load_config(config_path, _overrides(args))
    backup_dir = config.prune.backup_dir
    if not backup_dir.is_dir():
        raise ConfigError(f"backup directory not found: {backup_dir}")
    return config


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "prune.backup_dir": os.path.abspath(os.path.expanduser(args.backup_dir)),
        "global.log_level": args.log_level,
        "global.log_file": _abspath_or_none(args.log_file),
    }
    if args.command == "prune":
        overrides.update(
            {
                "prune.max_disk_util_percent": args.max_disk_util_percent,
                "prune.max_age_days": args.max_age_days,
                "prune.min_backups": args.min_backups,
                "prune.min_free_inodes": args.min_free_inodes,
                "prune.purge_each": args.purge_each,
            }
        )
    elif args.command == "backup":
        overrides.update(
            {
                "backup.link_dest_count": args.link_dest_count,
                "backup.ssh_key": _abspath_or_none(args.ssh_key),
                "backup.excludes": args.exclude,
            }
        )
    return overrides


def _abspath_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    return os.path.abspath(os.path.expanduser(value))


def _parse_level(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        pass
    normalized = value.lower()
    mapping = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    if normalized not in mapping:
        raise ConfigError(f"invalid log level: {value}")
    return mapping[normalized]
