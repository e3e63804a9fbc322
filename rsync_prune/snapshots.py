"""Hard-linked snapshot creation with rsync."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from rsync_prune.config import BackupConfig
from rsync_prune.inventory import format_timestamp, is_timestamp, snapshot_path

STAGING_DIR_NAME = ".incomplete"

# 24 means some source files vanished during transfer, expected on a live system.
RSYNC_OK_CODES = (0, 24)

RSYNC_BASE_ARGS = (
    "--archive",
    "--hard-links",
    "--acls",
    "--xattrs",
    "--numeric-ids",
    "--one-file-system",
    "--delete",
    "--delete-excluded",
    "--partial-dir=.rsync-partial",
)


class SnapshotError(RuntimeError):
    """Raised on snapshot creation errors."""


@dataclass(frozen=True)
class Snapshot:
    host: str
    timestamp: str
    path: Path


class CommandRunner:
    """Command runner abstraction for testability."""

    def run(self, args: list[str]) -> int:  # pragma: no cover - interface
        raise NotImplementedError


class SubprocessRunner(CommandRunner):
    def run(self, args: list[str]) -> int:
        try:
            completed = subprocess.run(args, check=False)
        except OSError as exc:
            raise SnapshotError(f"failed to start {args[0]}: {exc}") from exc
        return completed.returncode


class SnapshotManager:
    def __init__(
        self,
        backup_dir: Path,
        runner: CommandRunner,
        config: BackupConfig | None = None,
        now: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backup_dir = backup_dir
        self.runner = runner
        self.config = config or BackupConfig()
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger(__name__)

    def list_snapshots(self, host: str) -> list[Snapshot]:
        host_dir = self.backup_dir / host
        if not host_dir.exists():
            return []
        try:
            entries = list(host_dir.iterdir())
        except OSError as exc:
            raise SnapshotError(f"failed to list {host_dir}: {exc}") from exc
        snapshots = [
            Snapshot(host=host, timestamp=entry.name, path=entry)
            for entry in entries
            if is_timestamp(entry.name) and entry.is_dir()
        ]
        snapshots.sort(key=lambda snap: snap.timestamp, reverse=True)
        return snapshots

    def link_dests(self, host: str) -> list[Path]:
        snapshots = self.list_snapshots(host)
        return [snap.path for snap in snapshots[: self.config.link_dest_count]]

    def staging_path(self, host: str) -> Path:
        return self.backup_dir / host / STAGING_DIR_NAME

    def build_command(
        self, source: str, target: Path, link_dests: list[Path]
    ) -> list[str]:
        args = [self.config.rsync_path, *RSYNC_BASE_ARGS]
        if self.config.ssh_key is not None:
            args.append(f"--rsh=ssh -i {self.config.ssh_key}")
        args.extend(f"--exclude={pattern}" for pattern in self.config.excludes)
        args.extend(self.config.extra_args)
        args.extend(f"--link-dest={path.resolve()}" for path in link_dests)
        args.extend([source, str(target)])
        return args

    def create_snapshot(self, host: str, source: str) -> Snapshot:
        if not host or host.startswith(".") or os.sep in host:
            raise SnapshotError(f"invalid host name: {host!r}")
        timestamp = format_timestamp(self.now())
        path = snapshot_path(self.backup_dir, host, timestamp)
        if path.exists():
            raise SnapshotError(f"snapshot already exists: {path}")

        link_dests = self.link_dests(host)
        staging = self.staging_path(host)
        try:
            staging.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SnapshotError(f"failed to create {staging}: {exc}") from exc
        args = self.build_command(source, staging, link_dests)
        self.logger.info(
            "event=rsync_start host=%s source=%s link_dest_count=%d",
            host,
            source,
            len(link_dests),
        )
        self.logger.debug("event=rsync_command args=%s", args)
        returncode = self.runner.run(args)
        if returncode not in RSYNC_OK_CODES:
            raise SnapshotError(
                f"rsync for host {host} exited with code {returncode}; "
                f"partial transfer left in {staging}"
            )
        if returncode != 0:
            self.logger.warning(
                "event=rsync_partial host=%s returncode=%d", host, returncode
            )
        try:
            os.rename(staging, path)
        except OSError as exc:
            raise SnapshotError(
                f"failed to move {staging} to {path}: {exc}"
            ) from exc
        return Snapshot(host=host, timestamp=timestamp, path=path)
