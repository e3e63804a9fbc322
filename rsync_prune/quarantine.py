"""Two-phase snapshot deletion through a trash directory."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from rsync_prune.inventory import snapshot_path

TRASH_DIR_NAME = ".trash"


class QuarantineError(RuntimeError):
    """Raised when a snapshot cannot be moved into the trash directory."""


class PurgeError(RuntimeError):
    """Raised when trash contents cannot be deleted."""


class Quarantine:
    """Snapshots are renamed into ``<backup_dir>/.trash`` and deleted later.

    The rename is atomic on one filesystem, so a crash leaves each snapshot
    either in place or in the trash, and a later purge finishes the job.
    """

    def __init__(
        self, backup_dir: Path, logger: logging.Logger | None = None
    ) -> None:
        self.backup_dir = backup_dir
        self.path = backup_dir / TRASH_DIR_NAME
        self.logger = logger or logging.getLogger(__name__)

    def ensure(self) -> None:
        try:
            self.path.mkdir(exist_ok=True)
        except OSError as exc:
            raise QuarantineError(
                f"failed to create trash directory {self.path}: {exc}"
            ) from exc

    def path_for(self, host: str, timestamp: str) -> Path:
        return self.path / f"{host}.{timestamp}"

    def pending(self) -> list[Path]:
        if not self.path.exists():
            return []
        return sorted(self.path.iterdir())

    def move(self, host: str, timestamp: str) -> Path:
        source = snapshot_path(self.backup_dir, host, timestamp)
        target = self.path_for(host, timestamp)
        if target.exists():
            raise QuarantineError(
                f"cannot move {source} to {target}: target already exists"
            )
        try:
            os.rename(source, target)
        except OSError as exc:
            raise QuarantineError(
                f"cannot move {source} to {target}: {exc}"
            ) from exc
        return target

    def purge(self) -> int:
        """Delete everything in the trash; returns the number of entries."""
        try:
            entries = self.pending()
        except OSError as exc:
            raise PurgeError(f"failed to list {self.path}: {exc}") from exc
        for entry in entries:
            self.logger.debug("event=purge_entry path=%s", entry)
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as exc:
                raise PurgeError(f"failed to delete {entry}: {exc}") from exc
        return len(entries)
