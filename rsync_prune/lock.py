"""Backup-root lock shared by the prune and backup commands.

The lock file holds one line, ``<pid> <command>``, so a refused run can report
which command owns the root. A lock left behind by a dead process is removed
and the create is retried once.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

LOCK_FILE_NAME = ".rsync_prune.lock"


class LockError(RuntimeError):
    """Raised when the backup root cannot be locked."""


@dataclass(frozen=True)
class LockOwner:
    pid: int
    command: str = "unknown"

    @classmethod
    def parse(cls, text: str) -> LockOwner | None:
        fields = text.split()
        if not fields:
            return None
        try:
            pid = int(fields[0])
        except ValueError:
            return None
        if len(fields) > 1:
            return cls(pid, fields[1])
        return cls(pid)

    def render(self) -> str:
        return f"{self.pid} {self.command}\n"

    def describe(self) -> str:
        return f"{self.command} (pid {self.pid})"

    def is_alive(self) -> bool:
        if self.pid <= 0:
            return False
        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by another user
            return True
        return True


def read_owner(path: Path) -> LockOwner | None:
    try:
        text = path.read_text()
    except OSError:
        return None
    return LockOwner.parse(text)


class BackupRootLock:
    def __init__(
        self,
        backup_dir: Path,
        command: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backup_dir = backup_dir
        self.command = command
        self.logger = logger or logging.getLogger(__name__)
        self.owner: LockOwner | None = None

    @property
    def path(self) -> Path:
        return self.backup_dir / LOCK_FILE_NAME

    @property
    def held(self) -> bool:
        return self.owner is not None

    def acquire(self) -> BackupRootLock:
        me = LockOwner(os.getpid(), self.command)
        if not self._create(me):
            self._remove_stale()
            if not self._create(me):
                holder = read_owner(self.path)
                raise LockError(
                    f"backup root {self.backup_dir} was taken by "
                    f"{holder.describe() if holder else 'another run'}"
                )
        self.owner = me
        return self

    def release(self) -> None:
        if self.owner is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        finally:
            self.owner = None

    def _create(self, owner: LockOwner) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockError(f"cannot create lock {self.path}: {exc}") from exc
        with os.fdopen(fd, "w") as handle:
            handle.write(owner.render())
        return True

    def _remove_stale(self) -> None:
        holder = read_owner(self.path)
        if holder is not None and holder.is_alive():
            raise LockError(
                f"backup root {self.backup_dir} is in use by {holder.describe()}"
            )
        self.logger.warning(
            "event=stale_lock_removed path=%s holder=%s",
            self.path,
            holder.describe() if holder else "unreadable",
        )
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise LockError(f"cannot remove stale lock {self.path}: {exc}") from exc

    def __enter__(self) -> BackupRootLock:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
