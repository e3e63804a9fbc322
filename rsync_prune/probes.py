"""Disk utilization and inode probes for the backup volume."""

from __future__ import annotations

import math
import os
from pathlib import Path


class ProbeError(RuntimeError):
    """Raised when a filesystem statistics query fails."""


class DiskProbe:
    """Resource probe abstraction for testability."""

    def disk_utilization_percent(self, path: Path) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def free_inodes(self, path: Path) -> int:  # pragma: no cover - interface
        raise NotImplementedError


class StatvfsProbe(DiskProbe):
    """Reads the filesystem containing ``path`` through ``os.statvfs``.

    Utilization is reported the way ``df`` computes ``Use%``: blocks reserved
    for root count as neither used nor available, and the result is rounded up.
    """

    def disk_utilization_percent(self, path: Path) -> int:
        st = _statvfs(path)
        used = st.f_blocks - st.f_bfree
        usable = used + st.f_bavail
        if usable <= 0:
            raise ProbeError(f"filesystem at {path} does not report block counts")
        return math.ceil(used * 100 / usable)

    def free_inodes(self, path: Path) -> int:
        st = _statvfs(path)
        if st.f_files == 0:
            raise ProbeError(f"filesystem at {path} does not report inode counts")
        return st.f_ffree


def _statvfs(path: Path) -> os.statvfs_result:
    try:
        return os.statvfs(path)
    except OSError as exc:
        raise ProbeError(f"failed to query filesystem at {path}: {exc}") from exc
