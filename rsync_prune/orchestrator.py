"""Prune and backup run orchestration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from rsync_prune.config import Config
from rsync_prune.inventory import InventoryError, scan
from rsync_prune.lock import BackupRootLock, LockError
from rsync_prune.probes import DiskProbe, ProbeError, StatvfsProbe
from rsync_prune.quarantine import PurgeError, Quarantine, QuarantineError
from rsync_prune.retention import PruneResult, RetentionEngine
from rsync_prune.snapshots import (
    CommandRunner,
    SnapshotError,
    SnapshotManager,
    SubprocessRunner,
)

EXIT_OK = 0
EXIT_FAILED = 1


@dataclass(frozen=True)
class PruneRequest:
    dry_run: bool = False


@dataclass(frozen=True)
class BackupRequest:
    host: str
    source: str


class PruneOrchestrator:
    def __init__(
        self,
        config: Config,
        probe: DiskProbe | None = None,
        now: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.probe = probe or StatvfsProbe()
        self.now = now
        self.logger = logger or logging.getLogger(__name__)
        self.last_result: PruneResult | None = None

    def run(self, request: PruneRequest) -> int:
        if request.dry_run:
            return self._run_unlocked(request)

        lock = BackupRootLock(self.config.prune.backup_dir, "prune")
        try:
            lock.acquire()
        except LockError as exc:
            self.logger.error("event=prune_lock_failed error=%s", exc)
            return EXIT_FAILED
        try:
            return self._run_unlocked(request)
        finally:
            lock.release()

    def _run_unlocked(self, request: PruneRequest) -> int:
        prune_cfg = self.config.prune
        quarantine = Quarantine(prune_cfg.backup_dir)
        try:
            if not request.dry_run:
                self._purge_leftovers(quarantine)
            inventory = scan(prune_cfg.backup_dir)
            self.logger.info(
                "event=prune_start backup_dir=%s timestamps=%d min_backups=%d dry_run=%s",
                prune_cfg.backup_dir,
                len(inventory),
                prune_cfg.min_backups,
                request.dry_run,
            )
            engine = RetentionEngine(
                prune_cfg,
                self.probe,
                quarantine,
                now=self.now,
                dry_run=request.dry_run,
            )
            self.last_result = engine.run(inventory)
        except InventoryError as exc:
            self.logger.error("event=prune_scan_failed error=%s", exc)
            return EXIT_FAILED
        except ProbeError as exc:
            self.logger.error("event=prune_probe_failed error=%s", exc)
            return EXIT_FAILED
        except QuarantineError as exc:
            self.logger.error("event=prune_quarantine_failed error=%s", exc)
            return EXIT_FAILED
        except PurgeError as exc:
            self.logger.error("event=prune_purge_failed error=%s", exc)
            return EXIT_FAILED
        return EXIT_OK

    def _purge_leftovers(self, quarantine: Quarantine) -> None:
        try:
            pending = quarantine.pending()
        except OSError as exc:
            raise PurgeError(f"failed to list {quarantine.path}: {exc}") from exc
        if not pending:
            return
        self.logger.warning(
            "event=trash_not_empty path=%s entries=%d",
            quarantine.path,
            len(pending),
        )
        quarantine.purge()


class BackupOrchestrator:
    def __init__(
        self,
        config: Config,
        runner: CommandRunner | None = None,
        now: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or SubprocessRunner()
        self.now = now
        self.logger = logger or logging.getLogger(__name__)

    def run(self, request: BackupRequest) -> int:
        backup_dir = self.config.prune.backup_dir
        lock = BackupRootLock(backup_dir, "backup")
        try:
            lock.acquire()
        except LockError as exc:
            self.logger.error("event=backup_lock_failed error=%s", exc)
            return EXIT_FAILED

        try:
            manager = SnapshotManager(
                backup_dir,
                self.runner,
                self.config.backup,
                now=self.now,
            )
            try:
                snapshot = manager.create_snapshot(request.host, request.source)
            except SnapshotError as exc:
                self.logger.error(
                    "event=backup_failed host=%s error=%s", request.host, exc
                )
                return EXIT_FAILED
            self.logger.info(
                "event=snapshot_created host=%s path=%s",
                snapshot.host,
                snapshot.path,
            )
            return EXIT_OK
        finally:
            lock.release()
