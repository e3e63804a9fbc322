"""Retention policy: decide which snapshots to remove and remove them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from rsync_prune.config import PruneConfig
from rsync_prune.inventory import Inventory, format_timestamp
from rsync_prune.probes import DiskProbe
from rsync_prune.quarantine import Quarantine

TRIGGER_DISK_UTIL = "disk_util"
TRIGGER_AGE = "age"
TRIGGER_INODES = "inodes"


@dataclass(frozen=True)
class Removal:
    timestamp: str
    hosts: tuple[str, ...]
    reason: str


@dataclass
class PruneResult:
    removals: list[Removal] = field(default_factory=list)
    remaining: int = 0
    purged: int = 0

    @property
    def removed_timestamps(self) -> list[str]:
        return [removal.timestamp for removal in self.removals]


class RetentionEngine:
    """Removes the oldest snapshot timestamp while any trigger holds.

    Each iteration checks, in order: the retention floor (stop), disk
    utilization, snapshot age and free inodes. Only the oldest remaining
    timestamp is ever removed, and resource probes are re-read every
    iteration since deleting a snapshot may not free space right away.
    """

    def __init__(
        self,
        config: PruneConfig,
        probe: DiskProbe,
        quarantine: Quarantine,
        now: Callable[[], datetime] | None = None,
        dry_run: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.probe = probe
        self.quarantine = quarantine
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.dry_run = dry_run
        self.logger = logger or logging.getLogger(__name__)

    def oldest_to_keep(self) -> str:
        return format_timestamp(self.now() - timedelta(days=self.config.max_age_days))

    def next_trigger(self, inventory: Inventory, oldest_to_keep: str) -> str | None:
        if len(inventory) <= self.config.min_backups:
            return None
        oldest = inventory.oldest()
        if oldest is None:
            return None

        path = self.config.backup_dir
        utilization = self.probe.disk_utilization_percent(path)
        if utilization > self.config.max_disk_util_percent:
            self.logger.debug(
                "event=trigger_disk_util utilization=%d limit=%d",
                utilization,
                self.config.max_disk_util_percent,
            )
            return TRIGGER_DISK_UTIL
        if oldest < oldest_to_keep:
            self.logger.debug(
                "event=trigger_age oldest=%s oldest_to_keep=%s",
                oldest,
                oldest_to_keep,
            )
            return TRIGGER_AGE
        if self.config.min_free_inodes is not None:
            free = self.probe.free_inodes(path)
            if free < self.config.min_free_inodes:
                self.logger.debug(
                    "event=trigger_inodes free=%d limit=%d",
                    free,
                    self.config.min_free_inodes,
                )
                return TRIGGER_INODES
        return None

    def run(self, inventory: Inventory) -> PruneResult:
        """Prune ``inventory`` in place.

        Raises ``ProbeError``, ``QuarantineError`` or ``PurgeError``; nothing
        is retried.
        """
        result = PruneResult()
        oldest_to_keep = self.oldest_to_keep()
        if not self.dry_run:
            self.quarantine.ensure()

        while True:
            reason = self.next_trigger(inventory, oldest_to_keep)
            if reason is None:
                break
            timestamp = inventory.oldest()
            hosts = tuple(sorted(inventory.hosts(timestamp)))
            for host in hosts:
                self.logger.info(
                    "event=snapshot_remove host=%s timestamp=%s reason=%s dry_run=%s",
                    host,
                    timestamp,
                    reason,
                    self.dry_run,
                )
                if not self.dry_run:
                    self.quarantine.move(host, timestamp)
            inventory.discard(timestamp)
            result.removals.append(
                Removal(timestamp=timestamp, hosts=hosts, reason=reason)
            )
            if self.config.purge_each and not self.dry_run:
                result.purged += self.quarantine.purge()

        if not self.dry_run:
            result.purged += self.quarantine.purge()
        result.remaining = len(inventory)
        self.logger.info(
            "event=prune_complete removed=%d remaining=%d purged=%d",
            len(result.removals),
            result.remaining,
            result.purged,
        )
        return result
