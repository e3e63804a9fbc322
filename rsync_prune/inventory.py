"""Snapshot naming and inventory scanning."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping

TIMESTAMP_FORMAT = "%Y%m%d.%H%M%S"

_TIMESTAMP_RE = re.compile(r"^\d{8}\.\d{6}$")


class InventoryError(RuntimeError):
    """Raised when the backup root cannot be scanned."""


def format_timestamp(when: datetime) -> str:
    if when.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return when.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def is_timestamp(name: str) -> bool:
    return _TIMESTAMP_RE.match(name) is not None


def snapshot_path(root: Path, host: str, timestamp: str) -> Path:
    return root / host / timestamp


class Inventory:
    """Snapshots grouped by timestamp.

    The fixed-width timestamp format makes string order chronological, so the
    oldest snapshot is always the smallest key.
    """

    def __init__(self, entries: Mapping[str, Iterable[str]] | None = None) -> None:
        self._hosts: dict[str, frozenset[str]] = {}
        for timestamp, hosts in (entries or {}).items():
            self._hosts[timestamp] = frozenset(hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    def __contains__(self, timestamp: object) -> bool:
        return timestamp in self._hosts

    def __repr__(self) -> str:
        return f"Inventory({len(self)} timestamps)"

    def add(self, host: str, timestamp: str) -> None:
        self._hosts[timestamp] = self._hosts.get(timestamp, frozenset()) | {host}

    def timestamps(self) -> list[str]:
        return sorted(self._hosts)

    def hosts(self, timestamp: str) -> frozenset[str]:
        return self._hosts.get(timestamp, frozenset())

    def oldest(self) -> str | None:
        if not self._hosts:
            return None
        return min(self._hosts)

    def discard(self, timestamp: str) -> None:
        self._hosts.pop(timestamp, None)


def scan(root: Path) -> Inventory:
    """Read ``<root>/<host>/<timestamp>`` directories into an inventory."""
    inventory = Inventory()
    try:
        host_entries = sorted(root.iterdir())
    except OSError as exc:
        raise InventoryError(f"failed to scan {root}: {exc}") from exc
    for host_dir in host_entries:
        if host_dir.name.startswith(".") or not host_dir.is_dir():
            continue
        try:
            children = list(host_dir.iterdir())
        except OSError as exc:
            raise InventoryError(f"failed to scan {host_dir}: {exc}") from exc
        for entry in children:
            if not is_timestamp(entry.name) or not entry.is_dir():
                continue
            inventory.add(host_dir.name, entry.name)
    return inventory
