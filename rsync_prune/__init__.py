"""Hard-link rsync snapshots and disk-pressure pruning."""

__version__ = "0.1.0"
