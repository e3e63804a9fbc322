"""Package entrypoint."""

from __future__ import annotations

from rsync_prune.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
