"""Snapshot manager tests."""

from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from rsync_prune.config import BackupConfig
from rsync_prune.snapshots import SnapshotError, SnapshotManager

WHEN = datetime(2026, 1, 1, 2, 3, 4, tzinfo=timezone.utc)


class RecordingRunner:
    def __init__(self, returncode: int = 0) -> None:
        self.calls: list[list[str]] = []
        self.returncode = returncode

    def run(self, args: list[str]) -> int:
        self.calls.append(args)
        # rsync writes into the last argument
        Path(args[-1], "file.txt").write_text("copied")
        return self.returncode


class SnapshotTests(unittest.TestCase):
    def test_list_snapshots_newest_first(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            for name in ("20260101.000000", "20260103.000000", "20260102.000000"):
                (root / "alpha" / name).mkdir(parents=True)
            (root / "alpha" / ".incomplete").mkdir()
            manager = SnapshotManager(root, RecordingRunner())
            names = [snap.timestamp for snap in manager.list_snapshots("alpha")]
        self.assertEqual(
            names, ["20260103.000000", "20260102.000000", "20260101.000000"]
        )

    def test_list_snapshots_unknown_host(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = SnapshotManager(Path(temp_dir), RecordingRunner())
            self.assertEqual(manager.list_snapshots("alpha"), [])

    def test_first_snapshot_has_no_link_dest(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            runner = RecordingRunner()
            manager = SnapshotManager(root, runner, now=lambda: WHEN)
            snapshot = manager.create_snapshot("alpha", "/etc/")
            self.assertEqual(snapshot.path, root / "alpha" / "20260101.020304")
            self.assertEqual(
                (snapshot.path / "file.txt").read_text(), "copied"
            )
            self.assertFalse(manager.staging_path("alpha").exists())
        self.assertEqual(len(runner.calls), 1)
        args = runner.calls[0]
        self.assertEqual(args[0], "rsync")
        self.assertFalse(any(arg.startswith("--link-dest") for arg in args))
        self.assertEqual(args[-2:], ["/etc/", str(root / "alpha" / ".incomplete")])

    def test_link_dest_chain_uses_newest_snapshots(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            for name in ("20251201.000000", "20251215.000000", "20251231.000000"):
                (root / "alpha" / name).mkdir(parents=True)
            runner = RecordingRunner()
            manager = SnapshotManager(
                root,
                runner,
                BackupConfig(
                    link_dest_count=2,
                    ssh_key=Path("/etc/keys/alpha.key"),
                    excludes=("/tmp/**",),
                ),
                now=lambda: WHEN,
            )
            manager.create_snapshot("alpha", "alpha.example.org:/")
            resolved = root.resolve()
        args = runner.calls[0]
        self.assertIn("--rsh=ssh -i /etc/keys/alpha.key", args)
        self.assertIn("--exclude=/tmp/**", args)
        self.assertEqual(
            [arg for arg in args if arg.startswith("--link-dest=")],
            [
                f"--link-dest={resolved / 'alpha' / '20251231.000000'}",
                f"--link-dest={resolved / 'alpha' / '20251215.000000'}",
            ],
        )

    def test_vanished_files_exit_code_is_success(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = SnapshotManager(
                Path(temp_dir), RecordingRunner(returncode=24), now=lambda: WHEN
            )
            snapshot = manager.create_snapshot("alpha", "/etc/")
            self.assertTrue(snapshot.path.is_dir())

    def test_failed_rsync_keeps_staging(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            manager = SnapshotManager(
                root, RecordingRunner(returncode=23), now=lambda: WHEN
            )
            with self.assertRaises(SnapshotError):
                manager.create_snapshot("alpha", "/etc/")
            self.assertTrue(manager.staging_path("alpha").is_dir())
            self.assertFalse((root / "alpha" / "20260101.020304").exists())

    def test_existing_timestamp_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "alpha" / "20260101.020304").mkdir(parents=True)
            runner = RecordingRunner()
            manager = SnapshotManager(root, runner, now=lambda: WHEN)
            with self.assertRaises(SnapshotError):
                manager.create_snapshot("alpha", "/etc/")
        self.assertEqual(runner.calls, [])

    def test_host_path_not_a_directory_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "alpha").write_text("not a dir")
            runner = RecordingRunner()
            manager = SnapshotManager(root, runner, now=lambda: WHEN)
            with self.assertRaises(SnapshotError) as context:
                manager.create_snapshot("alpha", "/etc/")
        self.assertIn("alpha", str(context.exception))
        self.assertEqual(runner.calls, [])

    def test_unusable_staging_path_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "alpha").mkdir()
            (root / "alpha" / ".incomplete").write_text("stray file")
            runner = RecordingRunner()
            manager = SnapshotManager(root, runner, now=lambda: WHEN)
            with self.assertRaises(SnapshotError) as context:
                manager.create_snapshot("alpha", "/etc/")
        self.assertIn(".incomplete", str(context.exception))
        self.assertEqual(runner.calls, [])

    def test_invalid_host_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = SnapshotManager(Path(temp_dir), RecordingRunner())
            for host in ("", ".trash", "a/b"):
                with self.subTest(host=host):
                    with self.assertRaises(SnapshotError):
                        manager.create_snapshot(host, "/etc/")


if __name__ == "__main__":
    unittest.main()
