"""Basic smoke tests for package import/entrypoint."""

from __future__ import annotations

import io
import unittest
from contextlib import redirect_stdout

import rsync_prune
from rsync_prune import cli


class SmokeTests(unittest.TestCase):
    def test_import_version(self) -> None:
        self.assertIsInstance(rsync_prune.__version__, str)

    def test_main_returns_zero(self) -> None:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            self.assertEqual(cli.main([]), 0)
        self.assertIn("prune", buffer.getvalue())


if __name__ == "__main__":
    unittest.main()
