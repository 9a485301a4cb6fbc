"""
Tests for atomic file writes, permission capabilities and environment
providers.
"""

import os
import shutil
import stat
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from skm.environment import StaticEnvironment, SystemEnvironment
from skm.errors import BackupIOError
from skm.fileio import (
    FilePermissions,
    NoopPermissions,
    atomic_write,
    default_permissions,
    read_file_if_exists,
)


class RecordingPermissions(FilePermissions):
    """Permission capability that records calls instead of applying them."""

    def __init__(self):
        self.calls = []

    def restrict_private(self, path):
        self.calls.append(("private", Path(path).parent))

    def allow_public(self, path):
        self.calls.append(("public", Path(path).parent))

    def restrict_directory(self, path):
        self.calls.append(("directory", Path(path)))


class TestAtomicWrite(unittest.TestCase):
    """Tests for atomic_write()."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_writes_and_creates_parents(self):
        """Test data lands at the final path in a new directory."""
        path = self.root / "a" / "b" / "file"

        atomic_write(path, b"content")

        self.assertEqual(path.read_bytes(), b"content")
        self.assertEqual(os.listdir(path.parent), ["file"])

    def test_replaces_existing(self):
        """Test an existing file is replaced whole."""
        path = self.root / "file"
        path.write_bytes(b"old content that is longer")

        atomic_write(path, b"new")

        self.assertEqual(path.read_bytes(), b"new")

    @unittest.skipUnless(os.name == "posix", "POSIX permissions only")
    def test_modes(self):
        """Test private and public modes."""
        private = self.root / "id_rsa"
        public = self.root / "id_rsa.pub"

        atomic_write(private, b"x", private=True)
        atomic_write(public, b"y", private=False)

        self.assertEqual(stat.S_IMODE(private.stat().st_mode), 0o600)
        self.assertEqual(stat.S_IMODE(public.stat().st_mode), 0o644)

    def test_permission_capability_is_used(self):
        """Test the injected capability decides the mode."""
        permissions = RecordingPermissions()

        atomic_write(self.root / "k", b"x", private=True, permissions=permissions)
        atomic_write(self.root / "k.pub", b"y", permissions=permissions)

        self.assertEqual(permissions.calls, [("private", self.root), ("public", self.root)])

    def test_name_at_filesystem_limit(self):
        """Test a 255-byte file name does not overflow the temp file name."""
        path = self.root / ("n" * 255)

        atomic_write(path, b"content")

        self.assertEqual(path.read_bytes(), b"content")
        self.assertEqual(os.listdir(self.root), ["n" * 255])

    def test_failure_leaves_no_temp_file(self):
        """Test a failed rename cleans up and keeps the old file."""
        path = self.root / "file"
        path.write_bytes(b"original")

        with patch("skm.fileio.os.replace", side_effect=OSError("boom")):
            with self.assertRaises(BackupIOError) as cm:
                atomic_write(path, b"new")

        self.assertEqual(cm.exception.path, path)
        self.assertEqual(path.read_bytes(), b"original")
        self.assertEqual(os.listdir(self.root), ["file"])

    def test_parent_is_a_file(self):
        """Test an impossible destination raises BackupIOError."""
        blocker = self.root / "blocker"
        blocker.write_bytes(b"")

        with self.assertRaises(BackupIOError):
            atomic_write(blocker / "file", b"x")


class TestReadFileIfExists(unittest.TestCase):
    """Tests for read_file_if_exists()."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing(self):
        """Test a missing file reads as None."""
        self.assertIsNone(read_file_if_exists(self.root / "missing"))

    def test_present(self):
        """Test an existing file is read."""
        (self.root / "f").write_bytes(b"data")
        self.assertEqual(read_file_if_exists(self.root / "f"), b"data")

    def test_unreadable(self):
        """Test a directory raises BackupIOError."""
        with self.assertRaises(BackupIOError):
            read_file_if_exists(self.root)


class TestPermissions(unittest.TestCase):
    """Tests for the permission capabilities."""

    def test_default_permissions(self):
        """Test the platform default."""
        permissions = default_permissions()
        if os.name == "posix":
            self.assertNotIsInstance(permissions, NoopPermissions)
        else:
            self.assertIsInstance(permissions, NoopPermissions)

    def test_noop_permissions(self):
        """Test the no-op capability never touches the file."""
        with patch("skm.fileio.os.chmod") as chmod:
            permissions = NoopPermissions()
            permissions.restrict_private(Path("x"))
            permissions.allow_public(Path("x"))
            permissions.restrict_directory(Path("x"))
        chmod.assert_not_called()


class TestEnvironment(unittest.TestCase):
    """Tests for environment providers."""

    def test_static_environment(self):
        """Test fixed values are returned."""
        clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        env = StaticEnvironment(host="h", user="u", clock=clock)

        self.assertEqual(env.hostname(), "h")
        self.assertEqual(env.username(), "u")
        self.assertEqual(env.now(), clock)

    def test_system_username_from_environment(self):
        """Test USER is preferred."""
        with patch.dict(os.environ, {"USER": "carol"}):
            self.assertEqual(SystemEnvironment().username(), "carol")

    def test_system_hostname_fallback(self):
        """Test a failing hostname lookup falls back to localhost."""
        with patch("skm.environment.socket.gethostname", side_effect=OSError):
            self.assertEqual(SystemEnvironment().hostname(), "localhost")

    def test_system_now_is_aware(self):
        """Test the system clock carries a UTC offset."""
        self.assertIsNotNone(SystemEnvironment().now().tzinfo)


if __name__ == "__main__":
    unittest.main()
