"""
File writing helpers shared by backup import/export and key generation.

Provides:
    - atomic_write(): write bytes to a temporary file in the destination
      directory, then rename it over the final path
    - FilePermissions: capability that applies owner-only or world-readable
      modes to key files; a no-op on platforms without POSIX modes
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from skm.errors import BackupIOError

logger = logging.getLogger(__name__)

PRIVATE_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644
PRIVATE_DIR_MODE = 0o700


class FilePermissions:
    """Applies file modes on platforms that support them."""

    def restrict_private(self, path: Path) -> None:
        """Make a file readable and writable by its owner only."""
        os.chmod(path, PRIVATE_FILE_MODE)

    def allow_public(self, path: Path) -> None:
        """Make a file world-readable and owner-writable."""
        os.chmod(path, PUBLIC_FILE_MODE)

    def restrict_directory(self, path: Path) -> None:
        """Make a directory accessible to its owner only."""
        os.chmod(path, PRIVATE_DIR_MODE)


class NoopPermissions(FilePermissions):
    """Permission capability for platforms without POSIX file modes."""

    def restrict_private(self, path: Path) -> None:
        pass

    def allow_public(self, path: Path) -> None:
        pass

    def restrict_directory(self, path: Path) -> None:
        pass


def default_permissions() -> FilePermissions:
    """Return the permission capability for the current platform."""
    if os.name == "posix":
        return FilePermissions()
    return NoopPermissions()


def atomic_write(
    path: Path,
    data: bytes,
    private: bool = False,
    permissions: FilePermissions | None = None,
) -> None:
    """
    Write data to path so readers see either the old file or the new one.

    The data is written to a temporary file in the same directory, given its
    final permissions, flushed to disk and renamed over the destination.
    Parent directories are created if missing.

    Args:
        path: Destination file path.
        data: Bytes to write.
        private: Apply owner-only permissions instead of world-readable.
        permissions: Permission capability (default: platform default).

    Raises:
        BackupIOError: If any step fails. No temporary file is left behind.
    """
    path = Path(path)
    permissions = permissions or default_permissions()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_name = tempfile.mkstemp(
            prefix=".skm-",
            suffix=".tmp",
            dir=str(path.parent),
        )
    except OSError as e:
        raise BackupIOError(f"Cannot write {path}: {e}", path=path) from e

    temp_path = Path(temp_name)
    try:
        with os.fdopen(temp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        if private:
            permissions.restrict_private(temp_path)
        else:
            permissions.allow_public(temp_path)

        os.replace(temp_path, path)

    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise BackupIOError(f"Cannot write {path}: {e}", path=path) from e

    logger.debug(f"Wrote {len(data)} bytes to {path}")


def read_file_if_exists(path: Path) -> bytes | None:
    """
    Read a file's bytes, or return None when it does not exist.

    Raises:
        BackupIOError: If the file exists but cannot be read.
    """
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise BackupIOError(f"Cannot read {path}: {e}", path=Path(path)) from e
