"""
Key directory scanner.

Enumerates the key pairs in a single directory (typically ~/.ssh). Private
key files are paired with their "<name>.pub" companions; public keys whose
private half is missing are reported on their own. Known non-key files such
as known_hosts and config are ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path

from skm.errors import SkmError
from skm.keys.models import PUBLIC_KEY_SUFFIX, KeyRecord

logger = logging.getLogger(__name__)

NON_KEY_FILES = frozenset(
    {
        "authorized_keys",
        "authorized_keys2",
        "known_hosts",
        "known_hosts.old",
        "config",
        "environment",
        "rc",
    }
)

NON_KEY_PREFIXES = ("agent.", ".")

NON_KEY_SUFFIXES = (".tmp", ".skm", ".bak", ".old", ".swp")


def is_non_key_file(filename: str) -> bool:
    """Return True for files in an SSH directory that are never keys."""
    if filename in NON_KEY_FILES:
        return True
    if filename.startswith(NON_KEY_PREFIXES):
        return True
    return filename.endswith(NON_KEY_SUFFIXES)


class KeyScanner:
    """
    Lists the key pairs stored in a directory.

    Usage:
        scanner = KeyScanner(Path.home() / ".ssh")
        for record in scanner.scan():
            print(record.name, record.key_type.label)

    Attributes:
        ssh_dir: Directory to scan (not recursed into).
    """

    def __init__(self, ssh_dir: Path) -> None:
        self.ssh_dir = Path(ssh_dir)

    def scan(self) -> list[KeyRecord]:
        """
        Scan the directory for key pairs.

        Returns:
            KeyRecords sorted by name. An absent directory yields an empty list.
            Files that cannot be read are logged and skipped.
        """
        if not self.ssh_dir.is_dir():
            return []

        names: set[str] = set()
        directory = self.ssh_dir.resolve()

        for path in self.ssh_dir.iterdir():
            if path.is_dir():
                continue

            filename = path.name
            if filename.endswith(PUBLIC_KEY_SUFFIX):
                filename = filename[: -len(PUBLIC_KEY_SUFFIX)]
                if not filename:
                    continue

            if is_non_key_file(filename):
                continue

            # A symlink to another key in the same directory is not a second key
            if path.is_symlink():
                target = path.resolve()
                if target.parent == directory and target.exists():
                    continue

            names.add(filename)

        records = []
        for name in sorted(names):
            try:
                records.append(KeyRecord.load(self.ssh_dir / name))
            except SkmError as e:
                logger.warning(f"Failed to read key {name}: {e}")

        return records

    def find_key_by_name(self, name: str) -> KeyRecord | None:
        """Return the key named name, or None if it is not present."""
        for record in self.scan():
            if record.name == name:
                return record
        return None

    def get_key_count(self) -> int:
        return len(self.scan())
