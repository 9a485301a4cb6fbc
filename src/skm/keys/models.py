"""
Data models for SSH keys.

This module defines the in-memory representation of a key pair as found in
a key directory or carried inside a backup container.

Model Design Decisions:
    - A key is identified by its private file name (e.g. "id_ed25519");
      the public half lives next to it as "<name>.pub"
    - Either half may be missing; both are carried as raw bytes
    - Key type is taken from the public key algorithm when available,
      otherwise guessed from the file name
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from skm.errors import KeyNotFoundError, SkmError
from skm.fileio import FilePermissions, atomic_write, read_file_if_exists

PUBLIC_KEY_SUFFIX = ".pub"


class KeyType(str, Enum):
    """SSH key algorithm family."""

    ED25519 = "ed25519"
    RSA = "rsa"
    ECDSA = "ecdsa"
    DSA = "dsa"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        """Display name (e.g. "ED25519")."""
        if self is KeyType.UNKNOWN:
            return "Unknown"
        return self.value.upper()

    @property
    def default_filename(self) -> str:
        """Conventional private key file name for this type."""
        return f"id_{self.value}"

    @classmethod
    def parse(cls, value: str | None) -> KeyType:
        """
        Parse a stored type name, tolerating case and unknown values.

        Unknown names map to UNKNOWN rather than failing, so containers
        written by newer versions with new key types still load.
        """
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_algorithm(cls, algorithm: str) -> KeyType:
        """Map an OpenSSH public key algorithm name to a key type."""
        if algorithm in ("ssh-ed25519", "sk-ssh-ed25519@openssh.com"):
            return cls.ED25519
        if algorithm == "ssh-rsa":
            return cls.RSA
        if algorithm.startswith("ecdsa-sha2-") or algorithm.startswith("sk-ecdsa-sha2-"):
            return cls.ECDSA
        if algorithm == "ssh-dss":
            return cls.DSA
        return cls.UNKNOWN

    @classmethod
    def from_filename(cls, filename: str) -> KeyType:
        """Guess the key type from a file name such as "id_rsa"."""
        lowered = filename.lower()
        if "rsa" in lowered:
            return cls.RSA
        if "ed25519" in lowered:
            return cls.ED25519
        if "ecdsa" in lowered:
            return cls.ECDSA
        if "dsa" in lowered:
            return cls.DSA
        return cls.UNKNOWN


class KeyStatus(str, Enum):
    """Pairing state of a key on disk."""

    VALID = "valid"
    MISSING_PUBLIC = "missing_public"
    MISSING_PRIVATE = "missing_private"
    MISSING = "missing"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


@dataclass
class PublicKeyLine:
    """Parsed fields of an OpenSSH public key line."""

    algorithm: str
    blob: str
    comment: str | None

    @classmethod
    def parse(cls, content: bytes | str) -> PublicKeyLine | None:
        """
        Parse "<algorithm> <base64 blob> [comment]".

        Returns:
            PublicKeyLine, or None if the content does not have at least
            an algorithm and a blob.
        """
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        parts = content.strip().split()
        if len(parts) < 2:
            return None
        comment = " ".join(parts[2:]) or None
        return cls(algorithm=parts[0], blob=parts[1], comment=comment)

    def fingerprint(self) -> str | None:
        """SHA256 fingerprint in the format printed by ssh-keygen -l."""
        try:
            raw = base64.b64decode(self.blob, validate=True)
        except (binascii.Error, ValueError):
            return None
        digest = hashlib.sha256(raw).digest()
        return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")

    def render(self) -> str:
        if self.comment:
            return f"{self.algorithm} {self.blob} {self.comment}\n"
        return f"{self.algorithm} {self.blob}\n"


@dataclass
class KeyRecord:
    """
    A key pair identified by name.

    The backup engine works on these records: export reads the byte fields,
    import writes them back. Scanned records also carry the paths they were
    loaded from.

    Attributes:
        name: Private key file name, unique within a key directory.
        key_type: Algorithm family.
        comment: Comment from the public key line, if any.
        private_key: Private key file contents, or None if absent.
        public_key: Public key file contents, or None if absent.
        path: Private key path on disk (scanned records only).
        fingerprint: SHA256 fingerprint of the public key, if parseable.
        modified_at: Last modification time of the private key file.
    """

    name: str
    key_type: KeyType = KeyType.UNKNOWN
    comment: str | None = None
    private_key: bytes | None = None
    public_key: bytes | None = None
    path: Path | None = None
    fingerprint: str | None = None
    modified_at: datetime | None = None

    @property
    def public_path(self) -> Path | None:
        if self.path is None:
            return None
        return public_path_for(self.path)

    @property
    def has_private(self) -> bool:
        return self.private_key is not None

    @property
    def has_public(self) -> bool:
        return self.public_key is not None

    @property
    def status(self) -> KeyStatus:
        if self.has_private and self.has_public:
            return KeyStatus.VALID
        if self.has_private:
            return KeyStatus.MISSING_PUBLIC
        if self.has_public:
            return KeyStatus.MISSING_PRIVATE
        return KeyStatus.MISSING

    def public_text(self) -> str | None:
        """Public key contents as text, or None when there is no public half."""
        if self.public_key is None:
            return None
        return self.public_key.decode("utf-8", errors="replace")

    def update_comment(
        self,
        new_comment: str,
        permissions: FilePermissions | None = None,
    ) -> None:
        """
        Replace the comment in the public key file on disk.

        Args:
            new_comment: New comment text.
            permissions: Permission capability for the rewritten file.

        Raises:
            KeyNotFoundError: If the record has no public key file.
            SkmError: If the public key line cannot be parsed.
            BackupIOError: If the file cannot be rewritten.
        """
        public_path = self.public_path
        if public_path is None or self.public_key is None:
            raise KeyNotFoundError(f"No public key file for {self.name}")

        line = PublicKeyLine.parse(self.public_key)
        if line is None:
            raise SkmError(f"Invalid public key format: {public_path}")

        line.comment = new_comment.strip() or None
        content = line.render().encode("utf-8")
        atomic_write(public_path, content, private=False, permissions=permissions)

        self.public_key = content
        self.comment = line.comment

    def to_summary(self) -> dict[str, str | None]:
        """JSON-friendly description without any key material."""
        return {
            "name": self.name,
            "type": self.key_type.label,
            "status": self.status.label,
            "comment": self.comment,
            "fingerprint": self.fingerprint,
            "path": str(self.path) if self.path else None,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
        }

    @classmethod
    def load(cls, private_path: Path) -> KeyRecord:
        """
        Load a key pair from disk given the private key path.

        The public half is looked up at "<private_path>.pub". Either file
        may be missing.

        Raises:
            BackupIOError: If an existing file cannot be read.
        """
        private_path = Path(private_path)
        private_key = read_file_if_exists(private_path)
        public_key = read_file_if_exists(public_path_for(private_path))

        key_type = KeyType.UNKNOWN
        comment = None
        fingerprint = None
        if public_key is not None:
            line = PublicKeyLine.parse(public_key)
            if line is not None:
                key_type = KeyType.from_algorithm(line.algorithm)
                comment = line.comment
                fingerprint = line.fingerprint()
        if key_type is KeyType.UNKNOWN:
            key_type = KeyType.from_filename(private_path.name)

        modified_at = None
        try:
            stat_path = private_path if private_key is not None else public_path_for(private_path)
            modified_at = datetime.fromtimestamp(stat_path.stat().st_mtime).astimezone()
        except OSError:
            pass

        return cls(
            name=private_path.name,
            key_type=key_type,
            comment=comment,
            private_key=private_key,
            public_key=public_key,
            path=private_path,
            fingerprint=fingerprint,
            modified_at=modified_at,
        )


def public_path_for(private_path: Path) -> Path:
    """Return "<private_path>.pub"."""
    return private_path.with_name(private_path.name + PUBLIC_KEY_SUFFIX)
