"""
Exception hierarchy for skm.

Every error raised by the package derives from SkmError so front ends can
catch the whole family, while the subclasses let callers tell "wrong
passphrase" from "not a backup file" from "nothing was written" without
looking at message text.
"""

from __future__ import annotations

from pathlib import Path


class SkmError(Exception):
    """Base exception for all skm errors."""

    pass


class BackupIOError(SkmError):
    """Raised when a filesystem read, write or permission change fails."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class EncryptionError(SkmError):
    """Base exception for envelope encryption and decryption errors."""

    pass


class AuthenticationError(EncryptionError):
    """Raised when the passphrase is wrong or the envelope was tampered with."""

    pass


class EnvelopeFormatError(EncryptionError):
    """Raised when the input is not a recognizable encrypted container."""

    pass


class SchemaError(SkmError):
    """Raised when a decrypted payload does not match the backup schema."""

    pass


class KeyAlreadyExistsError(SkmError):
    """Raised when a key file would be overwritten by key generation."""

    pass


class KeyNotFoundError(SkmError):
    """Raised when a named key does not exist in the key directory."""

    pass


class EntryWriteError(SkmError):
    """
    Raised when a single backup entry cannot be written during import.

    The backup manager records these in the import report instead of
    letting them abort the whole import.
    """

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class ConfigurationError(SkmError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass
