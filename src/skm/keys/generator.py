"""
SSH key pair generation.

Creates new key pairs in OpenSSH format using the cryptography library and
writes them into a key directory: the private key owner-only (0600), the
public key world-readable (0644).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from skm.environment import SystemEnvironment
from skm.errors import KeyAlreadyExistsError, SkmError
from skm.fileio import FilePermissions, atomic_write
from skm.keys.models import KeyRecord, KeyType, public_path_for

logger = logging.getLogger(__name__)

DEFAULT_RSA_BITS = 4096
MIN_RSA_BITS = 2048

GeneratedKey = ed25519.Ed25519PrivateKey | rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


def default_comment() -> str:
    """Return "user@host" for the current process."""
    env = SystemEnvironment()
    return f"{env.username()}@{env.hostname()}"


@dataclass
class KeyGenOptions:
    """
    Options for generating a key pair.

    Attributes:
        key_type: Algorithm to generate (ED25519, RSA or ECDSA).
        filename: Private key file name inside the key directory.
        comment: Comment appended to the public key line.
        passphrase: Optional passphrase protecting the private key.
        bits: RSA modulus size; ignored for other types.
    """

    key_type: KeyType = KeyType.ED25519
    filename: str = "id_ed25519"
    comment: str = field(default_factory=default_comment)
    passphrase: str | None = None
    bits: int | None = None


class KeyGenerator:
    """
    Generates key pairs into a directory.

    Usage:
        generator = KeyGenerator(Path.home() / ".ssh")
        record = generator.generate(KeyGenOptions(filename="id_work"))
    """

    def __init__(self, ssh_dir: Path, permissions: FilePermissions | None = None) -> None:
        self.ssh_dir = Path(ssh_dir)
        self.permissions = permissions

    def generate(self, options: KeyGenOptions) -> KeyRecord:
        """
        Generate a key pair and write both halves to disk.

        Args:
            options: Generation options.

        Returns:
            KeyRecord loaded back from the written files.

        Raises:
            KeyAlreadyExistsError: If either target file already exists.
            SkmError: If the key type or size is not supported.
            BackupIOError: If the files cannot be written.
        """
        filename = options.filename.strip()
        if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
            raise SkmError(f"Invalid key filename: {options.filename!r}")

        private_path = self.ssh_dir / filename
        public_path = public_path_for(private_path)

        for path in (private_path, public_path):
            if path.exists():
                raise KeyAlreadyExistsError(f"Key already exists: {path}")

        key = self._create_key(options.key_type, options.bits)

        if options.passphrase:
            encryption: serialization.KeySerializationEncryption = (
                serialization.BestAvailableEncryption(options.passphrase.encode("utf-8"))
            )
        else:
            encryption = serialization.NoEncryption()

        private_bytes = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=encryption,
        )
        public_bytes = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        comment = options.comment.strip()
        public_line = public_bytes + (f" {comment}".encode() if comment else b"") + b"\n"

        atomic_write(private_path, private_bytes, private=True, permissions=self.permissions)
        atomic_write(public_path, public_line, private=False, permissions=self.permissions)

        logger.info(f"Generated {options.key_type.label} key: {private_path}")

        return KeyRecord.load(private_path)

    def _create_key(self, key_type: KeyType, bits: int | None) -> GeneratedKey:
        if key_type is KeyType.ED25519:
            return ed25519.Ed25519PrivateKey.generate()

        if key_type is KeyType.RSA:
            size = bits or DEFAULT_RSA_BITS
            if size < MIN_RSA_BITS:
                raise SkmError(f"RSA keys must be at least {MIN_RSA_BITS} bits")
            return rsa.generate_private_key(public_exponent=65537, key_size=size)

        if key_type is KeyType.ECDSA:
            return ec.generate_private_key(ec.SECP256R1())

        raise SkmError(f"Key type {key_type.label} not supported for generation")
