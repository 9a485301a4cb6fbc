"""
Passphrase-based envelope encryption for skm backups.

This module turns a byte payload and a passphrase into a self-contained
encrypted envelope and back. It knows nothing about SSH keys.

Security Design:
    - Key derived from the passphrase with PBKDF2-HMAC-SHA256
      (600,000 iterations by default)
    - Fresh random 256-bit salt per envelope, so two encryptions of the same
      payload under the same passphrase never produce the same bytes
    - Fernet (AES-128-CBC + HMAC-SHA256, random IV per token) provides
      authenticated encryption: any modification is detected on decrypt
    - Wrong passphrase and tampering both raise AuthenticationError;
      input that is not an envelope at all raises EnvelopeFormatError

Envelope Layout:
    MAGIC (7 bytes)  b"SKMENC\\x00"
    header length    2 bytes, big-endian
    header           compact JSON, sorted keys:
                     {"alg": "fernet", "iterations": N, "kdf": "pbkdf2-sha256",
                      "salt": <urlsafe base64>, "v": 1}
    token            Fernet token (ASCII)
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import struct
import textwrap
from typing import Any, Final

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from skm.errors import AuthenticationError, EnvelopeFormatError

logger = logging.getLogger(__name__)

# OWASP 2023 recommends 600,000 iterations for PBKDF2-SHA256
PBKDF2_ITERATIONS: Final[int] = 600_000
# Upper bound accepted from an envelope header
MAX_KDF_ITERATIONS: Final[int] = 10_000_000
SALT_LENGTH: Final[int] = 32

MAGIC: Final[bytes] = b"SKMENC\x00"
ENVELOPE_VERSION: Final[int] = 1
ALGORITHM: Final[str] = "fernet"
KDF: Final[str] = "pbkdf2-sha256"

ARMOR_BEGIN: Final[str] = "-----BEGIN SKM BACKUP-----"
ARMOR_END: Final[str] = "-----END SKM BACKUP-----"
ARMOR_LINE_LENGTH: Final[int] = 64

_U16_MAX: Final[int] = 0xFFFF


def _b64e(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _b64d(text: str) -> bytes:
    return base64.urlsafe_b64decode(text.encode("ascii"))


class EncryptionService:
    """
    Encrypts and decrypts byte payloads under a passphrase.

    Instances hold no secrets; the passphrase is passed to each call and the
    derived key only lives for the duration of that call.

    Usage:
        service = EncryptionService()
        envelope = service.encrypt(b"payload", "passphrase")
        payload = service.decrypt(envelope, "passphrase")

    Attributes:
        iterations: PBKDF2 iteration count used for new envelopes.
            Decryption always uses the count recorded in the envelope.
    """

    def __init__(self, iterations: int = PBKDF2_ITERATIONS) -> None:
        if not 1 <= iterations <= MAX_KDF_ITERATIONS:
            raise ValueError(f"iterations must be between 1 and {MAX_KDF_ITERATIONS:,}")
        self.iterations = iterations

    def encrypt(self, plaintext: bytes, passphrase: str) -> bytes:
        """
        Encrypt plaintext into a self-contained envelope.

        Args:
            plaintext: Payload to protect.
            passphrase: User passphrase (must not be empty).

        Returns:
            Envelope bytes.

        Raises:
            ValueError: If the passphrase is empty.
        """
        _require_passphrase(passphrase)

        salt = secrets.token_bytes(SALT_LENGTH)
        header = {
            "alg": ALGORITHM,
            "iterations": self.iterations,
            "kdf": KDF,
            "salt": _b64e(salt),
            "v": ENVELOPE_VERSION,
        }
        header_bytes = json.dumps(header, separators=(",", ":"), sort_keys=True).encode("utf-8")

        fernet = _derive_fernet(passphrase, salt, self.iterations)
        token = fernet.encrypt(plaintext)

        return MAGIC + struct.pack(">H", len(header_bytes)) + header_bytes + token

    def decrypt(self, envelope: bytes, passphrase: str) -> bytes:
        """
        Decrypt an envelope produced by encrypt() or encrypt_to_armor().

        Args:
            envelope: Envelope bytes (binary or ASCII-armored).
            passphrase: Passphrase used at encryption time.

        Returns:
            The original plaintext.

        Raises:
            EnvelopeFormatError: If the input is not an skm envelope.
            AuthenticationError: If the passphrase is wrong or the envelope
                was modified.
            ValueError: If the passphrase is empty.
        """
        _require_passphrase(passphrase)

        if envelope.lstrip().startswith(ARMOR_BEGIN.encode("ascii")):
            envelope = _dearmor(envelope)

        header, token = _parse_envelope(envelope)
        salt = header["salt"]
        iterations = header["iterations"]

        fernet = _derive_fernet(passphrase, salt, iterations)
        try:
            return fernet.decrypt(token)
        except InvalidToken as e:
            raise AuthenticationError(
                "Invalid passphrase or corrupted backup. Cannot decrypt."
            ) from e

    def encrypt_to_armor(self, plaintext: bytes, passphrase: str) -> str:
        """
        Encrypt plaintext and wrap the envelope in ASCII armor.

        The armored form is safe to paste into email or a text field.

        Returns:
            Armored text ending with a newline.
        """
        envelope = self.encrypt(plaintext, passphrase)
        body = base64.b64encode(envelope).decode("ascii")
        lines = textwrap.wrap(body, ARMOR_LINE_LENGTH)
        return "\n".join([ARMOR_BEGIN, *lines, ARMOR_END]) + "\n"

    def decrypt_from_armor(self, armored: str, passphrase: str) -> bytes:
        """Decrypt ASCII-armored text produced by encrypt_to_armor()."""
        return self.decrypt(armored.encode("ascii", errors="replace"), passphrase)


def is_envelope(data: bytes) -> bool:
    """Check whether data looks like an skm envelope (binary or armored)."""
    stripped = data.lstrip()
    return data.startswith(MAGIC) or stripped.startswith(ARMOR_BEGIN.encode("ascii"))


def _require_passphrase(passphrase: str) -> None:
    if not passphrase:
        raise ValueError("Passphrase must not be empty")


def _derive_fernet(passphrase: str, salt: bytes, iterations: int) -> Fernet:
    """
    Derive a Fernet instance from passphrase and salt.

    Args:
        passphrase: User-provided passphrase.
        salt: Random salt bytes.
        iterations: PBKDF2 iteration count.

    Returns:
        Fernet instance configured with the derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,  # Fernet requires 32-byte keys
        salt=salt,
        iterations=iterations,
    )
    key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))
    return Fernet(key)


def _parse_envelope(envelope: bytes) -> tuple[dict[str, Any], bytes]:
    """
    Split an envelope into its validated header and Fernet token.

    Raises:
        EnvelopeFormatError: On any structural problem.
    """
    if not envelope.startswith(MAGIC):
        raise EnvelopeFormatError("Not an skm backup file (missing header)")

    offset = len(MAGIC)
    length_bytes = envelope[offset : offset + 2]
    if len(length_bytes) != 2:
        raise EnvelopeFormatError("Truncated backup header")
    (header_length,) = struct.unpack(">H", length_bytes)
    offset += 2

    header_bytes = envelope[offset : offset + header_length]
    if len(header_bytes) != header_length:
        raise EnvelopeFormatError("Truncated backup header")
    offset += header_length

    try:
        raw = json.loads(header_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EnvelopeFormatError(f"Unreadable backup header: {e}") from e

    if not isinstance(raw, dict):
        raise EnvelopeFormatError("Unreadable backup header")

    if raw.get("v") != ENVELOPE_VERSION:
        raise EnvelopeFormatError(f"Unsupported envelope version: {raw.get('v')!r}")
    if raw.get("alg") != ALGORITHM:
        raise EnvelopeFormatError(f"Unsupported encryption algorithm: {raw.get('alg')!r}")
    if raw.get("kdf") != KDF:
        raise EnvelopeFormatError(f"Unsupported key derivation: {raw.get('kdf')!r}")

    iterations = raw.get("iterations")
    if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations < 1:
        raise EnvelopeFormatError("Invalid iteration count in backup header")
    if iterations > MAX_KDF_ITERATIONS:
        raise EnvelopeFormatError(
            f"Iteration count in backup header exceeds {MAX_KDF_ITERATIONS:,}"
        )

    salt_text = raw.get("salt")
    if not isinstance(salt_text, str):
        raise EnvelopeFormatError("Missing salt in backup header")
    try:
        salt = _b64d(salt_text)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeFormatError("Invalid salt in backup header") from e
    if not salt:
        raise EnvelopeFormatError("Missing salt in backup header")

    token = envelope[offset:]
    if not token:
        raise EnvelopeFormatError("Backup file contains no encrypted data")

    return {"iterations": iterations, "salt": salt}, token


def _dearmor(data: bytes) -> bytes:
    """Strip ASCII armor and return the binary envelope."""
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise EnvelopeFormatError("Armored backup contains non-ASCII data") from e

    lines = [line.strip() for line in text.strip().splitlines()]
    if len(lines) < 2 or lines[0] != ARMOR_BEGIN or lines[-1] != ARMOR_END:
        raise EnvelopeFormatError("Malformed armored backup")

    try:
        return base64.b64decode("".join(lines[1:-1]), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeFormatError("Malformed armored backup body") from e
