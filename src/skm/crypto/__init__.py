"""
Envelope encryption for skm backups.

Usage:
    from skm.crypto import EncryptionService

    service = EncryptionService()
    envelope = service.encrypt(payload, passphrase)
    payload = service.decrypt(envelope, passphrase)
"""

from skm.crypto.encryption import (
    PBKDF2_ITERATIONS,
    EncryptionService,
    is_envelope,
)

__all__ = [
    "EncryptionService",
    "PBKDF2_ITERATIONS",
    "is_envelope",
]
