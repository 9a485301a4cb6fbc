"""
skm - SSH Key Manager

Manage the key pairs in an SSH directory and move them between machines
with encrypted, portable backups.

Key Features:
    - Scans a key directory and reports type, comment and pairing status
    - Generates Ed25519, RSA and ECDSA key pairs in OpenSSH format
    - Exports selected keys to a passphrase-encrypted .skm container
    - Imports containers with skip / overwrite / rename conflict handling
    - Dry-run imports that report decisions without touching the disk

Design Principles:
    - Fail closed: a wrong passphrase never writes a single file
    - Auditability: every import returns a report of what happened per key
    - Atomicity: files are written to a temporary path and renamed into place
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from skm.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
