"""
SSH key discovery and generation.

Usage:
    from skm.keys import KeyScanner, KeyGenerator, KeyGenOptions

    records = KeyScanner(ssh_dir).scan()
    record = KeyGenerator(ssh_dir).generate(KeyGenOptions(filename="id_work"))
"""

from skm.keys.generator import KeyGenerator, KeyGenOptions
from skm.keys.models import KeyRecord, KeyStatus, KeyType, PublicKeyLine
from skm.keys.scanner import KeyScanner

__all__ = [
    "KeyRecord",
    "KeyStatus",
    "KeyType",
    "PublicKeyLine",
    "KeyScanner",
    "KeyGenerator",
    "KeyGenOptions",
]
