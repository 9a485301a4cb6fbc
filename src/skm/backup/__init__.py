"""
Encrypted backup and restore of SSH keys.

A backup is a versioned container of key entries, encrypted under a
passphrase into a single .skm file. Importing merges the entries into a key
directory under a chosen conflict strategy and returns a per-key report.

Usage:
    from skm.backup import BackupManager, ExportOptions, ImportOptions

    manager = BackupManager(ssh_dir)

    # Create a backup
    manager.export(records, output_path, passphrase, ExportOptions())

    # Preview and perform an import
    report = manager.import_backup(backup_path, passphrase, ImportOptions(dry_run=True))
    report = manager.import_backup(backup_path, passphrase, ImportOptions())
"""

from skm.backup.codec import (
    BACKUP_EXTENSION,
    SCHEMA_VERSION,
    BackupContainer,
    BackupEntry,
    BackupMetadata,
    decode,
    encode,
)
from skm.backup.manager import (
    BackupManager,
    ExportOptions,
    ImportOptions,
    ImportReport,
)
from skm.backup.merge import MergeAction, MergeStrategy, resolve

__all__ = [
    "BackupManager",
    "ExportOptions",
    "ImportOptions",
    "ImportReport",
    "BackupContainer",
    "BackupEntry",
    "BackupMetadata",
    "MergeAction",
    "MergeStrategy",
    "resolve",
    "encode",
    "decode",
    "BACKUP_EXTENSION",
    "SCHEMA_VERSION",
]
