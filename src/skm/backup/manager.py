"""
Backup export and import manager for skm.

Export collects key records, filters them, encodes them into a backup
container, encrypts it under a passphrase and writes the result atomically.
Import reads and decrypts a container, then reconciles each entry against the
target key directory using a merge strategy.

Failure Policy:
    - Anything that goes wrong before or during decrypt/decode aborts the
      whole operation before a single key file is touched
    - A failure writing one entry is recorded in the report and the import
      continues with the next entry
"""

from __future__ import annotations

import logging
import os
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from skm.backup.codec import (
    SCHEMA_VERSION,
    BackupContainer,
    BackupEntry,
    BackupMetadata,
    decode,
    encode,
)
from skm.backup.merge import (
    MergeAction,
    MergeStrategy,
    rename_pattern,
    renamed_name,
    resolve,
)
from skm.crypto.encryption import EncryptionService
from skm.environment import EnvironmentProvider, SystemEnvironment
from skm.errors import BackupIOError, EntryWriteError
from skm.fileio import FilePermissions, atomic_write, default_permissions
from skm.keys.models import PUBLIC_KEY_SUFFIX, KeyRecord, public_path_for

logger = logging.getLogger(__name__)

# NAME_MAX on common filesystems, in bytes
MAX_NAME_BYTES = 255


@dataclass
class ExportOptions:
    """
    Options controlling what goes into a backup.

    Attributes:
        description: Optional note stored in the backup metadata.
        public_only: Leave private key material out of every entry.
        selected_names: Only export records with these names. None exports
            everything; names that match no record are ignored.
        armor: Write the container as ASCII armor instead of binary.
    """

    description: str | None = None
    public_only: bool = False
    selected_names: Collection[str] | None = None
    armor: bool = False


@dataclass
class ImportOptions:
    """
    Options controlling how a backup is merged into a key directory.

    Attributes:
        strategy: What to do with entries whose name already exists.
        dry_run: Report decisions without writing anything.
    """

    strategy: MergeStrategy = MergeStrategy.SKIP_EXISTING
    dry_run: bool = False


@dataclass
class ImportReport:
    """
    Outcome of an import, in container order.

    Renamed entries appear in imported as "<name> -> <new name>"; in a dry
    run the new name is the pattern "<name>_{timestamp}".

    Attributes:
        imported: Entries written under their own name or a derived one.
        skipped: Entries left out because the name already existed.
        overwritten: Entries that replaced existing key files.
        errors: (name, message) pairs for entries that failed.
        warnings: Non-fatal observations about the container itself.
        dry_run: Whether this report describes a dry run.
    """

    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    overwritten: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total(self) -> int:
        return len(self.imported) + len(self.skipped) + len(self.overwritten) + len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "imported": list(self.imported),
            "skipped": list(self.skipped),
            "overwritten": list(self.overwritten),
            "errors": [{"name": name, "error": message} for name, message in self.errors],
            "warnings": list(self.warnings),
        }


class BackupManager:
    """
    Exports key records to encrypted backups and imports them back.

    Usage:
        manager = BackupManager(Path.home() / ".ssh")

        # Export every scanned key
        records = KeyScanner(manager.ssh_dir).scan()
        manager.export(records, Path("keys.skm"), passphrase, ExportOptions())

        # Preview, then import
        report = manager.import_backup(
            Path("keys.skm"), passphrase, ImportOptions(dry_run=True)
        )

    Attributes:
        ssh_dir: Key directory that imports write into.
        encryption: Envelope encryption service.
        environment: Source of hostname, username and time.
        permissions: File permission capability for written files.
    """

    def __init__(
        self,
        ssh_dir: Path,
        encryption: EncryptionService | None = None,
        environment: EnvironmentProvider | None = None,
        permissions: FilePermissions | None = None,
    ) -> None:
        self.ssh_dir = Path(ssh_dir)
        self.encryption = encryption or EncryptionService()
        self.environment = environment or SystemEnvironment()
        self.permissions = permissions or default_permissions()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def select_records(
        self,
        records: Iterable[KeyRecord],
        options: ExportOptions | None = None,
    ) -> list[KeyRecord]:
        """Return the records an export with these options would include."""
        options = options or ExportOptions()
        if options.selected_names is None:
            return list(records)
        selected = set(options.selected_names)
        return [record for record in records if record.name in selected]

    def build_container(
        self,
        records: Iterable[KeyRecord],
        options: ExportOptions | None = None,
    ) -> BackupContainer:
        """
        Assemble the plaintext container for an export.

        Args:
            records: Candidate key records.
            options: Export options.

        Returns:
            BackupContainer with fresh metadata.
        """
        options = options or ExportOptions()
        entries = [
            BackupEntry.from_record(record, public_only=options.public_only)
            for record in self.select_records(records, options)
        ]

        metadata = BackupMetadata(
            schema_version=SCHEMA_VERSION,
            created_at=self.environment.now(),
            hostname=self.environment.hostname(),
            username=self.environment.username(),
            key_count=len(entries),
            description=options.description,
        )
        return BackupContainer(metadata=metadata, entries=entries)

    def export(
        self,
        records: Iterable[KeyRecord],
        destination: Path,
        passphrase: str,
        options: ExportOptions | None = None,
    ) -> None:
        """
        Write an encrypted backup of records to destination.

        The destination is written atomically: on failure no partial file is
        left behind, and an existing file is only replaced once the new
        backup is complete. Parent directories are created as needed.

        Args:
            records: Key records to back up.
            destination: Path of the .skm file to create.
            passphrase: Encryption passphrase.
            options: Export options.

        Raises:
            BackupIOError: If the destination cannot be written.
            ValueError: If the passphrase is empty.
        """
        options = options or ExportOptions()
        destination = Path(destination)

        container = self.build_container(records, options)
        payload = encode(container)

        if options.armor:
            envelope = self.encryption.encrypt_to_armor(payload, passphrase).encode("ascii")
        else:
            envelope = self.encryption.encrypt(payload, passphrase)

        atomic_write(destination, envelope, private=True, permissions=self.permissions)

        logger.info(
            f"Exported {container.metadata.key_count} keys to {destination} "
            f"({len(envelope):,} bytes)"
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def read_container(self, source: Path, passphrase: str) -> BackupContainer:
        """
        Read, decrypt and decode a backup file.

        Raises:
            BackupIOError: If the file cannot be read.
            EnvelopeFormatError: If the file is not an skm backup.
            AuthenticationError: If the passphrase is wrong or the file was
                modified.
            SchemaError: If the decrypted payload is not a valid container.
        """
        source = Path(source)
        try:
            envelope = source.read_bytes()
        except OSError as e:
            raise BackupIOError(f"Cannot read backup file {source}: {e}", path=source) from e

        payload = self.encryption.decrypt(envelope, passphrase)
        return decode(payload)

    def read_metadata(self, source: Path, passphrase: str) -> BackupMetadata:
        """Return a backup's metadata without importing anything."""
        return self.read_container(source, passphrase).metadata

    def import_backup(
        self,
        source: Path,
        passphrase: str,
        options: ImportOptions | None = None,
    ) -> ImportReport:
        """
        Import a backup into the key directory.

        Entries are processed in container order. A name written earlier in
        the same import counts as existing for later entries, and dry runs
        track the same state, so a dry run reports the same buckets as the
        real import would. The exception is a write that fails in the real
        import: a dry run still counts that name as claimed, so a later
        duplicate of it can land in a different bucket.

        Args:
            source: Path to the .skm file.
            passphrase: Decryption passphrase.
            options: Import options.

        Returns:
            ImportReport describing every entry.

        Raises:
            BackupIOError: If the backup cannot be read.
            EnvelopeFormatError: If the file is not an skm backup.
            AuthenticationError: If the passphrase is wrong.
            SchemaError: If the payload is not a valid container.
        """
        options = options or ImportOptions()
        container = self.read_container(source, passphrase)

        report = ImportReport(dry_run=options.dry_run)

        expected = container.metadata.key_count
        actual = len(container.entries)
        if expected != actual:
            message = f"Backup metadata lists {expected} keys but contains {actual}"
            logger.warning(message)
            report.warnings.append(message)

        if not options.dry_run:
            self._ensure_ssh_dir()

        claimed: set[str] = set()

        for entry in container.entries:
            try:
                _validate_entry(entry)
                exists = entry.name in claimed or self.key_exists(entry.name)
            except EntryWriteError as e:
                logger.warning(f"Rejected backup entry {entry.name!r}: {e}")
                report.errors.append((entry.name, str(e)))
                continue

            action = resolve(exists, options.strategy)
            logger.debug(f"{entry.name}: exists={exists} action={action.value}")

            if action is MergeAction.SKIP:
                report.skipped.append(entry.name)
                continue

            if options.dry_run:
                if action is MergeAction.RENAME:
                    report.imported.append(f"{entry.name} -> {rename_pattern(entry.name)}")
                else:
                    claimed.add(entry.name)
                    _record(report, action, entry.name)
                continue

            if action is MergeAction.RENAME:
                target = renamed_name(entry.name, self.environment.now(), claimed)
            else:
                target = entry.name

            try:
                self._write_entry(target, entry)
            except EntryWriteError as e:
                logger.warning(f"Failed to import {entry.name}: {e}")
                report.errors.append((entry.name, str(e)))
                continue

            claimed.add(target)
            if action is MergeAction.RENAME:
                report.imported.append(f"{entry.name} -> {target}")
            else:
                _record(report, action, entry.name)

        logger.info(
            f"{'Dry run' if options.dry_run else 'Import'} of {source}: "
            f"{len(report.imported)} imported, {len(report.skipped)} skipped, "
            f"{len(report.overwritten)} overwritten, {len(report.errors)} errors"
        )

        return report

    def key_exists(self, name: str) -> bool:
        """
        A key exists if either its private or its public file is present.

        Raises:
            EntryWriteError: If the paths cannot be checked.
        """
        private_path = self.ssh_dir / name
        try:
            return private_path.exists() or public_path_for(private_path).exists()
        except OSError as e:
            raise EntryWriteError(name, f"Cannot check for existing key {name!r}: {e}") from e

    def _ensure_ssh_dir(self) -> None:
        if self.ssh_dir.exists():
            return
        try:
            self.ssh_dir.mkdir(parents=True)
            self.permissions.restrict_directory(self.ssh_dir)
        except OSError as e:
            raise BackupIOError(
                f"Cannot create key directory {self.ssh_dir}: {e}", path=self.ssh_dir
            ) from e

    def _write_entry(self, name: str, entry: BackupEntry) -> None:
        """
        Write the halves present in entry under name.

        Absent halves are left untouched on disk.

        Raises:
            EntryWriteError: If any file cannot be written.
        """
        private_path = self.ssh_dir / name
        public_path = public_path_for(private_path)

        try:
            if entry.private_key is not None:
                atomic_write(
                    private_path, entry.private_key, private=True, permissions=self.permissions
                )
            if entry.public_key is not None:
                atomic_write(
                    public_path, entry.public_key, private=False, permissions=self.permissions
                )
        except BackupIOError as e:
            raise EntryWriteError(entry.name, str(e)) from e


def _record(report: ImportReport, action: MergeAction, name: str) -> None:
    if action is MergeAction.OVERWRITE:
        report.overwritten.append(name)
    else:
        report.imported.append(name)


def _validate_entry(entry: BackupEntry) -> None:
    """
    Reject entries that cannot be safely written into a key directory.

    Raises:
        EntryWriteError: If the name is not a plain file name, is too long
            for the filesystem, or the entry has no key material.
    """
    name = entry.name
    separators = {"/", "\\", os.sep}
    if os.altsep:
        separators.add(os.altsep)

    if not name or name in (".", "..") or "\x00" in name:
        raise EntryWriteError(name, f"Invalid key name: {name!r}")
    if any(sep in name for sep in separators):
        raise EntryWriteError(name, f"Key name must not contain a path separator: {name!r}")
    try:
        name_bytes = len(name.encode("utf-8"))
    except UnicodeEncodeError as e:
        raise EntryWriteError(name, f"Invalid key name: {name!r}") from e
    if name_bytes + len(PUBLIC_KEY_SUFFIX) > MAX_NAME_BYTES:
        raise EntryWriteError(name, f"Key name is too long: {name_bytes} bytes")
    if entry.private_key is None and entry.public_key is None:
        raise EntryWriteError(name, "Entry contains no key data")
