"""
Backup container schema and its serialization.

A backup container is the plaintext that gets encrypted into an .skm file:
a metadata block plus a list of key entries. It is serialized as canonical
JSON (sorted keys, compact separators, UTF-8) with key material encoded as
standard base64.

Wire Format (schema version 1):
    {
      "keys": [
        {"comment": str|null, "key_type": str, "name": str,
         "private_key": base64|null, "public_key": base64|null}
      ],
      "metadata": {
        "created_at": ISO-8601, "description": str|null, "hostname": str,
        "key_count": int, "username": str, "version": 1
      }
    }

Schema Rules:
    - Unknown fields at any level are ignored (forward compatibility)
    - A version newer than SCHEMA_VERSION is rejected
    - Unknown key_type strings decode to KeyType.UNKNOWN
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from skm.errors import SchemaError
from skm.keys.models import KeyRecord, KeyType

SCHEMA_VERSION = 1
BACKUP_EXTENSION = "skm"


@dataclass
class BackupMetadata:
    """
    Descriptive header of a backup container.

    Attributes:
        schema_version: Container schema version ("version" on the wire).
        created_at: When the backup was created (timezone-aware).
        hostname: Host the backup was created on.
        username: User who created the backup.
        key_count: Number of entries at creation time.
        description: Optional free-text note.
    """

    schema_version: int
    created_at: datetime
    hostname: str
    username: str
    key_count: int
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.schema_version,
            "created_at": self.created_at.isoformat(),
            "hostname": self.hostname,
            "username": self.username,
            "key_count": self.key_count,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Any) -> BackupMetadata:
        """
        Build metadata from a decoded JSON object.

        Raises:
            SchemaError: On missing or mistyped required fields, or an
                unsupported version.
        """
        if not isinstance(data, dict):
            raise SchemaError("Backup metadata must be an object")

        version = _require(data, "version", int, "metadata")
        if version < 1:
            raise SchemaError(f"Invalid backup schema version: {version}")
        if version > SCHEMA_VERSION:
            raise SchemaError(
                f"Backup schema version {version} is newer than supported "
                f"version {SCHEMA_VERSION}. Upgrade skm to import it."
            )

        created_text = _require(data, "created_at", str, "metadata")
        try:
            created_at = datetime.fromisoformat(created_text)
        except ValueError as e:
            raise SchemaError(f"Invalid created_at timestamp: {created_text!r}") from e

        key_count = _require(data, "key_count", int, "metadata")
        if key_count < 0:
            raise SchemaError(f"Invalid key_count: {key_count}")

        return cls(
            schema_version=version,
            created_at=created_at,
            hostname=_require(data, "hostname", str, "metadata"),
            username=_require(data, "username", str, "metadata"),
            key_count=key_count,
            description=_optional(data, "description", str, "metadata"),
        )


@dataclass
class BackupEntry:
    """One key pair inside a backup container."""

    name: str
    key_type: KeyType = KeyType.UNKNOWN
    comment: str | None = None
    private_key: bytes | None = None
    public_key: bytes | None = None

    @classmethod
    def from_record(cls, record: KeyRecord, public_only: bool = False) -> BackupEntry:
        """
        Build an entry from a key record.

        Args:
            record: Source key pair.
            public_only: Drop the private half.
        """
        return cls(
            name=record.name,
            key_type=record.key_type,
            comment=record.comment,
            private_key=None if public_only else record.private_key,
            public_key=record.public_key,
        )

    def to_record(self) -> KeyRecord:
        return KeyRecord(
            name=self.name,
            key_type=self.key_type,
            comment=self.comment,
            private_key=self.private_key,
            public_key=self.public_key,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key_type": self.key_type.value,
            "comment": self.comment,
            "private_key": _encode_bytes(self.private_key),
            "public_key": _encode_bytes(self.public_key),
        }

    @classmethod
    def from_dict(cls, data: Any, index: int) -> BackupEntry:
        where = f"keys[{index}]"
        if not isinstance(data, dict):
            raise SchemaError(f"Backup entry {where} must be an object")

        return cls(
            name=_require(data, "name", str, where),
            key_type=KeyType.parse(_require(data, "key_type", str, where)),
            comment=_optional(data, "comment", str, where),
            private_key=_decode_bytes(data, "private_key", where),
            public_key=_decode_bytes(data, "public_key", where),
        )


@dataclass
class BackupContainer:
    """Canonical plaintext payload of a backup: metadata plus entries."""

    metadata: BackupMetadata
    entries: list[BackupEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "keys": [entry.to_dict() for entry in self.entries],
        }


def encode(container: BackupContainer) -> bytes:
    """
    Serialize a container to canonical UTF-8 JSON.

    The output is deterministic: the same container always yields the same
    bytes.
    """
    return json.dumps(
        container.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def decode(payload: bytes) -> BackupContainer:
    """
    Parse a container from bytes produced by encode().

    Raises:
        SchemaError: If the payload is not JSON, is missing required fields,
            has mistyped fields, or uses a newer schema version.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaError(f"Invalid backup format: {e}") from e

    if not isinstance(data, dict):
        raise SchemaError("Invalid backup format: top level must be an object")

    if "metadata" not in data:
        raise SchemaError("Invalid backup format: missing metadata")
    metadata = BackupMetadata.from_dict(data["metadata"])

    keys = data.get("keys")
    if not isinstance(keys, list):
        raise SchemaError("Invalid backup format: keys must be a list")

    entries = [BackupEntry.from_dict(item, index) for index, item in enumerate(keys)]
    return BackupContainer(metadata=metadata, entries=entries)


def _require(data: dict[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in data:
        raise SchemaError(f"Invalid backup format: {where} is missing '{key}'")
    value = data[key]
    # bool is an int subclass; a JSON true/false is never a valid count or version
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise SchemaError(
            f"Invalid backup format: {where}.{key} must be {kind.__name__}"
        )
    return value


def _optional(data: dict[str, Any], key: str, kind: type, where: str) -> Any:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, kind):
        raise SchemaError(
            f"Invalid backup format: {where}.{key} must be {kind.__name__} or null"
        )
    return value


def _encode_bytes(value: bytes | None) -> str | None:
    if value is None:
        return None
    return base64.b64encode(value).decode("ascii")


def _decode_bytes(data: dict[str, Any], key: str, where: str) -> bytes | None:
    text = _optional(data, key, str, where)
    if text is None:
        return None
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SchemaError(f"Invalid backup format: {where}.{key} is not base64") from e
