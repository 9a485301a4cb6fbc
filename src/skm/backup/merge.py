"""
Conflict resolution for backup imports.

When an imported entry has the same name as a key already in the target
directory, the active MergeStrategy decides what happens. The decision is a
pure function of (exists, strategy) so it can be tested without a filesystem
and shared between real and dry-run imports.

Decision Table:
    exists  strategy        action
    ------  --------------  ---------
    no      any             IMPORT
    yes     SKIP_EXISTING   SKIP
    yes     OVERWRITE       OVERWRITE
    yes     RENAME          RENAME
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from enum import Enum

RENAME_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
RENAME_PLACEHOLDER = "{timestamp}"


class MergeStrategy(str, Enum):
    """What to do with an entry whose name already exists."""

    SKIP_EXISTING = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"

    @classmethod
    def parse(cls, value: str) -> MergeStrategy:
        """
        Parse a strategy name ("skip", "overwrite", "rename").

        Raises:
            ValueError: If the name is not a known strategy.
        """
        normalized = value.strip().lower()
        if normalized == "skip_existing":
            normalized = "skip"
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown merge strategy: {value!r}. Must be one of: {valid}") from None


class MergeAction(str, Enum):
    """Outcome chosen for a single entry."""

    IMPORT = "import"
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"


def resolve(exists: bool, strategy: MergeStrategy) -> MergeAction:
    """
    Decide what to do with one incoming entry.

    Args:
        exists: Whether a key with the entry's name is already present.
        strategy: Strategy for the whole import.

    Returns:
        The action to take.
    """
    if not exists:
        return MergeAction.IMPORT

    if strategy is MergeStrategy.SKIP_EXISTING:
        return MergeAction.SKIP
    if strategy is MergeStrategy.OVERWRITE:
        return MergeAction.OVERWRITE
    if strategy is MergeStrategy.RENAME:
        return MergeAction.RENAME

    raise ValueError(f"Unhandled merge strategy: {strategy!r}")


def renamed_name(name: str, when: datetime, taken: Collection[str] = ()) -> str:
    """
    Derive the name an entry is imported under with the RENAME strategy.

    The name is "<name>_<YYYYmmdd_HHMMSS>". If that name was already claimed
    earlier in the same import, a counter is appended ("_1", "_2", ...).
    Existing files on disk are not consulted.

    Args:
        name: Original entry name.
        when: Timestamp for the suffix (second granularity).
        taken: Names already claimed in this import.
    """
    base = f"{name}_{when.strftime(RENAME_TIMESTAMP_FORMAT)}"
    candidate = base
    counter = 1
    while candidate in taken:
        candidate = f"{base}_{counter}"
        counter += 1
    return candidate


def rename_pattern(name: str) -> str:
    """Placeholder name reported by dry runs, e.g. "id_rsa_{timestamp}"."""
    return f"{name}_{RENAME_PLACEHOLDER}"
