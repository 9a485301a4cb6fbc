"""
Process environment lookups used when stamping backup metadata.

Backups record who made them, on which host and when. Those values come from
an environment provider so tests (and embedding applications) can supply
fixed values instead of reading the real process state.
"""

from __future__ import annotations

import getpass
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

DEFAULT_USERNAME = "user"
DEFAULT_HOSTNAME = "localhost"


class EnvironmentProvider(Protocol):
    """Source of host identity and wall-clock time."""

    def hostname(self) -> str: ...

    def username(self) -> str: ...

    def now(self) -> datetime: ...


class SystemEnvironment:
    """Environment provider backed by the running process and OS."""

    def hostname(self) -> str:
        try:
            name = socket.gethostname()
        except OSError:
            return DEFAULT_HOSTNAME
        return name or DEFAULT_HOSTNAME

    def username(self) -> str:
        for var in ("USER", "USERNAME"):
            value = os.environ.get(var)
            if value:
                return value
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return DEFAULT_USERNAME

    def now(self) -> datetime:
        """Current local time with its UTC offset attached."""
        return datetime.now().astimezone()


@dataclass
class StaticEnvironment:
    """
    Environment provider returning fixed values.

    Attributes:
        host: Hostname to report.
        user: Username to report.
        clock: Timestamp returned by every now() call.
    """

    host: str = DEFAULT_HOSTNAME
    user: str = DEFAULT_USERNAME
    clock: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def hostname(self) -> str:
        return self.host

    def username(self) -> str:
        return self.user

    def now(self) -> datetime:
        return self.clock
