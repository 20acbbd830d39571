"""Data structures for SSH session management."""
from enum import Enum
from typing import Optional


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"  # Transport is up but not authenticated yet
    AUTHORIZED = "authorized"
    SHELL_ACTIVE = "shell_active"


class Credential:
    """Login data for a single host.

    Host and username are fixed at construction, the password may be
    supplied later (e.g. after prompting the user).
    """

    def __init__(self, host: str, username: str, password: Optional[str] = None):
        self._host = host
        self._username = username
        self.password = password

    @property
    def host(self) -> str:
        return self._host

    @property
    def username(self) -> str:
        return self._username

    def __repr__(self) -> str:
        has_password = self.password is not None
        return f"Credential(host={self._host!r}, username={self._username!r}, password_set={has_password})"
