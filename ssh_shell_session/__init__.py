"""Single-host SSH session manager with serialized command dispatch."""
from .config import SessionSettings
from .datastructures import Credential, SessionState
from .errors import (
    ExecuteCommandError,
    NoPasswordError,
    NoSessionChannelError,
    NotAuthorizedError,
    NotConnectedError,
    ShellNotStartedError,
    SSHSessionError,
    WriteCommandError,
)
from .observer import SessionObserver
from .session_manager import SSHSessionManager
from .transport import ParamikoChannel, ParamikoSession, TransportError

__version__ = "0.1.0"

__all__ = [
    "Credential",
    "ExecuteCommandError",
    "NoPasswordError",
    "NoSessionChannelError",
    "NotAuthorizedError",
    "NotConnectedError",
    "ParamikoChannel",
    "ParamikoSession",
    "SSHSessionError",
    "SSHSessionManager",
    "SessionObserver",
    "SessionSettings",
    "SessionState",
    "ShellNotStartedError",
    "TransportError",
    "WriteCommandError",
]
