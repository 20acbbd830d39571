"""Errors reported through completion callbacks of SSHSessionManager."""
from typing import Optional


class SSHSessionError(Exception):
    """Base class for every error a manager operation can report."""


class NoPasswordError(SSHSessionError):
    """The operation needs a password and none was supplied."""

    def __init__(self):
        super().__init__("No password set for this session")


class NotConnectedError(SSHSessionError):
    """The transport connect step did not yield a live connection."""

    def __init__(self):
        super().__init__("Unable to connect to remote host")


class NotAuthorizedError(SSHSessionError):
    """The server rejected the credentials."""

    def __init__(self):
        super().__init__("Authentication rejected by remote host")


class NoSessionChannelError(SSHSessionError):
    """There is no session, so there is no channel to run the operation on."""

    def __init__(self):
        super().__init__("No active session channel")


class WriteCommandError(SSHSessionError):
    """Writing a command into the shell failed."""

    def __init__(self, command: str, cause: Optional[BaseException]):
        self.command = command
        self.cause = cause
        self.__cause__ = cause
        super().__init__(f"Error writing command {command.rstrip()!r}: {cause}")


class ExecuteCommandError(SSHSessionError):
    """Executing a command on an exec channel failed."""

    def __init__(self, command: str, cause: Optional[BaseException]):
        self.command = command
        self.cause = cause
        self.__cause__ = cause
        super().__init__(f"Error executing command {command.rstrip()!r}: {cause}")


class ShellNotStartedError(SSHSessionError):
    """The interactive shell could not be started."""

    def __init__(self, cause: Optional[BaseException]):
        self.cause = cause
        self.__cause__ = cause
        super().__init__(f"Shell not started: {cause}")
