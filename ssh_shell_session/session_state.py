"""Holder for the live session handle and the state derived from it."""
from typing import Any, Optional

from .datastructures import SessionState


class SessionStateHolder:
    """Wraps the current session and answers status queries about it.

    Nothing here is cached: every property asks the session handle, so the
    answers follow the transport without any reset. All reads are safe
    when no session exists.
    """

    def __init__(self):
        self._session: Optional[Any] = None

    @property
    def session(self) -> Optional[Any]:
        return self._session

    def attach(self, session: Any) -> Optional[Any]:
        """Hold ``session`` and return the one held before, if any."""
        previous, self._session = self._session, session
        return previous

    def detach(self) -> Optional[Any]:
        """Stop holding the current session and return it."""
        previous, self._session = self._session, None
        return previous

    @property
    def is_connected(self) -> bool:
        session = self._session
        return bool(session is not None and session.is_connected)

    @property
    def is_authorized(self) -> bool:
        session = self._session
        return bool(session is not None and session.is_authorized)

    @property
    def channel(self) -> Optional[Any]:
        session = self._session
        if session is None:
            return None
        return session.channel

    @property
    def state(self) -> SessionState:
        session = self._session
        if session is None or not session.is_connected:
            return SessionState.DISCONNECTED
        if not session.is_authorized:
            return SessionState.CONNECTED
        channel = session.channel
        if channel is not None and channel.is_shell_active:
            return SessionState.SHELL_ACTIVE
        return SessionState.AUTHORIZED
