"""SSH session manager: lifecycle and command dispatch for one host."""
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .config import SessionSettings, get_env_override
from .datastructures import Credential, SessionState
from .dispatcher import Dispatcher
from .errors import (
    ExecuteCommandError,
    NoPasswordError,
    NoSessionChannelError,
    NotAuthorizedError,
    NotConnectedError,
    ShellNotStartedError,
    WriteCommandError,
)
from .logging_manager import get_logger
from .session_state import SessionStateHolder
from .transport import ParamikoSession

ErrorCompletion = Callable[[Optional[Exception]], None]
ResponseCompletion = Callable[[Optional[Exception], Optional[str]], None]
BunchCompletion = Callable[[Optional[Exception], Optional[List[str]]], None]


def _ignore(*args):
    pass


class SSHSessionManager:
    """Owns one SSH session to one host and serializes all work on it.

    Every transport call runs on a single worker thread in submission
    order. Completions and observer events are handed to the delivery
    context, never run on the caller's thread or the worker. Completions
    are called exactly once.

    The manager is also the transport's delegate: it receives session and
    channel events and forwards them to ``observer``.
    """

    def __init__(self, host: str, username: str, password: Optional[str] = None,
                 settings: Optional[SessionSettings] = None,
                 session_factory: Optional[Callable[..., Any]] = None,
                 deliver: Optional[Callable[..., None]] = None,
                 observer: Optional[Any] = None):
        """
        Args:
            host: Hostname, IP address or SSH config alias
            username: SSH username
            password: Password (optional, can be set later; falls back to
                the ``OVRD_<host>_PASS`` environment variable)
            settings: Timeouts, settle delays and PTY options
                (default: ``SessionSettings.from_env()``)
            session_factory: Called as ``factory(host, username, settings)``
                to build a session (default: ``ParamikoSession``)
            deliver: Marshals callbacks onto the caller's context, called as
                ``deliver(func, *args)`` (default: a dedicated thread)
            observer: Receiver of asynchronous events, see ``SessionObserver``
        """
        self.settings = settings or SessionSettings.from_env()
        self.logger = get_logger(self.settings.log_dir, self.settings.log_level)

        if password is None:
            password = get_env_override(host, "PASS")
        self._credential = Credential(host, username, password)
        self._state = SessionStateHolder()
        self._session_factory = session_factory or ParamikoSession
        self._dispatcher = Dispatcher(deliver=deliver, on_worker_error=self._report_additional_error)
        self.observer = observer
        self.logger.info(f"SSHSessionManager initialized for {username}@{host}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # Credential and derived state

    @property
    def host(self) -> str:
        return self._credential.host

    @property
    def username(self) -> str:
        return self._credential.username

    @property
    def password(self) -> Optional[str]:
        return self._credential.password

    @password.setter
    def password(self, value: Optional[str]):
        self._credential.password = value

    @property
    def session(self) -> Optional[Any]:
        return self._state.session

    @property
    def channel(self) -> Optional[Any]:
        return self._state.channel

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def is_authorized(self) -> bool:
        return self._state.is_authorized

    @property
    def state(self) -> SessionState:
        return self._state.state

    # Session lifecycle

    def _ensure_open(self):
        if self._dispatcher.closed:
            raise RuntimeError("Session manager is shut down")

    def _replace_session(self) -> Any:
        """Tear down the held session, if any, then hold a fresh one.

        The old session's disconnect is enqueued before anything the caller
        enqueues for the new one, so two live sessions never coexist.
        """
        self._ensure_open()
        logger = self.logger.getChild('replace_session')
        previous = self._state.detach()
        if previous is not None:
            logger.info(f"[TEARDOWN] Disconnecting previous session {previous!r}")
            self._dispatcher.run(self._disconnect_job, previous)

        session = self._session_factory(self.host, self.username, self.settings)
        session.delegate = self
        self._state.attach(session)
        logger.debug(f"[NEW_SESSION] Holding {session!r}")
        return session

    def initiate_session(self) -> Any:
        """Create a new, unconnected session without touching the network.

        Use ``connect()`` and ``authenticate()`` to bring it up step by step.
        """
        self.logger.getChild('initiate_session').info(f"Initiating session for {self.username}@{self.host}")
        return self._replace_session()

    def connect_and_authorize(self, completion: Optional[ErrorCompletion] = None,
                              start_shell: bool = False):
        """Connect, authenticate and optionally start the interactive shell.

        Reports ``None`` on success, otherwise one of ``NoPasswordError``,
        ``NotConnectedError``, ``NotAuthorizedError`` or, with
        ``start_shell``, ``ShellNotStartedError``.
        """
        self._ensure_open()
        logger = self.logger.getChild('connect_and_authorize')
        completion = completion or _ignore
        password = self.password
        if password is None:
            logger.warning(f"[CONNECT] No password set for {self.username}@{self.host}")
            self._dispatcher.deliver(completion, NoPasswordError())
            return

        session = self._replace_session()
        logger.info(f"[CONNECT] Enqueued connect for {self.username}@{self.host}, start_shell={start_shell}")
        self._dispatcher.run(self._connect_and_authorize_job, session, password, start_shell, completion)

    def _connect_and_authorize_job(self, session, password: str, start_shell: bool,
                                   completion: ErrorCompletion):
        logger = self.logger.getChild('connect_and_authorize')
        try:
            session.connect()
        except Exception as exc:
            logger.error(f"[CONNECT] Transport raised during connect: {exc}", exc_info=True)

        if not session.is_connected:
            logger.warning(f"[CONNECT] Not connected to {self.host}")
            self._dispatcher.deliver(completion, NotConnectedError())
            return

        try:
            authorized = session.authenticate_by_password(password)
        except Exception as exc:
            logger.error(f"[AUTH] Transport raised during authentication: {exc}", exc_info=True)
            authorized = False

        if not authorized:
            logger.warning(f"[AUTH] Not authorized as {self.username}")
            self._dispatcher.deliver(completion, NotAuthorizedError())
            return

        if start_shell:
            channel = session.channel
            self._prepare_shell(channel)
            self._start_shell_job(channel, completion)
            return

        logger.info(f"[CONNECT] Connected and authorized as {self.username}@{self.host}")
        self._dispatcher.deliver_after(self.settings.connect_settle_delay, completion, None)

    def connect(self):
        """Enqueue a bare transport connect on the held session."""
        logger = self.logger.getChild('connect')
        session = self._state.session
        if session is None:
            logger.info("[CONNECT] No session to connect, call initiate_session() first")
            return
        self._dispatcher.run(self._connect_job, session)

    def _connect_job(self, session):
        if not session.connect():
            self._report_additional_error(NotConnectedError())

    def authenticate(self):
        """Enqueue password authentication on the held session."""
        logger = self.logger.getChild('authenticate')
        session = self._state.session
        if session is None:
            logger.info("[AUTH] No session to authenticate")
            return
        password = self.password
        if password is None:
            logger.warning("[AUTH] No password set, skipping authentication")
            self._report_additional_error(NoPasswordError())
            return
        self._dispatcher.run(self._authenticate_job, session, password)

    def _authenticate_job(self, session, password: str):
        if not session.authenticate_by_password(password):
            self._report_additional_error(NotAuthorizedError())

    def disconnect(self):
        """Enqueue a disconnect of the held session.

        The session object stays held, so ``connect()`` can bring it back.
        """
        logger = self.logger.getChild('disconnect')
        session = self._state.session
        if session is None:
            logger.info("[DISCONNECT] No session to disconnect")
            return
        self._dispatcher.run(self._disconnect_job, session)

    def _disconnect_job(self, session):
        self.logger.getChild('disconnect').info(f"[DISCONNECT] Disconnecting {session!r}")
        session.disconnect()

    # Interactive shell

    def _prepare_shell(self, channel):
        channel.delegate = self
        channel.request_pty = self.settings.request_pty
        channel.term = self.settings.term
        channel.pty_width = self.settings.pty_width
        channel.pty_height = self.settings.pty_height

    def start_shell(self, completion: Optional[ErrorCompletion] = None):
        """Start the interactive shell; its output arrives via the observer."""
        completion = completion or _ignore
        channel = self._state.channel
        if channel is None:
            self.logger.getChild('shell').warning("[SHELL_START] No session channel")
            self._dispatcher.deliver(completion, NoSessionChannelError())
            return
        self._prepare_shell(channel)
        self._dispatcher.run(self._start_shell_job, channel, completion)

    def _start_shell_job(self, channel, completion: ErrorCompletion):
        logger = self.logger.getChild('shell')
        try:
            channel.start_shell()
        except Exception as exc:
            logger.error(f"[SHELL_START] Failed to start shell: {exc}", exc_info=True)
            self._dispatcher.deliver(completion, ShellNotStartedError(exc))
            return
        logger.info(f"[SHELL_READY] Shell started, reporting after {self.settings.shell_settle_delay}s")
        self._dispatcher.deliver_after(self.settings.shell_settle_delay, completion, None)

    def close_shell(self):
        """Enqueue closing the interactive shell."""
        channel = self._state.channel
        if channel is None:
            self.logger.getChild('shell').info("[SHELL_CLOSE] No session channel")
            return
        self._dispatcher.run(channel.close_shell)

    # Commands

    def _write(self, channel, command: str) -> Optional[WriteCommandError]:
        try:
            channel.write(command)
        except Exception as exc:
            self.logger.getChild('write').error(f"[WRITE_ERROR] cmd={command[:100]!r}: {exc}")
            return WriteCommandError(command, exc)
        return None

    def _execute(self, channel, command: str) -> Tuple[Optional[ExecuteCommandError], Optional[str]]:
        logger = self.logger.getChild('execute')
        try:
            response = channel.execute(command)
        except Exception as exc:
            logger.error(f"[EXEC_ERROR] cmd={command[:100]!r}: {exc}")
            return ExecuteCommandError(command, exc), None
        logger.debug(f"[EXEC_DONE] cmd={command[:100]!r}, {len(response or '')} chars")
        return None, response

    def send_command(self, command: str, completion: Optional[ErrorCompletion] = None):
        """Write ``command`` into the interactive shell as-is.

        The completion only says the write was accepted; output arrives
        later through ``observer.channel_did_read_data``.
        """
        completion = completion or _ignore
        channel = self._state.channel
        if channel is None:
            self._dispatcher.deliver(completion, NoSessionChannelError())
            return
        self._dispatcher.run(self._send_command_job, channel, command, completion)

    def _send_command_job(self, channel, command: str, completion: ErrorCompletion):
        self._dispatcher.deliver(completion, self._write(channel, command))

    def execute_command(self, command: str, completion: Optional[ResponseCompletion] = None):
        """Run ``command`` on its own exec channel and report its output."""
        completion = completion or _ignore
        channel = self._state.channel
        if channel is None:
            self._dispatcher.deliver(completion, NoSessionChannelError(), None)
            return
        self._dispatcher.run(self._execute_command_job, channel, command, completion)

    def _execute_command_job(self, channel, command: str, completion: ResponseCompletion):
        error, response = self._execute(channel, command)
        self._dispatcher.deliver(completion, error, response)

    def write_bunch(self, commands: Sequence[str], completion: Optional[BunchCompletion] = None):
        """Write each command in order; one result per command.

        A result is ``""`` when the write succeeded and the error message
        when it failed. The completion error is only ever
        ``NoSessionChannelError``.
        """
        completion = completion or _ignore
        channel = self._state.channel
        if channel is None:
            self._dispatcher.deliver(completion, NoSessionChannelError(), None)
            return
        self._dispatcher.run(self._write_bunch_job, channel, list(commands), completion)

    def _write_bunch_job(self, channel, commands: List[str], completion: BunchCompletion):
        results = []
        for command in commands:
            error = self._write(channel, command)
            results.append(str(error) if error else "")
        self.logger.getChild('write_bunch').info(f"[BUNCH_DONE] Wrote {len(commands)} commands")
        self._dispatcher.deliver(completion, None, results)

    def execute_bunch(self, commands: Sequence[str], completion: Optional[BunchCompletion] = None):
        """Execute each command in order; one result per command.

        A result is the command's output, or the error message when it
        failed. The completion error is only ever ``NoSessionChannelError``.
        """
        completion = completion or _ignore
        channel = self._state.channel
        if channel is None:
            self._dispatcher.deliver(completion, NoSessionChannelError(), None)
            return
        self._dispatcher.run(self._execute_bunch_job, channel, list(commands), completion)

    def _execute_bunch_job(self, channel, commands: List[str], completion: BunchCompletion):
        results = []
        for command in commands:
            error, response = self._execute(channel, command)
            results.append(str(error) if error else response or "")
        self.logger.getChild('execute_bunch').info(f"[BUNCH_DONE] Executed {len(commands)} commands")
        self._dispatcher.deliver(completion, None, results)

    # Transport delegate

    def session_disconnected(self, session, error):
        self._notify('session_did_disconnect_with_error', error)

    def channel_received_data(self, channel, text: str):
        self._notify('channel_did_read_data', text)

    def channel_received_error(self, channel, text: str):
        self._notify('channel_did_read_error', text)

    def channel_shell_closed(self, channel):
        self._notify('channel_shell_did_close')

    def _report_additional_error(self, error: BaseException):
        self._notify('additional_error_received', error)

    def _notify(self, event: str, *args):
        observer = self.observer
        if observer is None:
            self.logger.getChild('events').debug(f"[EVENT_DROPPED] {event}, no observer")
            return
        handler = getattr(observer, event, None)
        if handler is None:
            return
        self._dispatcher.deliver(handler, *args)

    # Housekeeping

    def flush(self, timeout: Optional[float] = None):
        """Block until all work enqueued so far has run and been delivered."""
        self._dispatcher.flush(timeout)

    def shutdown(self, wait: bool = True):
        """Disconnect the held session and stop the worker and delivery threads."""
        logger = self.logger.getChild('shutdown')
        logger.info("Shutting down session manager")
        session = self._state.detach()
        if session is not None:
            self._dispatcher.run(self._disconnect_job, session)
        self._dispatcher.shutdown(wait=wait)
