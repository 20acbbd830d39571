"""Paramiko-backed session and channel used by SSHSessionManager.

``ParamikoSession`` owns one ``paramiko.Transport``. Connecting and
authenticating are separate steps so callers can drive them one at a time.
``ParamikoChannel`` runs exec requests and the interactive shell on top of
it. Both report asynchronous events to a ``delegate``:

- session: ``session_disconnected(session, error)``
- channel: ``channel_received_data(channel, text)``,
  ``channel_received_error(channel, text)``, ``channel_shell_closed(channel)``

All methods block; the manager calls them from its worker thread only.
"""
import codecs
import logging
import socket
import threading
import time
from typing import List, Optional

import paramiko

from .config import SessionSettings, resolve_endpoint


class TransportError(Exception):
    """A transport operation could not be carried out."""


class ParamikoSession:
    """A single SSH connection to ``host`` as ``username``."""

    def __init__(self, host: str, username: str,
                 settings: Optional[SessionSettings] = None,
                 ssh_config: Optional[paramiko.SSHConfig] = None):
        self.logger = logging.getLogger('ssh_shell_session.transport')
        self.host = host
        self.username = username
        self.settings = settings or SessionSettings()
        # Resolved in connect(), on the worker.
        self.hostname = host
        self.port = self.settings.port
        self._ssh_config = ssh_config
        self.delegate = None
        self.last_error: Optional[BaseException] = None
        self._transport: Optional[paramiko.Transport] = None
        self._channel: Optional["ParamikoChannel"] = None
        self._closing = False
        self._disconnect_reported = False

    def __repr__(self) -> str:
        return f"ParamikoSession({self.username}@{self.hostname}:{self.port})"

    @property
    def transport(self) -> Optional[paramiko.Transport]:
        return self._transport

    @property
    def is_connected(self) -> bool:
        transport = self._transport
        return bool(transport is not None and transport.is_active())

    @property
    def is_authorized(self) -> bool:
        transport = self._transport
        return bool(transport is not None and transport.is_active() and transport.is_authenticated())

    @property
    def channel(self) -> "ParamikoChannel":
        if self._channel is None:
            self._channel = ParamikoChannel(self)
        return self._channel

    def connect(self) -> bool:
        """Open the TCP connection and run the SSH handshake.

        Returns whether the transport is up. Failures are logged and kept
        in ``last_error``.
        """
        logger = self.logger.getChild('connect')
        if self.is_connected:
            logger.debug(f"[CONNECT] Already connected to {self.hostname}:{self.port}")
            return True

        self._closing = False
        self._disconnect_reported = False
        settings = self.settings
        sock = None
        transport = None
        try:
            self.hostname, self.port = resolve_endpoint(self.host, settings.port, self._ssh_config)
            logger.info(f"[CONNECT] Connecting to {self.hostname}:{self.port}")
            sock = socket.create_connection((self.hostname, self.port), timeout=settings.connect_timeout)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = settings.banner_timeout
            transport.auth_timeout = settings.auth_timeout
            transport.start_client(timeout=settings.connect_timeout)
        except (paramiko.SSHException, OSError) as exc:
            logger.error(f"[CONNECT] Connection to {self.hostname}:{self.port} failed: {type(exc).__name__}: {exc}")
            self.last_error = exc
            try:
                if transport is not None:
                    transport.close()
                elif sock is not None:
                    sock.close()
            except Exception as close_exc:
                logger.warning(f"Error closing failed connection: {close_exc}")
            return False

        if settings.keepalive_interval > 0:
            transport.set_keepalive(settings.keepalive_interval)

        server_key = transport.get_remote_server_key()
        logger.info(f"[CONNECT] Connected to {self.hostname}:{self.port}, host key type {server_key.get_name()}")
        self._transport = transport
        return True

    def authenticate_by_password(self, password: str) -> bool:
        """Authenticate with ``password``.

        Servers that only offer keyboard-interactive (common on routers)
        get the password as the answer to every prompt.
        """
        logger = self.logger.getChild('authenticate')
        transport = self._transport
        if transport is None or not transport.is_active():
            logger.warning("[AUTH] Cannot authenticate, transport is not connected")
            return False

        try:
            transport.auth_password(self.username, password, fallback=False)
        except paramiko.BadAuthenticationType as exc:
            if 'keyboard-interactive' not in exc.allowed_types:
                logger.warning(f"[AUTH] Password auth not allowed, server offers {exc.allowed_types}")
                self.last_error = exc
                return False
            logger.debug("[AUTH] Falling back to keyboard-interactive")
            try:
                transport.auth_interactive(
                    self.username, lambda title, instructions, prompts: [password for _ in prompts]
                )
            except paramiko.SSHException as interactive_exc:
                logger.warning(f"[AUTH] Keyboard-interactive auth failed: {interactive_exc}")
                self.last_error = interactive_exc
                return False
        except paramiko.AuthenticationException as exc:
            logger.warning(f"[AUTH] Authentication rejected for {self.username}: {exc}")
            self.last_error = exc
            return False
        except (paramiko.SSHException, OSError) as exc:
            logger.error(f"[AUTH] Authentication error: {type(exc).__name__}: {exc}")
            self.last_error = exc
            return False

        authorized = transport.is_authenticated()
        logger.info(f"[AUTH] Authenticated as {self.username}: {authorized}")
        return authorized

    def disconnect(self):
        """Close the shell, if any, and the transport."""
        logger = self.logger.getChild('disconnect')
        self._closing = True
        if self._channel is not None:
            self._channel.close_shell()
        transport = self._transport
        if transport is not None:
            logger.info(f"[DISCONNECT] Closing transport to {self.hostname}:{self.port}")
            transport.close()

    def _connection_lost(self):
        """Report a transport that died without ``disconnect()``, once."""
        if self._closing or self._disconnect_reported:
            return
        transport = self._transport
        if transport is None or transport.is_active():
            return
        self._disconnect_reported = True
        error = transport.get_exception() or TransportError("Connection closed by remote host")
        self.logger.getChild('disconnect').warning(f"[DISCONNECT] Connection lost: {error}")
        delegate = self.delegate
        if delegate is not None:
            delegate.session_disconnected(self, error)


class ParamikoChannel:
    """Exec and interactive-shell access over a ParamikoSession."""

    def __init__(self, session: ParamikoSession):
        self.logger = logging.getLogger('ssh_shell_session.transport.channel')
        self.session = session
        settings = session.settings
        self.request_pty = settings.request_pty
        self.term = settings.term
        self.pty_width = settings.pty_width
        self.pty_height = settings.pty_height
        self.delegate = None
        self.last_exit_status: Optional[int] = None
        self.last_stderr = ""
        self._shell: Optional[paramiko.Channel] = None
        self._reader: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_shell_active(self) -> bool:
        shell = self._shell
        return bool(shell is not None and not shell.closed and self.session.is_connected)

    def _open_channel(self) -> paramiko.Channel:
        transport = self.session.transport
        if transport is None or not transport.is_active():
            raise TransportError("Session is not connected")
        if not transport.is_authenticated():
            raise TransportError("Session is not authenticated")
        return transport.open_session(timeout=self.session.settings.connect_timeout)

    def _decode(self, chunks: List[bytes]) -> str:
        return b"".join(chunks).decode(self.session.settings.encoding, errors='replace')

    def execute(self, command: str, timeout: Optional[float] = None) -> str:
        """Run ``command`` on a fresh exec channel and return its stdout.

        Stderr and the exit status are kept in ``last_stderr`` and
        ``last_exit_status``; a non-zero exit is not an error here.
        """
        logger = self.logger.getChild('execute')
        settings = self.session.settings
        timeout = timeout if timeout is not None else settings.command_timeout
        chan = self._open_channel()
        stdout: List[bytes] = []
        stderr: List[bytes] = []
        try:
            chan.settimeout(timeout)
            logger.debug(f"[EXEC] {command[:100]!r}")
            chan.exec_command(command)

            start = time.time()
            while True:
                if chan.recv_ready():
                    stdout.append(chan.recv(65535))
                elif chan.recv_stderr_ready():
                    stderr.append(chan.recv_stderr(65535))
                elif chan.exit_status_ready() or chan.closed:
                    break
                elif timeout is not None and time.time() - start > timeout:
                    raise TransportError(f"Command timed out after {timeout} seconds")
                else:
                    time.sleep(settings.shell_poll_interval)

            while chan.recv_ready():
                stdout.append(chan.recv(65535))
            while chan.recv_stderr_ready():
                stderr.append(chan.recv_stderr(65535))

            self.last_exit_status = chan.recv_exit_status()
            self.last_stderr = self._decode(stderr)
            logger.debug(f"[EXEC_DONE] exit_status={self.last_exit_status}")
        finally:
            chan.close()

        return self._decode(stdout)

    def start_shell(self):
        """Open an interactive shell and start forwarding its output."""
        logger = self.logger.getChild('shell')
        if self.is_shell_active:
            raise TransportError("Shell is already running")

        chan = self._open_channel()
        try:
            if self.request_pty:
                chan.get_pty(term=self.term, width=self.pty_width, height=self.pty_height)
            chan.invoke_shell()
        except Exception:
            chan.close()
            raise

        reader = threading.Thread(
            target=self._read_shell, args=(chan,), name="ssh_shell_reader", daemon=True
        )
        with self._lock:
            self._shell = chan
            self._reader = reader
        reader.start()
        logger.info("[SHELL_START] Interactive shell started")

    def _read_shell(self, chan: paramiko.Channel):
        logger = self.logger.getChild('reader')
        encoding = self.session.settings.encoding
        poll_interval = self.session.settings.shell_poll_interval
        out_decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        err_decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        try:
            while True:
                if chan.recv_ready():
                    data = chan.recv(65535)
                    if not data:
                        break
                    text = out_decoder.decode(data)
                    if text:
                        self._notify('channel_received_data', text)
                elif chan.recv_stderr_ready():
                    text = err_decoder.decode(chan.recv_stderr(65535))
                    if text:
                        self._notify('channel_received_error', text)
                elif chan.closed or chan.eof_received or chan.exit_status_ready():
                    break
                else:
                    time.sleep(poll_interval)
        except (paramiko.SSHException, OSError) as exc:
            logger.warning(f"[SHELL_READ] Reading shell output failed: {exc}")
        finally:
            with self._lock:
                if self._shell is chan:
                    self._shell = None
            try:
                chan.close()
            except Exception as exc:
                logger.warning(f"Error closing shell channel: {exc}")
            tail = out_decoder.decode(b"", final=True)
            if tail:
                self._notify('channel_received_data', tail)
            tail = err_decoder.decode(b"", final=True)
            if tail:
                self._notify('channel_received_error', tail)
            logger.info("[SHELL_CLOSED] Interactive shell closed")
            self._notify('channel_shell_closed')
            self.session._connection_lost()

    def _notify(self, event: str, *args):
        delegate = self.delegate
        if delegate is not None:
            getattr(delegate, event)(self, *args)

    def write(self, text: str):
        """Send raw ``text`` to the interactive shell."""
        shell = self._shell
        if shell is None or shell.closed:
            raise TransportError("Shell is not running")
        shell.sendall(text.encode(self.session.settings.encoding))

    def close_shell(self):
        """Close the interactive shell; the reader reports the close."""
        shell = self._shell
        if shell is None:
            return
        self.logger.getChild('shell').info("[SHELL_CLOSE] Closing interactive shell")
        shell.close()
