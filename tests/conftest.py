"""Shared fakes and fixtures for the session manager tests."""
import threading

import pytest

from ssh_shell_session.config import SessionSettings
from ssh_shell_session.observer import SessionObserver
from ssh_shell_session.session_manager import SSHSessionManager
from ssh_shell_session.transport import TransportError


class FakeChannel:
    """Stands in for ParamikoChannel; records what the worker did to it."""

    def __init__(self, session):
        self.session = session
        self.delegate = None
        self.request_pty = False
        self.term = None
        self.pty_width = None
        self.pty_height = None
        self.written = []
        self.executed = []
        self.fail_writes = set()
        self.fail_executes = set()
        self.responses = {}
        self.shell_error = None
        self.shell_starts = 0
        self.shell_closes = 0
        self.threads = []
        self._shell_active = False

    @property
    def is_shell_active(self):
        return self._shell_active

    def write(self, text):
        self.threads.append(threading.current_thread().name)
        if text in self.fail_writes:
            raise TransportError("Broken pipe")
        self.written.append(text)

    def execute(self, command, timeout=None):
        self.threads.append(threading.current_thread().name)
        self.executed.append(command)
        if command in self.fail_executes:
            raise TransportError("Channel request failed")
        return self.responses.get(command, "")

    def start_shell(self):
        self.threads.append(threading.current_thread().name)
        if self.shell_error is not None:
            raise self.shell_error
        self.shell_starts += 1
        self._shell_active = True

    def close_shell(self):
        self.shell_closes += 1
        self._shell_active = False

    # Simulated transport events

    def emit_data(self, text):
        self.delegate.channel_received_data(self, text)

    def emit_error(self, text):
        self.delegate.channel_received_error(self, text)

    def emit_shell_closed(self):
        self._shell_active = False
        self.delegate.channel_shell_closed(self)


class FakeSession:
    """Stands in for ParamikoSession; appends every call to a shared log."""

    def __init__(self, index, host, username, settings, call_log, connect_ok=True, auth_ok=True):
        self.index = index
        self.host = host
        self.username = username
        self.settings = settings
        self.delegate = None
        self.connect_ok = connect_ok
        self.auth_ok = auth_ok
        self.connected = False
        self.authorized = False
        self.passwords = []
        self.channel = FakeChannel(self)
        self._call_log = call_log

    @property
    def is_connected(self):
        return self.connected

    @property
    def is_authorized(self):
        return self.connected and self.authorized

    def connect(self):
        self._call_log.append((self.index, 'connect', threading.current_thread().name))
        self.connected = self.connect_ok
        return self.connected

    def authenticate_by_password(self, password):
        self._call_log.append((self.index, 'authenticate', threading.current_thread().name))
        self.passwords.append(password)
        self.authorized = self.auth_ok
        return self.authorized

    def disconnect(self):
        self._call_log.append((self.index, 'disconnect', threading.current_thread().name))
        self.connected = False
        self.authorized = False
        self.channel._shell_active = False

    def drop(self, error):
        self.connected = False
        self.delegate.session_disconnected(self, error)


class FakeSessionFactory:
    def __init__(self):
        self.sessions = []
        self.calls = []
        self.connect_ok = True
        self.auth_ok = True

    def __call__(self, host, username, settings):
        session = FakeSession(
            len(self.sessions), host, username, settings, self.calls,
            connect_ok=self.connect_ok, auth_ok=self.auth_ok,
        )
        self.sessions.append(session)
        return session

    def call_names(self):
        return [(index, name) for index, name, _ in self.calls]


class Recorder:
    """Completion callback that remembers how and where it was called."""

    def __init__(self):
        self.calls = []
        self.threads = []
        self._called = threading.Event()

    def __call__(self, *args):
        self.calls.append(args)
        self.threads.append(threading.current_thread().name)
        self._called.set()

    def wait(self, timeout=5.0):
        assert self._called.wait(timeout), "completion was not called"
        return self.calls[0]


class RecordingObserver(SessionObserver):
    def __init__(self):
        self.events = []
        self.threads = []
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.events.append((name,) + args)
            self.threads.append(threading.current_thread().name)

    def session_did_disconnect_with_error(self, error):
        self._record('session_did_disconnect_with_error', error)

    def channel_did_read_data(self, message):
        self._record('channel_did_read_data', message)

    def channel_did_read_error(self, error):
        self._record('channel_did_read_error', error)

    def channel_shell_did_close(self):
        self._record('channel_shell_did_close')

    def additional_error_received(self, error):
        self._record('additional_error_received', error)

    def named(self, name):
        return [event for event in self.events if event[0] == name]


@pytest.fixture(autouse=True)
def no_password_override(monkeypatch):
    monkeypatch.delenv("OVRD_router.local_PASS", raising=False)


@pytest.fixture
def settings():
    return SessionSettings(connect_settle_delay=0, shell_settle_delay=0)


@pytest.fixture
def factory():
    return FakeSessionFactory()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def manager(factory, settings, observer):
    manager = SSHSessionManager(
        "router.local", "admin", "secret",
        settings=settings, session_factory=factory, observer=observer,
    )
    yield manager
    manager.shutdown()


@pytest.fixture
def connected_manager(manager):
    done = Recorder()
    manager.connect_and_authorize(done)
    assert done.wait() == (None,)
    return manager
