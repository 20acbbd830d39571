"""Observer interface for asynchronous session events."""


class SessionObserver:
    """Receives unsolicited events from an SSHSessionManager.

    Every callback runs on the manager's delivery context. Subclasses
    override only the callbacks they care about; the rest do nothing.
    Objects that do not inherit from this class are accepted too, any
    callback they lack is skipped.
    """

    def session_did_disconnect_with_error(self, error):
        """The transport reported that the connection went away."""

    def channel_did_read_data(self, message: str):
        """The interactive shell produced output."""

    def channel_did_read_error(self, error: str):
        """The interactive shell produced output on its stderr stream."""

    def channel_shell_did_close(self):
        """The interactive shell ended."""

    def additional_error_received(self, error):
        """A low-level operation without a completion callback failed."""
