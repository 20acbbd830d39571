"""Runtime configuration for SSH sessions."""
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional, Tuple

import paramiko

ENV_PREFIX = "SSH_SHELL_"
OVERRIDE_PREFIX = "OVRD_"

DEFAULT_LOG_DIR = "/tmp/ssh_shell_session_logs"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class SessionSettings:
    """Tunables for one manager and the transport it drives."""

    port: int = 22
    connect_timeout: float = 30.0
    banner_timeout: float = 30.0
    auth_timeout: float = 30.0
    command_timeout: Optional[float] = None  # None waits as long as the server does
    keepalive_interval: int = 0  # 0 disables keepalive packets

    # Heuristic waits after success. Readiness of the remote side is not
    # observable, so these only give banners and prompts time to flush.
    connect_settle_delay: float = 0.5
    shell_settle_delay: float = 2.0

    request_pty: bool = True
    term: str = "vt100"
    pty_width: int = 100
    pty_height: int = 24
    shell_poll_interval: float = 0.05
    encoding: str = "utf-8"

    log_dir: str = DEFAULT_LOG_DIR
    log_level: str = "DEBUG"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionSettings":
        """Build settings from ``SSH_SHELL_*`` variables.

        Values that cannot be parsed keep their defaults.
        """
        environ = os.environ if environ is None else environ
        settings = cls()
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            default = getattr(settings, field.name)
            value = _coerce(raw, default, field.name)
            if value is not None:
                setattr(settings, field.name, value)
        return settings


def _coerce(raw: str, default, name: str):
    """Convert ``raw`` to the type of ``default``; None if it does not parse."""
    raw = raw.strip()
    if isinstance(default, bool):
        if raw.lower() in _TRUE_VALUES:
            return True
        if raw.lower() in _FALSE_VALUES:
            return False
        return None
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return None
    if isinstance(default, float) or (default is None and name.endswith("timeout")):
        try:
            return float(raw)
        except ValueError:
            return None
    return raw


def get_env_override(host: str, key: str, default: Optional[str] = None) -> Optional[str]:
    """Look up a per-host override such as ``OVRD_myrouter_PASS``."""
    return os.environ.get(f"{OVERRIDE_PREFIX}{host}_{key}", default)


def load_ssh_config(path: Optional[Path] = None) -> paramiko.SSHConfig:
    """Load SSH config from the default location."""
    ssh_config = paramiko.SSHConfig()
    config_path = path or Path.home() / '.ssh' / 'config'

    if config_path.exists():
        with open(config_path) as f:
            ssh_config.parse(f)

    return ssh_config


def resolve_endpoint(host: str, default_port: int,
                     ssh_config: Optional[paramiko.SSHConfig] = None) -> Tuple[str, int]:
    """Resolve the hostname and port to dial for ``host``.

    Precedence: ``OVRD_<host>_HOST``/``OVRD_<host>_PORT`` overrides, then
    ``~/.ssh/config``, then ``host`` itself and ``default_port``.
    """
    ssh_config = ssh_config if ssh_config is not None else load_ssh_config()
    host_config = ssh_config.lookup(host)

    resolved_host = get_env_override(host, "HOST") or host_config.get('hostname', host)

    try:
        resolved_port = int(host_config.get('port', default_port))
    except ValueError:
        resolved_port = default_port

    port_override = get_env_override(host, "PORT")
    if port_override:
        try:
            resolved_port = int(port_override)
        except ValueError:
            pass

    return resolved_host, resolved_port
