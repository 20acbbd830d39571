"""Logging setup for the SSH session manager."""
import logging
from pathlib import Path
from typing import Optional

from .config import DEFAULT_LOG_DIR

LOGGER_NAME = 'ssh_shell_session'
LOG_FILE_NAME = 'ssh_shell_session.log'
LOG_FORMAT = '%(asctime)s - [%(threadName)s] - %(name)s - %(levelname)s - %(message)s'


def get_logger(log_dir: Optional[str] = None, level: str = "DEBUG") -> logging.Logger:
    """Return the package logger, installing its file handler on first use.

    Output goes only to a file and the logger does not propagate to the
    root logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.DEBUG))
    logger.propagate = False

    if not any(getattr(h, '_ssh_shell_session', False) for h in logger.handlers):
        log_path = Path(log_dir or DEFAULT_LOG_DIR)
        log_path.mkdir(exist_ok=True, parents=True)

        file_handler = logging.FileHandler(str(log_path / LOG_FILE_NAME))
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._ssh_shell_session = True
        logger.addHandler(file_handler)

    return logger
