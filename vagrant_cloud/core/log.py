"""Logger setup for the vagrant_cloud package."""

import logging
import os
import sys
import threading

LOGGER_NAME = "vagrant_cloud"
LOG_LEVEL_ENV = "VAGRANT_CLOUD_LOG"
LOG_FORMAT = "%(asctime)s [%(levelname)5s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_lock = threading.Lock()
_configured = False


def configure(level: str | None = None) -> logging.Logger:
    """
    Configure the package root logger.

    Output goes to stderr at the level named by ``level`` (or the
    VAGRANT_CLOUD_LOG environment variable). Unknown or missing levels leave
    the package silent.

    Args:
        level: Log level name (e.g. "debug", "info")

    Returns:
        The package root logger

    """
    global _configured
    root = logging.getLogger(LOGGER_NAME)
    with _lock:
        if _configured and level is None:
            return root
        level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "").upper()
        numeric = logging.getLevelName(level_name) if level_name else None

        for handler in list(root.handlers):
            if getattr(handler, "_vagrant_cloud", False):
                root.removeHandler(handler)

        if isinstance(numeric, int):
            handler: logging.Handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            root.setLevel(numeric)
        else:
            handler = logging.NullHandler()
        handler._vagrant_cloud = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger within the package hierarchy."""
    configure()
    if name != LOGGER_NAME and not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
