from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence, Tuple

DEFAULT_LOG_PATH = "logs/autopsy-installer.log"
FALLBACK_LOG_NAME = "autopsy-installer.log"

# Per-request connection chatter from requests' transport; not useful in an install log.
QUIET_LOGGERS: Tuple[str, ...] = ("urllib3",)

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_CONFIGURED_ATTR = "_autopsy_installer_log_path"


def _open_log_file(log_path: str) -> Tuple[logging.Handler, str]:
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
    quiet: Sequence[str] = QUIET_LOGGERS,
) -> str:
    """Send every fetch, build command and staging decision to ``log_path``.

    Falls back to a file in the working directory when ``log_path`` cannot
    be created. Safe to call twice: the second call only adjusts the level.
    Returns the file actually written, which the install receipt records.
    """

    root = logging.getLogger()
    root.setLevel(level)
    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    configured = getattr(root, _CONFIGURED_ATTR, None)
    if configured:
        return configured

    fmt = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    file_handler, chosen_path = _open_log_file(log_path)
    handlers: list[logging.Handler] = [file_handler]
    if also_console:
        handlers.append(logging.StreamHandler())

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)
    setattr(root, _CONFIGURED_ATTR, chosen_path)

    if chosen_path != log_path:
        logging.getLogger(__name__).warning("Cannot write log to %s; using %s", log_path, chosen_path)
    logging.getLogger(__name__).info("Logging to %s", chosen_path)
    return chosen_path
