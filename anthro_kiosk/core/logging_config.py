"""Root logging setup for the kiosk process (stdout plus optional rotating file)."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# A kiosk log covers a working day of screenings; keep a few of them.
LOG_FILE_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

# Per-request chatter from the analysis and record clients
QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.internal")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> None:
    """Replace the root handlers with the kiosk's own.

    ``level`` is a number or one of the ``--log-level`` names.
    """
    if isinstance(level, str):
        try:
            level = LOG_LEVELS[level.lower()]
        except KeyError:
            raise ValueError(f"Unknown log level '{level}'") from None

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=LOG_FILE_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8")
        )

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers or None, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["LOG_LEVELS", "configure_logging"]
