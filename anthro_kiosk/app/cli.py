from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Any

from ..core.logging_config import LOG_LEVELS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anthro_kiosk",
        description="Anthropometric screening kiosk (camera capture + remote analysis)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.txt (defaults to the packaged one)",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default="info",
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path for a rotating log file",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera index (overrides camera_index in config)",
    )
    parser.add_argument(
        "--analysis-url",
        dest="analysis_url",
        type=str,
        default=None,
        help="Base URL of the analysis service",
    )
    parser.add_argument(
        "--records-url",
        dest="records_url",
        type=str,
        default=None,
        help="Base URL of the record store (empty disables lookups and saving)",
    )
    return parser


def install_signal_handlers(console: Any, loop: asyncio.AbstractEventLoop) -> None:
    """Register SIGINT/SIGTERM handlers that ask the console to shut down."""

    def signal_handler() -> None:
        if not console.shutdown_event.is_set():
            asyncio.create_task(console.shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, signal_handler)


__all__ = ["build_parser", "install_signal_handlers"]
