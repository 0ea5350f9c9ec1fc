from .cli import build_parser, install_signal_handlers
from .console import KioskConsole, format_snapshot

__all__ = ["build_parser", "install_signal_handlers", "KioskConsole", "format_snapshot"]
