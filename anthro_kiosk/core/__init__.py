from .asyncio_utils import create_logged_task
from .config import KioskConfig
from .config_loader import ConfigLoader
from .errors import (
    AnalysisError,
    AnalysisErrorKind,
    CaptureError,
    CaptureErrorKind,
    DeviceError,
    DeviceErrorKind,
    KioskError,
    RecordError,
    RecordErrorKind,
)
from .logging_config import configure_logging
from .logging_utils import StructuredLogger, get_module_logger

__all__ = [
    "create_logged_task",
    "KioskConfig",
    "ConfigLoader",
    "AnalysisError",
    "AnalysisErrorKind",
    "CaptureError",
    "CaptureErrorKind",
    "DeviceError",
    "DeviceErrorKind",
    "KioskError",
    "RecordError",
    "RecordErrorKind",
    "configure_logging",
    "StructuredLogger",
    "get_module_logger",
]
