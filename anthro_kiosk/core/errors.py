"""Error taxonomy for the capture session.

Every failure the workflow can surface to the operator is one of these.
Each error carries a ``kind`` so callers branch on the category instead of
on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class DeviceErrorKind(Enum):
    ACCESS_DENIED = "access_denied"
    UNAVAILABLE = "unavailable"


class CaptureErrorKind(Enum):
    NO_ACTIVE_STREAM = "no_active_stream"
    ENCODE_FAILED = "encode_failed"


class AnalysisErrorKind(Enum):
    TIMEOUT = "timeout"
    SERVICE_REJECTED = "service_rejected"
    UNREACHABLE = "unreachable"
    ALREADY_IN_PROGRESS = "already_in_progress"
    MALFORMED_RESPONSE = "malformed_response"


class RecordErrorKind(Enum):
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"


class KioskError(Exception):
    """Base class for every error the kiosk reports to the operator."""

    def __init__(self, kind: Enum, message: str = "") -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.name}, {self.message!r})"


class DeviceError(KioskError):
    kind: DeviceErrorKind


class CaptureError(KioskError):
    kind: CaptureErrorKind


class AnalysisError(KioskError):
    kind: AnalysisErrorKind

    def __init__(
        self,
        kind: AnalysisErrorKind,
        message: str = "",
        *,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        if not message and status_code is not None:
            message = f"service rejected request (HTTP {status_code})"
        super().__init__(kind, message)


class RecordError(KioskError):
    kind: RecordErrorKind

    def __init__(
        self,
        kind: RecordErrorKind,
        message: str = "",
        *,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(kind, message)


__all__ = [
    "DeviceErrorKind",
    "CaptureErrorKind",
    "AnalysisErrorKind",
    "RecordErrorKind",
    "KioskError",
    "DeviceError",
    "CaptureError",
    "AnalysisError",
    "RecordError",
]
