from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ..capture.analysis import AnalysisResult, CalibrationOutcome
from ..capture.device import DevicePhase
from ..capture.frame import CaptureFrame
from ..core.errors import KioskError
from ..remote.records import SubjectInfo


class WorkflowState(Enum):
    PREVIEW = auto()
    CAPTURED = auto()
    ANALYZING = auto()
    RESULTS = auto()
    SAVING = auto()
    CLOSED = auto()


# cancel() may return to PREVIEW and close() may end in CLOSED from anywhere
TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.PREVIEW: frozenset({WorkflowState.PREVIEW, WorkflowState.CAPTURED, WorkflowState.CLOSED}),
    WorkflowState.CAPTURED: frozenset({WorkflowState.PREVIEW, WorkflowState.ANALYZING, WorkflowState.CLOSED}),
    WorkflowState.ANALYZING: frozenset({
        WorkflowState.RESULTS, WorkflowState.CAPTURED, WorkflowState.PREVIEW, WorkflowState.CLOSED,
    }),
    WorkflowState.RESULTS: frozenset({WorkflowState.SAVING, WorkflowState.PREVIEW, WorkflowState.CLOSED}),
    WorkflowState.SAVING: frozenset({WorkflowState.PREVIEW, WorkflowState.RESULTS, WorkflowState.CLOSED}),
    WorkflowState.CLOSED: frozenset(),
}


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    return target in TRANSITIONS[current]


class CalibrationStatus(Enum):
    IDLE = auto()
    PENDING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


class StatusLevel(Enum):
    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class StatusMessage:
    level: StatusLevel = StatusLevel.INFO
    text: str = ""
    error: Optional[KioskError] = None

    @property
    def is_error(self) -> bool:
        return self.level is StatusLevel.ERROR


@dataclass(frozen=True)
class WorkflowSnapshot:
    """What the operator sees. Published to subscribers after every change."""

    state: WorkflowState = WorkflowState.PREVIEW
    subject: Optional[SubjectInfo] = None
    frame: Optional[CaptureFrame] = None
    result: Optional[AnalysisResult] = None
    device_phase: DevicePhase = DevicePhase.UNINITIALIZED
    camera_ready: bool = False
    calibration: CalibrationStatus = CalibrationStatus.IDLE
    calibration_outcome: Optional[CalibrationOutcome] = None
    calibration_error: Optional[KioskError] = None
    status: StatusMessage = StatusMessage()
    generation: int = 0

    @property
    def can_capture(self) -> bool:
        return (
            self.state is WorkflowState.PREVIEW
            and self.subject is not None
            and self.camera_ready
        )

    @property
    def can_calibrate(self) -> bool:
        return (
            self.state is WorkflowState.PREVIEW
            and self.device_phase is DevicePhase.ACTIVE
            and self.calibration is not CalibrationStatus.PENDING
        )


__all__ = [
    "WorkflowState",
    "TRANSITIONS",
    "can_transition",
    "CalibrationStatus",
    "StatusLevel",
    "StatusMessage",
    "WorkflowSnapshot",
]
