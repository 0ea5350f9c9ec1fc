from .machine import InvalidTransition, Subscriber, WorkflowStateMachine
from .state import (
    TRANSITIONS,
    CalibrationStatus,
    StatusLevel,
    StatusMessage,
    WorkflowSnapshot,
    WorkflowState,
    can_transition,
)

__all__ = [
    "InvalidTransition",
    "Subscriber",
    "WorkflowStateMachine",
    "TRANSITIONS",
    "CalibrationStatus",
    "StatusLevel",
    "StatusMessage",
    "WorkflowSnapshot",
    "WorkflowState",
    "can_transition",
]
