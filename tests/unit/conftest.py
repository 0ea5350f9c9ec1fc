"""Unit test fixtures: fake camera streams and a scriptable analysis service.

Nothing here touches a real camera or the network. ``FakeOpener`` stands in
for ``OpenCVStream.open`` and records every stream it hands out so tests can
check that each one was stopped.
"""

from __future__ import annotations

import asyncio
import base64
import threading
from typing import Any, Callable, Optional

import numpy as np
import pytest

from anthro_kiosk.capture import (
    CameraConstraints,
    Calibrator,
    CapturePipeline,
    DeviceSession,
)
from anthro_kiosk.remote.records import SavedRecord, SubjectInfo
from anthro_kiosk.workflow import WorkflowStateMachine

ANNOTATED_IMAGE = b"annotated-image-bytes"


def analysis_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "height": 98.4,
        "weight": 15.2,
        "status": [-1.3, "Normal"],
        "image": base64.b64encode(ANNOTATED_IMAGE).decode("ascii"),
        "message": "ok",
    }
    payload.update(overrides)
    return payload


# =============================================================================
# Camera fakes
# =============================================================================

class FakeStream:
    def __init__(self, stream_id: int, width: int = 64, height: int = 48, *, ready: bool = True) -> None:
        self.stream_id = stream_id
        self._width = width
        self._height = height
        self.ready = ready
        self.stopped = False
        self.stop_calls = 0
        self.detach_calls = 0
        self.sink: Optional[Callable] = None
        self.pixels = np.random.default_rng(stream_id).integers(0, 255, (height, width, 3), dtype=np.uint8)

    @property
    def width(self) -> int:
        return self._width if self.ready and not self.stopped else 0

    @property
    def height(self) -> int:
        return self._height if self.ready and not self.stopped else 0

    def read_frame(self) -> Optional[np.ndarray]:
        if self.stopped or not self.ready:
            return None
        return self.pixels.copy()

    async def wait_ready(self, timeout: float) -> bool:
        return self.ready and not self.stopped

    def set_preview_sink(self, sink) -> None:
        self.sink = sink

    def detach(self) -> None:
        self.detach_calls += 1
        self.sink = None

    def stop(self) -> None:
        self.stop_calls += 1
        self.stopped = True


class FakeOpener:
    """Blocking opener; set ``gate`` to hold opens until the test releases them."""

    def __init__(self) -> None:
        self.calls = 0
        self.streams: list[FakeStream] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.ready = True
        self._lock = threading.Lock()

    def __call__(self, constraints: CameraConstraints) -> FakeStream:
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        with self._lock:
            stream = FakeStream(len(self.streams) + 1, ready=self.ready)
            self.streams.append(stream)
        return stream

    @property
    def all_stopped(self) -> bool:
        return all(s.stopped for s in self.streams)


# =============================================================================
# Remote fakes
# =============================================================================

class FakeAnalysisService:
    """In-process analysis service. ``hold`` blocks calls until set."""

    def __init__(self) -> None:
        self.payload = analysis_payload()
        self.calibration_payload: dict[str, Any] = {"result": 1.25}
        self.error: Optional[Exception] = None
        self.calibrate_error: Optional[Exception] = None
        self.hold: Optional[asyncio.Event] = None
        self.calibrate_hold: Optional[asyncio.Event] = None
        self.analyze_calls: list[tuple[bytes, str, float]] = []
        self.calibrate_calls: list[bytes] = []
        self.cancelled = 0

    async def analyze(self, image: bytes, *, gender: str, age: float) -> dict[str, Any]:
        self.analyze_calls.append((image, gender, age))
        try:
            if self.hold is not None:
                await self.hold.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error is not None:
            raise self.error
        return dict(self.payload)

    async def calibrate(self, image: bytes) -> dict[str, Any]:
        self.calibrate_calls.append(image)
        if self.calibrate_hold is not None:
            await self.calibrate_hold.wait()
        if self.calibrate_error is not None:
            raise self.calibrate_error
        return dict(self.calibration_payload)


class FakeResultStore:
    def __init__(self) -> None:
        self.saved: list[tuple[SubjectInfo, Any, Any]] = []
        self.error: Optional[Exception] = None
        self.hold: Optional[asyncio.Event] = None

    async def save_result(self, subject, result, examined_on) -> SavedRecord:
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        self.saved.append((subject, result, examined_on))
        return SavedRecord(subject.subject_id, examined_on)


class FakeDirectory:
    def __init__(self, *subjects: SubjectInfo) -> None:
        self.subjects = {s.subject_id: s for s in subjects}

    async def fetch_subject(self, subject_id: str) -> SubjectInfo:
        from anthro_kiosk.core.errors import RecordError, RecordErrorKind

        if subject_id not in self.subjects:
            raise RecordError(RecordErrorKind.NOT_FOUND, f"No subject with id {subject_id}")
        return self.subjects[subject_id]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def device(opener: FakeOpener) -> DeviceSession:
    return DeviceSession(opener)


@pytest.fixture
def service() -> FakeAnalysisService:
    return FakeAnalysisService()


@pytest.fixture
def pipeline(service: FakeAnalysisService) -> CapturePipeline:
    return CapturePipeline(service)


@pytest.fixture
def calibrator(pipeline: CapturePipeline) -> Calibrator:
    return Calibrator(pipeline, timeout_s=1.0)


@pytest.fixture
def store() -> FakeResultStore:
    return FakeResultStore()


@pytest.fixture
def subject() -> SubjectInfo:
    return SubjectInfo(
        subject_id="3201010101010001",
        age_years=4,
        gender="L",
        name="Budi",
        birth_date="2021-03-14",
        birth_place="Bandung",
    )


@pytest.fixture
def make_machine(device, pipeline, calibrator, store) -> Callable[..., WorkflowStateMachine]:
    def _make(**overrides: Any) -> WorkflowStateMachine:
        options = dict(
            store=store,
            analysis_timeout_s=1.0,
            calibration_display_s=0.05,
            first_frame_timeout_s=0.1,
        )
        options.update(overrides)
        return WorkflowStateMachine(device, pipeline, calibrator, **options)

    return _make


@pytest.fixture
def machine(make_machine) -> WorkflowStateMachine:
    return make_machine()


@pytest.fixture
def directory(subject) -> FakeDirectory:
    return FakeDirectory(subject)
