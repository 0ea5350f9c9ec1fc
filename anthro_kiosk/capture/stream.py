"""Live camera stream handles.

``OpenCVStream`` keeps a ``cv2.VideoCapture`` open and decodes frames on a
reader thread, always holding the most recent one. Width and height stay at
zero until the first frame has decoded.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import sys
import threading
import time
from typing import Callable, Optional, Protocol, runtime_checkable

import cv2
import numpy as np

from ..core.errors import DeviceError, DeviceErrorKind
from ..core.logging_utils import get_module_logger
from .frame import CameraConstraints

logger = get_module_logger(__name__)

PreviewSink = Callable[[np.ndarray], None]

_READ_RETRY_S = 0.005
_THREAD_JOIN_TIMEOUT_S = 2.0
_stream_ids = itertools.count(1)


@runtime_checkable
class StreamHandle(Protocol):
    """What the rest of the kiosk may do with an open camera stream."""

    @property
    def stream_id(self) -> int: ...

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    @property
    def stopped(self) -> bool: ...

    def read_frame(self) -> Optional[np.ndarray]: ...

    async def wait_ready(self, timeout: float) -> bool: ...

    def set_preview_sink(self, sink: Optional[PreviewSink]) -> None: ...

    def detach(self) -> None: ...

    def stop(self) -> None: ...


def _device_path(device: int | str) -> Optional[str]:
    if isinstance(device, int):
        return f"/dev/video{device}" if sys.platform.startswith("linux") else None
    return device if device.startswith("/dev/") else None


class OpenCVStream:
    def __init__(self, capture: "cv2.VideoCapture", constraints: CameraConstraints) -> None:
        self._cap = capture
        self._constraints = constraints
        self._stream_id = next(_stream_ids)
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._latest_time = 0.0
        self._frame_count = 0
        self._first_frame = threading.Event()
        self._sink: Optional[PreviewSink] = None
        self._running = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def open(cls, constraints: CameraConstraints) -> "OpenCVStream":
        """Open the device and start decoding. Blocking; run off the event loop."""
        path = _device_path(constraints.device)
        if path and os.path.exists(path) and not os.access(path, os.R_OK | os.W_OK):
            raise DeviceError(DeviceErrorKind.ACCESS_DENIED, f"Permission denied for {path}")

        capture = cv2.VideoCapture(constraints.device)
        if not capture.isOpened():
            capture.release()
            raise DeviceError(
                DeviceErrorKind.UNAVAILABLE,
                f"Camera {constraints.device} could not be opened (missing or in use)",
            )

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.fps)

        stream = cls(capture, constraints)
        stream._start()
        logger.info(
            "Opened camera %s as stream %d (requested %dx%d)",
            constraints.device, stream.stream_id, constraints.width, constraints.height,
        )
        return stream

    def _start(self) -> None:
        self._running = True
        self._thread = threading.Thread(
            target=self._reader_loop,
            name=f"camera-stream-{self._stream_id}",
            daemon=True,
        )
        self._thread.start()

    def _reader_loop(self) -> None:
        while self._running:
            ok, frame = self._cap.read()
            if not ok or frame is None:
                time.sleep(_READ_RETRY_S)
                continue

            with self._lock:
                self._latest = frame
                self._latest_time = time.time()
                self._frame_count += 1
                sink = self._sink
            self._first_frame.set()

            if sink is not None:
                try:
                    sink(frame)
                except Exception as e:
                    logger.warning("Preview sink error on stream %d: %s", self._stream_id, e)

    @property
    def stream_id(self) -> int:
        return self._stream_id

    @property
    def constraints(self) -> CameraConstraints:
        return self._constraints

    @property
    def width(self) -> int:
        with self._lock:
            return 0 if self._latest is None else int(self._latest.shape[1])

    @property
    def height(self) -> int:
        with self._lock:
            return 0 if self._latest is None else int(self._latest.shape[0])

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def stopped(self) -> bool:
        return self._stopped

    def read_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._latest is None or self._stopped:
                return None
            return self._latest.copy()

    async def wait_ready(self, timeout: float) -> bool:
        if not self._first_frame.is_set():
            await asyncio.to_thread(self._first_frame.wait, timeout)
        return self._first_frame.is_set() and not self._stopped

    def set_preview_sink(self, sink: Optional[PreviewSink]) -> None:
        with self._lock:
            self._sink = sink

    def detach(self) -> None:
        self.set_preview_sink(None)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        self.detach()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=_THREAD_JOIN_TIMEOUT_S)
        self._thread = None
        self._cap.release()
        # Unblock anyone still waiting for a first frame
        self._first_frame.set()
        with self._lock:
            self._latest = None
        logger.info("Stopped stream %d (%d frames)", self._stream_id, self._frame_count)


__all__ = ["StreamHandle", "OpenCVStream", "PreviewSink"]
