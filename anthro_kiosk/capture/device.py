"""Device Session - exclusive owner of the camera handle.

Phases:
  UNINITIALIZED -> (acquire) -> ACQUIRING -> ACTIVE
                                          -> FAILED
  any -> (release) -> RELEASED

At most one open request is in flight. ``acquire()`` while ACQUIRING joins
the pending request; while ACTIVE it returns the current handle. Every
handle the opener returns is stopped exactly once, including handles that
arrive after a release abandoned the request that asked for them.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

from ..core.errors import DeviceError, DeviceErrorKind
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .frame import CameraConstraints
from .stream import OpenCVStream, PreviewSink, StreamHandle

# Blocking call that opens the OS device; run on a worker thread.
Opener = Callable[[CameraConstraints], StreamHandle]
PhaseListener = Callable[["DevicePhase"], None]


class DevicePhase(Enum):
    UNINITIALIZED = "uninitialized"
    ACQUIRING = "acquiring"
    ACTIVE = "active"
    RELEASED = "released"
    FAILED = "failed"


class DeviceSession:
    def __init__(self, opener: Opener = OpenCVStream.open, *, logger: LoggerLike = None) -> None:
        self._opener = opener
        self.logger = ensure_structured_logger(logger, fallback_name="DeviceSession")

        self._phase = DevicePhase.UNINITIALIZED
        self._handle: Optional[StreamHandle] = None
        self._failure: Optional[DeviceError] = None
        self._pending: Optional[asyncio.Task[StreamHandle]] = None
        self._abandoned: set[asyncio.Task[StreamHandle]] = set()
        self._live: list[StreamHandle] = []
        self._epoch = 0
        self._preview_sink: Optional[PreviewSink] = None
        self._phase_listener: Optional[PhaseListener] = None

        self.started = 0
        self.stopped = 0

    @property
    def phase(self) -> DevicePhase:
        return self._phase

    @property
    def failure(self) -> Optional[DeviceError]:
        return self._failure

    @property
    def is_active(self) -> bool:
        return self._phase is DevicePhase.ACTIVE

    @property
    def open_handles(self) -> int:
        return len(self._live)

    def current_handle(self) -> Optional[StreamHandle]:
        return self._handle if self._phase is DevicePhase.ACTIVE else None

    def set_phase_listener(self, listener: Optional[PhaseListener]) -> None:
        self._phase_listener = listener

    def _set_phase(self, phase: DevicePhase) -> None:
        if phase is self._phase:
            return
        self._phase = phase
        if self._phase_listener is not None:
            try:
                self._phase_listener(phase)
            except Exception as e:
                self.logger.warning("Phase listener error: %s", e)

    def set_preview_sink(self, sink: Optional[PreviewSink]) -> None:
        self._preview_sink = sink
        if self._handle is not None:
            self._handle.set_preview_sink(sink)

    # ================================================================
    # ACQUIRE
    # ================================================================

    async def acquire(self, constraints: CameraConstraints) -> StreamHandle:
        if self._phase is DevicePhase.ACTIVE and self._handle is not None:
            self.logger.debug("acquire() while active - reusing stream %d", self._handle.stream_id)
            return self._handle

        if self._phase is DevicePhase.ACQUIRING and self._pending is not None:
            self.logger.debug("acquire() while acquiring - joining pending request")
            return await asyncio.shield(self._pending)

        self._failure = None
        task = asyncio.get_running_loop().create_task(self._open(constraints, self._epoch))
        task.add_done_callback(_consume_result)
        self._pending = task
        self._set_phase(DevicePhase.ACQUIRING)
        return await asyncio.shield(task)

    async def _open(self, constraints: CameraConstraints, epoch: int) -> StreamHandle:
        if self._abandoned:
            # The device stays busy until an abandoned open has come back and been stopped
            self.logger.debug("Waiting for %d abandoned open request(s) to settle", len(self._abandoned))
            await asyncio.gather(*list(self._abandoned), return_exceptions=True)

        if epoch != self._epoch:
            raise DeviceError(DeviceErrorKind.UNAVAILABLE, "Camera released before it was opened")

        self.logger.info("Opening camera %s (%dx%d)", constraints.device, constraints.width, constraints.height)
        try:
            handle = await asyncio.to_thread(self._opener, constraints)
        except DeviceError as e:
            self._fail(e, epoch)
            raise
        except Exception as e:
            error = DeviceError(DeviceErrorKind.UNAVAILABLE, f"Camera open failed: {e}")
            self._fail(error, epoch)
            raise error from e

        self.started += 1
        self._live.append(handle)

        if epoch != self._epoch:
            self.logger.info("Stream %d arrived after release - stopping it", handle.stream_id)
            self._stop_handle(handle)
            raise DeviceError(DeviceErrorKind.UNAVAILABLE, "Camera released while it was being opened")

        self._handle = handle
        self._pending = None
        if self._preview_sink is not None:
            handle.set_preview_sink(self._preview_sink)
        self._set_phase(DevicePhase.ACTIVE)
        self.logger.info("Camera active (stream %d)", handle.stream_id)
        return handle

    def _fail(self, error: DeviceError, epoch: int) -> None:
        if epoch != self._epoch:
            self.logger.debug("Ignoring failure of abandoned open request: %s", error)
            return
        self.logger.error("Camera acquisition failed (%s): %s", error.kind.name, error.message)
        self._failure = error
        self._pending = None
        self._set_phase(DevicePhase.FAILED)

    # ================================================================
    # RELEASE
    # ================================================================

    def release(self) -> None:
        """Stop every open handle and move to RELEASED. Safe from any phase."""
        if self._phase in (DevicePhase.UNINITIALIZED, DevicePhase.RELEASED) and not self._live:
            return

        self._epoch += 1

        if self._pending is not None:
            pending = self._pending
            self._pending = None
            if not pending.done():
                self._abandoned.add(pending)
                pending.add_done_callback(self._abandoned.discard)

        for handle in list(self._live):
            self._stop_handle(handle)

        self._handle = None
        self._set_phase(DevicePhase.RELEASED)
        self.logger.info("Camera released (started=%d stopped=%d)", self.started, self.stopped)

    def _stop_handle(self, handle: StreamHandle) -> None:
        if handle in self._live:
            self._live.remove(handle)
        try:
            handle.detach()
            handle.stop()
        except Exception as e:
            self.logger.error("Error stopping stream %d: %s", handle.stream_id, e)
        self.stopped += 1


def _consume_result(task: asyncio.Task) -> None:
    # Abandoned requests may have no awaiter left
    if not task.cancelled():
        task.exception()


__all__ = ["DeviceSession", "DevicePhase", "Opener", "PhaseListener"]
