"""Workflow State Machine - sequences one screening session.

    PREVIEW -> CAPTURED -> ANALYZING -> RESULTS -> SAVING -> PREVIEW

The machine is the only caller of ``DeviceSession.release()``. Results of
background work (analysis, save, calibration) are applied only when the
generation they were issued under is still current; everything that
invalidates in-flight work bumps the generation.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from typing import Any, Awaitable, Callable, Optional

from ..capture.analysis import AnalysisRequest, CalibrationOutcome
from ..capture.calibration import Calibrator
from ..capture.device import DevicePhase, DeviceSession
from ..capture.frame import CameraConstraints
from ..capture.pipeline import CapturePipeline
from ..core.asyncio_utils import create_logged_task
from ..core.errors import AnalysisError, AnalysisErrorKind, DeviceError, KioskError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from ..remote.records import ResultStore, SubjectInfo
from .state import (
    CalibrationStatus,
    StatusLevel,
    StatusMessage,
    WorkflowSnapshot,
    WorkflowState,
    can_transition,
)

Subscriber = Callable[[WorkflowSnapshot], None]


class InvalidTransition(RuntimeError):
    pass


class WorkflowStateMachine:
    def __init__(
        self,
        device: DeviceSession,
        pipeline: CapturePipeline,
        calibrator: Calibrator,
        *,
        store: Optional[ResultStore] = None,
        constraints: CameraConstraints = CameraConstraints(),
        analysis_timeout_s: float = 5.0,
        calibration_display_s: float = 2.0,
        first_frame_timeout_s: float = 5.0,
        today: Callable[[], date] = date.today,
        logger: LoggerLike = None,
    ) -> None:
        self._device = device
        self._pipeline = pipeline
        self._calibrator = calibrator
        self._store = store
        self._constraints = constraints
        self._analysis_timeout_s = analysis_timeout_s
        self._calibration_display_s = calibration_display_s
        self._first_frame_timeout_s = first_frame_timeout_s
        self._today = today
        self.logger = ensure_structured_logger(logger, fallback_name="WorkflowStateMachine")

        self._snapshot = WorkflowSnapshot()
        self._subscribers: list[Subscriber] = []

        self._generation = 0
        self._camera_epoch = 0
        self._calibration_epoch = 0

        self._pending: set[asyncio.Task[Any]] = set()
        self._work_task: Optional[asyncio.Task[Any]] = None
        self._calibration_task: Optional[asyncio.Task[Any]] = None
        self._calibration_clear: Optional[asyncio.TimerHandle] = None

        device.set_phase_listener(self._on_device_phase)

    # ================================================================
    # OBSERVATION
    # ================================================================

    @property
    def state(self) -> WorkflowState:
        return self._snapshot.state

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> WorkflowSnapshot:
        return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        callback(self._snapshot)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        target = changes.get("state")
        if target is not None and not can_transition(self._snapshot.state, target):
            raise InvalidTransition(f"{self._snapshot.state.name} -> {target.name}")

        self._snapshot = replace(
            self._snapshot,
            device_phase=self._device.phase,
            generation=self._generation,
            **changes,
        )
        for sub in list(self._subscribers):
            try:
                sub(self._snapshot)
            except Exception as e:
                self.logger.warning("Subscriber error: %s", e)

    def _on_device_phase(self, phase: DevicePhase) -> None:
        if phase is not self._snapshot.device_phase:
            self._update()

    def _status(self, level: StatusLevel, text: str, error: Optional[KioskError] = None) -> StatusMessage:
        log = {
            StatusLevel.INFO: self.logger.info,
            StatusLevel.WARNING: self.logger.warning,
            StatusLevel.ERROR: self.logger.error,
        }[level]
        log(text)
        return StatusMessage(level, text, error)

    def _reject(self, operation: str, reason: str = "") -> bool:
        self.logger.warning(
            "%s ignored in state %s%s", operation, self.state.name, f" ({reason})" if reason else ""
        )
        return False

    async def wait_for_pending(self) -> None:
        """Wait until every background task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ================================================================
    # CAMERA
    # ================================================================

    async def begin(self, subject: SubjectInfo) -> bool:
        """Start a session for ``subject`` and bring the camera up."""
        if self.state is not WorkflowState.PREVIEW:
            return self._reject("begin")

        self._update(
            subject=subject,
            frame=None,
            result=None,
            status=self._status(StatusLevel.INFO, f"Subject {subject.subject_id} ready, starting camera"),
        )
        await self._acquire_camera()
        return True

    async def retry_camera(self) -> bool:
        """Re-open the camera after a device error. Never automatic."""
        if self.state is not WorkflowState.PREVIEW:
            return self._reject("retry_camera")
        if self._snapshot.camera_ready:
            return self._reject("retry_camera", "camera already running")

        self._release_camera()
        return await self._acquire_camera()

    async def _acquire_camera(self) -> bool:
        epoch = self._camera_epoch
        self._update(camera_ready=False)
        try:
            handle = await self._device.acquire(self._constraints)
            ready = await handle.wait_ready(self._first_frame_timeout_s)
        except DeviceError as e:
            if epoch != self._camera_epoch:
                self.logger.debug("Camera request superseded: %s", e.message)
                return False
            self._update(
                camera_ready=False,
                status=self._status(StatusLevel.ERROR, f"Camera error: {e.message}", e),
            )
            return False

        if epoch != self._camera_epoch or self.state is WorkflowState.CLOSED:
            return False
        if not ready:
            self._update(
                camera_ready=False,
                status=self._status(
                    StatusLevel.WARNING,
                    f"Camera delivered no frames within {self._first_frame_timeout_s:.1f}s",
                ),
            )
            return False

        self._update(camera_ready=True)
        return True

    def _release_camera(self) -> None:
        self._camera_epoch += 1
        self._device.release()
        self._update(camera_ready=False)

    # ================================================================
    # CAPTURE / ANALYZE
    # ================================================================

    async def capture(self) -> bool:
        if self.state is not WorkflowState.PREVIEW:
            return self._reject("capture")
        if self._snapshot.subject is None:
            return self._reject("capture", "no subject")

        try:
            frame = self._pipeline.capture_frame(self._device.current_handle())
        except KioskError as e:
            self._update(status=self._status(StatusLevel.ERROR, f"Capture failed: {e.message}", e))
            return False

        self._generation += 1
        self._update(
            state=WorkflowState.CAPTURED,
            frame=frame,
            result=None,
            status=self._status(StatusLevel.INFO, f"Captured {frame.width}x{frame.height} frame"),
        )
        return True

    async def retake(self) -> bool:
        if self.state is WorkflowState.CAPTURED:
            self._generation += 1
            self._update(
                state=WorkflowState.PREVIEW,
                frame=None,
                status=self._status(StatusLevel.INFO, "Retaking"),
            )
            return True

        if self.state is WorkflowState.RESULTS:
            self._generation += 1
            self._release_camera()
            self._update(
                state=WorkflowState.PREVIEW,
                frame=None,
                result=None,
                status=self._status(StatusLevel.INFO, "Retaking, restarting camera"),
            )
            await self._acquire_camera()
            return True

        return self._reject("retake")

    async def analyze(self) -> bool:
        snap = self._snapshot
        if self.state is not WorkflowState.CAPTURED or snap.frame is None:
            return self._reject("analyze")
        if snap.subject is None:
            return self._reject("analyze", "no subject")

        self._generation += 1
        loop = asyncio.get_running_loop()
        request = AnalysisRequest(
            subject_id=snap.subject.subject_id,
            age_years=snap.subject.age_years,
            gender=snap.subject.gender,
            frame=snap.frame,
            deadline=loop.time() + self._analysis_timeout_s,
            request_id=self._generation,
        )
        self._update(
            state=WorkflowState.ANALYZING,
            status=self._status(StatusLevel.INFO, f"Analyzing (request {request.request_id})"),
        )
        self._spawn_work(self._run_analysis(request), f"analysis-{request.request_id}")
        return True

    async def _run_analysis(self, request: AnalysisRequest) -> None:
        try:
            result = await self._pipeline.submit_analysis(request)
        except KioskError as e:
            if self._is_stale(request.request_id, WorkflowState.ANALYZING):
                self.logger.info("Ignoring failure of superseded request %d: %s", request.request_id, e.message)
                return
            # Keep the frame so the operator can retry without re-capturing
            self._update(
                state=WorkflowState.CAPTURED,
                status=self._status(StatusLevel.ERROR, f"Analysis failed: {e.message}", e),
            )
            return

        if self._is_stale(request.request_id, WorkflowState.ANALYZING):
            self.logger.info("Discarding result of superseded request %d", request.request_id)
            return

        self._update(
            state=WorkflowState.RESULTS,
            result=result,
            status=self._status(
                StatusLevel.INFO,
                f"Height {result.height_cm:.1f} cm, weight {result.weight_kg:.1f} kg, "
                f"{result.nutrition_status.value}",
            ),
        )

    def _is_stale(self, generation: int, expected: WorkflowState) -> bool:
        return generation != self._generation or self.state is not expected

    # ================================================================
    # SAVE
    # ================================================================

    async def save(self) -> bool:
        snap = self._snapshot
        if self.state is not WorkflowState.RESULTS or snap.result is None or snap.subject is None:
            return self._reject("save")

        self._update(
            state=WorkflowState.SAVING,
            status=self._status(StatusLevel.INFO, f"Saving result for {snap.subject.subject_id}"),
        )
        self._spawn_work(self._run_save(self._generation), f"save-{self._generation}")
        return True

    async def _run_save(self, generation: int) -> None:
        snap = self._snapshot
        persisted = self._store is not None
        if persisted:
            try:
                await self._store.save_result(snap.subject, snap.result, self._today())
            except KioskError as e:
                if self._is_stale(generation, WorkflowState.SAVING):
                    self.logger.info("Ignoring failure of superseded save: %s", e.message)
                    return
                self._update(
                    state=WorkflowState.RESULTS,
                    status=self._status(StatusLevel.ERROR, f"Save failed: {e.message}", e),
                )
                return

        if self._is_stale(generation, WorkflowState.SAVING):
            self.logger.info("Save finished after the session moved on")
            return

        self._generation += 1
        self._abandon_calibration()
        self._release_camera()
        self._update(
            state=WorkflowState.PREVIEW,
            subject=None,
            frame=None,
            result=None,
            status=(
                self._status(StatusLevel.INFO, f"Saved result for {snap.subject.subject_id}")
                if persisted
                else self._status(
                    StatusLevel.WARNING,
                    f"Result for {snap.subject.subject_id} not persisted (no record store configured)",
                )
            ),
        )

    # ================================================================
    # CANCEL / CLOSE
    # ================================================================

    def cancel(self) -> bool:
        """Abandon the session from any state and release the camera now."""
        if self.state is WorkflowState.CLOSED:
            return self._reject("cancel")
        self._supersede()
        self._abandon_calibration()
        self._release_camera()
        self._update(
            state=WorkflowState.PREVIEW,
            subject=None,
            frame=None,
            result=None,
            status=self._status(StatusLevel.INFO, "Session cancelled"),
        )
        return True

    def close(self) -> bool:
        if self.state is WorkflowState.CLOSED:
            return False
        self._supersede()
        self._abandon_calibration()
        self._release_camera()
        self._update(
            state=WorkflowState.CLOSED,
            subject=None,
            frame=None,
            result=None,
            status=self._status(StatusLevel.INFO, "Kiosk closed"),
        )
        return True

    def _supersede(self) -> None:
        self._generation += 1
        self._pipeline.abandon()
        if self._work_task is not None and not self._work_task.done():
            self._work_task.cancel()
        self._work_task = None

    def _spawn_work(self, coro: Awaitable[Any], context: str) -> None:
        self._work_task = create_logged_task(
            coro, logger=self.logger, context=context, pending=self._pending
        )

    # ================================================================
    # CALIBRATION
    # ================================================================

    async def calibrate(self) -> bool:
        if self.state is not WorkflowState.PREVIEW or not self._device.is_active:
            return self._reject("calibrate")
        if self._snapshot.calibration is CalibrationStatus.PENDING:
            error = AnalysisError(AnalysisErrorKind.ALREADY_IN_PROGRESS, "Calibration already in progress")
            self._update(status=self._status(StatusLevel.WARNING, error.message, error))
            return False

        self._cancel_calibration_clear()
        self._calibration_epoch += 1
        epoch = self._calibration_epoch
        self._update(
            calibration=CalibrationStatus.PENDING,
            calibration_error=None,
            status=self._status(StatusLevel.INFO, "Calibrating"),
        )
        self._calibration_task = create_logged_task(
            self._run_calibration(epoch),
            logger=self.logger,
            context=f"calibration-{epoch}",
            pending=self._pending,
        )
        return True

    async def _run_calibration(self, epoch: int) -> None:
        try:
            outcome = await self._calibrator.calibrate(self._device.current_handle())
        except KioskError as e:
            if epoch != self._calibration_epoch:
                return
            self._update(
                calibration=CalibrationStatus.FAILED,
                calibration_outcome=CalibrationOutcome(succeeded=False),
                calibration_error=e,
                status=self._status(StatusLevel.WARNING, f"Calibration failed: {e.message}", e),
            )
        else:
            if epoch != self._calibration_epoch:
                return
            self._update(
                calibration=CalibrationStatus.SUCCEEDED,
                calibration_outcome=outcome,
                status=self._status(
                    StatusLevel.INFO, f"Calibration succeeded (reference {outcome.reference_height_cm})"
                ),
            )

        self._calibration_clear = asyncio.get_running_loop().call_later(
            self._calibration_display_s, self._clear_calibration, epoch
        )

    def _clear_calibration(self, epoch: int) -> None:
        self._calibration_clear = None
        if epoch != self._calibration_epoch or self.state is WorkflowState.CLOSED:
            return
        self._update(calibration=CalibrationStatus.IDLE, calibration_error=None)

    def _cancel_calibration_clear(self) -> None:
        if self._calibration_clear is not None:
            self._calibration_clear.cancel()
            self._calibration_clear = None

    def _abandon_calibration(self) -> None:
        self._calibration_epoch += 1
        self._cancel_calibration_clear()
        if self._calibration_task is not None and not self._calibration_task.done():
            self._calibration_task.cancel()
        self._calibration_task = None
        if self._snapshot.calibration is not CalibrationStatus.IDLE:
            self._update(calibration=CalibrationStatus.IDLE, calibration_error=None)


__all__ = ["WorkflowStateMachine", "InvalidTransition", "Subscriber"]
