"""Capture Pipeline - still frames from the live stream and the remote
analysis exchange."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import cv2
import numpy as np

from ..core.errors import AnalysisError, AnalysisErrorKind, CaptureError, CaptureErrorKind
from ..core.logging_utils import get_module_logger
from .analysis import AnalysisRequest, AnalysisResult
from .frame import CaptureFrame
from .stream import StreamHandle

logger = get_module_logger(__name__)

DEFAULT_JPEG_QUALITY = 92


class AnalysisService(Protocol):
    async def analyze(self, image: bytes, *, gender: str, age: float) -> dict[str, Any]: ...

    async def calibrate(self, image: bytes) -> dict[str, Any]: ...


def encode_jpeg(pixels: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    try:
        ok, buffer = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    except cv2.error as e:
        raise CaptureError(CaptureErrorKind.ENCODE_FAILED, f"JPEG encoding failed: {e}") from e
    if not ok:
        raise CaptureError(CaptureErrorKind.ENCODE_FAILED, "JPEG encoding failed")
    return buffer.tobytes()


class CapturePipeline:
    def __init__(self, service: AnalysisService, *, jpeg_quality: int = DEFAULT_JPEG_QUALITY) -> None:
        self._service = service
        self._jpeg_quality = jpeg_quality
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_id: Optional[int] = None

    @property
    def service(self) -> AnalysisService:
        return self._service

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def capture_frame(self, handle: Optional[StreamHandle]) -> CaptureFrame:
        if handle is None or handle.stopped:
            raise CaptureError(CaptureErrorKind.NO_ACTIVE_STREAM, "Camera is not active")
        if handle.width == 0 or handle.height == 0:
            raise CaptureError(CaptureErrorKind.NO_ACTIVE_STREAM, "Camera is not delivering frames yet")

        pixels = handle.read_frame()
        if pixels is None or pixels.size == 0:
            raise CaptureError(CaptureErrorKind.NO_ACTIVE_STREAM, "No frame available from camera")

        frame = CaptureFrame.create(pixels, encode_jpeg(pixels, self._jpeg_quality))
        logger.debug(
            "Captured %dx%d frame from stream %d (%d bytes)",
            frame.width, frame.height, handle.stream_id, frame.encoded_size,
        )
        return frame

    def abandon(self) -> None:
        """Cancel the in-flight analysis call, if any, without waiting for it."""
        if self._inflight is not None and not self._inflight.done():
            logger.info("Abandoning analysis request %s", self._inflight_id)
            self._inflight.cancel()
        self._inflight = None
        self._inflight_id = None

    async def submit_analysis(self, request: AnalysisRequest) -> AnalysisResult:
        self.abandon()

        loop = asyncio.get_running_loop()
        call = loop.create_task(
            self._service.analyze(request.frame.encoded, gender=request.gender, age=request.age_years),
            name=f"analysis-call-{request.request_id}",
        )
        self._inflight = call
        self._inflight_id = request.request_id

        logger.info(
            "Submitting analysis %d for subject %s (%.1fs left)",
            request.request_id, request.subject_id, max(0.0, request.deadline - loop.time()),
        )
        try:
            async with asyncio.timeout_at(request.deadline):
                payload = await call
        except TimeoutError as e:
            raise AnalysisError(AnalysisErrorKind.TIMEOUT, "Analysis timed out") from e
        finally:
            if not call.done():
                call.cancel()
            if self._inflight is call:
                self._inflight = None
                self._inflight_id = None

        result = AnalysisResult.from_payload(payload)
        logger.info(
            "Analysis %d: height=%.1fcm weight=%.1fkg status=%s",
            request.request_id, result.height_cm, result.weight_kg, result.nutrition_status.value,
        )
        return result


__all__ = ["AnalysisService", "CapturePipeline", "encode_jpeg"]
