"""Calibration Sub-flow.

Posts one captured frame to the calibration endpoint and reports the
reference value the service measured. Only one calibration may be pending;
a second request is rejected rather than queued.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from ..core.errors import AnalysisError, AnalysisErrorKind
from ..core.logging_utils import get_module_logger
from .analysis import CalibrationOutcome
from .pipeline import CapturePipeline
from .stream import StreamHandle

logger = get_module_logger(__name__)

DEFAULT_CALIBRATION_TIMEOUT_S = 10.0


class Calibrator:
    def __init__(self, pipeline: CapturePipeline, *, timeout_s: float = DEFAULT_CALIBRATION_TIMEOUT_S) -> None:
        self._pipeline = pipeline
        self._timeout_s = timeout_s
        self._pending = False

    @property
    def pending(self) -> bool:
        return self._pending

    async def calibrate(self, handle: Optional[StreamHandle]) -> CalibrationOutcome:
        if self._pending:
            raise AnalysisError(AnalysisErrorKind.ALREADY_IN_PROGRESS, "Calibration already in progress")

        self._pending = True
        try:
            frame = self._pipeline.capture_frame(handle)
            logger.info("Calibrating with %dx%d frame", frame.width, frame.height)
            try:
                async with asyncio.timeout(self._timeout_s):
                    payload = await self._pipeline.service.calibrate(frame.encoded)
            except TimeoutError as e:
                raise AnalysisError(AnalysisErrorKind.TIMEOUT, "Calibration timed out") from e
        finally:
            self._pending = False

        try:
            reference = float(payload["result"])
        except (KeyError, TypeError, ValueError) as e:
            raise AnalysisError(
                AnalysisErrorKind.MALFORMED_RESPONSE,
                f"Unexpected calibration response: {e!r}",
            ) from e

        logger.info("Calibration succeeded (reference=%.3f)", reference)
        return CalibrationOutcome(succeeded=True, reference_height_cm=reference)


__all__ = ["Calibrator", "DEFAULT_CALIBRATION_TIMEOUT_S"]
