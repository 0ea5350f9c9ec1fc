from .analysis import (
    AnalysisRequest,
    AnalysisResult,
    CalibrationOutcome,
    NutritionStatus,
    decode_image_payload,
)
from .calibration import Calibrator
from .device import DevicePhase, DeviceSession, Opener
from .frame import CameraConstraints, CaptureFrame
from .pipeline import AnalysisService, CapturePipeline, encode_jpeg
from .stream import OpenCVStream, PreviewSink, StreamHandle

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "CalibrationOutcome",
    "NutritionStatus",
    "decode_image_payload",
    "Calibrator",
    "DevicePhase",
    "DeviceSession",
    "Opener",
    "CameraConstraints",
    "CaptureFrame",
    "AnalysisService",
    "CapturePipeline",
    "encode_jpeg",
    "OpenCVStream",
    "PreviewSink",
    "StreamHandle",
]
