"""Analysis request/response types and payload parsing."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from ..core.errors import AnalysisError, AnalysisErrorKind
from .frame import CaptureFrame


class NutritionStatus(Enum):
    SEVERELY_STUNTED = "Severely Stunted"
    STUNTED = "Stunted"
    NORMAL = "Normal"
    TALL = "Tall"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, label: Any) -> "NutritionStatus":
        text = str(label or "").strip().replace("_", " ").replace("-", " ").lower()
        for status in cls:
            if status.value.lower() == text:
                return status
        return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    subject_id: str
    age_years: float
    gender: str
    frame: CaptureFrame
    deadline: float  # event loop time
    request_id: int = 0


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    height_cm: float
    weight_kg: float
    haz_score: float
    nutrition_status: NutritionStatus
    annotated_image: bytes = field(default=b"", repr=False)
    image_format: str = "jpg"
    message: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AnalysisResult":
        try:
            height = float(payload["height"])
            weight = float(payload["weight"])
            status = payload["status"]
            haz_score = float(status[0])
            label = status[1]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AnalysisError(
                AnalysisErrorKind.MALFORMED_RESPONSE,
                f"Unexpected analysis response: {e!r}",
            ) from e

        image = payload.get("image") or ""
        try:
            image_bytes, image_format = decode_image_payload(image) if image else (b"", "jpg")
        except ValueError as e:
            raise AnalysisError(
                AnalysisErrorKind.MALFORMED_RESPONSE,
                f"Annotated image is not valid base64: {e}",
            ) from e

        return cls(
            height_cm=height,
            weight_kg=weight,
            haz_score=haz_score,
            nutrition_status=NutritionStatus.parse(label),
            annotated_image=image_bytes,
            image_format=image_format,
            message=str(payload.get("message") or ""),
        )


@dataclass(frozen=True, slots=True)
class CalibrationOutcome:
    succeeded: bool
    reference_height_cm: Optional[float] = None


def decode_image_payload(text: str) -> tuple[bytes, str]:
    """Decode a base64 image, optionally wrapped as a ``data:`` URL.

    Returns the raw bytes and the file extension ("png" or "jpg").
    """
    if "base64," in text:
        meta, data = text.split("base64,", 1)
    else:
        meta, data = "", text
    extension = "png" if "png" in meta else "jpg"
    try:
        return base64.b64decode(data, validate=True), extension
    except binascii.Error as e:
        raise ValueError(str(e)) from e


__all__ = [
    "NutritionStatus",
    "AnalysisRequest",
    "AnalysisResult",
    "CalibrationOutcome",
    "decode_image_payload",
]
