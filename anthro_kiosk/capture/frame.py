from __future__ import annotations

import time
from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True, slots=True)
class CameraConstraints:
    device: int | str = 0
    width: int = 640
    height: int = 480
    fps: float = 30.0

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True, slots=True, eq=False)
class CaptureFrame:
    """A still frame taken from the live stream, plus its JPEG encoding.

    ``pixels`` is a private read-only copy, so nothing downstream can alter
    what was captured.
    """

    width: int
    height: int
    pixels: np.ndarray = field(repr=False)
    encoded: bytes = field(repr=False)
    captured_at: float

    @classmethod
    def create(cls, pixels: np.ndarray, encoded: bytes, captured_at: float | None = None) -> "CaptureFrame":
        owned = np.array(pixels, copy=True)
        owned.setflags(write=False)
        height, width = owned.shape[:2]
        return cls(
            width=int(width),
            height=int(height),
            pixels=owned,
            encoded=bytes(encoded),
            captured_at=time.time() if captured_at is None else captured_at,
        )

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def encoded_size(self) -> int:
        return len(self.encoded)
