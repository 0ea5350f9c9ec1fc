"""Typed kiosk configuration built from ``config.txt`` plus CLI overrides."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .config_loader import ConfigLoader

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.txt"

# CLI flag dest -> config key
_CLI_OVERRIDES = {
    "camera": "camera_index",
    "analysis_url": "analysis_url",
    "records_url": "records_url",
}


@dataclass(slots=True, frozen=True)
class KioskConfig:
    camera_index: int = 0
    camera_width: int = 640
    camera_height: int = 480
    camera_fps: int = 30
    first_frame_timeout_s: float = 5.0
    jpeg_quality: int = 92

    analysis_url: str = "http://127.0.0.1:8000"
    capture_path: str = "/capture"
    calibrate_path: str = "/calibrate/aruco"
    analysis_timeout_s: float = 5.0
    calibration_timeout_s: float = 10.0
    calibration_display_s: float = 2.0

    records_url: str = ""
    records_api_key: str = ""
    subjects_table: str = "DataAnak"
    results_table: str = "Analisis"
    image_bucket: str = "pemindaian"

    @classmethod
    def defaults(cls) -> dict[str, Any]:
        return asdict(cls())

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], args: Any = None) -> "KioskConfig":
        """Build from a parsed config mapping, letting set CLI args win."""
        known = {f.name for f in fields(cls)}
        merged = {key: value for key, value in values.items() if key in known}
        if args is not None:
            for dest, key in _CLI_OVERRIDES.items():
                value = getattr(args, dest, None)
                if value is not None:
                    merged[key] = value
        return cls(**merged)

    @classmethod
    def load(cls, config_path: Optional[Path] = None, args: Any = None) -> "KioskConfig":
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        values = ConfigLoader.load(path, defaults=cls.defaults(), strict=True)
        return cls.from_mapping(values, args)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def records_enabled(self) -> bool:
        return bool(self.records_url)


__all__ = ["KioskConfig", "DEFAULT_CONFIG_PATH"]
