"""Unit tests for KioskConfig."""

import argparse

from anthro_kiosk.core.config import DEFAULT_CONFIG_PATH, KioskConfig


class TestKioskConfig:

    def test_packaged_config_matches_defaults(self):
        assert DEFAULT_CONFIG_PATH.exists()

        config = KioskConfig.load()

        assert config == KioskConfig()
        assert not config.records_enabled

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text(
            "camera_index = 1\n"
            "capture_path = /captureweb\n"
            "calibration_display_s = 3\n"
            "records_url = https://records.example\n"
        )

        config = KioskConfig.load(path)

        assert config.camera_index == 1
        assert config.capture_path == "/captureweb"
        assert config.calibration_display_s == 3.0
        assert config.records_enabled

    def test_cli_overrides_win(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text("camera_index = 1\nanalysis_url = http://a:8000\n")
        args = argparse.Namespace(camera=3, analysis_url=None, records_url=None)

        config = KioskConfig.load(path, args)

        assert config.camera_index == 3
        assert config.analysis_url == "http://a:8000"

    def test_from_mapping_ignores_unknown_keys(self):
        config = KioskConfig.from_mapping({"jpeg_quality": 70, "theme": "dark"})

        assert config.jpeg_quality == 70
        assert "theme" not in config.to_dict()
