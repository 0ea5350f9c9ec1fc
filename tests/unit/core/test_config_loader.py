"""Unit tests for ConfigLoader."""

from pathlib import Path

import pytest


class TestConfigLoaderParsing:
    """Test untyped value parsing."""

    def test_parse_value_bool(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        for val in ['true', 'True', 'yes', 'on']:
            assert ConfigLoader._parse_value(val) is True
        for val in ['false', 'FALSE', 'no', 'off']:
            assert ConfigLoader._parse_value(val) is False

    def test_parse_value_numbers(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        assert ConfigLoader._parse_value('42') == 42
        assert ConfigLoader._parse_value('-0.5') == pytest.approx(-0.5)

    def test_parse_value_string(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        assert ConfigLoader._parse_value('/captureweb') == '/captureweb'


class TestConfigLoaderTypedParsing:
    """Test parsing against the type of a default."""

    def test_int_accepts_prefixes(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        assert ConfigLoader._parse_value_with_type('0x10', int, 0) == 16

    def test_invalid_falls_back_to_default(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        assert ConfigLoader._parse_value_with_type('fast', int, 30) == 30
        assert ConfigLoader._parse_value_with_type('soon', float, 5.0) == 5.0

    def test_bool(self):
        from anthro_kiosk.core.config_loader import ConfigLoader

        assert ConfigLoader._parse_value_with_type('1', bool, False) is True
        assert ConfigLoader._parse_value_with_type('off', bool, True) is False


class TestConfigLoaderLoad:
    """Test reading config files."""

    def test_missing_file_returns_defaults(self, tmp_path):
        from anthro_kiosk.core.config_loader import ConfigLoader

        config = ConfigLoader.load(tmp_path / "missing.txt", defaults={"camera_index": 0})

        assert config == {"camera_index": 0}

    def test_comments_and_types(self, tmp_path):
        from anthro_kiosk.core.config_loader import ConfigLoader

        path = tmp_path / "config.txt"
        path.write_text(
            "# kiosk\n"
            "\n"
            "camera_index = 2\n"
            "analysis_timeout_s = 7.5   # seconds\n"
            "capture_path = /captureweb\n"
            "not a setting\n"
        )
        defaults = {"camera_index": 0, "analysis_timeout_s": 5.0, "capture_path": "/capture"}

        config = ConfigLoader.load(path, defaults=defaults)

        assert config == {"camera_index": 2, "analysis_timeout_s": 7.5, "capture_path": "/captureweb"}

    def test_strict_ignores_unknown_keys(self, tmp_path):
        from anthro_kiosk.core.config_loader import ConfigLoader

        path = tmp_path / "config.txt"
        path.write_text("camera_index = 1\nwindow_x = 40\n")

        config = ConfigLoader.load(path, defaults={"camera_index": 0}, strict=True)

        assert config == {"camera_index": 1}
