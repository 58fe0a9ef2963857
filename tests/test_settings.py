"""
Tests for disk_manager.config.settings module.

This test suite covers:
- Settings loading and saving
- Default settings initialization
- Settings persistence to JSON file
- Type conversion helper (get_float)
- Error handling for corrupted settings files
"""

import json

import pytest

from disk_manager.config import settings


@pytest.fixture(autouse=True)
def isolated_settings(temp_settings_file, monkeypatch):
    monkeypatch.setattr("disk_manager.config.settings.SETTINGS_PATH", temp_settings_file)
    settings.settings_store.values = {}
    yield
    settings.load_settings()


class TestLoadSettings:
    """Tests for load_settings() function."""

    def test_load_defaults_when_no_file(self):
        """Test that default settings are loaded when file doesn't exist."""
        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS
        assert settings.get_setting("fstab_path") == "/etc/fstab"
        assert settings.get_setting("mount_root") == "/mnt"

    def test_load_merges_with_defaults(self, temp_settings_file):
        """Test that loaded settings merge with defaults."""
        temp_settings_file.write_text(json.dumps({"mount_root": "/media/disks"}))

        settings.load_settings()

        assert settings.get_setting("mount_root") == "/media/disks"
        assert settings.get_setting("partition_label") == "gpt"

    def test_load_handles_corrupted_json(self, temp_settings_file):
        """Test handling of corrupted JSON file."""
        temp_settings_file.write_text("{invalid json")

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_load_ignores_non_object_json(self, temp_settings_file):
        temp_settings_file.write_text(json.dumps(["not", "a", "dict"]))

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS


class TestSaveSettings:
    """Tests for save_settings() and set_setting()."""

    def test_set_setting_persists(self, temp_settings_file):
        settings.load_settings()

        settings.set_setting("settle_delay_seconds", 5.0)

        saved = json.loads(temp_settings_file.read_text())
        assert saved["settle_delay_seconds"] == 5.0

    def test_save_creates_parent_directory(self, tmp_path, monkeypatch):
        nested = tmp_path / "a" / "b" / "settings.json"
        monkeypatch.setattr("disk_manager.config.settings.SETTINGS_PATH", nested)
        settings.load_settings()

        settings.save_settings()

        assert nested.exists()


class TestGetFloat:
    """Tests for get_float() helper."""

    def test_numeric_string(self):
        settings.settings_store.values = {"settle_delay_seconds": "1.5"}

        assert settings.get_float("settle_delay_seconds") == 1.5

    def test_invalid_value_uses_default(self):
        settings.settings_store.values = {"settle_delay_seconds": "soon"}

        assert settings.get_float("settle_delay_seconds", 2.0) == 2.0

    def test_missing_key_uses_default(self):
        assert settings.get_float("preempt_delay_seconds", 3.0) == 3.0

    def test_poll_attempts_constant(self):
        assert settings.PARTITION_POLL_ATTEMPTS == 10
