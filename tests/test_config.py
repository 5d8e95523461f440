"""
Tests for models/config.py

Coverage:
- Default values (timeouts, workers, cadences, endpoints)
- Path resolution (cross-platform get_data_path())
- Settings loading from ANI_REEL__ environment variables
- Config validation (invalid values rejected)
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from models.config import AppSettings, get_data_path, settings


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_http_timeout(self):
        assert settings.http.timeout == 10

    def test_default_download_settings(self):
        """Four ranged workers and a 500 MiB estimate for unsized streams."""
        fresh = AppSettings()
        assert fresh.download.workers == 4
        assert fresh.download.streaming_estimate_mb == 500
        assert fresh.download.downloads_dir.parts[-2:] == ("downloads", "anime")

    def test_default_player_cadences(self):
        fresh = AppSettings()
        assert fresh.player.duration_floor == 1440
        assert fresh.player.tracker_fast_interval == 2
        assert fresh.player.tracker_fast_updates == 5
        assert fresh.player.tracker_slow_interval == 10
        assert fresh.player.resume_threshold == 10

    def test_default_source_endpoints(self):
        assert settings.sources.api_url.startswith("https://")
        assert "/video/" in settings.sources.quality_endpoint_patterns

    def test_default_quality_policy(self):
        assert AppSettings().quality.policy == "best"

    def test_default_log_settings(self):
        fresh = AppSettings()
        assert fresh.log.console_level == "WARNING"
        assert fresh.log.rotation == "50 MB"
        assert fresh.log.log_dir == get_data_path()


class TestPathResolution:
    """Test get_data_path() for cross-platform support."""

    def test_get_data_path_returns_path(self):
        assert isinstance(get_data_path(), Path)

    def test_get_data_path_absolute(self):
        assert get_data_path().is_absolute()

    def test_get_data_path_contains_ani_reel(self):
        assert "ani-reel" in get_data_path().as_posix().lower()


class TestEnvironmentVariableOverride:
    """Test environment variable configuration."""

    def test_env_override_workers(self):
        with patch.dict(os.environ, {"ANI_REEL__DOWNLOAD__WORKERS": "8"}):
            assert AppSettings().download.workers == 8

    def test_env_override_mpv_binary(self):
        with patch.dict(os.environ, {"ANI_REEL__PLAYER__MPV_BINARY": "/opt/mpv/bin/mpv"}):
            assert AppSettings().player.mpv_binary == "/opt/mpv/bin/mpv"

    def test_env_override_backend(self):
        with patch.dict(os.environ, {"ANI_REEL__PROGRESS__BACKEND": "diskcache"}):
            assert AppSettings().progress.backend == "diskcache"

    def test_env_quality_normalized(self):
        with patch.dict(os.environ, {"ANI_REEL__QUALITY__POLICY": "  720P "}):
            assert AppSettings().quality.policy == "720p"

    def test_env_multiple_overrides(self):
        with patch.dict(
            os.environ,
            {
                "ANI_REEL__HTTP__TIMEOUT": "15",
                "ANI_REEL__DOWNLOAD__MAX_CONCURRENT": "2",
            },
        ):
            fresh = AppSettings()
            assert fresh.http.timeout == 15
            assert fresh.download.max_concurrent == 2


class TestConfigValidation:
    """Test configuration validation."""

    def test_workers_below_min(self):
        with pytest.raises(ValueError):
            AppSettings(download={"workers": 0})

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            AppSettings(http={"timeout": 0})

    def test_translation_type(self):
        with pytest.raises(ValueError):
            AppSettings(sources={"translation_type": "raw"})

    def test_unknown_console_level(self):
        with pytest.raises(ValueError):
            AppSettings(log={"console_level": "LOUD"})

    def test_empty_quality_policy(self):
        with pytest.raises(ValueError):
            AppSettings(quality={"policy": "   "})

    def test_duration_floor_minimum(self):
        with pytest.raises(ValueError):
            AppSettings(player={"duration_floor": 10})


class TestSettingsAsModel:
    def test_settings_instance_type(self):
        assert isinstance(settings, AppSettings)

    def test_settings_has_required_sections(self):
        for section in ("http", "sources", "download", "player", "skip", "progress", "cache", "quality", "log"):
            assert hasattr(settings, section)
