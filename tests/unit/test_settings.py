"""Unit tests for Sentinel settings.

Covers default loading, env var overrides, the dev profile and path
resolution for the playbook storage directories.
"""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError


class TestSettings:
    """Core settings loading and override mechanics."""

    def test_default_settings_load(self, monkeypatch):
        """Settings should load without any env overrides."""
        monkeypatch.delenv("SENTINEL_ENV", raising=False)
        from sentinel.settings import get_settings

        s = get_settings()
        assert s.env == "local"
        assert s.playbook.max_action_depth == 8
        assert s.playbook.max_run_duration_sec == 0
        assert s.api.port == 8200

    def test_get_settings_is_cached(self):
        from sentinel.settings import get_settings

        assert get_settings() is get_settings()

    def test_env_override(self, monkeypatch):
        """SENTINEL_PLAYBOOK__MAX_ACTION_DEPTH should override the TOML default."""
        monkeypatch.setenv("SENTINEL_PLAYBOOK__MAX_ACTION_DEPTH", "4")
        monkeypatch.setenv("SENTINEL_LOG_LEVEL", "DEBUG")
        from sentinel.settings.config import Settings

        s = Settings()
        assert s.playbook.max_action_depth == 4
        assert s.log_level == "DEBUG"

    def test_paths_resolved_relative_to_project_root(self):
        from sentinel.settings.config import Settings

        s = Settings()
        for path in (s.playbook.definitions_dir, s.playbook.templates_dir, s.playbook.history_dir):
            assert os.path.isabs(path)
        assert s.playbook.definitions_dir.startswith(str(s.project_root))

    def test_absolute_paths_kept(self, playbook_dirs):
        from sentinel.settings.config import Settings

        s = Settings()
        assert s.playbook.history_dir == str(playbook_dirs["history"])

    def test_dev_profile(self, monkeypatch):
        """SENTINEL_ENV=dev should load settings.dev.toml."""
        monkeypatch.setenv("SENTINEL_ENV", "dev")
        from sentinel.settings.config import Settings

        s = Settings()
        assert s.env == "dev"
        assert s.log_format == "json"
        assert s.playbook.max_run_duration_sec == 600

    def test_invalid_depth_rejected(self, monkeypatch):
        monkeypatch.setenv("SENTINEL_PLAYBOOK__MAX_ACTION_DEPTH", "0")
        from sentinel.settings.config import Settings

        with pytest.raises(ValidationError):
            Settings()
