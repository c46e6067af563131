"""Tests for backend/app/config.py: Settings validation."""
from __future__ import annotations

import os
from unittest.mock import patch

import pytest


class TestMediaQueueSettings:
    """Verify the media queue settings are checked against each other."""

    def test_defaults(self):
        from app.config import Settings

        s = Settings(_env_file=None)
        assert s.media_max_retries == 3
        assert s.media_rate_limit_delay_ms == 500
        assert s.media_stale_after_minutes == 5
        assert s.media_job_timeout_seconds < s.media_stale_after_minutes * 60

    def test_env_overrides(self):
        from app.config import Settings

        env = {"MEDIA_MAX_RETRIES": "5", "MEDIA_RATE_LIMIT_DELAY_MS": "0"}
        with patch.dict(os.environ, env, clear=False):
            s = Settings(_env_file=None)
        assert s.media_max_retries == 5
        assert s.media_rate_limit_delay_ms == 0

    def test_timeout_longer_than_stale_window_rejected(self):
        """A job must time out before recovery could consider it abandoned."""
        from app.config import Settings

        with pytest.raises(ValueError, match="shorter than MEDIA_STALE_AFTER_MINUTES"):
            Settings(_env_file=None, media_job_timeout_seconds=300, media_stale_after_minutes=5)

    def test_non_positive_timeout_rejected(self):
        from app.config import Settings

        with pytest.raises(ValueError, match="must be positive"):
            Settings(_env_file=None, media_job_timeout_seconds=0)

    def test_negative_retries_rejected(self):
        from app.config import Settings

        with pytest.raises(ValueError, match="cannot be negative"):
            Settings(_env_file=None, media_max_retries=-1)

    def test_zero_retries_allowed(self):
        from app.config import Settings

        assert Settings(_env_file=None, media_max_retries=0).media_max_retries == 0
