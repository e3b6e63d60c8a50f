"""
Unit tests for settings.
"""

import pytest
from pydantic import ValidationError

from jobqueue.config import Settings
from jobqueue.constants import DEFAULT_MAX_RETRIES, MAX_RETRIES_LIMIT


class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        """Test the retry and pool defaults."""
        monkeypatch.delenv("WORKER_LEASE_DURATION_SECONDS", raising=False)

        settings = Settings(_env_file=None)

        assert settings.default_max_retries == DEFAULT_MAX_RETRIES == 3
        assert settings.retry_base_delay_seconds == 1.0
        assert settings.retry_max_delay_seconds == 300.0
        assert settings.worker_count == 5
        assert settings.worker_lease_duration_seconds == 30

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch):
        """Test values come from environment variables."""
        monkeypatch.setenv("WORKER_COUNT", "8")
        monkeypatch.setenv("RETRY_BASE_DELAY_SECONDS", "0.5")

        settings = Settings(_env_file=None)

        assert settings.worker_count == 8
        assert settings.retry_base_delay_seconds == 0.5

    def test_heartbeat_must_beat_lease(self):
        """Test a heartbeat slower than the lease is rejected."""
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                worker_lease_duration_seconds=5,
                worker_heartbeat_interval_seconds=10.0,
            )

    def test_worker_count_positive(self):
        """Test a pool needs at least one worker."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, worker_count=0)

    def test_default_max_retries_bounded(self):
        """Test the default retry ceiling cannot exceed the per-job limit."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, default_max_retries=MAX_RETRIES_LIMIT + 1)
