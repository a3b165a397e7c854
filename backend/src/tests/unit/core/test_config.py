"""Unit tests for Settings defaults and field validators."""

import pytest
from pydantic import ValidationError

from mailsync.core.config import Settings


class TestSyncDefaults:
    def test_fetch_and_drain_defaults(self) -> None:
        settings = Settings()
        assert settings.initial_fetch_limit == 100
        assert settings.fallback_fetch_limit == 25
        assert settings.delta_max_pages == 50
        assert settings.cursor_establish_timeout_seconds == 60.0
        assert settings.drain_courtesy_every_pages == 20
        assert settings.drain_courtesy_delay_seconds == 0.5

    def test_redis_disabled_without_url(self) -> None:
        settings = Settings(MAILSYNC_REDIS_URL=None)
        assert settings.redis_enabled is False

    def test_redis_enabled_with_url(self) -> None:
        settings = Settings(MAILSYNC_REDIS_URL="redis://localhost:6379/0")
        assert settings.redis_enabled is True


class TestValidateLogSettings:
    def test_log_format_normalised(self) -> None:
        settings = Settings(MAILSYNC_LOG_FORMAT="JSON")
        assert settings.log_format == "json"

    def test_unknown_log_format_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Log format must be one of"):
            Settings(MAILSYNC_LOG_FORMAT="xml")

    def test_log_level_uppercased(self) -> None:
        settings = Settings(MAILSYNC_LOG_LEVEL="debug")
        assert settings.log_level == "DEBUG"

    def test_unknown_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Log level must be one of"):
            Settings(MAILSYNC_LOG_LEVEL="verbose")

    def test_relative_log_dir_resolved_against_repo_root(self) -> None:
        settings = Settings(MAILSYNC_LOG_DIR="logs")
        assert settings.log_dir is not None
        assert settings.log_dir.endswith("logs")
        assert settings.log_dir.startswith("/")


class TestValidateLimits:
    @pytest.mark.parametrize(
        "alias",
        ["MAILSYNC_INITIAL_FETCH_LIMIT", "MAILSYNC_FALLBACK_FETCH_LIMIT", "MAILSYNC_DELTA_MAX_PAGES"],
    )
    def test_non_positive_limit_rejected(self, alias: str) -> None:
        with pytest.raises(ValidationError, match="Value must be a positive integer"):
            Settings(**{alias: 0})

    def test_zero_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Timeout must be greater than zero"):
            Settings(MAILSYNC_CURSOR_ESTABLISH_TIMEOUT=0)

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Retry count cannot be negative"):
            Settings(MAILSYNC_DRAIN_MAX_RETRIES=-1)

    def test_zero_retries_allowed(self) -> None:
        assert Settings(MAILSYNC_DRAIN_MAX_RETRIES=0).drain_max_retries == 0
