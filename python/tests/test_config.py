"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from teamcoach.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "TEAMCOACH_ENV": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


PROD_IDENTITY = {
    "IDENTITY_JWKS_URL": "https://auth.example.com/.well-known/jwks.json",
    "IDENTITY_ISSUER": "https://auth.example.com/",
    "IDENTITY_AUDIENCES": "teamcoach-web, teamcoach-mobile",
    "TEAMCOACH_INTERNAL_SECRET": "s3cret",
}


class TestDefaults:
    def test_cache_and_migration_defaults(self):
        s = _make_settings()
        assert s.cache_ttl_seconds == 300
        assert s.cache_max_entries == 1000
        assert s.cache_sweep_interval_seconds == 600
        assert s.max_local_history_bytes == 5 * 1024 * 1024
        assert s.corruption_sample_chars == 1000
        assert s.inactive_archive_days == 90

    def test_local_env_uses_console_logs(self):
        assert _make_settings(TEAMCOACH_ENV="local").use_json_logs is False
        assert _make_settings(TEAMCOACH_ENV="test").use_json_logs is True


class TestValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("CACHE_TTL_SECONDS", 0),
            ("CACHE_MAX_ENTRIES", 0),
            ("CACHE_SWEEP_INTERVAL_SECONDS", -1),
            ("MAX_LOCAL_HISTORY_BYTES", 0),
            ("CORRUPTION_SAMPLE_CHARS", 0),
            ("INACTIVE_ARCHIVE_DAYS", 0),
        ],
    )
    def test_non_positive_limits_rejected(self, field, value):
        with pytest.raises(ValidationError, match=field):
            _make_settings(**{field: value})

    def test_prod_requires_identity_settings(self):
        with pytest.raises(ValidationError, match="IDENTITY_JWKS_URL"):
            _make_settings(TEAMCOACH_ENV="prod")

    def test_prod_requires_internal_secret(self):
        identity = {k: v for k, v in PROD_IDENTITY.items() if k != "TEAMCOACH_INTERNAL_SECRET"}
        with pytest.raises(ValidationError, match="TEAMCOACH_INTERNAL_SECRET"):
            _make_settings(TEAMCOACH_ENV="staging", **identity)

    def test_prod_with_everything_set(self):
        s = _make_settings(TEAMCOACH_ENV="prod", **PROD_IDENTITY)
        assert s.teamcoach_env == Environment.PROD
        assert s.requires_internal_header is True


class TestDerivedValues:
    def test_issuer_trailing_slash_stripped(self):
        s = _make_settings(**PROD_IDENTITY)
        assert s.normalized_issuer == "https://auth.example.com"

    def test_audience_list_parsed(self):
        s = _make_settings(**PROD_IDENTITY)
        assert s.audience_list == ["teamcoach-web", "teamcoach-mobile"]

    def test_celery_urls_fall_back_to_redis(self):
        s = _make_settings(REDIS_URL="redis://localhost:6379/0")
        assert s.effective_celery_broker_url == "redis://localhost:6379/0"
        assert s.effective_celery_result_backend == "redis://localhost:6379/0"

    def test_explicit_broker_wins(self):
        s = _make_settings(
            REDIS_URL="redis://localhost:6379/0", CELERY_BROKER_URL="redis://broker:6379/1"
        )
        assert s.effective_celery_broker_url == "redis://broker:6379/1"

    def test_local_does_not_require_internal_header(self):
        assert _make_settings(TEAMCOACH_ENV="local").requires_internal_header is False
