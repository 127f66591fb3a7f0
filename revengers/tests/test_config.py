"""
Tests for environment-driven settings.
"""

from unittest.mock import patch

import pytest

from revengers.config import settings


class TestEnvironment:
    @patch.dict("os.environ", {"ENV": "test", "NODE_ENV": "production"})
    def test_test_flag_wins(self):
        assert settings.environment == "test"
        assert settings.is_test
        assert not settings.is_production

    @patch.dict("os.environ", {"ENV": "", "NODE_ENV": "Production"})
    def test_node_env_is_case_insensitive(self):
        assert settings.is_production

    @patch.dict("os.environ", {"ENV": "", "NODE_ENV": ""})
    def test_blank_node_env(self):
        assert settings.environment == ""
        assert not settings.is_production


class TestDatabaseUrl:
    @patch.dict("os.environ", {"DATABASE_URL": "postgres://u:p@db:5432/team"})
    def test_libpq_scheme_gets_async_driver(self):
        assert settings.database_url == "postgresql+asyncpg://u:p@db:5432/team"

    @patch.dict("os.environ", {"DATABASE_URL": "postgresql://u:p@db/team"})
    def test_postgresql_scheme(self):
        assert settings.database_url == "postgresql+asyncpg://u:p@db/team"

    @patch.dict("os.environ", {"DATABASE_URL": ""})
    def test_unset(self):
        assert settings.database_url is None


class TestSessionSecret:
    @patch.dict("os.environ", {"SESSION_SECRET": "from-env"})
    def test_from_environment(self):
        assert settings.session_secret == "from-env"

    @patch.dict("os.environ", {"SESSION_SECRET": "", "ENV": "", "NODE_ENV": "production"})
    def test_required_in_production(self):
        with pytest.raises(RuntimeError):
            settings.session_secret

    @patch.dict("os.environ", {"SESSION_SECRET": ""})
    def test_ephemeral_outside_production(self):
        assert settings.session_secret == settings.session_secret
        assert len(settings.session_secret) == 64


class TestLimits:
    @patch.dict("os.environ", {"MAX_FILE_SIZE_MB": "2", "MAX_BODY_SIZE_MB": "3"})
    def test_megabytes_to_bytes(self):
        assert settings.max_file_size == 2 * 1024 * 1024
        assert settings.max_body_size == 3 * 1024 * 1024

    @patch.dict("os.environ", {"MAX_FILE_SIZE_MB": "lots"})
    def test_non_integer_falls_back(self):
        assert settings.max_file_size == 5 * 1024 * 1024

    @patch.dict("os.environ", {"RATE_LIMIT_WINDOW_MS": "60000", "DB_POOL_TIMEOUT_MS": "500"})
    def test_millisecond_settings(self):
        assert settings.rate_limit_window_seconds == 60
        assert settings.db_pool_timeout_seconds == 0.5

    @patch.dict("os.environ", {"ALLOWED_FILE_TYPES": "image/png, image/webp ,"})
    def test_allowed_types_list(self):
        assert settings.allowed_file_types == ["image/png", "image/webp"]


class TestValidateRequired:
    @patch.dict("os.environ", {"SESSION_SECRET": "x", "DATABASE_URL": ""})
    def test_test_env_needs_no_database(self):
        assert settings.validate_required() == []

    @patch.dict("os.environ", {
        "ENV": "", "NODE_ENV": "production", "SESSION_SECRET": "x", "DATABASE_URL": "postgres://h/db",
        "AWS_ACCESS_KEY_ID": "", "AWS_SECRET_ACCESS_KEY": "", "AWS_S3_BUCKET": "bucket",
    })
    def test_production_needs_object_store_keys(self):
        assert settings.validate_required() == ["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"]


class TestDebugInfo:
    @patch.dict("os.environ", {"SESSION_SECRET": "do-not-print", "AWS_SECRET_ACCESS_KEY": "also-secret"})
    def test_secrets_reduced_to_flags(self):
        info = settings.debug_info()
        assert info["has_session_secret"] is True
        assert "do-not-print" not in repr(info)
        assert "also-secret" not in repr(info)
