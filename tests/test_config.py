"""
Tests for environment-driven settings and logging setup.
"""
import logging
from pathlib import Path

import pytest

from schema_gateway.core import logging_config
from schema_gateway.core.config import get_settings
from schema_gateway.core.exceptions import ValidationError
from schema_gateway.core.validators import validate_object_name

CONFIG_VARS = (
    "EXECUTOR_COMMAND", "EXECUTOR_ENV_PASSTHROUGH", "SCHEMA_CACHE_TTL", "OBJECT_CACHE_TTL",
    "CACHE_FILE_PATH", "ENABLE_PERSISTENT_CACHE", "WARM_ON_START", "QUERY_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:

    def test_defaults(self):
        settings = get_settings()
        assert settings.schema_cache_ttl_ms == 3_600_000
        assert settings.object_cache_ttl_ms == 7_200_000
        assert settings.cache_file_path == Path("/tmp/schema-cache.json")
        assert settings.enable_persistent_cache is True
        assert settings.executor_command == ()
        assert "SALESFORCE_USERNAME" in settings.executor_env_passthrough

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EXECUTOR_COMMAND", "node '/opt/sf mcp/runtime.js' --stdio")
        monkeypatch.setenv("SCHEMA_CACHE_TTL", "1000")
        monkeypatch.setenv("ENABLE_PERSISTENT_CACHE", "false")
        monkeypatch.setenv("QUERY_TIMEOUT_SECONDS", "2.5")

        settings = get_settings()
        assert settings.executor_command == ("node", "/opt/sf mcp/runtime.js", "--stdio")
        assert settings.schema_cache_ttl_ms == 1000
        assert settings.enable_persistent_cache is False
        assert settings.query_timeout_seconds == 2.5

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("SCHEMA_CACHE_TTL", "an hour")
        with pytest.raises(ValueError):
            get_settings()

    def test_executor_environment_is_filtered(self, monkeypatch):
        monkeypatch.setenv("EXECUTOR_ENV_PASSTHROUGH", "SF_TOKEN, SF_MISSING")
        monkeypatch.setenv("SF_TOKEN", "secret")
        monkeypatch.setenv("UNRELATED", "x")
        monkeypatch.delenv("SF_MISSING", raising=False)

        env = get_settings().executor_environment()
        assert env["SF_TOKEN"] == "secret"
        assert "SF_MISSING" not in env
        assert "UNRELATED" not in env


class TestLogging:

    def test_setup_logging_writes_daily_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(logging_config, "_logging_configured", False)
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        try:
            logging_config.setup_logging("WARNING", log_dir=tmp_path)
            # A second call must not add handlers
            logging_config.setup_logging("DEBUG", log_dir=tmp_path)
            added = [h for h in root.handlers if h not in handlers]
            assert len(added) == 2

            with pytest.raises(ValidationError):
                validate_object_name("bad name")
            for handler in added:
                handler.flush()

            log_files = list(tmp_path.glob("schema_gateway_*.log"))
            assert len(log_files) == 1
            assert "Rejected object name" in log_files[0].read_text()
        finally:
            for handler in root.handlers[:]:
                if handler not in handlers:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)
