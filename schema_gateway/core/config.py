"""
Configuration management via environment variables.

This module loads configuration from .env file using python-dotenv.
All configuration values are accessed through the Settings class.

Executor credentials are never read here. They are forwarded untouched
to the executor process through EXECUTOR_ENV_PASSTHROUGH.
"""
import os
import shlex
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv


# Load .env file from project root
# This must happen before accessing os.environ
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

DEFAULT_PASSTHROUGH = (
    "SALESFORCE_LOGIN_URL,SALESFORCE_USERNAME,SALESFORCE_PASSWORD,"
    "SALESFORCE_SECURITY_TOKEN,SALESFORCE_ACCESS_TOKEN,SALESFORCE_INSTANCE_URL"
)


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    frozen=True makes the dataclass immutable, preventing accidental
    modification of settings at runtime.

    Attributes:
        app_name: Application identifier for logging
        app_env: Environment name (development, staging, production)
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        executor_command: Argument vector used to spawn the query executor
        executor_env_passthrough: Environment variable names forwarded to the executor
        query_tool_name: JSON-RPC tool name for queries
        query_argument: Argument key holding the query text
        describe_tool_name: JSON-RPC tool name for object describes
        query_timeout_seconds: Hard limit for one executor process
        max_concurrent_queries: Maximum executor processes alive at once
        schema_cache_ttl_ms: TTL of the org schema entry
        object_cache_ttl_ms: TTL of each object field entry
        sweep_interval_seconds: Period of the background staleness sweep
        cache_file_path: Location of the persisted org schema snapshot
        enable_persistent_cache: Whether the snapshot file is read and written
        warm_on_start: Fetch the org schema in the background at startup
        schema_fallback_enabled: Serve a minimal object list when a cold fetch fails
        refresh_workers: Size of the background refresh thread pool
        entity_query_limit: LIMIT applied to the entity query
        field_query_limit: LIMIT applied to the per-object field query
    """
    # Application settings
    app_name: str
    app_env: str
    log_level: str

    # Executor settings
    executor_command: Tuple[str, ...]
    executor_env_passthrough: Tuple[str, ...]
    query_tool_name: str
    query_argument: str
    describe_tool_name: str
    query_timeout_seconds: float
    max_concurrent_queries: int

    # Cache settings
    schema_cache_ttl_ms: int
    object_cache_ttl_ms: int
    sweep_interval_seconds: float
    cache_file_path: Path
    enable_persistent_cache: bool
    warm_on_start: bool
    schema_fallback_enabled: bool
    refresh_workers: int
    entity_query_limit: int = field(default=200)
    field_query_limit: int = field(default=2000)

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env.lower() == "development"

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    def executor_environment(self) -> Dict[str, str]:
        """
        Build the environment handed to each executor process.

        Only PATH and the configured passthrough names are forwarded.
        Values are read at call time so rotated credentials are picked up.
        """
        env = {}
        for key in ("PATH",) + self.executor_env_passthrough:
            value = os.environ.get(key)
            if value is not None:
                env[key] = value
        return env


def _get_env(key: str, default: Optional[str] = None) -> str:
    """
    Get environment variable with optional default.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set and no default provided
    """
    value = os.environ.get(key, default)
    if value is None:
        raise ValueError(
            f"Required environment variable '{key}' is not set. "
            f"Please check your .env file."
        )
    return value


def _get_bool(key: str, default: str) -> bool:
    return _get_env(key, default).strip().lower() in ("1", "true", "yes", "on")


def _split_names(raw: str) -> List[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are read once; call get_settings.cache_clear() after changing
    the environment (tests do this).

    Returns:
        Settings instance with all configuration values

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    # EXECUTOR_COMMAND is parsed with shell quoting rules but never run through a shell
    executor_command = tuple(shlex.split(_get_env("EXECUTOR_COMMAND", "")))

    return Settings(
        # Application
        app_name=_get_env("APP_NAME", "SchemaGateway"),
        app_env=_get_env("APP_ENV", "development"),
        log_level=_get_env("LOG_LEVEL", "INFO"),

        # Executor
        executor_command=executor_command,
        executor_env_passthrough=tuple(
            _split_names(_get_env("EXECUTOR_ENV_PASSTHROUGH", DEFAULT_PASSTHROUGH))
        ),
        query_tool_name=_get_env("QUERY_TOOL_NAME", "query"),
        query_argument=_get_env("QUERY_ARGUMENT", "soql"),
        describe_tool_name=_get_env("DESCRIBE_TOOL_NAME", "describe"),
        query_timeout_seconds=float(_get_env("QUERY_TIMEOUT_SECONDS", "30")),
        max_concurrent_queries=int(_get_env("MAX_CONCURRENT_QUERIES", "4")),

        # Cache
        schema_cache_ttl_ms=int(_get_env("SCHEMA_CACHE_TTL", "3600000")),
        object_cache_ttl_ms=int(_get_env("OBJECT_CACHE_TTL", "7200000")),
        sweep_interval_seconds=float(_get_env("SWEEP_INTERVAL_SECONDS", "60")),
        cache_file_path=Path(_get_env("CACHE_FILE_PATH", "/tmp/schema-cache.json")),
        enable_persistent_cache=_get_bool("ENABLE_PERSISTENT_CACHE", "true"),
        warm_on_start=_get_bool("WARM_ON_START", "true"),
        schema_fallback_enabled=_get_bool("SCHEMA_FALLBACK_ENABLED", "true"),
        refresh_workers=int(_get_env("REFRESH_WORKERS", "4")),
        entity_query_limit=int(_get_env("ENTITY_QUERY_LIMIT", "200")),
        field_query_limit=int(_get_env("FIELD_QUERY_LIMIT", "2000")),
    )
