import sys
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

from schema_gateway.core.config import Settings

FAKE_EXECUTOR = Path(__file__).parent / "fake_executor.py"


class FakeClock:
    """Manually driven epoch-millisecond clock."""

    def __init__(self, now: int = 0):
        self._now = now
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            return self._now

    def set(self, now: int) -> None:
        with self._lock:
            self._now = now

    def advance(self, ms: int) -> None:
        with self._lock:
            self._now += ms


def executor_command(mode: str):
    return [sys.executable, str(FAKE_EXECUTOR), mode]


def make_value(clock, name="v1"):
    return SimpleNamespace(name=name, fetched_at=clock())


@pytest.fixture
def clock():
    return FakeClock(0)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_name="SchemaGatewayTest",
        app_env="test",
        log_level="DEBUG",
        executor_command=tuple(executor_command("records")),
        executor_env_passthrough=(),
        query_tool_name="query",
        query_argument="soql",
        describe_tool_name="describe",
        query_timeout_seconds=10.0,
        max_concurrent_queries=4,
        schema_cache_ttl_ms=1000,
        object_cache_ttl_ms=2000,
        sweep_interval_seconds=60.0,
        cache_file_path=tmp_path / "schema-cache.json",
        enable_persistent_cache=True,
        warm_on_start=False,
        schema_fallback_enabled=True,
        refresh_workers=2,
        entity_query_limit=200,
        field_query_limit=2000,
    )
