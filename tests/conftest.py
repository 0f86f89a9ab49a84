"""
Pytest configuration for pg-cursor-stream.

Provides fixtures for:
- Settings override and cache isolation
- An in-memory stand-in for a PostgreSQL connection (unit tests)
- Database connection details for integration tests
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, List, Optional, Set, Type

import psycopg
import pytest

from pg_cursor_stream.config import Settings, get_settings


class FakeBackendError(Exception):
    """Stands in for a driver error; must reach callers unwrapped."""


class FakeExecutor:
    """
    In-memory PostgreSQL connection speaking the cursor statements.

    Rows are `(n,)` tuples for n in range(rows). Every statement is recorded,
    and `max_active` tracks how many statements were ever on the wire at once;
    anything above 1 would desynchronize a real connection.
    """

    def __init__(
        self,
        rows: int = 0,
        declare_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
        fail_on_fetch: int = 1,
        close_error: Optional[Exception] = None,
    ) -> None:
        self.connection = self
        self._remaining = list(range(rows))
        self.declare_error = declare_error
        self.fetch_error = fetch_error
        self.fail_on_fetch = fail_on_fetch
        self.close_error = close_error
        self.statements: List[str] = []
        self.cursors: Set[str] = set()
        self.active = 0
        self.max_active = 0
        self.fetch_count = 0
        self.fetch_gate: Optional[asyncio.Event] = None
        self.declare_gate: Optional[asyncio.Event] = None
        self.fetch_started = asyncio.Event()

    def _enter(self, sql: str) -> None:
        self.statements.append(sql)
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    @property
    def fetches(self) -> List[str]:
        return [s for s in self.statements if s.startswith("FETCH")]

    @property
    def closes(self) -> List[str]:
        return [s for s in self.statements if s.startswith("CLOSE")]

    async def execute(self, sql: str) -> int:
        self._enter(sql)
        try:
            await asyncio.sleep(0)
            if sql.startswith("DECLARE"):
                if self.declare_gate is not None:
                    await self.declare_gate.wait()
                if self.declare_error is not None:
                    raise self.declare_error
                self.cursors.add(sql.split()[1])
                return 0
            if sql.startswith("CLOSE"):
                name = sql.split()[1]
                if self.close_error is not None:
                    raise self.close_error
                if name not in self.cursors:
                    raise FakeBackendError(f'cursor "{name}" does not exist')
                self.cursors.discard(name)
                return 0
            return 1
        finally:
            self.active -= 1

    async def fetch(self, sql: str) -> List[Any]:
        self._enter(sql)
        try:
            self.fetch_count += 1
            self.fetch_started.set()
            if self.fetch_gate is not None:
                await self.fetch_gate.wait()
            await asyncio.sleep(0)
            if self.fetch_error is not None and self.fetch_count == self.fail_on_fetch:
                raise self.fetch_error
            _, _, count, _, name = sql.split()
            if name not in self.cursors:
                raise FakeBackendError(f'cursor "{name}" does not exist')
            size = int(count)
            batch, self._remaining = self._remaining[:size], self._remaining[size:]
            return [(value,) for value in batch]
        finally:
            self.active -= 1


@pytest.fixture
def make_executor() -> Callable[..., FakeExecutor]:
    """Factory for in-memory connections: `make_executor(rows=25)`."""
    return FakeExecutor


@pytest.fixture
def backend_error() -> Type[FakeBackendError]:
    """Driver-like error class to inject into `make_executor` and match on."""
    return FakeBackendError


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached process-wide; isolate env overrides per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "postgres"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture
def live_dsn(test_dsn: str, db_connection_available: bool) -> str:
    """DSN of a reachable database; skips the test otherwise."""
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")
    return test_dsn
