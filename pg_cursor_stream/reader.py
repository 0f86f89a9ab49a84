"""
Stream a query end to end and summarize what came back.

Used by the CLI, and handy for checking that a query streams with bounded
memory before wiring it into an application:

    from pg_cursor_stream.reader import run_stream

    report = run_stream("SELECT * FROM events", batch_size=5_000, driver="asyncpg")
    print(report.rows, report.batches, report.peak_rss_bytes)

Each call opens its own connection and transaction, declares a cursor with
`open_cursor`, drains it, and commits.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from pg_cursor_stream.config import get_settings
from pg_cursor_stream.cursor.ext import open_cursor
from pg_cursor_stream.domain.models import StreamReport
from pg_cursor_stream.infrastructure.db_factory import (
    get_async_connection,
    get_asyncpg_connection,
)
from pg_cursor_stream.utils.logging import get_logger
from pg_cursor_stream.utils.profiler import profile_stream

log = get_logger(__name__)


@asynccontextmanager
async def _psycopg_transaction(dsn: Optional[str]) -> AsyncIterator[Any]:
    conn = await get_async_connection(dsn)
    try:
        async with conn.transaction() as tx:
            yield tx
    finally:
        await conn.close()


@asynccontextmanager
async def _asyncpg_transaction(dsn: Optional[str]) -> AsyncIterator[Any]:
    conn = await get_asyncpg_connection(dsn)
    try:
        async with conn.transaction():
            yield conn
    finally:
        await conn.close()


def _transaction_factories() -> Dict[str, Callable[[Optional[str]], Any]]:
    """Registry of supported drivers."""
    return {
        "psycopg": _psycopg_transaction,
        "asyncpg": _asyncpg_transaction,
    }


def available_drivers() -> List[str]:
    """List supported driver names."""
    return sorted(_transaction_factories().keys())


def _resolve_driver(name: str) -> Callable[[Optional[str]], Any]:
    factories = _transaction_factories()
    if name not in factories:
        raise ValueError(f"Unknown driver '{name}'. Available: {', '.join(sorted(factories))}")
    return factories[name]


async def consume(tx: Any, query: str, batch_size: int, driver: str = "custom") -> StreamReport:
    """
    Drain a cursor over `query` inside an existing transaction.
    """
    async with open_cursor(tx, query, batch_size) as stream:
        log.info("[STREAM START] %s", stream.name, extra={"cursor": stream.name, "driver": driver})
        with profile_stream(stream.name) as profile:
            async for batch in stream:
                profile.record_batch(len(batch))
                log.debug(
                    "Batch received",
                    extra={"cursor": stream.name, "rows": len(batch), "batch": profile.batches},
                )
        cursor_name = stream.name

    report = StreamReport(
        query=query,
        driver=driver,
        cursor_name=cursor_name,
        batch_size=batch_size,
        batches=profile.batches,
        rows=profile.rows,
        largest_batch=profile.largest_batch,
        duration_seconds=round(profile.duration_seconds, 4),
        throughput_rows_per_sec=round(profile.throughput_rows_per_sec, 2),
        peak_rss_bytes=profile.peak_rss_bytes,
    )
    log.info(
        "[STREAM COMPLETE] %s",
        cursor_name,
        extra={"cursor": cursor_name, "rows": report.rows, "batches": report.batches},
    )
    return report


async def stream_query(
    query: str,
    batch_size: Optional[int] = None,
    driver: str = "psycopg",
    dsn: Optional[str] = None,
) -> StreamReport:
    """
    Open a connection and transaction, stream `query` through a cursor, commit.

    Parameters
    ----------
    query : str
        Caller-trusted SQL.
    batch_size : int | None
        Rows per FETCH. Defaults to settings.cursor_batch_size.
    driver : str
        "psycopg" or "asyncpg".
    dsn : str | None
        Connection string override; defaults to one built from settings.
    """
    transaction = _resolve_driver(driver)
    effective_batch = get_settings().cursor_batch_size if batch_size is None else batch_size
    async with transaction(dsn) as tx:
        return await consume(tx, query, effective_batch, driver=driver)


def run_stream(
    query: str,
    batch_size: Optional[int] = None,
    driver: str = "psycopg",
    dsn: Optional[str] = None,
) -> StreamReport:
    """
    Synchronous wrapper around `stream_query`.

    Raises
    ------
    RuntimeError
        If called while an event loop is running in this thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(stream_query(query, batch_size=batch_size, driver=driver, dsn=dsn))
    raise RuntimeError(
        "run_stream() cannot be used from an async context; await stream_query() instead"
    )


__all__ = ["available_drivers", "consume", "stream_query", "run_stream"]
