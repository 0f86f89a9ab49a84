from __future__ import annotations

import asyncio

import pydantic
import pytest

from pg_cursor_stream.cursor import session as session_module
from pg_cursor_stream.cursor.ext import declare_cursor, open_cursor, wait_idle
from pg_cursor_stream.cursor.session import CursorSession, connection_state
from pg_cursor_stream.cursor.stream import StreamState
from pg_cursor_stream.exceptions import CursorClosedError

QUERY = "SELECT n FROM numbers"


@pytest.mark.asyncio
async def test_declare_failure_surfaces_backend_error_and_leaves_no_cursor(
    make_executor, backend_error
) -> None:
    error = backend_error('syntax error at or near "SELEC"')
    executor = make_executor(declare_error=error)

    with pytest.raises(backend_error) as excinfo:
        await declare_cursor(executor, "SELEC broken", 10)

    assert excinfo.value is error
    assert executor.cursors == set()
    assert executor.fetches == []
    assert executor.closes == []


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [0, -1, 2.5, "10"])
async def test_invalid_batch_size_is_rejected_before_any_sql(batch_size, make_executor) -> None:
    executor = make_executor(rows=3)

    with pytest.raises(pydantic.ValidationError):
        await declare_cursor(executor, QUERY, batch_size)

    assert executor.statements == []


@pytest.mark.asyncio
async def test_batch_size_defaults_to_settings(monkeypatch, make_executor) -> None:
    monkeypatch.setenv("CURSOR_BATCH_SIZE", "4")
    executor = make_executor(rows=9)

    stream = await declare_cursor(executor, QUERY)

    assert stream.batch_size == 4
    assert [len(batch) async for batch in stream] == [4, 4, 1]


@pytest.mark.asyncio
async def test_query_text_is_passed_through_verbatim(make_executor) -> None:
    executor = make_executor()
    query = "SELECT '100%' AS pct, $1::text AS literal_dollar WHERE true"

    await declare_cursor(executor, query, 1)

    assert executor.statements == [f"DECLARE cursor_stream_1 NO SCROLL CURSOR FOR {query}"]


@pytest.mark.asyncio
async def test_cursor_names_are_monotonic_per_connection(make_executor) -> None:
    first_conn = make_executor()
    second_conn = make_executor()

    a = await declare_cursor(first_conn, QUERY, 1)
    b = await declare_cursor(first_conn, QUERY, 1)
    c = await declare_cursor(second_conn, QUERY, 1)

    assert (a.name, b.name, c.name) == ("cursor_stream_1", "cursor_stream_2", "cursor_stream_1")


@pytest.mark.asyncio
async def test_failed_declare_still_consumes_its_name(make_executor, backend_error) -> None:
    executor = make_executor(declare_error=backend_error("denied"))
    with pytest.raises(backend_error):
        await declare_cursor(executor, QUERY, 1)
    executor.declare_error = None

    stream = await declare_cursor(executor, QUERY, 1)

    assert stream.name == "cursor_stream_2"


@pytest.mark.asyncio
async def test_name_prefix_comes_from_settings(monkeypatch, make_executor) -> None:
    monkeypatch.setenv("CURSOR_NAME_PREFIX", "export")

    stream = await declare_cursor(make_executor(), QUERY, 1)

    assert stream.name == "export_1"


@pytest.mark.asyncio
async def test_cursors_on_one_connection_never_overlap_on_the_wire(make_executor) -> None:
    executor = make_executor(rows=40)
    first = await declare_cursor(executor, QUERY, 10)
    second = await declare_cursor(executor, QUERY, 10)
    executor.fetch_gate = asyncio.Event()

    a = asyncio.create_task(first.pull())
    await executor.fetch_started.wait()
    b = asyncio.create_task(second.pull())
    await asyncio.sleep(0)
    assert len(executor.fetches) == 1

    executor.fetch_gate.set()
    await asyncio.gather(a, b)

    assert len(executor.fetches) == 2
    assert executor.max_active == 1


@pytest.mark.asyncio
async def test_close_while_pull_is_queued_sends_no_fetch(make_executor) -> None:
    executor = make_executor(rows=40)
    first = await declare_cursor(executor, QUERY, 10)
    second = await declare_cursor(executor, QUERY, 10)
    executor.fetch_gate = asyncio.Event()

    a = asyncio.create_task(first.pull())
    await executor.fetch_started.wait()
    b = asyncio.create_task(second.pull())
    await asyncio.sleep(0)
    closing = asyncio.create_task(second.close())
    await asyncio.sleep(0)
    assert second.state is StreamState.CLOSED

    executor.fetch_gate.set()
    batch, queued, count = await asyncio.gather(a, b, closing)

    assert len(batch) == 10
    assert queued is None
    assert count == 0
    assert second.state is StreamState.CLOSED
    assert executor.fetches == ["FETCH FORWARD 10 FROM cursor_stream_1"]
    assert executor.closes == ["CLOSE cursor_stream_2"]
    assert await second.pull() is None
    assert len(executor.fetches) == 1
    assert executor.max_active == 1


@pytest.mark.asyncio
async def test_cancelled_declare_closes_its_cursor_once_declared(make_executor) -> None:
    executor = make_executor(rows=5)
    executor.declare_gate = asyncio.Event()

    task = asyncio.create_task(declare_cursor(executor, QUERY, 10))
    for _ in range(5):
        await asyncio.sleep(0)
    assert executor.statements == [f"DECLARE cursor_stream_1 NO SCROLL CURSOR FOR {QUERY}"]
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    executor.declare_gate.set()
    cleanup = list(session_module._orphan_closes)
    assert len(cleanup) == 1
    await asyncio.gather(*cleanup)

    assert executor.closes == ["CLOSE cursor_stream_1"]
    assert executor.cursors == set()
    assert executor.max_active == 1
    assert not connection_state(executor).busy


@pytest.mark.asyncio
async def test_cancelled_declare_that_fails_sends_no_close(make_executor, backend_error) -> None:
    executor = make_executor(declare_error=backend_error("permission denied"))
    executor.declare_gate = asyncio.Event()

    task = asyncio.create_task(declare_cursor(executor, QUERY, 10))
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    executor.declare_gate.set()
    await asyncio.gather(*list(session_module._orphan_closes))

    assert executor.closes == []
    assert not connection_state(executor).busy


@pytest.mark.asyncio
async def test_open_cursor_closes_on_normal_exit(make_executor) -> None:
    executor = make_executor(rows=3)

    async with open_cursor(executor, QUERY, 2) as stream:
        assert [len(batch) async for batch in stream] == [2, 1]

    assert stream.closed
    assert executor.closes == ["CLOSE cursor_stream_1"]


@pytest.mark.asyncio
async def test_open_cursor_prefers_body_error_over_close_error(
    make_executor, backend_error
) -> None:
    executor = make_executor(rows=3, close_error=backend_error("close failed"))

    with pytest.raises(KeyError):
        async with open_cursor(executor, QUERY, 2) as stream:
            await stream.pull()
            raise KeyError("body")

    assert stream.closed
    assert len(executor.closes) == 1


@pytest.mark.asyncio
async def test_open_cursor_surfaces_close_error_on_clean_exit(make_executor, backend_error) -> None:
    executor = make_executor(rows=3, close_error=backend_error("close failed"))

    with pytest.raises(backend_error):
        async with open_cursor(executor, QUERY, 2):
            pass


@pytest.mark.asyncio
async def test_open_cursor_closes_when_cancelled_mid_fetch(make_executor) -> None:
    executor = make_executor(rows=30)
    executor.fetch_gate = asyncio.Event()

    async def consume() -> None:
        async with open_cursor(executor, QUERY, 10) as stream:
            async for _ in stream:
                pass

    task = asyncio.create_task(consume())
    await executor.fetch_started.wait()
    task.cancel()
    await asyncio.sleep(0)
    executor.fetch_gate.set()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert executor.statements[-1] == "CLOSE cursor_stream_1"
    assert executor.cursors == set()
    assert executor.max_active == 1


@pytest.mark.asyncio
async def test_wait_idle_without_cursors_returns_immediately(make_executor) -> None:
    await wait_idle(make_executor())


@pytest.mark.asyncio
async def test_session_rejects_use_after_close(make_executor) -> None:
    executor = make_executor(rows=2)
    session = await CursorSession.declare(executor, QUERY, 1, prefix="raw")
    await session.close()

    with pytest.raises(CursorClosedError):
        await session.start_fetch()
    with pytest.raises(CursorClosedError):
        await session.close()
    assert not connection_state(executor).busy
