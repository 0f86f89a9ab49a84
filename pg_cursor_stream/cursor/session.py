"""
Cursor session: one declared server-side cursor bound to one connection.

The session owns the cursor's name and batch size and issues the three
statements of its lifecycle:

    DECLARE <name> NO SCROLL CURSOR FOR <query>
    FETCH FORWARD <batch_size> FROM <name>
    CLOSE <name>

PostgreSQL connections are strictly request/response ordered. Every statement
issued here is submitted through the connection's `ConnectionState`, which
waits for the previous statement to finish and runs the new one as a task. A
caller that is cancelled while waiting on such a task stops waiting, but the
task itself keeps running until the server's response has been read, so the
connection is never left with an unread response.
"""

from __future__ import annotations

import asyncio
import itertools
import weakref
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Set, TypeVar

from pg_cursor_stream.cursor.executor import CursorExecutor
from pg_cursor_stream.exceptions import CursorClosedError
from pg_cursor_stream.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def _mark_retrieved(task: "asyncio.Task[Any]") -> None:
    # Whoever awaits the task later still gets the exception.
    if not task.cancelled():
        task.exception()


@dataclass
class ConnectionState:
    """
    Per-connection bookkeeping shared by every cursor declared on it.

    Attributes
    ----------
    counter : Iterator[int]
        Monotonic source of cursor name suffixes.
    pending : asyncio.Task | None
        The statement currently on the wire, if any.
    """

    counter: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    pending: Optional["asyncio.Task[Any]"] = None

    @property
    def busy(self) -> bool:
        return self.pending is not None and not self.pending.done()

    async def wait_idle(self) -> None:
        """Wait until no statement is outstanding; never raises its error."""
        while self.pending is not None and not self.pending.done():
            # asyncio.wait does not propagate our cancellation into the task
            await asyncio.wait([self.pending])

    def _release(self, task: "asyncio.Task[Any]") -> None:
        if self.pending is task:
            self.pending = None

    async def submit(
        self,
        call: Callable[[str], Awaitable[T]],
        sql: str,
        skip_if: Optional[Callable[[], bool]] = None,
    ) -> Optional["asyncio.Task[T]"]:
        """
        Wait for the connection to be idle, then start `call(sql)` as a task.

        `skip_if` is checked once the connection is idle; when it returns
        True nothing is sent and None is returned.
        """
        await self.wait_idle()
        if skip_if is not None and skip_if():
            return None
        # No await between the idle check and registration.
        task = asyncio.ensure_future(call(sql))
        task.add_done_callback(_mark_retrieved)
        task.add_done_callback(self._release)
        self.pending = task
        return task


_connections: "weakref.WeakKeyDictionary[Any, ConnectionState]" = weakref.WeakKeyDictionary()


def connection_state(connection: Any) -> ConnectionState:
    state = _connections.get(connection)
    if state is None:
        state = _connections[connection] = ConnectionState()
    return state


def peek_connection_state(connection: Any) -> Optional[ConnectionState]:
    return _connections.get(connection)


def declare_sql(name: str, query: str) -> str:
    return f"DECLARE {name} NO SCROLL CURSOR FOR {query}"


def fetch_sql(name: str, batch_size: int) -> str:
    return f"FETCH FORWARD {batch_size} FROM {name}"


def close_sql(name: str) -> str:
    return f"CLOSE {name}"


# Strong references to cleanup of cursors whose declaring caller was cancelled.
_orphan_closes: Set["asyncio.Task[None]"] = set()


async def _close_orphan(
    executor: CursorExecutor,
    state: ConnectionState,
    name: str,
    declare: "asyncio.Task[Any]",
) -> None:
    await asyncio.wait([declare])
    if declare.cancelled() or declare.exception() is not None:
        # no cursor was created
        return
    try:
        task = await state.submit(executor.execute, close_sql(name))
        await task
    except Exception:
        log.debug("Orphan close failed; error discarded", extra={"cursor": name}, exc_info=True)
        return
    log.debug("Closed cursor declared by a cancelled caller", extra={"cursor": name})


def _spawn_orphan_close(
    executor: CursorExecutor,
    state: ConnectionState,
    name: str,
    declare: "asyncio.Task[Any]",
) -> None:
    task = asyncio.get_running_loop().create_task(_close_orphan(executor, state, name, declare))
    _orphan_closes.add(task)
    task.add_done_callback(_orphan_closes.discard)


class CursorSession:
    """
    A declared cursor. Create with `CursorSession.declare`.

    The session never outlives the transaction that declared it: the cursor
    is dropped by the server when the transaction ends, whether or not
    `close` was called.
    """

    def __init__(
        self,
        executor: CursorExecutor,
        name: str,
        batch_size: int,
        state: ConnectionState,
    ) -> None:
        self._executor = executor
        self._name = name
        self._batch_size = batch_size
        self._state = state
        self._closed = False

    @classmethod
    async def declare(
        cls,
        executor: CursorExecutor,
        query: str,
        batch_size: int,
        prefix: str,
    ) -> "CursorSession":
        """
        Declare a cursor for `query` and return its session.

        Backend errors propagate unmodified; when DECLARE fails no cursor
        exists and no session is returned. If the caller is cancelled while
        DECLARE is on the wire, the cursor is closed once DECLARE completes.
        """
        state = connection_state(executor.connection)
        name = f"{prefix}_{next(state.counter)}"
        task = await state.submit(executor.execute, declare_sql(name, query))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            _spawn_orphan_close(executor, state, name, task)
            raise
        log.debug("Cursor declared", extra={"cursor": name, "batch_size": batch_size})
        return cls(executor, name, batch_size, state)

    @property
    def name(self) -> str:
        return self._name

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    async def start_fetch(self) -> Optional["asyncio.Task[List[Any]]"]:
        """
        Put one FETCH on the wire and return the task that reads its response.

        Returns None without sending anything if the session was closed while
        waiting for the connection. Callers that stop waiting on the task must
        still let it finish; it is never cancelled by this package.
        """
        if self._closed:
            raise CursorClosedError(self._name)
        task = await self._state.submit(
            self._executor.fetch,
            fetch_sql(self._name, self._batch_size),
            skip_if=lambda: self._closed,
        )
        if task is None:
            log.debug("Fetch skipped; cursor closed while queued", extra={"cursor": self._name})
            return None
        log.debug("Fetch issued", extra={"cursor": self._name, "batch_size": self._batch_size})
        return task

    async def close(self) -> int:
        """
        Issue CLOSE and return the backend's affected-row count.

        The session is marked closed before the statement is sent, so a
        failed CLOSE is not attempted twice.
        """
        if self._closed:
            raise CursorClosedError(self._name)
        self._closed = True
        task = await self._state.submit(self._executor.execute, close_sql(self._name))
        count = await asyncio.shield(task)
        log.debug("Cursor closed", extra={"cursor": self._name})
        return count


__all__ = [
    "ConnectionState",
    "CursorSession",
    "connection_state",
    "peek_connection_state",
    "declare_sql",
    "fetch_sql",
    "close_sql",
]
