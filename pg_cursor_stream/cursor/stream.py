"""
Batch stream engine layered on a `CursorSession`.

A `CursorStream` is a pull-driven, single-consumer sequence of row batches:

    stream = await declare_cursor(tx, "SELECT * FROM big_table", 500)
    try:
        async for batch in stream:
            handle(batch)
    finally:
        await stream.close()

State machine
-------------
OPEN       no fetch in flight; the next pull issues FETCH.
FETCHING   a FETCH is on the wire (possibly left over from a cancelled pull).
EXHAUSTED  an empty FETCH was observed. Pulls return None without I/O.
FAILED     a FETCH raised. The error was raised once; pulls return None.
CLOSED     `close` was called. Pulls return None, repeat closes are no-ops.

Cancellation
------------
A pull awaits its FETCH through `asyncio.shield`. Cancelling the pull stops the
caller from waiting but the FETCH task runs to completion, so its response is
always read off the connection. The next pull returns that batch (nothing is
skipped) and `close` waits for it before sending CLOSE.

Implicit cleanup
----------------
A stream garbage-collected without `close` schedules a best-effort release
(drain, then CLOSE) on the event loop it was created on. Errors from that path
are logged at DEBUG and otherwise discarded, and nothing is scheduled once the
loop is closed. It is a safety net only: call `close` (or use `async with`)
to observe close errors.
"""

from __future__ import annotations

import asyncio
import enum
from types import TracebackType
from typing import Any, AsyncIterator, List, Optional, Set, Type

from pg_cursor_stream.cursor.session import CursorSession
from pg_cursor_stream.exceptions import ConnectionBusyError
from pg_cursor_stream.utils.logging import get_logger

log = get_logger(__name__)


class StreamState(str, enum.Enum):
    OPEN = "open"
    FETCHING = "fetching"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CLOSED = "closed"


_TERMINAL = frozenset({StreamState.EXHAUSTED, StreamState.FAILED, StreamState.CLOSED})

# Strong references to implicit releases until they finish.
_pending_releases: Set["asyncio.Task[None]"] = set()


async def _drain(task: "asyncio.Task[Any]") -> None:
    """Wait for an in-flight statement to finish, discarding its outcome."""
    await asyncio.wait([task])


async def _release_abandoned(
    session: CursorSession, inflight: Optional["asyncio.Task[Any]"]
) -> None:
    try:
        if inflight is not None:
            await _drain(inflight)
        await session.close()
    except Exception:
        log.debug(
            "Implicit close failed; error discarded",
            extra={"cursor": session.name},
            exc_info=True,
        )


def _spawn_release(session: CursorSession, inflight: Optional["asyncio.Task[Any]"]) -> None:
    task = asyncio.get_running_loop().create_task(_release_abandoned(session, inflight))
    _pending_releases.add(task)
    task.add_done_callback(_pending_releases.discard)


class CursorStream:
    """
    Forward-only sequence of non-empty row batches from a server-side cursor.

    Not safe to pull from more than one task at a time; a concurrent pull
    raises `ConnectionBusyError`.
    """

    def __init__(self, session: CursorSession) -> None:
        self._loop = asyncio.get_running_loop()
        self._session = session
        self._state = StreamState.OPEN
        self._inflight: Optional["asyncio.Task[List[Any]]"] = None
        self._pulling = False

    def __repr__(self) -> str:
        return (
            f"<CursorStream {self._session.name!r} batch_size={self._session.batch_size}"
            f" state={self._state.value}>"
        )

    @property
    def name(self) -> str:
        return self._session.name

    @property
    def batch_size(self) -> int:
        return self._session.batch_size

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is StreamState.CLOSED

    async def pull(self) -> Optional[List[Any]]:
        """
        Return the next batch of rows, or None at end of sequence.

        Returns
        -------
        list | None
            A non-empty list of rows, in cursor order. None once the cursor is
            exhausted, after a fetch failure has been reported, or after close.

        Raises
        ------
        Exception
            The backend error of a failed FETCH, exactly once.
        ConnectionBusyError
            If another pull on this stream is still awaiting its batch.
        """
        if self._state in _TERMINAL:
            return None
        if self._pulling:
            raise ConnectionBusyError(self._session.name)

        self._pulling = True
        try:
            if self._inflight is None:
                task = await self._session.start_fetch()
                if task is None or self._state is StreamState.CLOSED:
                    # closed by another task while queued for the connection
                    return None
                self._inflight = task
                self._state = StreamState.FETCHING
            rows = await asyncio.shield(self._inflight)
        except Exception:
            self._inflight = None
            if self._state is not StreamState.CLOSED:
                self._state = StreamState.FAILED
                log.debug("Fetch failed", extra={"cursor": self._session.name}, exc_info=True)
            raise
        finally:
            self._pulling = False

        self._inflight = None
        if self._state is StreamState.CLOSED:
            # closed by another task while we waited
            return None
        if not rows:
            self._state = StreamState.EXHAUSTED
            log.debug("Cursor exhausted", extra={"cursor": self._session.name})
            return None
        self._state = StreamState.OPEN
        return rows

    def __aiter__(self) -> "CursorStream":
        return self

    async def __anext__(self) -> List[Any]:
        rows = await self.pull()
        if rows is None:
            raise StopAsyncIteration
        return rows

    async def rows(self) -> AsyncIterator[Any]:
        """Iterate individual rows, fetching batches as needed."""
        async for batch in self:
            for row in batch:
                yield row

    async def close(self) -> int:
        """
        Close the server-side cursor.

        Waits for any in-flight fetch to finish (its rows are discarded), then
        sends CLOSE. The stream is CLOSED afterwards whatever the outcome.
        Closing an already closed stream is a no-op that returns 0.

        Returns
        -------
        int
            The affected-row count reported for CLOSE (0 in practice).
        """
        if self._state is StreamState.CLOSED:
            log.debug("Close on closed stream ignored", extra={"cursor": self._session.name})
            return 0
        self._state = StreamState.CLOSED
        inflight, self._inflight = self._inflight, None
        if inflight is not None:
            await _drain(inflight)
        return await self._session.close()

    aclose = close

    async def __aenter__(self) -> "CursorStream":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if exc is None:
            await self.close()
            return
        try:
            await self.close()
        except Exception:
            log.warning(
                "Close failed while handling another error",
                extra={"cursor": self._session.name},
                exc_info=True,
            )

    def __del__(self) -> None:
        if getattr(self, "_state", StreamState.CLOSED) is StreamState.CLOSED:
            return
        if self._session.closed:
            return
        loop = self._loop
        try:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(_spawn_release, self._session, self._inflight)
        except RuntimeError:
            # loop closed between the check and the call
            return
        log.warning(
            "Cursor stream was not closed; scheduling implicit close",
            extra={"cursor": self._session.name},
        )


__all__ = ["CursorStream", "StreamState"]
