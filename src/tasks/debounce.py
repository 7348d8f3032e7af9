"""Per-key debouncing with last-event-wins coalescing."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, TypeVar

import structlog


logger = structlog.get_logger()

E = TypeVar("E")


@dataclass
class PendingWork(Generic[E]):
    """A scheduled handler invocation waiting for its quiet window to pass."""
    key: Hashable
    event: E
    deadline: float
    handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class Debouncer(Generic[E]):
    """
    Coalesces bursts of events per key into a single delayed handler call.

    At most one entry is pending per key: a new event for the same key
    cancels and replaces the pending one. Expired entries run ``handler`` as
    an asyncio task; those tasks are tracked until they settle.
    """

    def __init__(
        self,
        delay: float,
        handler: Callable[[Hashable, E], Awaitable[Any]],
        on_error: Optional[Callable[[Hashable, BaseException], None]] = None,
    ):
        self.delay = delay
        self.handler = handler
        self.on_error = on_error

        self._pending: dict[Hashable, PendingWork[E]] = {}
        self._inflight: set[asyncio.Task] = set()
        self._first_error: Optional[BaseException] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def push(self, key: Hashable, event: E) -> None:
        """Schedule ``event`` for ``key``, replacing any pending event."""
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous.cancel()

        loop = asyncio.get_running_loop()
        work = PendingWork(key=key, event=event, deadline=loop.time() + self.delay)
        work.handle = loop.call_later(self.delay, self._expire, work)
        self._pending[key] = work

    def discard(self) -> int:
        """Drop every pending entry without running it."""
        count = len(self._pending)
        for work in self._pending.values():
            work.cancel()
        self._pending.clear()
        return count

    def flush(self) -> int:
        """Run every pending entry now instead of waiting for its deadline."""
        entries = list(self._pending.values())
        self._pending.clear()
        for work in entries:
            work.cancel()
            self._dispatch(work)
        return len(entries)

    async def drain(self) -> Optional[BaseException]:
        """Wait for all in-flight handlers; return the first handler failure."""
        while self._inflight:
            await asyncio.wait(set(self._inflight))
        return self._first_error

    def _expire(self, work: PendingWork[E]) -> None:
        # Only the entry that is still current for its key may fire
        if self._pending.get(work.key) is not work:
            return
        del self._pending[work.key]
        work.handle = None
        self._dispatch(work)

    def _dispatch(self, work: PendingWork[E]) -> None:
        task = asyncio.create_task(self.handler(work.key, work.event))
        self._inflight.add(task)
        task.add_done_callback(self._settled(work.key))

    def _settled(self, key: Hashable) -> Callable[[asyncio.Task], None]:
        def done(task: asyncio.Task) -> None:
            self._inflight.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is None:
                return
            if self._first_error is None:
                self._first_error = error
            if self.on_error is not None:
                self.on_error(key, error)
            else:
                logger.error("debounced_handler_failed", key=str(key), error=str(error))

        return done
