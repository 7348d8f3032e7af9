"""
Directory sync task.

Mirrors the files of a source tree that match a GlobSpec into an output
tree: one full reconciliation pass, then a recursive watch whose events are
debounced per path before being applied.
"""

import asyncio
import stat
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from watchfiles import awatch

from core import fsutil
from core.cancellation import CancellationToken
from core.console import TaskLogger
from core.errors import NotFoundError
from core.globspec import GlobSpec
from .base import Task
from .debounce import Debouncer


logger = structlog.get_logger()

ChangeBatch = set[tuple[Any, str]]
WatcherFactory = Callable[[Path, asyncio.Event], AsyncIterator[ChangeBatch]]


def awatch_source(
    root: Path,
    stop_event: asyncio.Event,
    debounce_ms: int = 50,
    step_ms: int = 10,
    timeout_ms: int = 200,
    force_polling: Optional[bool] = None,
) -> AsyncIterator[ChangeBatch]:
    """
    Recursive watchfiles stream over ``root``.

    Filtering is left to the GlobSpec, and empty batches are yielded on every
    timeout so the first batch doubles as proof the watch is registered.
    """
    return awatch(
        root,
        watch_filter=None,
        debounce=debounce_ms,
        step=step_ms,
        stop_event=stop_event,
        rust_timeout=timeout_ms,
        yield_on_timeout=True,
        recursive=True,
        force_polling=force_polling,
    )


class DirectorySyncTask(Task):
    """
    Keeps matching output files byte-identical (by size and mtime) to the
    source tree.

    ``stop`` requires the shared cancellation token to have been triggered.
    With ``drain_on_stop`` the still-pending debounced events are applied
    before stopping, otherwise they are discarded.
    """

    name = "sync"

    def __init__(
        self,
        source_dir: Path,
        output_dir: Path,
        globs: GlobSpec,
        cancellation_token: CancellationToken,
        logger: Optional[TaskLogger] = None,
        debounce_seconds: float = 0.025,
        drain_on_stop: bool = False,
        watcher: Optional[WatcherFactory] = None,
    ):
        super().__init__(cancellation_token)
        self.source_dir = Path(source_dir).resolve()
        self.output_dir = Path(output_dir).resolve()
        self.globs = globs
        self.log = logger or TaskLogger(self.name)
        self.drain_on_stop = drain_on_stop
        self._watcher = watcher or awatch_source

        self._debouncer: Debouncer[Any] = Debouncer(
            debounce_seconds, self.handle_change, on_error=self._on_handler_error
        )
        self._stop_event = asyncio.Event()
        self._watching = asyncio.Event()
        self._exited = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._fatal: Optional[BaseException] = None
        self._unsubscribe: Callable[[], None] = lambda: None

    async def reconcile(self) -> int:
        """Copy every matching file that is missing or stale. Returns the copy count."""
        copied = 0
        for rel_path in self.globs.iter_matching(self.source_dir):
            if fsutil.copy_if_different(self.source_dir / rel_path, self.output_dir / rel_path):
                copied += 1
                logger.debug("sync_copied", path=rel_path)
            await asyncio.sleep(0)
        return copied

    async def start(self) -> bool:
        self._mark_started()

        if not self.source_dir.is_dir():
            self.log.error(f"source directory {self.source_dir} does not exist")
            self._exited.set()
            return False

        copied = await self.reconcile()
        self.log.info(f"initial sync done, {copied} file(s) copied")

        if self.cancellation_token.aborted:
            self.log.warning("cancelled before the watch started")
            self._exited.set()
            return False

        self._unsubscribe = self.cancellation_token.on_trigger(lambda reason: self._stop_event.set())
        self._loop_task = asyncio.create_task(self._watch_loop())

        registered = asyncio.create_task(self._watching.wait())
        try:
            await asyncio.wait({self._loop_task, registered}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            registered.cancel()
            await asyncio.wait({registered})

        if self._watching.is_set():
            self.log.info(f"watching {self.source_dir}")
            return True

        if not self._loop_task.cancelled() and self._loop_task.exception() is not None:
            self.log.error(f"failed to watch {self.source_dir}: {self._loop_task.exception()}")
        return False

    async def stop(self) -> None:
        if not self.cancellation_token.aborted:
            raise RuntimeError("sync task can only be stopped after cancellation was triggered")

        self._stop_event.set()
        if self._loop_task is not None:
            await asyncio.wait({self._loop_task})

        if self.drain_on_stop:
            flushed = self._debouncer.flush()
            logger.debug("sync_pending_flushed", count=flushed)
        else:
            discarded = self._debouncer.discard()
            logger.debug("sync_pending_discarded", count=discarded)

        await self._debouncer.drain()
        self._unsubscribe()

        if self._loop_task is not None and not self._loop_task.cancelled():
            loop_error = self._loop_task.exception()
            if loop_error is not None:
                raise loop_error
        if self._fatal is not None:
            raise self._fatal

    async def wait_exit(self) -> Optional[int]:
        await self._exited.wait()
        return None

    async def handle_change(self, rel_path: str, change: Any = None) -> None:
        """Apply the current state of one source path to the output tree."""
        src = self.source_dir / rel_path
        dst = self.output_dir / rel_path

        st = fsutil.stat_or_none(src)
        if st is not None and stat.S_ISREG(st.st_mode):
            try:
                if fsutil.copy_if_different(src, dst):
                    self.log.info(f"copied {rel_path}")
                return
            except NotFoundError:
                # Deleted between stat and copy
                pass

        if fsutil.remove_if_exists(dst):
            self.log.info(f"removed {rel_path}")

    def relative_path(self, path: str) -> Optional[str]:
        try:
            return Path(path).resolve().relative_to(self.source_dir).as_posix()
        except ValueError:
            return None

    async def _watch_loop(self) -> None:
        try:
            async for changes in self._watcher(self.source_dir, self._stop_event):
                self._watching.set()
                if self._stop_event.is_set():
                    break
                for change, path in changes:
                    rel_path = self.relative_path(path)
                    if rel_path and self.globs.matches(rel_path):
                        self._debouncer.push(rel_path, change)
        finally:
            self._exited.set()
            logger.debug("sync_watch_loop_exited", fatal=str(self._fatal) if self._fatal else None)

    def _on_handler_error(self, rel_path: Any, error: BaseException) -> None:
        self.log.error(f"failed to sync {rel_path}: {error}")
        if self._fatal is None:
            self._fatal = error
        self._stop_event.set()
