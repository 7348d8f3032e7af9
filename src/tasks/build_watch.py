"""Incremental TypeScript build in watch mode."""

import signal
from pathlib import Path
from typing import Optional, Sequence

import structlog

from core.cancellation import CancellationToken
from core.console import TaskLogger, strip_ansi
from core.errors import BuildError
from .base import Task
from .process import ManagedProcess


logger = structlog.get_logger()

CLEAR_SEQUENCES = ("\x1bc", "\x1b[2J", "\x1b[3J")


class BuildWatchTask(Task):
    """
    Drives ``tsc --watch`` and relays its terminal output.

    Writes are forwarded line-trimmed to the logger and clear-screen requests
    (escape sequences, or the banner tsc prints when a new compilation cycle
    starts) are relayed as ``clear()``. Without a logger the output is
    swallowed. Compiler diagnostics are forwarded as-is, never parsed.

    ``start`` returns once the first build has finished. Cancellation closes
    the compiler exactly once; ``stop`` requires it to have been triggered and
    waits for that teardown to complete.
    """

    name = "build"

    def __init__(
        self,
        command: Sequence[str],
        cancellation_token: CancellationToken,
        cwd: Optional[Path] = None,
        ready_marker: str = "Watching for file changes.",
        clear_markers: Sequence[str] = (),
        logger: Optional[TaskLogger] = None,
        stop_signal: signal.Signals = signal.SIGTERM,
        search_path: Optional[str] = None,
    ):
        super().__init__(cancellation_token)
        self.log = logger
        self.clear_markers = tuple(clear_markers)
        self.process = ManagedProcess(
            self.name,
            command,
            cancellation_token,
            cwd=cwd,
            ready_marker=ready_marker,
            stop_signal=stop_signal,
            search_path=search_path,
            line_filter=self._relay,
        )

    async def start(self) -> bool:
        self._mark_started()
        first_build = await self.process.start()
        if not first_build:
            if self.cancellation_token.aborted:
                return False
            raise BuildError(
                f"TypeScript watch exited before completing its first build "
                f"(exit code {await self.process.wait_exit()})"
            )
        logger.info("build_watch_ready", pid=self.process.pid)
        return True

    async def stop(self) -> None:
        if not self.cancellation_token.aborted:
            raise RuntimeError("build task can only be stopped after cancellation was triggered")
        await self.process.wait_exit()

    async def wait_exit(self) -> Optional[int]:
        return await self.process.wait_exit()

    def _relay(self, raw: str) -> bool:
        """Forward one line of compiler output; always handled here."""
        if self.log is None:
            return False

        if any(seq in raw for seq in CLEAR_SEQUENCES) or any(m in raw for m in self.clear_markers):
            self.log.clear()

        line = strip_ansi(raw).strip()
        if line:
            self.log.info(line)
        return False
