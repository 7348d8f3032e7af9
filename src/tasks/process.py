"""Supervision of one external long-running process."""

import asyncio
import os
import shutil
import signal
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from core.cancellation import CancellationToken
from core.console import TaskLogger
from core.errors import StartupError


logger = structlog.get_logger()

# Returns False to drop a line instead of forwarding it
LineFilter = Callable[[str], bool]

READ_CHUNK_BYTES = 64 * 1024
MAX_LINE_BYTES = 1024 * 1024


def resolve_signal(name: str) -> signal.Signals:
    try:
        return signal.Signals[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown signal: {name}")


class ManagedProcess:
    """
    Spawns a process, forwards its combined output line by line, detects
    readiness from a marker string and terminates it on cancellation.

    Termination is a single graceful signal; there is no escalation to a
    forceful kill.
    """

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        cancellation_token: CancellationToken,
        cwd: Optional[Path] = None,
        env: Optional[dict[str, str]] = None,
        ready_marker: Optional[str] = None,
        logger: Optional[TaskLogger] = None,
        stop_signal: signal.Signals = signal.SIGTERM,
        search_path: Optional[str] = None,
        line_filter: Optional[LineFilter] = None,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.name = name
        self.command = list(command)
        self.cancellation_token = cancellation_token
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env or {})
        self.ready_marker = ready_marker
        self.log = logger
        self.stop_signal = stop_signal
        self.search_path = search_path
        self.line_filter = line_filter

        self._process: Optional[asyncio.subprocess.Process] = None
        self._ready: Optional[asyncio.Future] = None
        self._exit: Optional[asyncio.Future] = None
        self._reader: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._unsubscribe: Callable[[], None] = lambda: None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def exited(self) -> bool:
        return self._exit is not None and self._exit.done()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def resolve_command(self) -> list[str]:
        """Resolve the executable through ``search_path`` (or PATH)."""
        executable = self.command[0]
        resolved = shutil.which(executable, path=self.search_path)
        if resolved is None:
            raise StartupError(f"Command not found: {executable}", task=self.name)
        return [resolved, *self.command[1:]]

    async def start(self) -> bool:
        """
        Spawn the process.

        Resolves True once the ready marker appears in the output (or right
        away when there is no marker), False if the output ends first.
        """
        if self._process is not None:
            raise RuntimeError(f"{self.name} process was already started")

        argv = self.resolve_command()
        env = {**os.environ, **self.env}
        if self.search_path is not None:
            env["PATH"] = self.search_path

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.cwd) if self.cwd else None,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise StartupError(f"Failed to spawn {argv[0]}: {e}", task=self.name) from e
        logger.info("process_spawned", name=self.name, pid=self._process.pid, command=self.command)

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._exit = loop.create_future()

        # Wired at spawn time so cancellation reaches the process even if
        # nobody calls stop()
        self._unsubscribe = self.cancellation_token.on_trigger(lambda reason: self.terminate())

        if self.ready_marker is None:
            self._ready.set_result(True)
        self._reader = asyncio.create_task(self._pump())

        return await asyncio.shield(self._ready)

    def terminate(self) -> bool:
        """Send the stop signal once. Returns False if nothing was sent."""
        if self._stop_requested or self._process is None or self.exited:
            return False
        if self._process.returncode is not None:
            return False

        self._stop_requested = True
        try:
            if os.name == "nt":
                self._process.terminate()
            else:
                self._process.send_signal(self.stop_signal)
        except ProcessLookupError:
            return False
        logger.info("process_stop_requested", name=self.name, pid=self._process.pid,
                    signal=self.stop_signal.name)
        return True

    async def stop(self) -> Optional[int]:
        """Request graceful termination and wait for exit. Safe to call repeatedly."""
        if self._process is None:
            return None
        self.terminate()
        return await self.wait_exit()

    async def wait_exit(self) -> Optional[int]:
        if self._exit is None:
            return None
        return await asyncio.shield(self._exit)

    async def _pump(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        pending = b""
        try:
            while True:
                chunk = await self._process.stdout.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                *lines, pending = (pending + chunk).split(b"\n")
                for raw in lines:
                    self._on_line(raw.decode(errors="replace") + "\n")
                # A line without newline is forwarded in pieces once it gets too long
                if len(pending) >= MAX_LINE_BYTES:
                    self._on_line(pending.decode(errors="replace"))
                    pending = b""
            if pending:
                self._on_line(pending.decode(errors="replace"))
        finally:
            if not self._ready.done():
                self._ready.set_result(False)
            returncode = await self._process.wait()
            self._unsubscribe()
            logger.info(
                "process_exited",
                name=self.name,
                pid=self._process.pid,
                returncode=returncode,
                requested=self._stop_requested,
            )
            if not self._exit.done():
                self._exit.set_result(returncode)

    def _on_line(self, raw: str) -> None:
        forward = self.line_filter is None or self.line_filter(raw)

        line = raw.strip()
        if forward and line and self.log is not None:
            self.log.info(line)

        if self.ready_marker is not None and not self._ready.done() and self.ready_marker in raw:
            self._ready.set_result(True)
