"""
Supervisor - starts the development tasks and tears them down together.

Owns the cancellation token, installs signal handlers, starts every task
concurrently within a global startup window, and on any trigger stops every
started task, logging each outcome without letting one failure block the rest.
"""

import asyncio
import signal
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Iterable, Optional

import structlog

from core.cancellation import CancellationToken
from core.errors import BuildError, TaskError
from tasks.base import Task


logger = structlog.get_logger()

STARTUP_TIMEOUT_REASON = "startup_timeout"
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ExitCode(IntEnum):
    """Process exit codes."""
    OK = 0
    CONFIG_ERROR = 1
    BUILD_FAILED = 2
    STARTUP_FAILED = 3
    STARTUP_TIMEOUT = 4
    TASK_FAILED = 5


class SupervisorState(Enum):
    """Supervisor lifecycle states."""
    INITIALIZING = "initializing"
    STARTING = "starting"
    READY = "ready"
    FAILED_TO_START = "failed_to_start"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class StopOutcome:
    """Result of stopping one task."""
    task: str
    success: bool
    error: Optional[str] = None


class Supervisor:
    """
    Coordinates a set of tasks sharing one cancellation token.

    Cancellation can come from a signal, from a task failing to start or
    exiting unexpectedly, or from the startup timeout. The first trigger
    decides the exit code.
    """

    def __init__(
        self,
        tasks: Iterable[Task],
        cancellation_token: CancellationToken,
        startup_timeout: float = 20.0,
        start_grace: float = 5.0,
        install_signal_handlers: bool = True,
    ):
        self.tasks = list(tasks)
        self.cancellation_token = cancellation_token
        self.startup_timeout = startup_timeout
        self.start_grace = start_grace
        self.install_signal_handlers = install_signal_handlers

        self._state = SupervisorState.INITIALIZING
        self._exit_code = ExitCode.OK
        self._start_time: Optional[float] = None

        # Registry of started tasks and their start() futures
        self._started: list[Task] = []
        self._start_futures: dict[int, asyncio.Task] = {}
        self._monitors: list[asyncio.Task] = []
        self._timers: list[asyncio.TimerHandle] = []
        self._signals: list[signal.Signals] = []

        self.outcomes: list[StopOutcome] = []

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def exit_code(self) -> ExitCode:
        return self._exit_code

    def cancel(self, reason: str, exit_code: ExitCode = ExitCode.OK) -> bool:
        """Trigger cancellation; only the first trigger sets the exit code."""
        if self.cancellation_token.aborted:
            return False
        self._exit_code = exit_code
        return self.cancellation_token.trigger(reason)

    async def run(self) -> ExitCode:
        """Run until every task has been stopped. Returns the exit code."""
        logger.info("supervisor_starting", tasks=[t.name for t in self.tasks])

        if self.install_signal_handlers:
            self._install_signal_handlers()

        cleanup = asyncio.create_task(self._cleanup())
        try:
            await self._startup()
            await cleanup
        finally:
            self._remove_signal_handlers()

        return self._exit_code

    # ==================== Startup ====================

    async def _startup(self) -> None:
        self._state = SupervisorState.STARTING
        self._start_time = time.monotonic()

        loop = asyncio.get_running_loop()
        self._timers.append(loop.call_later(self.startup_timeout, self._on_startup_timeout))

        for task in self.tasks:
            self._started.append(task)
            self._start_futures[id(task)] = asyncio.create_task(self._start_task(task))

        all_ready = asyncio.ensure_future(asyncio.gather(*self._start_futures.values()))
        cancelled = asyncio.create_task(self.cancellation_token.wait())
        await asyncio.wait({all_ready, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        if not cancelled.done():
            cancelled.cancel()

        if self.cancellation_token.aborted:
            if self._exit_code != ExitCode.OK:
                self._state = SupervisorState.FAILED_TO_START
            return

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        self._state = SupervisorState.READY
        logger.info(
            "all_tasks_ready",
            tasks=[t.name for t in self.tasks],
            elapsed_seconds=round(time.monotonic() - self._start_time, 3),
        )

        for task in self._started:
            self._monitors.append(asyncio.create_task(self._monitor(task)))
        self._state = SupervisorState.RUNNING

    async def _start_task(self, task: Task) -> bool:
        try:
            ready = await task.start()
        except BuildError as e:
            logger.error("task_start_failed", task=task.name, error=str(e))
            self.cancel(f"startup_failed:{task.name}", ExitCode.BUILD_FAILED)
            return False
        except Exception as e:
            logger.error("task_start_failed", task=task.name, error=str(e), error_type=type(e).__name__)
            self.cancel(f"startup_failed:{task.name}", ExitCode.STARTUP_FAILED)
            return False

        if not ready:
            if not self.cancellation_token.aborted:
                logger.error("task_not_ready", task=task.name)
                self.cancel(f"startup_failed:{task.name}", ExitCode.STARTUP_FAILED)
            return False

        logger.info("task_ready", task=task.name)
        return True

    def _on_startup_timeout(self) -> None:
        pending = [
            task.name for task in self._started
            if not self._start_futures[id(task)].done()
        ]
        logger.error("startup_timeout", timeout_seconds=self.startup_timeout, pending=pending)
        self.cancel(STARTUP_TIMEOUT_REASON, ExitCode.STARTUP_TIMEOUT)

    async def _monitor(self, task: Task) -> None:
        returncode = await task.wait_exit()
        if not self.cancellation_token.aborted:
            error = TaskError(f"{task.name} exited unexpectedly (exit code {returncode})", task=task.name)
            logger.error("task_exited_unexpectedly", **error.to_dict())
            self.cancel(f"task_exited:{task.name}", ExitCode.TASK_FAILED)

    # ==================== Shutdown ====================

    async def _cleanup(self) -> None:
        reason = await self.cancellation_token.wait()
        self._state = SupervisorState.SHUTTING_DOWN
        logger.info("shutdown_started", reason=reason)

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        self.outcomes = list(await asyncio.gather(*(self._stop_task(t) for t in self._started)))

        for monitor in self._monitors:
            if not monitor.done():
                monitor.cancel()
        await asyncio.gather(*self._monitors, return_exceptions=True)

        self._state = SupervisorState.STOPPED
        logger.info(
            "shutdown_complete",
            reason=reason,
            stopped=[o.task for o in self.outcomes if o.success],
            failed=[o.task for o in self.outcomes if not o.success],
        )

    async def _stop_task(self, task: Task) -> StopOutcome:
        start_future = self._start_futures.get(id(task))
        if start_future is not None and not start_future.done():
            # Give start() a bounded chance to observe cancellation, then abandon it
            done, _ = await asyncio.wait({start_future}, timeout=self.start_grace)
            if not done:
                logger.warning("task_start_abandoned", task=task.name, grace_seconds=self.start_grace)
                start_future.cancel()
                await asyncio.wait({start_future})

        try:
            await task.stop()
        except Exception as e:
            logger.error("task_stop_failed", task=task.name, error=str(e), error_type=type(e).__name__)
            return StopOutcome(task.name, False, f"{type(e).__name__}: {e}")

        logger.info("task_stopped", task=task.name)
        return StopOutcome(task.name, True)

    # ==================== Signals ====================

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(self._on_signal, signal.Signals(signum)),
                )
            self._signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.default_int_handler if sig == signal.SIGINT else signal.SIG_DFL)
        self._signals.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.warning("signal_received", signal=sig.name)
        self.cancel(sig.name, ExitCode.OK)

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        """Supervisor status for diagnostics."""
        return {
            "state": self._state.value,
            "reason": self.cancellation_token.reason,
            "exit_code": int(self._exit_code),
            "uptime_seconds": time.monotonic() - self._start_time if self._start_time else 0,
            "tasks": [t.name for t in self._started],
            "outcomes": [o.__dict__ for o in self.outcomes],
        }
