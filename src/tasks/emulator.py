"""Managed local backend emulator."""

import signal
from pathlib import Path
from typing import Optional, Sequence

from core.cancellation import CancellationToken
from core.console import TaskLogger
from .base import Task
from .process import ManagedProcess


class EmulatorTask(Task):
    """
    Runs the local service emulator until cancellation.

    Ready once the emulator prints its ready marker. ``stop`` is idempotent
    and may be called without triggering cancellation first.
    """

    name = "emulator"

    def __init__(
        self,
        command: Sequence[str],
        cancellation_token: CancellationToken,
        cwd: Optional[Path] = None,
        env_name: str = "dev",
        env_name_variable: str = "NODE_CONFIG_ENV",
        color: bool = True,
        color_variable: str = "FORCE_COLOR",
        env: Optional[dict[str, str]] = None,
        ready_marker: Optional[str] = "All emulators ready!",
        logger: Optional[TaskLogger] = None,
        stop_signal: signal.Signals = signal.SIGINT,
        search_path: Optional[str] = None,
    ):
        super().__init__(cancellation_token)
        overrides = dict(env or {})
        overrides[env_name_variable] = env_name
        overrides[color_variable] = "1" if color else "0"

        self.process = ManagedProcess(
            self.name,
            command,
            cancellation_token,
            cwd=cwd,
            env=overrides,
            ready_marker=ready_marker,
            logger=logger,
            stop_signal=stop_signal,
            search_path=search_path,
        )

    @property
    def stop_requested(self) -> bool:
        return self.process.stop_requested

    async def start(self) -> bool:
        self._mark_started()
        return await self.process.start()

    async def stop(self) -> None:
        await self.process.stop()

    async def wait_exit(self) -> Optional[int]:
        return await self.process.wait_exit()
