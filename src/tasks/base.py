"""The capability every supervised task exposes."""

from abc import ABC, abstractmethod
from typing import Optional

from core.cancellation import CancellationToken


class Task(ABC):
    """
    A long-running background task driven by the supervisor.

    ``start`` may be called at most once and resolves to the task's
    readiness. ``stop`` releases the task's resources. ``wait_exit`` resolves
    when the task's main activity has ended for any reason.
    """

    name: str = "task"

    def __init__(self, cancellation_token: CancellationToken):
        self.cancellation_token = cancellation_token
        self._start_called = False

    def _mark_started(self) -> None:
        if self._start_called:
            raise RuntimeError(f"{self.name} task was already started")
        self._start_called = True

    @abstractmethod
    async def start(self) -> bool:
        """Start the task; True once ready, False if it cannot become ready."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the task and wait until its resources are released."""

    @abstractmethod
    async def wait_exit(self) -> Optional[int]:
        """Wait for the task's main activity to end."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"
