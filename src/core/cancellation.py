"""One-shot broadcast cancellation shared by the supervisor and every task."""

import asyncio
from typing import Callable, Optional

import structlog


logger = structlog.get_logger()

CancelListener = Callable[[Optional[str]], None]


class CancellationToken:
    """
    A one-shot cancellation signal with an optional reason.

    Once triggered the token never resets. Listeners are called synchronously
    from ``trigger`` and must only schedule work, never block.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Optional[str] = None
        self._listeners: list[CancelListener] = []
        self._event: Optional[asyncio.Event] = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def trigger(self, reason: Optional[str] = None) -> bool:
        """
        Abort the token and notify listeners.

        Returns True if this call performed the transition, False if the
        token had already been triggered (the first reason is kept).
        """
        if self._aborted:
            logger.debug("cancellation_already_triggered", reason=reason, kept=self._reason)
            return False

        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []

        logger.info("cancellation_triggered", reason=reason, listeners=len(listeners))

        for listener in listeners:
            self._notify(listener)

        if self._event is not None:
            self._event.set()
        return True

    def on_trigger(self, listener: CancelListener) -> Callable[[], None]:
        """
        Register a listener called once with the reason.

        Runs immediately if the token is already aborted. Returns a callable
        that removes the listener if it has not fired yet.
        """
        if self._aborted:
            self._notify(listener)
            return lambda: None

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait(self) -> Optional[str]:
        """Wait until the token is triggered and return the reason."""
        if not self._aborted:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason

    def _notify(self, listener: CancelListener) -> None:
        try:
            listener(self._reason)
        except Exception:
            logger.exception("cancellation_listener_error", reason=self._reason)
