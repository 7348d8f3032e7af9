"""Prefixed, color-tagged log streams for task output."""

import re
from typing import Any, Optional

import click
import structlog


ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|\x1bc")


class TaskLogger:
    """
    Facade over a structlog logger that tags every line with the task name.

    Several tasks write to the same sink concurrently; each call emits one
    complete line so output never interleaves mid-line.
    """

    def __init__(
        self,
        name: str,
        color: Optional[str] = None,
        logger: Any = None,
        colors: bool = True,
    ):
        self.name = name
        self._logger = logger or structlog.get_logger()
        tag = f"[{name}]"
        self.prefix = click.style(tag, fg=color, bold=True) if (color and colors) else tag

    def _line(self, text: str) -> str:
        return f"{self.prefix} {text}"

    def info(self, text: str) -> None:
        self._logger.info(self._line(text))

    def warning(self, text: str) -> None:
        self._logger.warning(self._line(text))

    def error(self, text: str) -> None:
        self._logger.error(self._line(text))

    def write(self, block: str) -> None:
        """Forward a block of program output, one trimmed line at a time."""
        for raw in block.splitlines():
            line = raw.strip()
            if line:
                self.info(line)

    def clear(self) -> None:
        """Relay a program's clear-screen request as its own event."""
        self._logger.debug("terminal_clear", stream=self.name)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)
