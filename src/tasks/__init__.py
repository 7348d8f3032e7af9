"""Supervised background tasks."""

from .base import Task
from .build_watch import BuildWatchTask
from .emulator import EmulatorTask
from .process import ManagedProcess
from .sync import DirectorySyncTask

__all__ = ["Task", "BuildWatchTask", "EmulatorTask", "ManagedProcess", "DirectorySyncTask"]
