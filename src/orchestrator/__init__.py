"""Orchestrator/Supervisor module."""

from .build import run_build
from .supervisor import ExitCode, StopOutcome, Supervisor, SupervisorState

__all__ = ["ExitCode", "StopOutcome", "Supervisor", "SupervisorState", "run_build"]
