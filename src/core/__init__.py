"""Core supervisor components."""

from .cancellation import CancellationToken
from .config import ConfigLoader, DevConfig
from .context import DevContext
from .errors import (
    DevError,
    ConfigError,
    StartupError,
    BuildError,
    TaskError,
    FsError,
    NotFoundError,
    AlreadyExistsError,
    FsOtherError,
)
from .globspec import GlobSpec

__all__ = [
    "CancellationToken",
    "ConfigLoader",
    "DevConfig",
    "DevContext",
    "GlobSpec",
    "DevError",
    "ConfigError",
    "StartupError",
    "BuildError",
    "TaskError",
    "FsError",
    "NotFoundError",
    "AlreadyExistsError",
    "FsOtherError",
]
