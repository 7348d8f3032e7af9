"""Supervisor error definitions."""

import errno
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Logged, work continues
    MEDIUM = "medium"     # Task-level failure
    HIGH = "high"         # Cancels the whole run
    CRITICAL = "critical" # Process exits before starting tasks


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    CONFIGURATION = "configuration"  # Wrong directory, bad config file
    STARTUP = "startup"              # Task never became ready
    RUNTIME = "runtime"              # Task died while running
    SHUTDOWN = "shutdown"            # stop() failed
    FILESYSTEM = "filesystem"        # I/O against source or output tree


class DevError(Exception):
    """Base exception for all supervisor errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
        }


class ConfigError(DevError):
    """Configuration or project layout error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class StartupError(DevError):
    """A task failed to become ready."""

    def __init__(self, message: str, task: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.STARTUP)
        super().__init__(message, **kwargs)
        self.context["task"] = task


class BuildError(StartupError):
    """The TypeScript compiler failed or exited before its first build."""

    def __init__(self, message: str, output: str = "", **kwargs):
        kwargs.setdefault("task", "build")
        super().__init__(message, **kwargs)
        self.output = output


class TaskError(DevError):
    """A task failed while running."""

    def __init__(self, message: str, task: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.context["task"] = task


class FsError(DevError):
    """Filesystem error raised by core.fsutil."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.FILESYSTEM)
        super().__init__(message, **kwargs)
        self.path = path
        self.context["path"] = path


class NotFoundError(FsError):
    """The path does not exist."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, path=path, **kwargs)


class AlreadyExistsError(FsError):
    """The path exists with an incompatible type."""


class FsOtherError(FsError):
    """Any other OS-level failure; the original exception is kept as ``cause``."""

    def __init__(self, message: str, cause: OSError, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, path=path, **kwargs)
        self.cause = cause
        self.context["errno"] = cause.errno


@contextmanager
def translate_os_errors(path: Any) -> Iterator[None]:
    """Re-raise ``OSError`` inside the block as a typed ``FsError``."""
    try:
        yield
    except FileNotFoundError as e:
        raise NotFoundError(f"No such file or directory: {path}", path=str(path)) from e
    except FileExistsError as e:
        raise AlreadyExistsError(f"Already exists: {path}", path=str(path)) from e
    except OSError as e:
        if e.errno == errno.ENOENT:
            raise NotFoundError(f"No such file or directory: {path}", path=str(path)) from e
        raise FsOtherError(f"{e.strerror or e} ({path})", cause=e, path=str(path)) from e
