"""Explicit per-run context handed to everything that needs shared state."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .cancellation import CancellationToken
from .config import DevConfig
from .console import TaskLogger
from .globspec import GlobSpec


@dataclass
class DevContext:
    """Configuration, resolved paths and the cancellation token of one run."""
    config: DevConfig
    functions_dir: Path
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)

    def __post_init__(self) -> None:
        self.functions_dir = Path(self.functions_dir).resolve()

    @property
    def project_root(self) -> Path:
        return self.functions_dir.parent

    @property
    def source_dir(self) -> Path:
        return (self.functions_dir / self.config.project.source_dir).resolve()

    @property
    def output_dir(self) -> Path:
        return (self.functions_dir / self.config.project.output_dir).resolve()

    @property
    def bin_dir(self) -> Path:
        """Locally installed node executables (tsc and friends)."""
        return self.functions_dir / "node_modules" / ".bin"

    def search_path(self) -> str:
        return os.pathsep.join([str(self.bin_dir), os.environ.get("PATH", "")])

    def globs(self) -> GlobSpec:
        sync = self.config.sync
        return GlobSpec.from_patterns(sync.include, sync.exclude, dot=sync.match_dotfiles)

    def task_logger(self, name: str, color: Optional[str] = None) -> TaskLogger:
        return TaskLogger(name, color=color, colors=self.config.logging.colors)
