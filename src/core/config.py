"""Configuration loading and validation."""

import hashlib
import json
import signal
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import ConfigError


def signal_name(name: str) -> str:
    """Normalize a signal name, rejecting names this platform does not know."""
    normalized = name.upper()
    if not normalized.startswith("SIG"):
        normalized = f"SIG{normalized}"
    if normalized not in signal.Signals.__members__:
        raise ValueError(f"unknown signal: {name}")
    return normalized


class ProjectConfig(BaseModel):
    """Project layout, relative to the functions directory."""
    root_package_name: str = Field(default="chatonfire")
    functions_package_name: str = Field(default="functions")
    source_dir: str = Field(default="./src")
    output_dir: str = Field(default="./lib")


class SyncConfig(BaseModel):
    """Static asset mirroring from the source tree to the output tree."""
    include: list[str] = Field(default_factory=lambda: ["views/**/*.ejs", "public/**/*"])
    exclude: list[str] = Field(default_factory=lambda: ["**/*.ts", "**/*.mts"])
    match_dotfiles: bool = Field(default=False)
    debounce_ms: int = Field(default=25, ge=0, le=10_000)
    drain_on_stop: bool = Field(default=False)

    # watchfiles batching, in milliseconds
    watch_debounce_ms: int = Field(default=50, ge=1)
    watch_step_ms: int = Field(default=10, ge=1)
    watch_timeout_ms: int = Field(default=200, ge=10)
    force_polling: Optional[bool] = Field(default=None)

    @field_validator("include")
    @classmethod
    def include_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one include pattern is required")
        return v


class BuildConfig(BaseModel):
    """TypeScript compiler invocations."""
    command: list[str] = Field(default_factory=lambda: ["tsc", "--outDir", "./lib"])
    watch_command: list[str] = Field(
        default_factory=lambda: ["tsc", "--watch", "--preserveWatchOutput", "--outDir", "./lib"]
    )
    ready_marker: str = Field(default="Watching for file changes.")
    clear_markers: list[str] = Field(
        default_factory=lambda: [
            "Starting compilation in watch mode",
            "File change detected. Starting incremental compilation",
        ]
    )
    stop_signal: str = Field(default="SIGTERM")

    @field_validator("stop_signal")
    @classmethod
    def known_signal(cls, v: str) -> str:
        return signal_name(v)


class EmulatorConfig(BaseModel):
    """Local backend emulator subprocess."""
    enabled: bool = Field(default=True)
    command: list[str] = Field(default_factory=lambda: ["firebase", "emulators:start"])
    ready_marker: str = Field(default="All emulators ready!")
    cwd: str = Field(default="..")  # Relative to the functions directory
    env_name_variable: str = Field(default="NODE_CONFIG_ENV")
    color_variable: str = Field(default="FORCE_COLOR")
    env: dict[str, str] = Field(default_factory=dict)
    stop_signal: str = Field(default="SIGINT")

    @field_validator("stop_signal")
    @classmethod
    def known_signal(cls, v: str) -> str:
        return signal_name(v)


class SupervisorConfig(BaseModel):
    """Supervisor timing."""
    startup_timeout_seconds: float = Field(default=20.0, gt=0)
    start_grace_seconds: float = Field(default=5.0, ge=0)  # Wait for a start() to settle on shutdown


class LoggingConfig(BaseModel):
    """Console output."""
    level: str = Field(default="INFO")
    colors: bool = Field(default=True)


class DevConfig(BaseModel):
    """Main supervisor configuration."""
    env_name: str = Field(default="dev")

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    emulator: EmulatorConfig = Field(default_factory=EmulatorConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


class ConfigLoader:
    """Loads and validates YAML/JSON configurations."""

    def __init__(self, config_dir: str = "."):
        self.config_dir = Path(config_dir)

    def load(self, path: Optional[str] = None) -> DevConfig:
        """
        Load the supervisor configuration.

        With no explicit path, ``devsup.yaml`` in the config directory is used
        if present, otherwise defaults apply.
        """
        if path is None:
            default_path = self.config_dir / "devsup.yaml"
            if not default_path.exists():
                return DevConfig()
            file_path = default_path
        else:
            file_path = Path(path)

        data = self._load_file(file_path)
        try:
            return DevConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid supervisor config: {e}", config_path=str(file_path))

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()

            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(path))
        return data
