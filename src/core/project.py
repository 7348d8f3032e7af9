"""Locating and verifying the functions directory of the project."""

import json
from pathlib import Path
from typing import Any

from .config import ProjectConfig
from .errors import ConfigError


def read_json(path: Path) -> Any:
    """Read and parse a JSON file."""
    return json.loads(Path(path).read_text(encoding="utf8"))


def _package_name(path: Path) -> Any:
    try:
        data = read_json(path)
    except FileNotFoundError:
        raise ConfigError(f"Missing {path}", config_path=str(path))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not read {path}: {e}", config_path=str(path))
    return data.get("name") if isinstance(data, dict) else None


def verify_functions_dir(func_dir: Path, project: ProjectConfig) -> None:
    """
    Check that ``func_dir`` is the project's functions directory.

    Raises:
        ConfigError: the directory name or either package.json does not match
    """
    func_dir = Path(func_dir).resolve()
    if func_dir.name != project.functions_package_name:
        raise ConfigError(
            f"Invalid functions directory {func_dir}, "
            f"must point to '{project.functions_package_name}' directory"
        )

    if _package_name(func_dir / "package.json") != project.functions_package_name:
        raise ConfigError(
            f"Failed to locate {project.functions_package_name} package",
            config_path=str(func_dir / "package.json"),
        )

    if _package_name(func_dir.parent / "package.json") != project.root_package_name:
        raise ConfigError(
            f"Failed to locate root ({project.root_package_name}) package",
            config_path=str(func_dir.parent / "package.json"),
        )


def locate_functions_dir(start: Path, project: ProjectConfig) -> Path:
    """
    Resolve the functions directory from ``start``.

    ``start`` may be the functions directory itself or the project root
    containing it.
    """
    start = Path(start).resolve()
    candidate = start
    if start.name != project.functions_package_name and (start / project.functions_package_name).is_dir():
        candidate = start / project.functions_package_name

    verify_functions_dir(candidate, project)
    return candidate
