"""
Main entry point for the development supervisor.

Verifies the project layout, then keeps the static assets mirrored, the
TypeScript build watching and the local emulator running until interrupted.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from dotenv import load_dotenv

from core.config import ConfigLoader
from core.context import DevContext
from core.errors import BuildError, ConfigError
from core.log import configure_logging
from core.project import locate_functions_dir
from orchestrator.build import run_build
from orchestrator.supervisor import ExitCode, Supervisor
from tasks.base import Task
from tasks.build_watch import BuildWatchTask
from tasks.emulator import EmulatorTask
from tasks.process import resolve_signal
from tasks.sync import DirectorySyncTask, awatch_source


logger = structlog.get_logger()

EXIT_MESSAGES = {
    ExitCode.BUILD_FAILED: "Typescript compilation failed.",
    ExitCode.STARTUP_FAILED: "A task failed to start, shutting down.",
    ExitCode.STARTUP_TIMEOUT: "Tasks did not become ready in time, shutting down.",
    ExitCode.TASK_FAILED: "A task exited unexpectedly, shutting down.",
}


def build_tasks(ctx: DevContext, with_emulator: bool = True) -> list[Task]:
    """Create the supervised tasks for one run."""
    config = ctx.config
    token = ctx.cancellation_token
    sync_config = config.sync

    def watcher(root, stop_event):
        return awatch_source(
            root,
            stop_event,
            debounce_ms=sync_config.watch_debounce_ms,
            step_ms=sync_config.watch_step_ms,
            timeout_ms=sync_config.watch_timeout_ms,
            force_polling=sync_config.force_polling,
        )

    tasks: list[Task] = [
        DirectorySyncTask(
            ctx.source_dir,
            ctx.output_dir,
            ctx.globs(),
            token,
            logger=ctx.task_logger("sync", "cyan"),
            debounce_seconds=sync_config.debounce_ms / 1000.0,
            drain_on_stop=sync_config.drain_on_stop,
            watcher=watcher,
        ),
        BuildWatchTask(
            config.build.watch_command,
            token,
            cwd=ctx.functions_dir,
            ready_marker=config.build.ready_marker,
            clear_markers=config.build.clear_markers,
            logger=ctx.task_logger("build", "blue"),
            stop_signal=resolve_signal(config.build.stop_signal),
            search_path=ctx.search_path(),
        ),
    ]

    if with_emulator:
        emulator = config.emulator
        tasks.append(
            EmulatorTask(
                emulator.command,
                token,
                cwd=(ctx.functions_dir / emulator.cwd).resolve(),
                env_name=config.env_name,
                env_name_variable=emulator.env_name_variable,
                color=config.logging.colors,
                color_variable=emulator.color_variable,
                env=emulator.env,
                ready_marker=emulator.ready_marker,
                logger=ctx.task_logger("emulator", "magenta"),
                stop_signal=resolve_signal(emulator.stop_signal),
                search_path=ctx.search_path(),
            )
        )
    return tasks


async def run_dev(ctx: DevContext, with_emulator: bool = True) -> ExitCode:
    """Run every task under a supervisor until shutdown."""
    supervisor = Supervisor(
        build_tasks(ctx, with_emulator),
        ctx.cancellation_token,
        startup_timeout=ctx.config.supervisor.startup_timeout_seconds,
        start_grace=ctx.config.supervisor.start_grace_seconds,
    )
    return await supervisor.run()


def prepare_context(functions_dir: Path, config_path: Optional[str]) -> DevContext:
    """Load configuration and verify the project layout, exiting on failure."""
    try:
        config = ConfigLoader(str(functions_dir)).load(config_path)
        resolved = locate_functions_dir(functions_dir, config.project)
    except ConfigError as e:
        click.echo("Invalid directory. Project may have been renamed or the configuration is wrong.", err=True)
        click.echo(e.message, err=True)
        sys.exit(int(ExitCode.CONFIG_ERROR))

    configure_logging(
        level=config.logging.level,
        json_format=os.getenv("LOG_FORMAT") == "json",
        colors=config.logging.colors,
    )
    return DevContext(config=config, functions_dir=resolved)


functions_dir_option = click.option(
    "--functions-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Functions directory, or the project root containing it.",
)
config_option = click.option(
    "--config",
    "config_path",
    envvar="DEV_CONFIG_PATH",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML or JSON config file (defaults to devsup.yaml when present).",
)


@click.group()
def cli() -> None:
    """Development supervisor for the functions project."""
    load_dotenv()


@cli.command()
@click.option("--env", "env_name", default=None, help="Environment name passed to the emulator [default: dev].")
@click.option("--no-emulator", is_flag=True, default=False, help="Do not start the local emulator.")
@functions_dir_option
@config_option
def dev(env_name: Optional[str], no_emulator: bool, functions_dir: Path, config_path: Optional[str]) -> None:
    """Sync assets, watch the TypeScript build and run the emulator."""
    ctx = prepare_context(functions_dir, config_path)
    if env_name:
        ctx.config.env_name = env_name

    with_emulator = ctx.config.emulator.enabled and not no_emulator
    logger.info(
        "dev_starting",
        env=ctx.config.env_name,
        emulator=with_emulator,
        functions_dir=str(ctx.functions_dir),
    )
    code = asyncio.run(run_dev(ctx, with_emulator=with_emulator))
    if code in EXIT_MESSAGES:
        click.echo(EXIT_MESSAGES[code], err=True)
    sys.exit(int(code))


@cli.command()
@functions_dir_option
@config_option
def build(functions_dir: Path, config_path: Optional[str]) -> None:
    """Compile once and copy the static assets."""
    ctx = prepare_context(functions_dir, config_path)
    try:
        asyncio.run(run_build(ctx))
    except BuildError as e:
        click.echo("Typescript compilation failed.", err=True)
        click.echo(e.output or e.message, err=True)
        sys.exit(int(ExitCode.BUILD_FAILED))


def main() -> None:
    cli(prog_name="devsup")


if __name__ == "__main__":
    main()
