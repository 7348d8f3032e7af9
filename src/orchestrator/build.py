"""One-shot build: compile once, then copy the static assets."""

import asyncio
import os
import shutil

import structlog

from core.context import DevContext
from core.errors import BuildError
from tasks.sync import DirectorySyncTask


logger = structlog.get_logger()


async def compile_once(ctx: DevContext) -> str:
    """
    Run the one-shot compiler command.

    Returns the compiler output; raises BuildError on a non-zero exit.
    """
    command = ctx.config.build.command
    search_path = ctx.search_path()
    executable = shutil.which(command[0], path=search_path)
    if executable is None:
        raise BuildError(f"Command not found: {command[0]}")

    process = await asyncio.create_subprocess_exec(
        executable,
        *command[1:],
        cwd=str(ctx.functions_dir),
        env={**os.environ, "PATH": search_path},
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await process.communicate()
    output = stdout.decode(errors="replace")

    if process.returncode != 0:
        raise BuildError(
            f"TypeScript compilation failed (exit code {process.returncode})",
            output=output,
        )
    logger.info("compile_finished", command=command)
    return output


async def run_build(ctx: DevContext) -> int:
    """Compile, then run a single sync pass. Returns the number of copied files."""
    log = ctx.task_logger("build", "blue")
    log.write(await compile_once(ctx))

    sync = DirectorySyncTask(
        ctx.source_dir,
        ctx.output_dir,
        ctx.globs(),
        ctx.cancellation_token,
        logger=ctx.task_logger("sync", "cyan"),
    )
    copied = await sync.reconcile()
    logger.info("build_finished", copied=copied, output_dir=str(ctx.output_dir))
    return copied
