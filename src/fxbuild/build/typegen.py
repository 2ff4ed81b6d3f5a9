"""TypeScript declaration generation - runs tsc per source directory."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable

from ..utils.project import resolve_tool
from .options import resolve_within
from .state import BuildError

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_DIRS: tuple[str, ...] = ("server", "client", "common")

# Cap on compiler output carried in error messages
MAX_ERROR_OUTPUT: int = 4_000


class TypeGenerationError(BuildError):
    """tsc failed for one or more source directories."""

    def __init__(self, message: str, failed: list[str] | None = None, exit_code: int | None = None):
        super().__init__(message, errors=failed, exit_code=exit_code)
        self.failed = failed or []


async def _run_tsc(tsc: str, directory: str) -> None:
    process = await asyncio.create_subprocess_exec(
        tsc,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=directory,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        output = ((stdout or b"") + (stderr or b"")).decode("utf-8", errors="replace").strip()
        if len(output) > MAX_ERROR_OUTPUT:
            output = output[:MAX_ERROR_OUTPUT] + "...[truncated]"
        raise TypeGenerationError(
            f"tsc exited with code {process.returncode}: {output}",
            exit_code=process.returncode,
        )


async def generate_types(
    cwd: str | None = None,
    source_dirs: Iterable[str] = DEFAULT_SOURCE_DIRS,
    src_dir: str = "src",
    tsc_path: str | None = None,
) -> list[str]:
    """Generate type declarations for each source directory.

    Directories are compiled concurrently; missing ones are skipped.

    Args:
        cwd: Working directory (defaults to CWD)
        source_dirs: Directories under src_dir, each with its own tsconfig
        src_dir: Source directory relative to cwd
        tsc_path: Explicit tsc executable

    Returns:
        Directories compiled

    Raises:
        TypeGenerationError: If tsc fails for any directory
    """
    root = os.path.abspath(cwd or os.getcwd())

    directories: list[tuple[str, str]] = []
    for name in source_dirs:
        path = resolve_within(root, os.path.join(src_dir, name), context="source dir")
        if not os.path.isdir(path):
            logger.debug(f"Skipping missing source directory {path}")
            continue
        directories.append((name, path))

    if not directories:
        return []

    try:
        tsc = tsc_path or resolve_tool("tsc", cwd=root, env_var="FXBUILD_TSC_PATH")
    except FileNotFoundError as e:
        raise TypeGenerationError(str(e)) from e

    results = await asyncio.gather(
        *(_run_tsc(tsc, path) for _, path in directories), return_exceptions=True
    )

    failed: list[str] = []
    for (name, _), result in zip(directories, results):
        if isinstance(result, BaseException):
            logger.error(f"Type generation failed for {name}: {result}")
            failed.append(name)

    if failed:
        raise TypeGenerationError(
            f"Type generation failed for: {', '.join(failed)}", failed=failed
        )

    logger.info("TypeScript types generated.")
    return [name for name, _ in directories]
