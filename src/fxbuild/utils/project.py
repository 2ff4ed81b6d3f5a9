"""Project root and tool detection utilities.

Provides utilities for:
1. Finding the resource root from the current directory (package.json,
   fxmanifest.lua, .git markers)
2. Resolving Node tooling (esbuild, tsc, npm) from environment overrides,
   the project's node_modules/.bin, or PATH
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

# Root markers, most specific first
PROJECT_MARKERS: tuple[str, ...] = ("package.json", "fxmanifest.lua", ".git")


def find_project_root(root: str | Path | None = None) -> str:
    """Find resource root by walking up from CWD.

    Searches for project markers in this order:
    1. package.json - the resource's Node project
    2. fxmanifest.lua - an already generated resource
    3. .git (git root as fallback)

    Falls back to CWD if no marker is found.

    Args:
        root: If provided, constrains search to this directory and below.
              Search stops at this boundary.

    Returns:
        Absolute path to project root (falls back to CWD if no marker found)
    """
    current = Path.cwd().resolve()
    boundary = Path(root).resolve() if root is not None else None

    def ancestors() -> Iterator[Path]:
        """Yield current directory and ancestors up to boundary."""
        yield current
        if boundary is not None and current == boundary:
            return
        for parent in current.parents:
            yield parent
            if boundary is not None and parent == boundary:
                return

    for marker in PROJECT_MARKERS:
        for directory in ancestors():
            # .git can be file (worktree) or dir
            if (directory / marker).exists():
                return str(directory)

    return str(current)


def resolve_tool(name: str, cwd: str | None = None, env_var: str | None = None) -> str:
    """Resolve a Node tool executable.

    Lookup order:
    1. Environment variable override (env_var)
    2. <cwd>/node_modules/.bin/<name> (".cmd" shim on Windows)
    3. PATH

    Args:
        name: Executable name (esbuild, tsc, npm)
        cwd: Project directory whose node_modules is searched
        env_var: Environment variable holding an explicit path

    Returns:
        Path to the executable

    Raises:
        FileNotFoundError: If the tool cannot be found
    """
    if env_var:
        override = os.environ.get(env_var)
        if override:
            logger.debug(f"Using {name} from {env_var}: {override}")
            return override

    if cwd:
        bin_dir = Path(cwd) / "node_modules" / ".bin"
        candidates = [bin_dir / f"{name}.cmd", bin_dir / name] if os.name == "nt" else [bin_dir / name]
        for candidate in candidates:
            if candidate.is_file():
                return str(candidate)

    found = shutil.which(name)
    if found:
        return found

    raise FileNotFoundError(f"{name} not found (install it or set {env_var or 'PATH'})")
