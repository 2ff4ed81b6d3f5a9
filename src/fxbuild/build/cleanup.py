"""Removal of generated files and directories."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable

from .options import resolve_within

logger = logging.getLogger(__name__)

# Everything a build or generation step writes
GENERATED_PATHS: tuple[str, ...] = ("dist", "types", "fxmanifest.lua")


def clear(cwd: str | None = None, paths: Iterable[str] = GENERATED_PATHS) -> int:
    """Delete generated paths recursively.

    Missing paths are ignored, so clearing twice is safe.

    Args:
        cwd: Working directory (defaults to CWD)
        paths: Paths relative to cwd

    Returns:
        Number of paths removed

    Raises:
        ValueError: If a path escapes the working directory
    """
    root = os.path.abspath(cwd or os.getcwd())
    targets = [resolve_within(root, path, context="clear path") for path in paths]

    removed = 0
    for target in targets:
        try:
            if os.path.isdir(target) and not os.path.islink(target):
                shutil.rmtree(target)
            else:
                os.remove(target)
            removed += 1
            logger.debug(f"Removed {target}")
        except FileNotFoundError:
            continue

    logger.info("All generated files cleared.")
    return removed
