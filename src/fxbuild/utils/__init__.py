"""Utility modules for fxbuild."""

from .project import PROJECT_MARKERS, find_project_root, resolve_tool
from .streams import STREAM_LIMIT, read_line

__all__ = [
    "PROJECT_MARKERS",
    "STREAM_LIMIT",
    "find_project_root",
    "read_line",
    "resolve_tool",
]
