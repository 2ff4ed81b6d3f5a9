"""Build options - targets, bundler options and path validation.

Validates:
- Source, output and cleared paths stay within the working directory
- Target names, formats, platforms and runtime targets are whitelisted
- Target names are unique within a run
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final


class TargetName(str, Enum):
    """Supported compilation targets."""

    SERVER = "server"
    CLIENT = "client"


ALLOWED_FORMATS: Final[frozenset[str]] = frozenset({"iife", "cjs", "esm"})

ALLOWED_PLATFORMS: Final[frozenset[str]] = frozenset({"browser", "node", "neutral"})

# Runtime targets accepted by esbuild (e.g., es2023, node22, chrome120, esnext)
RUNTIME_TARGET_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:esnext|es[0-9]{1,4}|(?:node|chrome|edge|firefox|safari|ios|opera|deno|hermes|rhino)"
    r"[0-9]+(?:\.[0-9]+)*)$",
    re.IGNORECASE,
)

# Labeled blocks stripped from production bundles (`DEV: { ... }`)
PRODUCTION_DROP_LABELS: Final[tuple[str, ...]] = ("DEV",)


def resolve_within(root: str, relative: str, context: str = "path") -> str:
    """Resolve a path relative to root and ensure it does not escape it.

    Args:
        root: Absolute root directory
        relative: Path relative to root
        context: Context for error messages

    Returns:
        Absolute normalized path

    Raises:
        ValueError: If path is empty, absolute, or resolves outside root
    """
    if not relative:
        raise ValueError(f"Empty {context}")
    if os.path.isabs(relative):
        raise ValueError(f"{context} must be relative to the working directory: {relative}")

    root_path = Path(root).resolve()
    resolved = (root_path / relative).resolve()
    if resolved == root_path or root_path not in resolved.parents:
        raise ValueError(f"{context} escapes working directory: {relative}")
    return str(resolved)


@dataclass(frozen=True)
class Target:
    """One independently compiled output (client or server)."""

    name: str
    platform: str
    format: str
    runtime_targets: tuple[str, ...]

    def __post_init__(self) -> None:
        if self.name not in {t.value for t in TargetName}:
            raise ValueError(f"Unknown target: {self.name}")
        if self.platform not in ALLOWED_PLATFORMS:
            raise ValueError(f"Platform not allowed: {self.platform}")
        if self.format not in ALLOWED_FORMATS:
            raise ValueError(f"Format not allowed: {self.format}")
        if not self.runtime_targets:
            raise ValueError(f"No runtime target for {self.name}")
        for runtime in self.runtime_targets:
            if not RUNTIME_TARGET_PATTERN.match(runtime):
                raise ValueError(f"Invalid runtime target: {runtime}")

    @property
    def display_name(self) -> str:
        """Capitalized name used in log messages."""
        return self.name[:1].upper() + self.name[1:]


DEFAULT_TARGETS: Final[tuple[Target, ...]] = (
    Target(name="server", platform="node", format="cjs", runtime_targets=("node22",)),
    Target(name="client", platform="browser", format="iife", runtime_targets=("es2023",)),
)


@dataclass(frozen=True)
class CompileOptions:
    """Bundler options for a single target."""

    entry_path: str
    output_path: str
    format: str
    platform: str
    runtime_targets: tuple[str, ...]
    bundle: bool = True
    drop_labels: tuple[str, ...] = ()
    keep_names: bool = True
    legal_comments: str = "inline"

    def to_args(self, watch: bool = False) -> list[str]:
        """Build esbuild CLI arguments.

        Args:
            watch: Whether to run esbuild in watch mode

        Returns:
            Argument list (without the esbuild executable)
        """
        args = [self.entry_path]
        if self.bundle:
            args.append("--bundle")
        args.extend(
            [
                f"--outfile={self.output_path}",
                f"--format={self.format}",
                f"--platform={self.platform}",
                f"--target={','.join(self.runtime_targets)}",
                f"--legal-comments={self.legal_comments}",
                # Pass markers and diagnostics are parsed from info-level output
                "--log-level=info",
            ]
        )
        if self.keep_names:
            args.append("--keep-names")
        if self.drop_labels:
            args.append(f"--drop-labels={','.join(self.drop_labels)}")
        if watch:
            args.append("--watch")
        return args


@dataclass(frozen=True)
class BuildOptions:
    """Run-wide configuration of a build command.

    Immutable after construction; cwd is canonicalized and all relative
    directories are validated to stay inside it.
    """

    cwd: str = field(default_factory=os.getcwd)
    src_dir: str = "src"
    dist_dir: str = "dist"
    production: bool = False
    targets: tuple[Target, ...] = DEFAULT_TARGETS
    generate_manifest: bool = True
    generate_types: bool = True
    include_web_build: bool | None = None
    """None auto-detects from the presence of the web folder."""
    web_watch_build: bool = True
    """Development only: also run the web build in watch mode next to the dev server."""
    web_dir: str = "web"

    def __post_init__(self) -> None:
        if not self.cwd:
            raise ValueError("Empty cwd")
        object.__setattr__(self, "cwd", str(Path(self.cwd).resolve()))
        object.__setattr__(self, "targets", tuple(self.targets))

        resolve_within(self.cwd, self.src_dir, context="src_dir")
        resolve_within(self.cwd, self.dist_dir, context="dist_dir")
        resolve_within(self.cwd, self.web_dir, context="web_dir")

        if not self.targets:
            raise ValueError("At least one target is required")
        names = [target.name for target in self.targets]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate targets: {names}")

    @property
    def src_path(self) -> str:
        """Absolute source directory."""
        return resolve_within(self.cwd, self.src_dir, context="src_dir")

    @property
    def dist_path(self) -> str:
        """Absolute output directory."""
        return resolve_within(self.cwd, self.dist_dir, context="dist_dir")

    @property
    def web_path(self) -> str:
        """Absolute web sub-project directory."""
        return resolve_within(self.cwd, self.web_dir, context="web_dir")

    @property
    def target_names(self) -> list[str]:
        """Configured target names in order."""
        return [target.name for target in self.targets]

    @property
    def web_enabled(self) -> bool:
        """Whether the web sub-project is part of this run."""
        if self.include_web_build is not None:
            return self.include_web_build
        return os.path.isdir(self.web_path)

    def compile_options(self, target: Target) -> CompileOptions:
        """Bundler options for a target."""
        return CompileOptions(
            entry_path=os.path.join(self.src_path, target.name, "index.ts"),
            output_path=os.path.join(self.dist_path, f"{target.name}.js"),
            format=target.format,
            platform=target.platform,
            runtime_targets=target.runtime_targets,
            drop_labels=PRODUCTION_DROP_LABELS if self.production else (),
        )
