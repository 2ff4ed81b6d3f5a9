"""MCP Server exposing fxbuild build operations."""

from __future__ import annotations

import json
import logging
import os

from mcp.server.fastmcp import Context, FastMCP

from .build import (
    GENERATED_PATHS,
    BuildError,
    BuildOptions,
    BuildOrchestrator,
    BuildState,
    clear,
    generate_manifest,
    generate_types,
)

logger = logging.getLogger(__name__)

# Single client mode: one build (or watch session) at a time
_orchestrator: BuildOrchestrator | None = None
_project_root: str | None = None


def get_orchestrator() -> BuildOrchestrator | None:
    """Get the current orchestrator, if a build was started."""
    return _orchestrator


def get_project_root() -> str:
    """Project root used by all tools."""
    return _project_root or os.environ.get("FXBUILD_PROJECT_ROOT") or os.getcwd()


def _status() -> dict:
    if _orchestrator is None:
        return {"state": BuildState.IDLE.value, "cwd": get_project_root()}
    return _orchestrator.to_dict()


async def stop_active() -> bool:
    """Stop a running watch session.

    Returns:
        True if a watch session was stopped
    """
    if _orchestrator is not None and _orchestrator.state == BuildState.WATCHING:
        await _orchestrator.stop()
        return True
    return False


def create_server(project_path: str | None = None) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        project_path: Root of the FiveM resource. All operations are
            constrained to this path.
    """
    global _project_root
    _project_root = project_path
    mcp = FastMCP("fxbuild")

    from pydantic import AnyUrl

    async def notify_status_changed(ctx: Context) -> None:
        """Notify client that build://status has changed."""
        try:
            if ctx.session:
                await ctx.session.send_resource_updated(AnyUrl("build://status"))
        except Exception as e:
            logger.debug(f"build://status notification failed: {e}")

    # ============== Build Tools ==============

    @mcp.tool()
    async def build_resource(
        ctx: Context,
        production: bool = True,
        generate_manifest: bool = True,
        generate_types: bool = True,
        include_web_build: bool | None = None,
    ) -> dict:
        """
        Build the resource's client and server targets.

        production=True runs a single build (web build first, when the
        resource has a web folder) and returns when everything is written.

        production=False starts watch mode: the web dev server and esbuild
        watchers keep running and rebuild on file changes until stop_watch
        is called.

        Args:
            production: One-shot production build instead of watch mode
            generate_manifest: Regenerate fxmanifest.lua after each build
            generate_types: Generate type declarations after a production build
            include_web_build: Include the web sub-project (default: auto-detect)
        """
        global _orchestrator
        if _orchestrator is not None and _orchestrator.state in (
            BuildState.BUILDING,
            BuildState.WATCHING,
        ):
            return {"error": f"Build already {_orchestrator.state.value}, call stop_watch first"}

        try:
            options = BuildOptions(
                cwd=get_project_root(),
                production=production,
                generate_manifest=generate_manifest,
                generate_types=generate_types,
                include_web_build=include_web_build,
            )
        except ValueError as e:
            return {"error": str(e)}

        _orchestrator = BuildOrchestrator(options, install_signal_handlers=False)
        try:
            await _orchestrator.start()
        except BuildError as e:
            return e.to_dict()
        except FileNotFoundError as e:
            return {"error": str(e)}
        finally:
            await notify_status_changed(ctx)
        return _orchestrator.to_dict()

    @mcp.tool()
    async def stop_watch(ctx: Context) -> dict:
        """Stop watch mode, terminating the web dev server and esbuild watchers."""
        stopped = await stop_active()
        if stopped:
            await notify_status_changed(ctx)
        return {"stopped": stopped, **_status()}

    @mcp.tool()
    async def get_build_status() -> dict:
        """
        Get the current build state.

        Returns state (idle/building/watching/ready/failed/stopped), settled
        pass count, per-target results and web process status.
        """
        return _status()

    # ============== Generation Tools ==============

    @mcp.tool()
    async def clear_generated(paths: list[str] | None = None) -> dict:
        """
        Remove generated files (dist, types, fxmanifest.lua by default).

        Args:
            paths: Paths relative to the project root to remove instead
        """
        try:
            removed = clear(get_project_root(), paths or GENERATED_PATHS)
        except ValueError as e:
            return {"error": str(e)}
        return {"removed": removed}

    @mcp.tool()
    async def generate_manifest_file(production: bool = False) -> dict:
        """
        Generate fxmanifest.lua from package.json.

        Args:
            production: Point ui_page at the built web files instead of the dev server
        """
        try:
            path = await generate_manifest(get_project_root(), production)
        except BuildError as e:
            return e.to_dict()
        return {"manifest": path}

    @mcp.tool()
    async def generate_type_declarations(source_dirs: list[str] | None = None) -> dict:
        """
        Generate TypeScript declarations by running tsc in each source directory.

        Args:
            source_dirs: Directories under src/ (default: server, client, common)
        """
        try:
            if source_dirs:
                generated = await generate_types(get_project_root(), source_dirs)
            else:
                generated = await generate_types(get_project_root())
        except (BuildError, ValueError) as e:
            return {"error": str(e)}
        return {"generated": generated}

    # ============== Resources ==============

    @mcp.resource("build://status", mime_type="application/json")
    async def build_status_resource() -> str:
        """Current build state (JSON).

        Contains: state, passes, targets, web processes, last error.
        Updates when: a build starts, settles, fails or watch mode stops.
        """
        return json.dumps(_status(), indent=2)

    logger.info("fxbuild MCP Server initialized")
    return mcp
