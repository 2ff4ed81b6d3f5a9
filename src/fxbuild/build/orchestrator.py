"""Build orchestrator - wires web processes, targets, aggregation and shutdown.

Startup order:
1. Clear the output directory (synchronously, before any compiler runs)
2. Web sub-project: production build awaited, or dev processes awaited ready
3. Targets in configured order, each awaited through its initial pass
4. Production: wait for downstream actions. Development: hand every process
   handle to the shutdown coordinator and install signal handlers
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any

from .aggregator import CompletionAggregator
from .cleanup import clear
from .compiler import EsbuildContext
from .manifest import generate_manifest
from .options import BuildOptions
from .shutdown import ShutdownCoordinator
from .state import BuildError, BuildState
from .target import ContextFactory, TargetSupervisor
from .typegen import generate_types
from .web import ExternalProcessHandle, run_web_build, start_web_processes

logger = logging.getLogger(__name__)


class BuildOrchestrator:
    """Runs one build command.

    Usage:
        orchestrator = BuildOrchestrator(BuildOptions(production=False))
        await orchestrator.start()
        await orchestrator.wait_closed()  # development: until SIGINT/SIGTERM
    """

    def __init__(
        self,
        options: BuildOptions,
        coordinator: ShutdownCoordinator | None = None,
        context_factory: ContextFactory = EsbuildContext,
        install_signal_handlers: bool = True,
        esbuild_path: str | None = None,
        npm_path: str | None = None,
    ):
        """Initialize orchestrator.

        Args:
            options: Run-wide build options
            coordinator: Shutdown coordinator (created if not provided)
            context_factory: Builds the compiler context of each target
            install_signal_handlers: Install SIGINT/SIGTERM handlers in watch mode
            esbuild_path: Explicit esbuild executable
            npm_path: Explicit npm executable
        """
        self._options = options
        self._coordinator = coordinator or ShutdownCoordinator()
        self._context_factory = context_factory
        self._install_signal_handlers = install_signal_handlers
        self._esbuild_path = esbuild_path
        self._npm_path = npm_path
        self._state = BuildState.IDLE
        self._state_listeners: list[Callable[[BuildState], None]] = []
        self._supervisors: list[TargetSupervisor] = []
        self._web_handles: list[ExternalProcessHandle] = []
        self._last_error: BaseException | None = None
        self._aggregator = CompletionAggregator(
            options.target_names,
            production=options.production,
            manifest_action=(
                functools.partial(generate_manifest, options.cwd, options.production)
                if options.generate_manifest
                else None
            ),
            types_action=(
                functools.partial(generate_types, options.cwd, src_dir=options.src_dir)
                if options.generate_types
                else None
            ),
        )

    @property
    def options(self) -> BuildOptions:
        """Build options."""
        return self._options

    @property
    def state(self) -> BuildState:
        """Current state."""
        return self._state

    @property
    def aggregator(self) -> CompletionAggregator:
        """Completion aggregator."""
        return self._aggregator

    @property
    def coordinator(self) -> ShutdownCoordinator:
        """Shutdown coordinator."""
        return self._coordinator

    @property
    def supervisors(self) -> list[TargetSupervisor]:
        """Started target supervisors, in configured order."""
        return list(self._supervisors)

    @property
    def web_handles(self) -> list[ExternalProcessHandle]:
        """Running web process handles."""
        return list(self._web_handles)

    def on_state_change(self, listener: Callable[[BuildState], None]) -> None:
        """Register state change listener."""
        self._state_listeners.append(listener)

    def _set_state(self, new_state: BuildState) -> None:
        """Update state and notify listeners."""
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"Build state: {old_state.value} -> {new_state.value}")
            for listener in self._state_listeners:
                try:
                    listener(new_state)
                except Exception:
                    logger.exception("State listener error")

    async def _start_web(self) -> None:
        web_path = self._options.web_path
        try:
            if self._options.production:
                await run_web_build(web_path, npm_path=self._npm_path)
            else:
                self._web_handles = await start_web_processes(
                    web_path,
                    watch_build=self._options.web_watch_build,
                    npm_path=self._npm_path,
                )
        except BuildError:
            logger.error("Failed to start web build process")
            raise

    async def start(self) -> None:
        """Run the build command up to its steady state.

        Returns after the production build finished, or once development
        watchers are running.

        Raises:
            BuildError: If already started, a web process fails, or a target's
                initial pass reports errors
        """
        if self._state != BuildState.IDLE:
            raise BuildError(f"Build already {self._state.value}")

        self._set_state(BuildState.BUILDING)
        options = self._options
        try:
            clear(options.cwd, [options.dist_dir])

            if options.web_enabled:
                await self._start_web()

            logger.info("Building FiveM resources...")
            for target in options.targets:
                supervisor = TargetSupervisor(
                    target,
                    options,
                    context_factory=self._context_factory,
                    esbuild_path=self._esbuild_path,
                )
                supervisor.on_complete(self._aggregator.report)
                self._supervisors.append(supervisor)
                await supervisor.start()

            if options.production:
                await self._aggregator.drain()
                self._set_state(BuildState.READY)
                return

            self._coordinator.track_all(self._web_handles)
            self._coordinator.track_all(self._supervisors)
            if self._install_signal_handlers:
                self._coordinator.install()
            self._set_state(BuildState.WATCHING)

        except BaseException as e:
            self._last_error = e
            self._terminate_all()
            self._set_state(BuildState.FAILED)
            raise

    def _terminate_all(self) -> None:
        for handle in [*self._web_handles, *self._supervisors]:
            if handle.alive:
                handle.terminate()

    async def wait_closed(self) -> None:
        """Wait until watch mode is shut down (signal or stop())."""
        if self._state != BuildState.WATCHING:
            return
        await self._coordinator.wait()
        self._coordinator.uninstall()
        self._aggregator.cancel()
        self._set_state(BuildState.STOPPED)

    async def stop(self) -> None:
        """Shut down watch mode without a signal."""
        if self._state != BuildState.WATCHING:
            return
        self._coordinator.request_shutdown()
        self._coordinator.uninstall()
        for supervisor in self._supervisors:
            await supervisor.dispose()
        self._aggregator.cancel()
        self._set_state(BuildState.STOPPED)

    def to_dict(self) -> dict[str, Any]:
        """Status as dictionary."""
        result: dict[str, Any] = {
            "state": self._state.value,
            "production": self._options.production,
            "cwd": self._options.cwd,
            "passes": self._aggregator.pass_index,
            "pendingTargets": sorted(self._aggregator.pending),
            "targets": [supervisor.to_dict() for supervisor in self._supervisors],
            "web": [handle.to_dict() for handle in self._web_handles],
        }
        if self._last_error is not None:
            if isinstance(self._last_error, BuildError):
                result["error"] = self._last_error.to_dict()
            else:
                result["error"] = {"error": str(self._last_error)}
        return result


async def build(options: BuildOptions, **kwargs: Any) -> BuildOrchestrator:
    """Build the resource's targets.

    Args:
        options: Run-wide build options
        **kwargs: Passed to BuildOrchestrator

    Returns:
        The started orchestrator (watching in development)
    """
    orchestrator = BuildOrchestrator(options, **kwargs)
    await orchestrator.start()
    return orchestrator
