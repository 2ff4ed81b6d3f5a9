"""Target compiler supervisor - drives one target through build or watch mode."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .compiler import EsbuildContext
from .options import BuildOptions, Target
from .state import CompileError, PassResult

logger = logging.getLogger(__name__)

ContextFactory = Callable[..., EsbuildContext]
CompletionListener = Callable[[str], None]


class TargetSupervisor:
    """Supervises the compiler context of a single target.

    Every successful pass notifies completion listeners with the target name.
    A pass with errors raises CompileError from the pass hook instead.
    """

    def __init__(
        self,
        target: Target,
        options: BuildOptions,
        context_factory: ContextFactory = EsbuildContext,
        esbuild_path: str | None = None,
    ):
        """Initialize supervisor.

        Args:
            target: Target to compile
            options: Run-wide build options
            context_factory: Builds the incremental context for the target
            esbuild_path: Explicit esbuild executable
        """
        self._target = target
        self._production = options.production
        self._completed_passes = 0
        self._last_result: PassResult | None = None
        self._listeners: list[CompletionListener] = []
        self._context = context_factory(
            target.name,
            options.compile_options(target),
            options.cwd,
            esbuild_path=esbuild_path,
        )
        self._context.on_pass_complete(self._handle_pass)

    @property
    def target(self) -> Target:
        """Supervised target."""
        return self._target

    @property
    def name(self) -> str:
        """Target name."""
        return self._target.name

    @property
    def completed_passes(self) -> int:
        """Successful passes so far."""
        return self._completed_passes

    @property
    def last_result(self) -> PassResult | None:
        """Result of the most recent pass."""
        return self._last_result

    @property
    def alive(self) -> bool:
        """Whether the compiler process is running."""
        return self._context.alive

    def on_complete(self, listener: CompletionListener) -> None:
        """Register listener for successful passes."""
        self._listeners.append(listener)

    def _handle_pass(self, result: PassResult) -> None:
        status = "built" if self._completed_passes == 0 else "rebuilt"
        self._last_result = result

        if result.errors:
            for error in result.errors:
                logger.error(f"[{self.name}] {error}")
            raise CompileError(
                f"{self._target.display_name} {status} with errors!",
                target=self.name,
                errors=result.errors,
            )

        if not self._production:
            logger.info(f"{self._target.display_name} {status} successfully")
        self._completed_passes += 1

        for listener in self._listeners:
            listener(self.name)

    async def start(self) -> PassResult:
        """Run the initial pass.

        Production runs a single pass and disposes the context; development
        keeps the context watching after the initial pass.

        Raises:
            CompileError: If the initial pass reports errors
        """
        if self._production:
            try:
                return await self._context.rebuild()
            finally:
                await self._context.dispose()
        return await self._context.watch()

    def terminate(self) -> None:
        """Request termination of the compiler process."""
        self._context.terminate()

    async def dispose(self) -> None:
        """Stop watching."""
        await self._context.dispose()

    def to_dict(self) -> dict:
        """Status as dictionary."""
        return {
            "target": self.name,
            "completedPasses": self._completed_passes,
            "alive": self.alive,
            "lastResult": self._last_result.to_dict() if self._last_result else None,
        }
