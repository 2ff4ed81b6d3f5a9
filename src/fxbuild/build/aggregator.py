"""Completion aggregator - one downstream trigger per build pass.

Each configured target reports when it finishes a pass. The pass is settled
once every target is in the reported set; downstream actions then run in
fixed order and the set starts over for the next pass:

1. manifest generation (background, failures logged)
2. "watching" status (development)
3. type generation (production, background, failures logged)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

DownstreamAction = Callable[[], Awaitable[object]]
SettledListener = Callable[[int], None]


class CompletionAggregator:
    """Tracks which targets reported in the current pass."""

    def __init__(
        self,
        target_names: Iterable[str],
        production: bool = False,
        manifest_action: DownstreamAction | None = None,
        types_action: DownstreamAction | None = None,
    ):
        """Initialize aggregator.

        Args:
            target_names: Configured targets, all of which must report per pass
            production: Production run (no watching status, types enabled)
            manifest_action: Manifest generation, None if disabled
            types_action: Type generation, None if disabled
        """
        self._expected = frozenset(target_names)
        if not self._expected:
            raise ValueError("At least one target is required")
        self._production = production
        self._manifest_action = manifest_action
        self._types_action = types_action
        self._reported: set[str] = set()
        self._pass_index = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[SettledListener] = []

    @property
    def pass_index(self) -> int:
        """Number of settled passes."""
        return self._pass_index

    @property
    def reported(self) -> frozenset[str]:
        """Targets that reported in the current pass."""
        return frozenset(self._reported)

    @property
    def pending(self) -> frozenset[str]:
        """Targets still expected in the current pass."""
        return self._expected - self._reported

    @property
    def running_actions(self) -> int:
        """Downstream actions still running."""
        return len(self._tasks)

    def on_settled(self, listener: SettledListener) -> None:
        """Register listener called with the pass index when a pass settles."""
        self._listeners.append(listener)

    def report(self, target_name: str) -> bool:
        """Record a completed pass of a target.

        Returns:
            True if this report settled the pass

        Raises:
            ValueError: If the target is not configured
        """
        if target_name not in self._expected:
            raise ValueError(f"Unknown target reported: {target_name}")

        self._reported.add(target_name)
        if self._reported != self._expected:
            return False

        self._reported.clear()
        self._pass_index += 1
        self._run_downstream()

        for listener in self._listeners:
            try:
                listener(self._pass_index)
            except Exception:
                logger.exception("Settled listener error")
        return True

    def _run_downstream(self) -> None:
        if self._manifest_action is not None:
            self._spawn("Manifest generation", self._manifest_action)
        if not self._production:
            logger.info("Watching for file changes...")
        if self._production and self._types_action is not None:
            self._spawn("Type generation", self._types_action)

    def _spawn(self, label: str, action: DownstreamAction) -> None:
        task = asyncio.get_running_loop().create_task(self._guard(label, action))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(label: str, action: DownstreamAction) -> None:
        try:
            await action()
        except Exception as e:
            logger.error(f"{label} failed: {e}")

    async def drain(self) -> None:
        """Wait for running downstream actions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        """Cancel running downstream actions."""
        for task in list(self._tasks):
            task.cancel()
