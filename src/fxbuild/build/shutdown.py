"""Shutdown coordination for watch mode.

Owns every process handle started by a development run and terminates them
when an interrupt or termination signal arrives, so no web server or
watcher outlives the command.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable
from typing import Protocol

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class Terminable(Protocol):
    """Anything owning a process that can be asked to stop."""

    @property
    def alive(self) -> bool: ...

    def terminate(self) -> None: ...


class ShutdownCoordinator:
    """Terminates tracked handles on SIGINT/SIGTERM.

    Usage:
        coordinator = ShutdownCoordinator()
        coordinator.track(handle)
        coordinator.install()
        await coordinator.wait()  # returns after a signal or request_shutdown()
    """

    def __init__(self, signals: Iterable[signal.Signals] = SHUTDOWN_SIGNALS):
        self._signals = tuple(signals)
        self._handles: list[Terminable] = []
        self._shutdown_requested = False
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[signal.Signals] = []
        self._fallback_handlers: dict[signal.Signals, object] = {}

    @property
    def shutdown_requested(self) -> bool:
        """Whether shutdown has been requested."""
        return self._shutdown_requested

    @property
    def installed(self) -> bool:
        """Whether signal handlers are installed."""
        return bool(self._installed)

    @property
    def handles(self) -> list[Terminable]:
        """Tracked handles."""
        return list(self._handles)

    def track(self, handle: Terminable) -> None:
        """Track a handle for termination on shutdown."""
        if handle not in self._handles:
            self._handles.append(handle)

    def track_all(self, handles: Iterable[Terminable]) -> None:
        """Track several handles."""
        for handle in handles:
            self.track(handle)

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Install signal handlers (once).

        Uses loop signal handlers where supported, signal.signal otherwise
        (Windows event loops).
        """
        if self._installed:
            return
        self._loop = loop or asyncio.get_running_loop()

        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                self._fallback_handlers[sig] = signal.signal(sig, self._handle_signal)
            self._installed.append(sig)
        logger.debug(f"Shutdown handlers installed for {[s.name for s in self._installed]}")

    def _handle_signal(self, signum: int, frame: object) -> None:
        """signal.signal shim: hop back onto the event loop."""
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.request_shutdown, signal.Signals(signum))
        else:
            self.request_shutdown(signal.Signals(signum))

    def uninstall(self) -> None:
        """Remove installed signal handlers."""
        for sig in self._installed:
            if sig in self._fallback_handlers:
                signal.signal(sig, self._fallback_handlers.pop(sig))
            elif self._loop is not None:
                self._loop.remove_signal_handler(sig)
        self._installed = []

    def request_shutdown(self, sig: signal.Signals | None = None) -> int:
        """Terminate every live tracked handle and release wait().

        Idempotent: repeated calls only re-signal handles still alive.
        Termination is requested, not awaited.

        Returns:
            Number of handles asked to terminate
        """
        if not self._shutdown_requested:
            suffix = f" ({sig.name})" if sig is not None else ""
            logger.warning(f"Shutting down build processes...{suffix}")
        self._shutdown_requested = True

        terminated = 0
        for handle in self._handles:
            if not handle.alive:
                continue
            try:
                handle.terminate()
                terminated += 1
            except ProcessLookupError:
                pass
            except Exception as e:
                logger.warning(f"Failed to terminate {handle!r}: {e}")

        self._event.set()
        return terminated

    async def wait(self) -> None:
        """Wait until shutdown is requested."""
        await self._event.wait()
