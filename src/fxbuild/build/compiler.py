"""Incremental bundler context - one esbuild process per target.

Watch mode keeps a long-lived `esbuild --watch` process whose stderr is
parsed into pass-complete notifications. esbuild exits on its own when its
stdin is closed, which is how a watching context is disposed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from ..utils.project import resolve_tool
from ..utils.streams import STREAM_LIMIT, read_line
from .options import CompileOptions
from .state import (
    ESBUILD_WATCH_FINISHED_PATTERN,
    ESBUILD_WATCH_STARTED_PATTERN,
    PassResult,
    parse_esbuild_error,
    parse_esbuild_output,
)

logger = logging.getLogger(__name__)

# Seconds to wait for esbuild to exit after stdin is closed
DISPOSE_TIMEOUT: float = 5.0

PassListener = Callable[[PassResult], None]


class EsbuildContext:
    """Incremental build context for one target.

    Usage:
        context = EsbuildContext("client", options, cwd)
        context.on_pass_complete(handle_pass)
        await context.watch()      # development: resolves after first pass
        await context.rebuild()    # production: single pass
        await context.dispose()
    """

    def __init__(
        self,
        target: str,
        options: CompileOptions,
        cwd: str,
        esbuild_path: str | None = None,
    ):
        self._target = target
        self._options = options
        self._cwd = cwd
        self._esbuild_path = esbuild_path
        self._listeners: list[PassListener] = []
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._first_pass: asyncio.Future[PassResult] | None = None
        self._errors: list[str] = []
        self._pass_started = 0.0
        self._pass_count = 0
        self._disposed = False

    @property
    def target(self) -> str:
        """Target name."""
        return self._target

    @property
    def options(self) -> CompileOptions:
        """Bundler options."""
        return self._options

    @property
    def pass_count(self) -> int:
        """Number of passes finished by this context."""
        return self._pass_count

    @property
    def alive(self) -> bool:
        """Whether the esbuild process is running."""
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        """PID of the esbuild process, if any."""
        return getattr(self._process, "pid", None) if self._process else None

    def on_pass_complete(self, listener: PassListener) -> None:
        """Register a listener called after every build pass.

        A listener raising marks the pass as failed: the exception propagates
        out of watch()/rebuild() for the first pass and is logged afterwards.
        """
        self._listeners.append(listener)

    def _command(self, watch: bool) -> list[str]:
        executable = self._esbuild_path or resolve_tool(
            "esbuild", cwd=self._cwd, env_var="FXBUILD_ESBUILD_PATH"
        )
        return [executable, *self._options.to_args(watch=watch)]

    def _dispatch(self, errors: list[str]) -> tuple[PassResult, Exception | None]:
        """Notify listeners of a finished pass.

        Returns:
            The pass result and the first listener exception, if any
        """
        result = PassResult(
            target=self._target,
            errors=list(errors),
            first_build=self._pass_count == 0,
            duration_ms=(time.perf_counter() - self._pass_started) * 1000,
        )
        self._pass_count += 1

        failure: Exception | None = None
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                if failure is None:
                    failure = e
        return result, failure

    async def watch(self) -> PassResult:
        """Start esbuild in watch mode.

        Returns:
            Result of the initial pass

        Raises:
            RuntimeError: If the context is already running
            FileNotFoundError: If esbuild cannot be found
            Exception: Whatever a pass listener raised for the initial pass
        """
        if self._process is not None:
            raise RuntimeError(f"Context for {self._target} is already running")

        cmd = self._command(watch=True)
        logger.debug(f"Starting watcher: {' '.join(cmd)}")

        self._first_pass = asyncio.get_running_loop().create_future()
        self._pass_started = time.perf_counter()
        # stdin stays open: esbuild --watch exits when it is closed
        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._cwd,
            limit=STREAM_LIMIT,
        )
        self._reader_task = asyncio.create_task(self._read_watch_output(self._process))
        return await self._first_pass

    async def _read_watch_output(self, process: asyncio.subprocess.Process) -> None:
        """Turn esbuild watch output into pass notifications."""
        stream = process.stderr
        if stream is not None:
            while True:
                line = await read_line(stream)
                if not line:
                    break
                decoded = line.decode("utf-8", errors="replace").rstrip()

                if ESBUILD_WATCH_STARTED_PATTERN.match(decoded):
                    self._errors = []
                    self._pass_started = time.perf_counter()
                    continue

                message = parse_esbuild_error(decoded)
                if message:
                    self._errors.append(message)
                    continue

                if ESBUILD_WATCH_FINISHED_PATTERN.match(decoded):
                    errors, self._errors = self._errors, []
                    self._finish_watch_pass(errors)
                    continue

                if decoded.strip():
                    logger.debug(f"[esbuild:{self._target}] {decoded}")

        returncode = await process.wait()
        if self._first_pass is not None and not self._first_pass.done():
            errors = self._errors or [f"esbuild exited with code {returncode}"]
            self._finish_watch_pass(errors)
        elif not self._disposed:
            logger.warning(f"esbuild watcher for {self._target} exited with code {returncode}")

    def _finish_watch_pass(self, errors: list[str]) -> None:
        result, failure = self._dispatch(errors)
        if self._first_pass is not None and not self._first_pass.done():
            if failure is not None:
                self._first_pass.set_exception(failure)
            else:
                self._first_pass.set_result(result)
        elif failure is not None:
            # Later passes: report and keep watching, the next change retries
            logger.error(str(failure))

    async def rebuild(self) -> PassResult:
        """Run a single build pass.

        Returns:
            Pass result

        Raises:
            FileNotFoundError: If esbuild cannot be found
            Exception: Whatever a pass listener raised for this pass
        """
        cmd = self._command(watch=False)
        logger.debug(f"Running: {' '.join(cmd)}")

        self._pass_started = time.perf_counter()
        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._cwd,
        )
        try:
            _, stderr = await self._process.communicate()
            returncode = self._process.returncode
        finally:
            self._process = None

        errors = parse_esbuild_output((stderr or b"").decode("utf-8", errors="replace"))
        if returncode and not errors:
            errors = [f"esbuild exited with code {returncode}"]

        result, failure = self._dispatch(errors)
        if failure is not None:
            raise failure
        return result

    def terminate(self) -> None:
        """Request termination of the esbuild process (best-effort)."""
        if not self.alive:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    async def dispose(self) -> None:
        """Stop watching and release the esbuild process."""
        self._disposed = True
        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=DISPOSE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"esbuild for {self._target} did not exit, terminating")
                self.terminate()

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None
