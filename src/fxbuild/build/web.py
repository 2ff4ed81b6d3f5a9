"""External process supervisor for the web sub-project.

Production runs a single `npm run build` and waits for it to exit.
Development runs the dev server (`npm run dev`) and optionally a watching
build (`npm run build -- --watch`), resolving once both report readiness.

Readiness is decided by a ReadinessDetector per process, which scans stdout
line by line. The detectors only hold matching rules so they can be swapped
without touching process spawning.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..utils.project import resolve_tool
from ..utils.streams import STREAM_LIMIT, read_line
from .state import ExternalProcessError

logger = logging.getLogger(__name__)

# Fallback for dev servers that never print a recognizable marker
READINESS_GRACE_PERIOD: float = 2.0

DEV_SERVER_URL = "http://localhost:3000/"

# Per-line cap for relayed output
MAX_OUTPUT_LINE: int = 10_000


@dataclass(frozen=True)
class ReadinessDetector:
    """Matching rules for one process's stdout.

    Attributes:
        ready_marker: Case-insensitive substring marking readiness
        relay_marker: Case-insensitive substring of lines relayed after readiness
        relay_prefix: Prefix for relayed log lines
        relay_message: Fixed message logged instead of the matched line
        grace_period: Seconds after which readiness is assumed (None: never)
    """

    ready_marker: str
    relay_marker: str | None = None
    relay_prefix: str = "[WEB]"
    relay_message: str | None = None
    grace_period: float | None = None

    def is_ready(self, line: str) -> bool:
        """Whether the line signals readiness."""
        return self.ready_marker.lower() in line.lower()

    def relay(self, line: str) -> str | None:
        """Log message for a line received after readiness, or None to drop it."""
        if self.relay_marker is None or self.relay_marker.lower() not in line.lower():
            return None
        return f"{self.relay_prefix} {self.relay_message or line}"


DEV_SERVER_READINESS = ReadinessDetector(
    ready_marker="localhost",
    relay_marker="hmr",
    relay_prefix="[WEB SERVER]",
    grace_period=READINESS_GRACE_PERIOD,
)

WATCH_BUILD_READINESS = ReadinessDetector(
    ready_marker="built in",
    relay_marker="built in",
    relay_prefix="[WEB BUILD]",
    relay_message="- Changes detected, files rebuilt",
)


class ExternalProcessHandle:
    """A spawned web process with readiness tracking and log relay.

    Without a detector the process is considered ready immediately and its
    stdout is drained silently.
    """

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        detector: ReadinessDetector | None = None,
    ):
        self._name = name
        self._process = process
        self._detector = detector
        self._ready = detector is None
        self._terminating = False
        self._ready_future: asyncio.Future[None] | None = None
        self._grace_timer: asyncio.TimerHandle | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[int] | None = None

    @property
    def name(self) -> str:
        """Display name."""
        return self._name

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return getattr(self._process, "pid", None)

    @property
    def returncode(self) -> int | None:
        """Exit code, None while running."""
        return self._process.returncode

    @property
    def alive(self) -> bool:
        """Whether the process is still running."""
        return self._process.returncode is None

    @property
    def ready(self) -> bool:
        """Whether readiness has been signaled."""
        return self._ready

    def start_monitoring(self) -> None:
        """Start stream readers, exit watcher and the grace timer."""
        loop = asyncio.get_running_loop()
        self._ready_future = loop.create_future()
        if self._ready:
            self._ready_future.set_result(None)
        elif self._detector is not None and self._detector.grace_period is not None:
            self._grace_timer = loop.call_later(
                self._detector.grace_period, self._mark_ready, "grace period elapsed"
            )

        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

    def _mark_ready(self, reason: str) -> None:
        if self._ready:
            return
        self._ready = True
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None
        logger.debug(f"{self._name} ready ({reason})")
        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_result(None)

    @staticmethod
    def _decode(line: bytes) -> str:
        decoded = line.decode("utf-8", errors="replace").rstrip()
        if len(decoded) > MAX_OUTPUT_LINE:
            decoded = decoded[:MAX_OUTPUT_LINE] + "...[truncated]"
        return decoded

    async def _read_stdout(self) -> None:
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            line = await read_line(stream)
            if not line:
                break
            if self._detector is None:
                continue
            decoded = self._decode(line)

            # Lines up to and including the readiness marker are swallowed
            if not self._ready:
                if self._detector.is_ready(decoded):
                    self._mark_ready("marker line")
                continue

            message = self._detector.relay(decoded)
            if message:
                logger.info(message)

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while True:
            line = await read_line(stream)
            if not line:
                break
            decoded = self._decode(line).strip()
            if decoded:
                logger.error(f"[WEB ERROR] {decoded}")

    async def _watch_exit(self) -> int:
        returncode = await self._process.wait()
        # Let readers consume buffered output, a readiness line may be in it
        readers = [t for t in (self._stdout_task, self._stderr_task) if t is not None]
        if readers:
            await asyncio.gather(*readers, return_exceptions=True)

        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None

        if self._ready_future is not None and not self._ready_future.done():
            if self._terminating:
                self._ready_future.cancel()
            else:
                self._ready_future.set_exception(
                    ExternalProcessError(
                        f"{self._name} exited before ready (code {returncode})",
                        exit_code=returncode,
                    )
                )
        elif not self._terminating and self._detector is not None:
            logger.warning(f"{self._name} exited with code {returncode}")
        return returncode

    async def wait_ready(self) -> None:
        """Wait for readiness.

        Raises:
            ExternalProcessError: If the process exits before it is ready
        """
        if self._ready_future is None:
            raise RuntimeError(f"{self._name} is not being monitored")
        await self._ready_future

    async def wait_closed(self) -> int:
        """Wait for the process to exit and its output to be drained."""
        if self._exit_task is None:
            raise RuntimeError(f"{self._name} is not being monitored")
        return await self._exit_task

    def terminate(self) -> None:
        """Request termination (best-effort, not awaited)."""
        self._terminating = True
        if not self.alive:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    def to_dict(self) -> dict:
        """Status as dictionary."""
        return {
            "name": self._name,
            "pid": self.pid,
            "alive": self.alive,
            "ready": self._ready,
        }


async def spawn_process(
    name: str,
    command: list[str],
    cwd: str,
    detector: ReadinessDetector | None = None,
) -> ExternalProcessHandle:
    """Spawn a web process and start monitoring it.

    Raises:
        ExternalProcessError: If the process cannot be started
    """
    logger.debug(f"Spawning {name}: {' '.join(command)}")
    try:
        # stdin is not inherited: under the MCP server it is the protocol channel
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            limit=STREAM_LIMIT,
        )
    except OSError as e:
        logger.error(f"{name} process error: {e}")
        raise ExternalProcessError(f"{name} process error: {e}") from e

    handle = ExternalProcessHandle(name, process, detector)
    handle.start_monitoring()
    return handle


def _npm(npm_path: str | None) -> str:
    try:
        return npm_path or resolve_tool("npm", env_var="FXBUILD_NPM_PATH")
    except FileNotFoundError as e:
        raise ExternalProcessError(str(e)) from e


async def run_web_build(web_path: str, npm_path: str | None = None) -> ExternalProcessHandle:
    """Build the web sub-project once (production).

    Returns:
        Handle of the finished process

    Raises:
        ExternalProcessError: If the build cannot start or exits non-zero
    """
    logger.info("Building web...")
    try:
        handle = await spawn_process("Web build", [_npm(npm_path), "run", "build"], web_path)
    except ExternalProcessError:
        logger.error("Web build failed")
        raise

    returncode = await handle.wait_closed()
    if returncode != 0:
        logger.error("Web build failed")
        raise ExternalProcessError(
            f"Web build process exited with code {returncode}", exit_code=returncode
        )
    logger.info("Web build completed successfully")
    return handle


async def start_web_processes(
    web_path: str,
    watch_build: bool = True,
    npm_path: str | None = None,
) -> list[ExternalProcessHandle]:
    """Start the web dev server and optional watching build (development).

    Returns:
        Handles of the running processes, once all are ready

    Raises:
        ExternalProcessError: If a process fails to start or exits before ready
    """
    logger.info("Starting web development server...")
    npm = _npm(npm_path)
    handles: list[ExternalProcessHandle] = []
    try:
        handles.append(
            await spawn_process("Web dev server", [npm, "run", "dev"], web_path, DEV_SERVER_READINESS)
        )
        if watch_build:
            handles.append(
                await spawn_process(
                    "Web build watcher",
                    [npm, "run", "build", "--", "--watch"],
                    web_path,
                    WATCH_BUILD_READINESS,
                )
            )
        await asyncio.gather(*(handle.wait_ready() for handle in handles))
    except BaseException:
        for handle in handles:
            handle.terminate()
        raise

    logger.info(f"Web development server started at {DEV_SERVER_URL}")
    return handles
