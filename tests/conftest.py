"""Pytest fixtures for fxbuild tests."""

import asyncio
import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from fxbuild.build.state import PassResult  # noqa: E402


class FakeStdin:
    """stdin pipe of a fake process; closing it ends the process like esbuild."""

    def __init__(self, process: "FakeProcess"):
        self._process = process
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self._process.exit(0)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process driven by the test.

    Must be created inside a running event loop.
    """

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode = None
        self.stdin = FakeStdin(self)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.terminated = 0
        self._exited = asyncio.Event()

    def write_stdout(self, text: str) -> None:
        self.stdout.feed_data(text.encode())

    def write_stderr(self, text: str) -> None:
        self.stderr.feed_data(text.encode())

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        self.terminated += 1
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeContext:
    """Compiler context that emits passes on demand instead of running esbuild."""

    def __init__(self, target, options, cwd, esbuild_path=None, initial_errors=None, log=None):
        self.target = target
        self.options = options
        self.cwd = cwd
        self.initial_errors = list(initial_errors or [])
        self.log = log if log is not None else []
        self.listeners = []
        self.alive = False
        self.disposed = False
        self.terminated = False

    def on_pass_complete(self, listener):
        self.listeners.append(listener)

    def emit(self, errors=None):
        result = PassResult(target=self.target, errors=list(errors or []))
        for listener in self.listeners:
            listener(result)
        return result

    async def watch(self):
        self.log.append(f"watch:{self.target}")
        self.alive = True
        return self.emit(self.initial_errors)

    async def rebuild(self):
        self.log.append(f"rebuild:{self.target}")
        return self.emit(self.initial_errors)

    async def dispose(self):
        self.alive = False
        self.disposed = True

    def terminate(self):
        self.terminated = True
        self.alive = False


async def settle(rounds: int = 10) -> None:
    """Let pending reader tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_process():
    """Factory for FakeProcess instances (call inside async tests)."""
    return FakeProcess


@pytest.fixture
def context_factory():
    """Factory building FakeContext instances, recording them by target.

    Returns (factory, contexts, log); set factory.errors[target] to make the
    initial pass of that target fail.
    """
    contexts: dict[str, FakeContext] = {}
    log: list[str] = []
    errors: dict[str, list[str]] = {}

    def factory(target, options, cwd, esbuild_path=None):
        context = FakeContext(
            target, options, cwd, esbuild_path, initial_errors=errors.get(target), log=log
        )
        contexts[target] = context
        return context

    factory.errors = errors
    return factory, contexts, log


@pytest.fixture
def resource_dir(tmp_path):
    """Minimal FiveM resource layout."""
    (tmp_path / "src" / "client").mkdir(parents=True)
    (tmp_path / "src" / "server").mkdir(parents=True)
    (tmp_path / "src" / "client" / "index.ts").write_text("console.log('client');\n")
    (tmp_path / "src" / "server" / "index.ts").write_text("console.log('server');\n")
    (tmp_path / "package.json").write_text(
        '{"name": "my-resource", "version": "1.0.0", "author": "someone"}'
    )
    return tmp_path
