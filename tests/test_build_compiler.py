"""Tests for the esbuild incremental context."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeProcess, settle
from fxbuild.build.compiler import EsbuildContext
from fxbuild.build.options import CompileOptions
from fxbuild.build.state import CompileError
from fxbuild.utils.streams import STREAM_LIMIT


def make_options():
    return CompileOptions(
        entry_path="src/client/index.ts",
        output_path="dist/client.js",
        format="iife",
        platform="browser",
        runtime_targets=("es2023",),
    )


def make_context(tmp_path):
    return EsbuildContext("client", make_options(), str(tmp_path), esbuild_path="esbuild")


class TestEsbuildContextWatch:
    """Tests for watch mode."""

    @pytest.mark.asyncio
    async def test_watch_resolves_after_initial_pass(self, tmp_path):
        """Test watch() returns the initial pass result."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)
        results = []
        context.on_pass_complete(results.append)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as mock_exec:
            result = await context.watch()

        assert result.success is True
        assert result.first_build is True
        assert results == [result]
        assert context.alive is True
        args = mock_exec.call_args.args
        assert args[0] == "esbuild"
        assert "--watch" in args
        await context.dispose()

    @pytest.mark.asyncio
    async def test_rebuild_passes_are_reported(self, tmp_path):
        """Test every later pass reaches the listeners."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)
        results = []
        context.on_pass_complete(results.append)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()

        process.write_stderr('[watch] build started (change: "src/client/index.ts")\n')
        process.write_stderr("[watch] build finished\n")
        await settle()

        assert len(results) == 2
        assert results[1].first_build is False
        assert context.pass_count == 2
        await context.dispose()

    @pytest.mark.asyncio
    async def test_errors_collected_per_pass(self, tmp_path):
        """Test errors are attached to the pass they belong to."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)
        results = []
        context.on_pass_complete(results.append)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()

        process.write_stderr("[watch] build started (change: \"a.ts\")\n")
        process.write_stderr('✘ [ERROR] Could not resolve "nope"\n')
        process.write_stderr("[watch] build finished\n")
        process.write_stderr("[watch] build started (change: \"a.ts\")\n")
        process.write_stderr("[watch] build finished\n")
        await settle()

        assert results[1].errors == ['Could not resolve "nope"']
        assert results[2].errors == []
        await context.dispose()

    @pytest.mark.asyncio
    async def test_initial_listener_failure_propagates(self, tmp_path):
        """Test a failing hook on the initial pass fails watch()."""
        process = FakeProcess()
        process.write_stderr("✘ [ERROR] boom\n")
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)

        def hook(result):
            raise CompileError("Client built with errors!", target="client", errors=result.errors)

        context.on_pass_complete(hook)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(CompileError) as exc_info:
                await context.watch()

        assert exc_info.value.errors == ["boom"]
        await context.dispose()

    @pytest.mark.asyncio
    async def test_later_listener_failure_is_logged(self, tmp_path, caplog):
        """Test hook failures after startup are logged and watching continues."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)
        calls = []

        def hook(result):
            calls.append(result)
            if result.errors:
                raise CompileError("Client rebuilt with errors!", target="client")

        context.on_pass_complete(hook)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()

        process.write_stderr("✘ [ERROR] broken\n[watch] build finished\n")
        process.write_stderr("[watch] build finished\n")
        await settle()

        assert len(calls) == 3
        assert "Client rebuilt with errors!" in caplog.text
        assert context.alive is True
        await context.dispose()

    @pytest.mark.asyncio
    async def test_exit_before_initial_pass(self, tmp_path):
        """Test esbuild dying early reports a failed pass."""
        process = FakeProcess()
        context = make_context(tmp_path)
        results = []
        context.on_pass_complete(results.append)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            process.exit(1)
            result = await context.watch()

        assert result.errors == ["esbuild exited with code 1"]

    @pytest.mark.asyncio
    async def test_oversized_line_before_initial_pass(self, tmp_path):
        """Test a huge stderr line does not stall the initial pass."""
        process = FakeProcess()
        process.write_stderr("w" * 100_000 + "\n")
        process.write_stderr("[watch] build finished, watching for changes...\n")
        context = make_context(tmp_path)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as mock_exec:
            result = await asyncio.wait_for(context.watch(), timeout=1.0)

        assert result.success is True
        assert mock_exec.call_args.kwargs["limit"] == STREAM_LIMIT
        await context.dispose()

    @pytest.mark.asyncio
    async def test_watch_twice_raises(self, tmp_path):
        """Test a context can only watch once."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished\n")
        context = make_context(tmp_path)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()
            with pytest.raises(RuntimeError):
                await context.watch()
        await context.dispose()

    @pytest.mark.asyncio
    async def test_dispose_closes_stdin(self, tmp_path):
        """Test dispose ends esbuild by closing its stdin."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished\n")
        context = make_context(tmp_path)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()
        await context.dispose()

        assert process.stdin.closed is True
        assert context.alive is False
        assert process.terminated == 0

    @pytest.mark.asyncio
    async def test_terminate(self, tmp_path):
        """Test terminate signals a running process."""
        process = FakeProcess()
        process.write_stderr("[watch] build finished\n")
        context = make_context(tmp_path)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            await context.watch()
        context.terminate()
        context.terminate()  # already dead, no-op

        assert process.terminated == 1
        await context.dispose()


class TestEsbuildContextRebuild:
    """Tests for one-shot builds."""

    def _process(self, returncode, stderr=b""):
        process = AsyncMock()
        process.returncode = returncode
        process.communicate = AsyncMock(return_value=(b"", stderr))
        return process

    @pytest.mark.asyncio
    async def test_successful_build(self, tmp_path):
        """Test a clean build."""
        context = make_context(tmp_path)
        listener = MagicMock()
        context.on_pass_complete(listener)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(0))) as mock_exec:
            result = await context.rebuild()

        assert result.success is True
        listener.assert_called_once_with(result)
        assert "--watch" not in mock_exec.call_args.args

    @pytest.mark.asyncio
    async def test_errors_parsed_from_stderr(self, tmp_path):
        """Test error lines become the pass errors."""
        context = make_context(tmp_path)
        stderr = '✘ [ERROR] Could not resolve "x"\n\n1 error\n'.encode()

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(1, stderr))):
            result = await context.rebuild()

        assert result.errors == ['Could not resolve "x"']

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_errors(self, tmp_path):
        """Test a crash without diagnostics still fails the pass."""
        context = make_context(tmp_path)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(3))):
            result = await context.rebuild()

        assert result.errors == ["esbuild exited with code 3"]

    @pytest.mark.asyncio
    async def test_listener_failure_raises(self, tmp_path):
        """Test hook exceptions propagate from rebuild()."""
        context = make_context(tmp_path)
        context.on_pass_complete(MagicMock(side_effect=CompileError("bad", target="client")))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(0))):
            with pytest.raises(CompileError):
                await context.rebuild()

    @pytest.mark.asyncio
    async def test_resolves_esbuild_when_not_given(self, tmp_path):
        """Test esbuild is looked up when no path is configured."""
        context = EsbuildContext("client", make_options(), str(tmp_path))

        with patch("fxbuild.build.compiler.resolve_tool", return_value="/opt/esbuild") as mock_resolve:
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(0))) as mock_exec:
                await context.rebuild()

        mock_resolve.assert_called_once()
        assert mock_exec.call_args.args[0] == "/opt/esbuild"
