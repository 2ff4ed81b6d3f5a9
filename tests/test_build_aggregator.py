"""Tests for the completion aggregator."""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from conftest import settle
from fxbuild.build.aggregator import CompletionAggregator


def recording_action(calls, label, fail=False):
    async def action():
        calls.append(label)
        if fail:
            raise RuntimeError(f"{label} exploded")

    return action


class TestCompletionAggregator:
    """Tests for pass settlement."""

    def test_requires_targets(self):
        """Test an empty target set is rejected."""
        with pytest.raises(ValueError):
            CompletionAggregator([])

    @pytest.mark.asyncio
    async def test_settles_after_all_targets(self):
        """Test downstream runs only once every target reported."""
        calls = []
        aggregator = CompletionAggregator(
            ["server", "client"], manifest_action=recording_action(calls, "manifest")
        )

        assert aggregator.report("server") is False
        await settle()
        assert calls == []
        assert aggregator.pending == frozenset({"client"})

        assert aggregator.report("client") is True
        await settle()
        assert calls == ["manifest"]
        assert aggregator.pass_index == 1
        assert aggregator.reported == frozenset()

    @pytest.mark.asyncio
    async def test_duplicate_report_does_not_settle(self):
        """Test the same target twice is still one report."""
        calls = []
        aggregator = CompletionAggregator(
            ["server", "client"], manifest_action=recording_action(calls, "manifest")
        )

        aggregator.report("client")
        aggregator.report("client")
        await settle()

        assert calls == []
        assert aggregator.pass_index == 0

    @pytest.mark.asyncio
    async def test_one_trigger_per_pass(self):
        """Test repeated passes trigger downstream once each."""
        calls = []
        aggregator = CompletionAggregator(
            ["server", "client"], manifest_action=recording_action(calls, "manifest")
        )

        for _ in range(3):
            aggregator.report("server")
            aggregator.report("client")
        await settle()

        assert calls == ["manifest", "manifest", "manifest"]
        assert aggregator.pass_index == 3

    def test_unknown_target(self):
        """Test reports from unconfigured targets are rejected."""
        aggregator = CompletionAggregator(["client"])
        with pytest.raises(ValueError, match="shared"):
            aggregator.report("shared")

    @pytest.mark.asyncio
    async def test_development_order(self, caplog):
        """Test manifest starts before the watching status and types are skipped."""
        calls = []
        aggregator = CompletionAggregator(
            ["client"],
            manifest_action=recording_action(calls, "manifest"),
            types_action=recording_action(calls, "types"),
        )

        with caplog.at_level(logging.INFO):
            aggregator.report("client")
        await settle()

        assert calls == ["manifest"]
        assert "Watching for file changes..." in caplog.text

    @pytest.mark.asyncio
    async def test_production_runs_types(self, caplog):
        """Test production runs manifest then types and no watching status."""
        calls = []
        aggregator = CompletionAggregator(
            ["server", "client"],
            production=True,
            manifest_action=recording_action(calls, "manifest"),
            types_action=recording_action(calls, "types"),
        )

        with caplog.at_level(logging.INFO):
            aggregator.report("server")
            aggregator.report("client")
        await aggregator.drain()

        assert calls == ["manifest", "types"]
        assert "Watching for file changes..." not in caplog.text
        assert aggregator.running_actions == 0

    @pytest.mark.asyncio
    async def test_failed_action_is_logged(self, caplog):
        """Test a failing manifest does not stop the types step."""
        calls = []
        aggregator = CompletionAggregator(
            ["client"],
            production=True,
            manifest_action=recording_action(calls, "manifest", fail=True),
            types_action=recording_action(calls, "types"),
        )

        aggregator.report("client")
        await aggregator.drain()

        assert calls == ["manifest", "types"]
        assert "Manifest generation failed: manifest exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_settled_listeners(self):
        """Test listeners receive the pass index, and failures are contained."""
        aggregator = CompletionAggregator(["client"])
        broken = MagicMock(side_effect=RuntimeError("nope"))
        listener = MagicMock()
        aggregator.on_settled(broken)
        aggregator.on_settled(listener)

        aggregator.report("client")
        aggregator.report("client")

        assert [c.args for c in listener.call_args_list] == [(1,), (2,)]

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test running actions can be cancelled."""
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(60)

        aggregator = CompletionAggregator(["client"], manifest_action=slow)
        aggregator.report("client")
        await started.wait()

        aggregator.cancel()
        await settle()

        assert aggregator.running_actions == 0
