"""Tests for capability probes."""

from __future__ import annotations

import pytest

from sandbox_bridge.core.probes import FrameProbe, WorkerProbe, find_qualifying

from conftest import FakeContext, FakeTarget


class TestProbeExpressions:
    def test_worker_probe(self):
        probe = WorkerProbe("figma")
        assert probe.channel == "worker"
        assert probe.probe_expression() == 'typeof figma !== "undefined"'

    def test_frame_probe(self):
        probe = FrameProbe("executeCode")
        assert probe.channel == "ui"
        assert probe.probe_expression() == 'typeof window.executeCode === "function"'

    def test_candidates_come_from_target(self):
        worker = FakeContext(kind="worker")
        ui = FakeContext(kind="frame", url="https://www.figma.com/plugin-ui")
        target = FakeTarget(workers=[worker], frames=[ui])
        assert WorkerProbe("figma").candidates(target) == [worker]
        assert FrameProbe("executeCode").candidates(target) == [target.main, ui]


class TestFindQualifying:
    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        a = FakeContext(has_capability=False)
        b = FakeContext(has_capability=True)
        c = FakeContext(has_capability=True)
        found = await find_qualifying(WorkerProbe("figma"), [a, b, c])
        assert found is b
        assert c.evaluated == []

    @pytest.mark.asyncio
    async def test_skips_detached_and_failing(self):
        detached = FakeContext(detached=True)
        failing = FakeContext(has_capability=RuntimeError("Execution context was destroyed"))
        good = FakeContext()
        found = await find_qualifying(WorkerProbe("figma"), [detached, failing, good])
        assert found is good
        assert detached.evaluated == []

    @pytest.mark.asyncio
    async def test_none_when_no_candidate_qualifies(self):
        found = await find_qualifying(FrameProbe("executeCode"), [FakeContext(has_capability=False)])
        assert found is None

    @pytest.mark.asyncio
    async def test_truthy_non_bool_does_not_qualify(self):
        found = await find_qualifying(WorkerProbe("figma"), [FakeContext(has_capability="yes")])
        assert found is None

    @pytest.mark.asyncio
    async def test_diagnostics_reported(self):
        events = []
        failing = FakeContext(has_capability=RuntimeError("boom"))
        good = FakeContext(url="blob:good")
        await find_qualifying(
            WorkerProbe("figma"), [failing, good],
            on_diagnostic=lambda event, details: events.append((event, details)),
        )
        names = [e for e, _ in events]
        assert names == ["contexts_found", "probe_failed", "context_matched"]
        assert events[0][1]["count"] == 2
        assert events[2][1]["url"] == "blob:good"

    @pytest.mark.asyncio
    async def test_broken_diagnostic_hook_is_ignored(self):
        def hook(event, details):
            raise ValueError("hook broke")

        good = FakeContext()
        assert await find_qualifying(WorkerProbe("figma"), [good], on_diagnostic=hook) is good
