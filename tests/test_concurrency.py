"""Tests for turn serialization."""

import asyncio

import pytest

from ideaforge.concurrency import TurnGate


class TestTurnGate:
    """Tests for TurnGate."""

    def test_default_limit_is_one(self):
        assert TurnGate().limit == 1

    @pytest.mark.asyncio
    async def test_turns_run_in_arrival_order(self):
        gate = TurnGate()
        events = []

        async def turn(name):
            async with gate.acquire():
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"), turn("c"))
        assert events == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]

    @pytest.mark.asyncio
    async def test_busy_and_waiting(self):
        gate = TurnGate()
        release = asyncio.Event()

        async def holder():
            async with gate.acquire():
                await release.wait()

        first = asyncio.create_task(holder())
        await asyncio.sleep(0)
        second = asyncio.create_task(holder())
        await asyncio.sleep(0)

        assert gate.busy
        assert gate.waiting == 1

        release.set()
        await asyncio.gather(first, second)
        assert not gate.busy
        assert gate.waiting == 0

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work():
            return 42

        assert await TurnGate().run(work()) == 42
