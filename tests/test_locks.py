"""Tests for per-key asyncio locks."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.escalation import EscalationTracker
from core.config_store import EscalationConfig
from core.locks import KeyedLocks


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_serialised_in_order(self) -> None:
        locks = KeyedLocks()
        order: list[int] = []

        async def worker(i: int) -> None:
            async with locks("chat1"):
                order.append(i)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker(i) for i in range(4)))
        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self) -> None:
        locks = KeyedLocks()
        for i in range(50):
            async with locks(f"customer{i}"):
                assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_kept_while_waiters_remain(self) -> None:
        locks = KeyedLocks()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks("k"):
                await release.wait()

        first = asyncio.create_task(holder())
        second = asyncio.create_task(holder())
        await asyncio.sleep(0)
        assert len(locks) == 1
        release.set()
        await asyncio.gather(first, second)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks("k"):
                raise RuntimeError("boom")
        assert len(locks) == 0
        async with locks("k"):
            pass

    @pytest.mark.asyncio
    async def test_escalation_traffic_leaves_no_locks(self) -> None:
        tracker = EscalationTracker(EscalationConfig(max_retries_before_escalate=2))
        for i in range(20):
            await tracker.record_miss(f"c{i}")
            await tracker.clear(f"c{i}")
        assert len(tracker._locks) == 0
