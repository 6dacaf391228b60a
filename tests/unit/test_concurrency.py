"""Unit tests for ragcore.utils.concurrency.throttled_gather."""

from __future__ import annotations

import asyncio

import pytest

from ragcore.utils.concurrency import throttled_gather


class TestThrottledGather:
    @pytest.mark.asyncio
    async def test_preserves_order_and_bounds_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def _work(value: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01 * (5 - value))
            in_flight -= 1
            return value * 10

        results = await throttled_gather([_work(i) for i in range(5)], limit=2)

        assert results == [0, 10, 20, 30, 40]
        assert peak == 2

    @pytest.mark.asyncio
    async def test_exceptions_are_returned_in_place(self) -> None:
        async def _ok() -> str:
            return "ok"

        async def _boom() -> str:
            raise RuntimeError("boom")

        results = await throttled_gather([_ok(), _boom(), _ok()])

        assert results[0] == "ok"
        assert isinstance(results[1], RuntimeError)
        assert results[2] == "ok"

    @pytest.mark.asyncio
    async def test_limit_below_one_still_runs(self) -> None:
        async def _one() -> int:
            return 1

        assert await throttled_gather([_one(), _one()], limit=0) == [1, 1]
