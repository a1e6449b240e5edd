"""Tests for single-flight coordination."""

import asyncio

import pytest

from qbo_auth.primitives.singleflight import SingleFlight


class TestSingleFlight:
    async def test_concurrent_callers_share_one_run(self):
        # Arrange
        flight: SingleFlight[str] = SingleFlight("test")
        release = asyncio.Event()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            await release.wait()
            return "done"

        # Act
        first = asyncio.create_task(flight.run(operation))
        second = asyncio.create_task(flight.run(operation))
        await asyncio.sleep(0)
        assert flight.in_flight
        release.set()
        results = await asyncio.gather(first, second)

        # Assert
        assert results == ["done", "done"]
        assert calls == 1
        assert not flight.in_flight

    async def test_failure_is_shared_and_slot_released(self):
        # Arrange
        flight: SingleFlight[str] = SingleFlight("test")

        async def operation():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        # Act
        results = await asyncio.gather(
            flight.run(operation), flight.run(operation), return_exceptions=True
        )

        # Assert
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not flight.in_flight

    async def test_runs_again_after_completion(self):
        # Arrange
        flight: SingleFlight[int] = SingleFlight("test")
        counter = iter(range(10))

        async def operation():
            return next(counter)

        # Act & Assert
        assert await flight.run(operation) == 0
        assert await flight.run(operation) == 1

    async def test_cancelled_waiter_does_not_cancel_operation(self):
        # Arrange
        flight: SingleFlight[str] = SingleFlight("test")
        release = asyncio.Event()

        async def operation():
            await release.wait()
            return "done"

        first = asyncio.create_task(flight.run(operation))
        second = asyncio.create_task(flight.run(operation))
        await asyncio.sleep(0)

        # Act
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        release.set()

        # Assert
        assert await second == "done"
