"""Tests for cancellation tokens."""

import asyncio

import pytest

from netsmart.cancellation import CancellationToken, run_cancellable, sleep_cancellable
from netsmart.errors import CallCancelledError


class TestCancellationToken:
    def test_initial_state(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert token.reason is None
        token.raise_if_cancelled()

    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled is True
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(CallCancelledError, match="stop"):
            token.raise_if_cancelled()


class TestSleepCancellable:
    @pytest.mark.asyncio
    async def test_sleeps_without_token(self):
        await sleep_cancellable(0)

    @pytest.mark.asyncio
    async def test_completes_when_not_cancelled(self):
        await sleep_cancellable(0.01, CancellationToken())

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CallCancelledError):
            await sleep_cancellable(10, token)

    @pytest.mark.asyncio
    async def test_cancel_wakes_sleeper(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel, "woken")
        with pytest.raises(CallCancelledError, match="woken"):
            await asyncio.wait_for(sleep_cancellable(60, token), timeout=2)


class TestRunCancellable:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await run_cancellable(work(), CancellationToken()) == 42

    @pytest.mark.asyncio
    async def test_propagates_error(self):
        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await run_cancellable(work(), CancellationToken())

    @pytest.mark.asyncio
    async def test_cancel_aborts_work(self):
        token = CancellationToken()
        finished = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(60)
            finally:
                finished.set()

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(CallCancelledError):
            await asyncio.wait_for(run_cancellable(work(), token), timeout=2)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_precancelled_never_starts(self):
        token = CancellationToken()
        token.cancel()
        started = False

        async def work():
            nonlocal started
            started = True

        with pytest.raises(CallCancelledError):
            await run_cancellable(work(), token)
        assert started is False
