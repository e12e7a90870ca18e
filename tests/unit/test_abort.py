"""
Tests for abort signals
"""

import asyncio
import time

import pytest

from weft.abort import AbortController, sleep_or_abort


class TestAbortController:
    """Test one-way, idempotent abort."""

    @pytest.mark.asyncio
    async def test_abort_is_idempotent(self):
        controller = AbortController()
        calls = []
        controller.signal.add_listener(lambda: calls.append(1))
        controller.abort("first")
        controller.abort("second")
        assert controller.aborted
        assert controller.signal.reason == "first"
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_listener_added_after_abort_runs_immediately(self):
        controller = AbortController()
        controller.abort()
        calls = []
        controller.signal.add_listener(lambda: calls.append(1))
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_detached_listener_not_called(self):
        controller = AbortController()
        calls = []
        remove = controller.signal.add_listener(lambda: calls.append(1))
        remove()
        controller.abort()
        assert calls == []

    @pytest.mark.asyncio
    async def test_child_follows_parent(self):
        parent = AbortController()
        child = AbortController(parent=parent.signal)
        parent.abort("stop")
        assert child.aborted
        assert child.signal.reason == "stop"

    @pytest.mark.asyncio
    async def test_wait(self):
        controller = AbortController()
        asyncio.get_running_loop().call_later(0.01, controller.abort)
        await asyncio.wait_for(controller.signal.wait(), timeout=1)


class TestSleepOrAbort:
    @pytest.mark.asyncio
    async def test_full_sleep(self):
        assert await sleep_or_abort(0.01, AbortController().signal) is False
        assert await sleep_or_abort(0.01, None) is False

    @pytest.mark.asyncio
    async def test_abort_cuts_sleep_short(self):
        controller = AbortController()
        asyncio.get_running_loop().call_later(0.01, controller.abort)
        started = time.monotonic()
        assert await sleep_or_abort(5, controller.signal) is True
        assert time.monotonic() - started < 1

    @pytest.mark.asyncio
    async def test_already_aborted(self):
        controller = AbortController()
        controller.abort()
        assert await sleep_or_abort(5, controller.signal) is True
