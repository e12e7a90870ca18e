"""
Tests for EventBus
"""

from unittest.mock import AsyncMock

import pytest

from weft.agent import ChildRunKind, ParentChildRunEvent, ToolExecutionStartEvent, TurnStartEvent
from weft.events import EventBus


class TestEventBus:
    """Test subscription, patterns and propagation."""

    @pytest.mark.asyncio
    async def test_typed_handler(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.type)

        bus.on("turn_start", handler)
        await bus.emit(TurnStartEvent(turn=1))
        await bus.emit(ToolExecutionStartEvent(tool_call_id="c", tool_name="t", args={}))
        assert seen == ["turn_start"]

    @pytest.mark.asyncio
    async def test_pattern_handler(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.type)

        bus.on("tool_*", handler)
        await bus.emit(TurnStartEvent(turn=1))
        await bus.emit(ToolExecutionStartEvent(tool_call_id="c", tool_name="t", args={}))
        assert seen == ["tool_execution_start"]

    @pytest.mark.asyncio
    async def test_handler_errors_are_isolated(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def handler(event):
            seen.append(event.type)

        bus.on("turn_start", broken)
        bus.on_all(handler)
        await bus.emit(TurnStartEvent(turn=1))
        assert seen == ["turn_start"]

    @pytest.mark.asyncio
    async def test_off(self):
        bus = EventBus()
        handler = AsyncMock()

        bus.on("turn_start", handler)
        bus.on_all(handler)
        bus.off("turn_start", handler)
        await bus.emit(TurnStartEvent(turn=1))
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_child_propagates_to_parent(self):
        parent = EventBus(node_id="root")
        child = parent.create_child("worker")
        seen = []

        async def handler(event):
            seen.append(event.type)

        parent.on_all(handler)
        await child.emit(TurnStartEvent(turn=1))
        assert seen == ["turn_start"]

    @pytest.mark.asyncio
    async def test_forward_child_run(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.to_dict())

        bus.on("child_run_end", handler)
        await bus.forward_child_run(ParentChildRunEvent(
            kind=ChildRunKind.END,
            parent_session_id="p1",
            child_session_file="sessions/c1.jsonl",
            task_id="t1",
            subagent="researcher",
            duration_ms=12,
            summary="found it",
        ))
        assert seen == [{
            "type": "child_run_end",
            "parentSessionId": "p1",
            "childSessionFile": "sessions/c1.jsonl",
            "taskId": "t1",
            "subagent": "researcher",
            "durationMs": 12,
            "summary": "found it",
        }]
