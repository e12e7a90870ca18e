"""
Tests for the scripted provider and the shared message builder
"""

import pytest

from weft.errors import ErrorCode, WeftError
from weft.providers import AssistantMessageBuilder, ScriptedProvider, text_reply, tool_call_reply
from weft.types import (
    AssistantMessage,
    Context,
    DoneReason,
    Model,
    ModelCost,
    StopReason,
    ThinkingContent,
    TextContent,
    Usage,
    user_message,
)


def _context() -> Context:
    return Context(messages=[user_message("hi")])


class TestScriptedProvider:
    """Test scripted replays through the event protocol."""

    @pytest.mark.asyncio
    async def test_text_reply_events(self, model):
        provider = ScriptedProvider([text_reply("hello", usage={"input": 3, "output": 2})])
        events = [e async for e in provider.stream(model, _context())]

        assert [e.type for e in events] == ["start", "text_start", "text_delta", "usage", "text_end", "done"]
        final = events[-1].message
        assert final.text == "hello"
        assert final.usage.total_tokens == 5
        assert final.provider == "test"
        assert final.model == "test-model"

    @pytest.mark.asyncio
    async def test_tool_call_reply(self, model):
        provider = ScriptedProvider([tool_call_reply(("c1", "echo", {"text": "hi"}), text="calling")])
        result = await provider.stream(model, _context()).result()

        assert result.stop_reason == StopReason.TOOL_USE
        assert result.text == "calling"
        assert result.tool_calls[0].arguments == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_callable_items_see_the_context(self, model):
        provider = ScriptedProvider([lambda ctx: text_reply(f"got {len(ctx.messages)}")])
        result = await provider.stream(model, _context()).result()
        assert result.text == "got 1"

    @pytest.mark.asyncio
    async def test_exhausted_script_is_a_protocol_error(self, model):
        result = await ScriptedProvider().stream(model, _context()).result()
        assert result.stop_reason == StopReason.ERROR
        assert WeftError.from_json(result.error_message).code == ErrorCode.PROVIDER_PROTOCOL

    @pytest.mark.asyncio
    async def test_records_calls(self, model):
        provider = ScriptedProvider([text_reply("a")])
        context = _context()
        await provider.stream(model, context).result()
        assert provider.calls[0][1] is context
        assert provider.remaining == 0


class TestAssistantMessageBuilder:
    """Test accumulation and block bookkeeping."""

    def test_switching_kinds_closes_previous_block(self, model):
        builder = AssistantMessageBuilder(model, model.api)
        types = [e.type for e in builder.thinking("hmm", signature="sig")]
        types += [e.type for e in builder.text("answer")]
        assert types == ["thinking_start", "thinking_delta", "thinking_end", "text_start", "text_delta"]
        snap = builder.snapshot()
        assert snap.content == [
            ThinkingContent(thinking="hmm", thinking_signature="sig"),
            TextContent(text="answer"),
        ]

    def test_stop_with_tool_calls_becomes_tool_use(self, model):
        builder = AssistantMessageBuilder(model, model.api)
        builder.tool_call_start(0, "c1", "echo")
        builder.tool_call_delta(0, '{"text": ')
        builder.tool_call_delta(0, '"hi"}')
        events = builder.finish(DoneReason.STOP)
        assert events[0].type == "toolcall_end"
        assert events[0].tool_call.arguments == {"text": "hi"}
        assert events[-1].reason == DoneReason.TOOL_USE
        assert events[-1].message.stop_reason == StopReason.TOOL_USE

    def test_partial_json_arguments(self, model):
        builder = AssistantMessageBuilder(model, model.api)
        builder.tool_call_start(0, "c1", "echo")
        builder.tool_call_delta(0, '{"text": "h')
        assert builder.snapshot().tool_calls[0].arguments == {}

    def test_malformed_arguments_kept_raw_on_close(self, model):
        builder = AssistantMessageBuilder(model, model.api)
        builder.tool_call_start(0, "c1", "echo")
        builder.tool_call_delta(0, '{"text": "h')
        events = builder.finish(DoneReason.TOOL_USE)
        assert events[0].tool_call.arguments == '{"text": "h'
        assert events[-1].message.tool_calls[0].arguments == '{"text": "h'

    def test_missing_and_repeated_ids_are_replaced(self, model):
        builder = AssistantMessageBuilder(model, model.api)
        builder.tool_call_start(0, "", "echo")
        builder.tool_call_start(1, "dup", "echo")
        builder.tool_call_start(2, "dup", "echo")
        message = builder.finish(DoneReason.TOOL_USE)[-1].message
        ids = [tc.id for tc in message.tool_calls]
        assert ids[1] == "dup"
        assert all(ids)
        assert len(set(ids)) == 3

    def test_usage_is_priced(self):
        priced = Model(id="m", api="a", provider="p", cost=ModelCost(input=2.0))
        builder = AssistantMessageBuilder(priced, priced.api)
        event = builder.set_usage(Usage.from_counts(input=500_000))
        assert event.usage.cost.total == 1.0

    def test_aborted(self, model):
        event = AssistantMessageBuilder(model, model.api).aborted()
        assert event.error.stop_reason == StopReason.ABORTED
        assert event.error.error_message == "Request was aborted"
        assert isinstance(event.error, AssistantMessage)
