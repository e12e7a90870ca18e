"""Unit tests for the data model."""

import json

from weft.types import (
    AssistantMessage,
    Context,
    Cost,
    ImageContent,
    Model,
    ModelCost,
    StopReason,
    TextContent,
    ThinkingContent,
    Tool,
    ToolCall,
    ToolResultMessage,
    Usage,
    UserMessage,
    calculate_cost,
    message_adapter,
)


def _context() -> Context:
    return Context(
        system_prompt="be brief",
        messages=[
            UserMessage(content="echo hi", timestamp=1),
            AssistantMessage(
                content=[
                    ThinkingContent(thinking="use echo", thinking_signature="sig"),
                    ToolCall(id="call_1", name="echo", arguments={"text": "hi"}),
                ],
                api="scripted",
                provider="test",
                model="m",
                usage=Usage.from_counts(input=10, output=5),
                stop_reason=StopReason.TOOL_USE,
                timestamp=2,
            ),
            ToolResultMessage(
                tool_call_id="call_1",
                tool_name="echo",
                content=[TextContent(text="hi")],
                timestamp=3,
            ),
        ],
        tools=[Tool(name="echo", description="Echo", parameters={"type": "object"})],
    )


class TestMessages:
    def test_user_message_text(self):
        m = UserMessage(content=[TextContent(text="a"), ImageContent(data="AAAA", mime_type="image/png")])
        assert m.role == "user"
        assert m.text == "a"

    def test_assistant_tool_calls_view(self):
        m = _context().messages[1]
        assert [c.id for c in m.tool_calls] == ["call_1"]
        assert m.text == ""

    def test_camel_case_on_the_wire(self):
        data = json.loads(_context().messages[2].to_json())
        assert data["role"] == "toolResult"
        assert data["toolCallId"] == "call_1"
        assert data["isError"] is False

    def test_message_union_discriminates_on_role(self):
        m = message_adapter.validate_python({"role": "user", "content": "hi"})
        assert isinstance(m, UserMessage)
        m = message_adapter.validate_python(
            {"role": "assistant", "content": [{"type": "text", "text": "x"}], "stopReason": "stop"}
        )
        assert isinstance(m, AssistantMessage)
        assert m.stop_reason == StopReason.STOP


class TestContext:
    def test_snapshot_round_trip_is_stable(self):
        ctx = _context()
        raw = ctx.to_json()
        back = Context.from_json(raw)
        assert back == ctx
        assert back.to_json() == raw

    def test_round_trip_preserves_content_types(self):
        back = Context.from_json(_context().to_json())
        blocks = back.messages[1].content
        assert isinstance(blocks[0], ThinkingContent)
        assert isinstance(blocks[1], ToolCall)
        assert blocks[1].arguments == {"text": "hi"}


class TestUsage:
    def test_usage_is_additive(self):
        total = Usage.from_counts(input=1, output=2) + Usage.from_counts(input=3, output=4, cache_read=1)
        assert total.input == 4
        assert total.output == 6
        assert total.cache_read == 1
        assert total.total_tokens == 11

    def test_cost_is_additive(self):
        assert (Cost(input=1.0, total=1.0) + Cost(output=2.0, total=2.0)).total == 3.0

    def test_calculate_cost(self):
        model = Model(id="m", api="a", provider="p", cost=ModelCost(input=3.0, output=15.0))
        usage = calculate_cost(model, Usage.from_counts(input=1_000_000, output=100_000))
        assert usage.cost.input == 3.0
        assert usage.cost.output == 1.5
        assert usage.cost.total == 4.5

    def test_model_key(self):
        assert Model(id="m", api="a", provider="p").key == ("p", "m")
