"""Core type definitions, re-exported from sub-modules."""

from .llm import (
    Cost, DoneReason, ErrorReason, Model, ModelCost, SimpleStreamOptions, StopReason,
    StreamOptions, ThinkingLevel, Usage, WireModel, calculate_cost,
)
from .messages import (
    AssistantContentBlock, AssistantMessage, Context, ImageContent, Message, TextContent,
    ThinkingContent, Tool, ToolCall, ToolResultMessage, UserContentBlock, UserMessage,
    message_adapter, now_ms, user_message,
)
from .events import (
    AssistantMessageEvent, DoneEvent, ErrorEvent, StartEvent, TextDeltaEvent, TextEndEvent,
    TextStartEvent, ThinkingDeltaEvent, ThinkingEndEvent, ThinkingStartEvent,
    ToolCallDeltaEvent, ToolCallEndEvent, ToolCallStartEvent, UsageEvent,
    event_message, is_terminal,
)

__all__ = [
    "Cost", "DoneReason", "ErrorReason", "Model", "ModelCost", "SimpleStreamOptions", "StopReason",
    "StreamOptions", "ThinkingLevel", "Usage", "WireModel", "calculate_cost",
    "AssistantContentBlock", "AssistantMessage", "Context", "ImageContent", "Message", "TextContent",
    "ThinkingContent", "Tool", "ToolCall", "ToolResultMessage", "UserContentBlock", "UserMessage",
    "message_adapter", "now_ms", "user_message",
    "AssistantMessageEvent", "DoneEvent", "ErrorEvent", "StartEvent", "TextDeltaEvent", "TextEndEvent",
    "TextStartEvent", "ThinkingDeltaEvent", "ThinkingEndEvent", "ThinkingStartEvent",
    "ToolCallDeltaEvent", "ToolCallEndEvent", "ToolCallStartEvent", "UsageEvent",
    "event_message", "is_terminal",
]
