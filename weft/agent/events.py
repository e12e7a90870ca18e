"""Agent run events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from ..types import (
    AssistantMessage,
    AssistantMessageEvent,
    Message,
    TextDeltaEvent,
    ThinkingDeltaEvent,
    ToolResultMessage,
)
from .types import AgentRunMetrics, AgentState, RunResult


@dataclass
class AgentStartEvent:
    type: str = "agent_start"


@dataclass
class AgentEndEvent:
    result: RunResult
    type: str = "agent_end"


@dataclass
class TurnStartEvent:
    turn: int
    type: str = "turn_start"


@dataclass
class TurnEndEvent:
    turn: int
    message: AssistantMessage | None = None
    tool_results: list[ToolResultMessage] = field(default_factory=list)
    type: str = "turn_end"


@dataclass
class MessageStartEvent:
    message: Message
    type: str = "message_start"


@dataclass
class MessageUpdateEvent:
    message: AssistantMessage
    assistant_message_event: AssistantMessageEvent
    type: str = "message_update"

    @property
    def delta(self) -> str:
        ev = self.assistant_message_event
        if isinstance(ev, (TextDeltaEvent, ThinkingDeltaEvent)):
            return ev.delta
        return ""


@dataclass
class MessageEndEvent:
    message: Message
    discarded: bool = False  # partial reply dropped by an interrupt
    type: str = "message_end"


@dataclass
class ToolExecutionStartEvent:
    tool_call_id: str
    tool_name: str
    args: Any = None
    type: str = "tool_execution_start"


@dataclass
class ToolExecutionEndEvent:
    tool_call_id: str
    tool_name: str
    result: ToolResultMessage
    is_error: bool = False
    duration_ms: int = 0
    type: str = "tool_execution_end"


@dataclass
class RetryScheduledEvent:
    attempt: int
    max_attempts: int
    delay_ms: int
    error: dict[str, Any]
    model: str = ""
    type: str = "retry_scheduled"


@dataclass
class ModelFallbackEvent:
    from_model: str
    to_model: str
    error: dict[str, Any]
    type: str = "model_fallback"


@dataclass
class StateChangeEvent:
    previous: AgentState
    current: AgentState
    type: str = "state_change"


@dataclass
class MetricsEvent:
    metrics: AgentRunMetrics
    type: str = "metrics"


@dataclass
class RunErrorEvent:
    error: dict[str, Any]
    type: str = "run_error"


AgentEvent = Union[
    AgentStartEvent,
    AgentEndEvent,
    TurnStartEvent,
    TurnEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    MessageEndEvent,
    ToolExecutionStartEvent,
    ToolExecutionEndEvent,
    RetryScheduledEvent,
    ModelFallbackEvent,
    StateChangeEvent,
    MetricsEvent,
    RunErrorEvent,
]
