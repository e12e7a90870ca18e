"""Agent loop, run events and the stateful Agent."""

from .core import Agent, AgentConfig, AgentSnapshot
from .events import (
    AgentEndEvent, AgentEvent, AgentStartEvent, MessageEndEvent, MessageStartEvent,
    MessageUpdateEvent, MetricsEvent, ModelFallbackEvent, RetryScheduledEvent, RunErrorEvent,
    StateChangeEvent, ToolExecutionEndEvent, ToolExecutionStartEvent, TurnEndEvent, TurnStartEvent,
)
from .loop import agent_loop, agent_loop_continue, run_agent_loop, validate_continuation
from .types import (
    AbortController, AbortSignal, AgentContext, AgentLoopConfig, AgentRetryConfig, AgentRunMetrics,
    AgentState, AgentTool, AgentToolResult, ChildRunKind, ParentChildRunEvent, QueueMode, RunResult,
    RunStopReason,
)

__all__ = [
    "Agent", "AgentConfig", "AgentSnapshot",
    "AgentEndEvent", "AgentEvent", "AgentStartEvent", "MessageEndEvent", "MessageStartEvent",
    "MessageUpdateEvent", "MetricsEvent", "ModelFallbackEvent", "RetryScheduledEvent", "RunErrorEvent",
    "StateChangeEvent", "ToolExecutionEndEvent", "ToolExecutionStartEvent", "TurnEndEvent", "TurnStartEvent",
    "agent_loop", "agent_loop_continue", "run_agent_loop", "validate_continuation",
    "AbortController", "AbortSignal", "AgentContext", "AgentLoopConfig", "AgentRetryConfig",
    "AgentRunMetrics", "AgentState", "AgentTool", "AgentToolResult", "ChildRunKind",
    "ParentChildRunEvent", "QueueMode", "RunResult", "RunStopReason",
]
