"""weft: streaming LLM agent runtime with providers, retries, tool validation and an agent loop."""

from .abort import AbortController, AbortSignal
from .agent import (
    Agent, AgentConfig, AgentContext, AgentLoopConfig, AgentRetryConfig, AgentRunMetrics, AgentState,
    QueueMode, RunResult, RunStopReason, agent_loop, agent_loop_continue, run_agent_loop,
)
from .errors import AgentLoopError, ErrorCode, WeftError
from .providers import (
    ApiRegistry, ReliableProvider, complete, complete_simple, get_default_registry,
    reset_api_providers, stream, stream_simple,
)
from .tools import AgentTool, AgentToolResult, define_tool, validate_tool_call
from .types import AssistantMessage, Context, Model, StreamOptions, ToolResultMessage, UserMessage

__version__ = "0.1.0"

__all__ = [
    "AbortController", "AbortSignal",
    "Agent", "AgentConfig", "AgentContext", "AgentLoopConfig", "AgentRetryConfig", "AgentRunMetrics",
    "AgentState", "QueueMode", "RunResult", "RunStopReason", "agent_loop", "agent_loop_continue",
    "run_agent_loop",
    "AgentLoopError", "ErrorCode", "WeftError",
    "ApiRegistry", "ReliableProvider", "complete", "complete_simple", "get_default_registry",
    "reset_api_providers", "stream", "stream_simple",
    "AgentTool", "AgentToolResult", "define_tool", "validate_tool_call",
    "AssistantMessage", "Context", "Model", "StreamOptions", "ToolResultMessage", "UserMessage",
]
