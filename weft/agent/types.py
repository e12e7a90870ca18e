"""Agent loop types: state machine, configuration, metrics and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from ..abort import AbortController, AbortSignal
from ..errors import WeftError
from ..tools import AgentTool, AgentToolResult
from ..types import AssistantMessage, Context, Message, Model, StreamOptions, Usage

if TYPE_CHECKING:
    from ..events.bus import EventBus
    from ..providers.registry import ApiRegistry


class AgentState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING_FOR_TOOL = "waiting_for_tool"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (AgentState.DONE, AgentState.ABORTED, AgentState.FAILED)


class QueueMode(str, Enum):
    INTERRUPT = "interrupt"
    ENQUEUE = "enqueue"


class RunStopReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    MAX_TURNS = "max_turns"
    MAX_TOKENS = "max_tokens"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass(frozen=True)
class AgentRetryConfig:
    max_attempts: int = 3
    initial_backoff_ms: int = 200
    max_backoff_ms: int = 2000

    @property
    def max_retries(self) -> int:
        return max(0, self.max_attempts - 1)

    def delay_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt`` (1-based)."""
        exp = max(0, attempt - 1)
        return min(self.initial_backoff_ms * (2 ** exp), self.max_backoff_ms)


@dataclass
class AgentRunMetrics:
    usage: Usage = field(default_factory=Usage)
    duration_ms: int = 0
    assistant_request_count: int = 0
    assistant_request_total_ms: int = 0
    tool_execution_count: int = 0
    tool_execution_total_ms: int = 0
    retry_count: int = 0
    turn_count: int = 0

    def add_usage(self, usage: Usage) -> None:
        self.usage = self.usage + usage

    def copy(self) -> AgentRunMetrics:
        return AgentRunMetrics(**{k: getattr(self, k) for k in self.__dataclass_fields__})


@dataclass
class AgentContext:
    """Mutable working context of a run. Messages are only ever appended."""

    system_prompt: str | None = None
    messages: list[Message] = field(default_factory=list)
    tools: list[AgentTool] = field(default_factory=list)

    def snapshot(self) -> Context:
        return Context(
            system_prompt=self.system_prompt,
            messages=list(self.messages),
            tools=[t.to_llm_tool() for t in self.tools] or None,
        )

    @classmethod
    def from_snapshot(cls, context: Context, tools: list[AgentTool] | None = None) -> AgentContext:
        return cls(system_prompt=context.system_prompt, messages=list(context.messages), tools=list(tools or []))

    def copy(self) -> AgentContext:
        return AgentContext(self.system_prompt, list(self.messages), list(self.tools))


QueueSource = Callable[[], Union[list[Message], Awaitable[list[Message]]]]
MessageConverter = Callable[[list[Message]], Union[list[Message], Awaitable[list[Message]]]]


@dataclass(frozen=True)
class AgentLoopConfig:
    model: Model
    fallback_models: tuple[Model, ...] = ()
    convert_to_llm: MessageConverter | None = None
    retry: AgentRetryConfig = field(default_factory=AgentRetryConfig)
    queue_mode: QueueMode = QueueMode.INTERRUPT
    get_queued_messages: QueueSource | None = None
    max_turns: int | None = None
    max_total_tokens: int | None = None
    tool_timeout: float | None = None
    queue_poll_interval: float | None = None
    registry: ApiRegistry | None = None
    stream_options: StreamOptions | None = None
    event_sink: EventBus | None = None


@dataclass
class RunResult:
    state: AgentState
    stop_reason: RunStopReason
    messages: list[Message]
    context: Context
    metrics: AgentRunMetrics
    error: WeftError | None = None
    last_message: AssistantMessage | None = None


class ChildRunKind(str, Enum):
    START = "child_run_start"
    END = "child_run_end"
    ERROR = "child_run_error"


@dataclass
class ParentChildRunEvent:
    """Lifecycle of a child run, reported by a coordinating dispatcher."""

    kind: ChildRunKind
    parent_session_id: str
    child_session_file: str
    task_id: str
    subagent: str
    duration_ms: int | None = None
    summary: str | None = None
    error: str | None = None

    @property
    def type(self) -> str:
        return ChildRunKind(self.kind).value

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "parentSessionId": self.parent_session_id,
            "childSessionFile": self.child_session_file,
            "taskId": self.task_id,
            "subagent": self.subagent,
        }
        for key, value in (("durationMs", self.duration_ms), ("summary", self.summary), ("error", self.error)):
            if value is not None:
                data[key] = value
        return data


__all__ = [
    "AbortController", "AbortSignal", "AgentContext", "AgentLoopConfig", "AgentRetryConfig",
    "AgentRunMetrics", "AgentState", "AgentTool", "AgentToolResult", "ChildRunKind",
    "MessageConverter", "ParentChildRunEvent", "QueueMode", "QueueSource", "RunResult",
    "RunStopReason",
]
