"""Tool declaration and define_tool helper."""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel

from ..types import ImageContent, TextContent, Tool
from .schema import DictSchema, PydanticSchema, as_schema
from .validation import ToolValidator, validate_tool_arguments, validate_tool_call

if TYPE_CHECKING:
    from ..abort import AbortSignal


@dataclass
class AgentToolResult:
    content: list[TextContent | ImageContent] = field(default_factory=list)
    details: Any = None

    @classmethod
    def text(cls, text: str, details: Any = None) -> AgentToolResult:
        return cls(content=[TextContent(text=text)], details=details)


ToolExecute = Callable[[str, Any, "AbortSignal | None"], Awaitable[Any]]


@dataclass
class AgentTool:
    """A tool the model may call. ``execute`` raises to report failure."""

    name: str
    description: str
    parameters: dict[str, Any]
    execute: ToolExecute
    label: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            self.label = self.name

    def to_llm_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, parameters=self.parameters)

    async def run(self, tool_call_id: str, args: Any, signal: AbortSignal | None = None) -> AgentToolResult:
        result = self.execute(tool_call_id, args, signal)
        if inspect.isawaitable(result):
            result = await result
        return to_tool_result(result)


def to_tool_result(value: Any) -> AgentToolResult:
    if isinstance(value, AgentToolResult):
        return value
    if isinstance(value, str):
        return AgentToolResult.text(value)
    if isinstance(value, BaseModel):
        return AgentToolResult.text(value.model_dump_json(), details=value.model_dump(mode="json"))
    return AgentToolResult.text(json.dumps(value, default=str), details=value)


def define_tool(
    name: str,
    description: str,
    parameters: type[BaseModel] | dict[str, Any] | PydanticSchema | DictSchema,
    execute: Callable[..., Any],
    label: str | None = None,
) -> AgentTool:
    """Declare a tool; pydantic parameters are parsed into the model before ``execute``."""
    schema = as_schema(parameters)

    async def run(tool_call_id: str, args: Any, signal: AbortSignal | None) -> Any:
        parsed = schema.parse(args)
        result = execute(tool_call_id, parsed, signal)
        if inspect.isawaitable(result):
            result = await result
        return result

    return AgentTool(
        name=name,
        description=description,
        parameters=schema.to_json_schema(),
        execute=run,
        label=label or name,
    )


__all__ = [
    "AgentTool", "AgentToolResult", "DictSchema", "PydanticSchema", "ToolValidator",
    "define_tool", "to_tool_result", "validate_tool_arguments", "validate_tool_call",
]
