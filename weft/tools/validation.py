"""Tool-call validation against declared JSON schemas (jsonschema)."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from jsonschema import exceptions as schema_exceptions
from jsonschema import validators

from ..errors import SchemaInvalidError, ToolArgumentsInvalidError, ToolNotFoundError
from ..types import ToolCall


class ToolSpec(Protocol):
    name: str
    parameters: dict[str, Any]


def json_pointer(path: Iterable[Any]) -> str:
    parts = [str(p).replace("~", "~0").replace("/", "~1") for p in path]
    return "".join(f"/{p}" for p in parts)


def compile_schema(tool: ToolSpec):
    """Build a validator for ``tool.parameters``; a broken schema raises SchemaInvalidError."""
    schema = tool.parameters
    try:
        cls = validators.validator_for(schema)
        cls.check_schema(schema)
    except (schema_exceptions.SchemaError, TypeError, AttributeError) as e:
        message = getattr(e, "message", None) or str(e)
        raise SchemaInvalidError(
            f"Invalid JSON schema for tool '{tool.name}': {message}",
            details={"toolName": tool.name},
            cause=e,
        ) from e
    return cls(schema)


def _check(tool: ToolSpec, validator, call: ToolCall) -> Any:
    if isinstance(call.arguments, str):
        raise ToolArgumentsInvalidError(
            f"Arguments for tool '{tool.name}' are not valid JSON",
            details={
                "toolName": tool.name,
                "toolCallId": call.id,
                "arguments": call.arguments,
                "validationErrors": [{"path": "", "message": "arguments are not valid JSON"}],
            },
        )
    errors = sorted(validator.iter_errors(call.arguments), key=lambda e: list(e.absolute_path))
    if not errors:
        return call.arguments
    raise ToolArgumentsInvalidError(
        f"Validation failed for tool '{tool.name}'",
        details={
            "toolName": tool.name,
            "toolCallId": call.id,
            "arguments": call.arguments,
            "validationErrors": [
                {"path": json_pointer(e.absolute_path), "message": e.message} for e in errors
            ],
        },
    )


def _find(tools: Iterable[ToolSpec], call: ToolCall) -> ToolSpec:
    tools = list(tools)
    for tool in tools:
        if tool.name == call.name:
            return tool
    raise ToolNotFoundError(
        f"Tool '{call.name}' not found",
        details={"toolName": call.name, "availableTools": [t.name for t in tools]},
    )


def validate_tool_arguments(tool: ToolSpec, call: ToolCall) -> Any:
    return _check(tool, compile_schema(tool), call)


def validate_tool_call(tools: Iterable[ToolSpec], call: ToolCall) -> Any:
    """Return the call's arguments unchanged when they satisfy the named tool's schema."""
    return validate_tool_arguments(_find(tools, call), call)


class ToolValidator:
    """Validator for one tool set; compiled schemas are cached for its lifetime."""

    def __init__(self, tools: Iterable[ToolSpec]) -> None:
        self._tools = list(tools)
        self._compiled: dict[str, Any] = {}

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self._tools]

    def find(self, call: ToolCall) -> ToolSpec:
        return _find(self._tools, call)

    def validate(self, call: ToolCall) -> Any:
        tool = self.find(call)
        validator = self._compiled.get(tool.name)
        if validator is None:
            validator = compile_schema(tool)
            self._compiled[tool.name] = validator
        return _check(tool, validator, call)
