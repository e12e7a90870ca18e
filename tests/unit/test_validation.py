"""
Tests for tool-call validation
"""

import pytest

from weft.errors import SchemaInvalidError, ToolArgumentsInvalidError, ToolNotFoundError
from weft.tools import AgentTool, ToolValidator, validate_tool_call
from weft.tools.validation import json_pointer
from weft.types import ToolCall


async def _noop(tool_call_id, args, signal):
    return "ok"


def _tool(name="search", parameters=None) -> AgentTool:
    return AgentTool(
        name=name,
        description="Search things",
        parameters=parameters
        or {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1},
            },
            "required": ["query"],
        },
        execute=_noop,
    )


class TestValidateToolCall:
    """Test validation of a single call against a tool set."""

    def test_valid_arguments_returned_unchanged(self):
        args = {"query": "weft", "limit": 3}
        assert validate_tool_call([_tool()], ToolCall(id="c1", name="search", arguments=args)) == args

    def test_unknown_tool(self):
        with pytest.raises(ToolNotFoundError) as exc:
            validate_tool_call([_tool()], ToolCall(id="c1", name="delete_everything", arguments={}))
        assert exc.value.details == {"toolName": "delete_everything", "availableTools": ["search"]}

    def test_invalid_arguments_report_every_error(self):
        call = ToolCall(id="c1", name="search", arguments={"limit": 0})
        with pytest.raises(ToolArgumentsInvalidError) as exc:
            validate_tool_call([_tool()], call)
        details = exc.value.details
        assert details["toolName"] == "search"
        assert details["toolCallId"] == "c1"
        assert details["arguments"] == {"limit": 0}
        paths = sorted(e["path"] for e in details["validationErrors"])
        assert paths == ["", "/limit"]
        assert all(e["message"] for e in details["validationErrors"])

    def test_unparsed_arguments_rejected_without_required_fields(self):
        lenient = _tool(parameters={"type": "object", "properties": {"query": {"type": "string"}}})
        call = ToolCall(id="c1", name="search", arguments='{"query": "we')
        with pytest.raises(ToolArgumentsInvalidError) as exc:
            validate_tool_call([lenient], call)
        assert exc.value.details["arguments"] == '{"query": "we'
        assert [e["path"] for e in exc.value.details["validationErrors"]] == [""]

    def test_invalid_schema(self):
        broken = _tool(parameters={"type": "not-a-type"})
        with pytest.raises(SchemaInvalidError) as exc:
            validate_tool_call([broken], ToolCall(id="c1", name="search", arguments={}))
        assert exc.value.details == {"toolName": "search"}


class TestToolValidator:
    """Test the cached validator."""

    def test_compiles_once(self):
        validator = ToolValidator([_tool()])
        call = ToolCall(id="c1", name="search", arguments={"query": "a"})
        validator.validate(call)
        compiled = validator._compiled["search"]
        validator.validate(call)
        assert validator._compiled["search"] is compiled

    def test_tool_names(self):
        assert ToolValidator([_tool("a"), _tool("b")]).tool_names == ["a", "b"]


class TestJsonPointer:
    def test_root(self):
        assert json_pointer([]) == ""

    def test_escapes(self):
        assert json_pointer(["a/b", "m~n", 0]) == "/a~1b/m~0n/0"
