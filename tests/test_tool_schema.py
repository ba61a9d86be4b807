"""Tests for modelbridge.llm.tool_schema."""

from __future__ import annotations

import pytest

from modelbridge.llm import validate_tool_input
from modelbridge.llm.errors import ConfigurationError
from modelbridge.llm.tool_schema import check_tool_specs, normalize_schema
from modelbridge.llm.types import ToolSpec

READ_FILE = ToolSpec(
    name="read_file",
    description="Read a file",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "lines": {"type": "integer", "minimum": 1},
        },
        "required": ["path"],
    },
)


class TestValidateToolInput:
    def test_valid(self):
        assert validate_tool_input(READ_FILE, {"path": "/etc/hosts", "lines": 5}) == (True, None)

    def test_missing_required(self):
        ok, err = validate_tool_input(READ_FILE, {"lines": 5})
        assert not ok
        assert "path" in err

    def test_wrong_type(self):
        ok, err = validate_tool_input(READ_FILE, {"path": 42})
        assert not ok
        assert err

    def test_empty_schema_accepts_object(self):
        assert validate_tool_input(ToolSpec(name="noop", parameters={}), {"x": 1})[0]


class TestCheckToolSpecs:
    def test_accepts_valid(self):
        check_tool_specs([READ_FILE])
        check_tool_specs(None)

    def test_rejects_bad_schema(self):
        with pytest.raises(ConfigurationError, match="read_file"):
            check_tool_specs([ToolSpec(name="read_file", parameters={"type": 12})])

    def test_rejects_nameless(self):
        with pytest.raises(ConfigurationError):
            check_tool_specs([ToolSpec(name="")])

    def test_normalize_adds_object_type(self):
        assert normalize_schema({"properties": {"a": {}}}) == {
            "type": "object",
            "properties": {"a": {}},
        }
        assert normalize_schema(None) == {"type": "object", "properties": {}}
