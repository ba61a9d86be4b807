"""JSON Schema checks for tool definitions and tool-call arguments."""

from __future__ import annotations

from typing import Any

import jsonschema

from modelbridge.llm.errors import ConfigurationError
from modelbridge.llm.types import ToolSpec


def normalize_schema(schema: dict[str, Any] | None) -> dict[str, Any]:
    """Fill in the object wrapper some callers omit."""
    if not schema:
        return {"type": "object", "properties": {}}
    if "type" not in schema and "properties" in schema:
        return {"type": "object", **schema}
    return schema


def check_tool_specs(tools: list[ToolSpec] | None) -> None:
    """Raise ``ConfigurationError`` for a tool whose parameters are not a schema."""
    for tool in tools or []:
        if not tool.name:
            raise ConfigurationError("tool definition without a name")
        try:
            jsonschema.Draft7Validator.check_schema(normalize_schema(tool.parameters))
        except jsonschema.SchemaError as exc:
            raise ConfigurationError(
                f"tool {tool.name!r} has an invalid parameters schema: {exc.message}"
            ) from exc


def validate_tool_input(tool: ToolSpec, arguments: dict) -> tuple[bool, str | None]:
    """Check a completed call's arguments against the tool's schema."""
    try:
        jsonschema.validate(instance=arguments, schema=normalize_schema(tool.parameters))
        return True, None
    except jsonschema.ValidationError as e:
        return False, str(e.message)
