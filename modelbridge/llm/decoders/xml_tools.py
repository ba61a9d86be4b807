"""
Fallback extraction of XML-style tool invocations from plain text.

Some OpenAI-compatible servers (and models prompted in the Anthropic XML
style) return tool calls inside the message text instead of the structured
``tool_calls`` field.  Two shapes are recognised::

    <invoke name="read_file"><parameter name="path">/etc/hosts</parameter></invoke>

    <function_calls>
      <function><name>read_file</name><arguments>{"path": "/etc/hosts"}</arguments></function>
    </function_calls>
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from modelbridge.llm.types import ToolCall

_XML_MARKERS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<invoke\s",
        r"</invoke>",
        r"<function_calls>",
        r"</function_calls>",
        r"<tool_use>",
        r"</tool_use>",
        r"<parameter\s",
        r"</parameter>",
    )
]

_INVOKE = re.compile(r'<invoke\s+name="([^"]+)"[^>]*>([\s\S]*?)</invoke>', re.IGNORECASE)
_PARAMETER = re.compile(
    r'<parameter\s+name="([^"]+)"[^>]*>([\s\S]*?)</parameter>', re.IGNORECASE
)
_FUNCTION_CALLS = re.compile(r"<function_calls>([\s\S]*?)</function_calls>", re.IGNORECASE)
_FUNCTION = re.compile(
    r"<function>\s*<name>([^<]+)</name>\s*<arguments>([\s\S]*?)</arguments>\s*</function>",
    re.IGNORECASE,
)
_BARE_FUNCTION = re.compile(
    r"<function>\s*<name>[^<]+</name>\s*<arguments>[^<]*</arguments>\s*</function>",
    re.IGNORECASE,
)


def contains_tool_call_xml(text: str) -> bool:
    return any(p.search(text) for p in _XML_MARKERS)


def _coerce_scalar(value: str) -> Any:
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        pass
    if value == "true":
        return True
    if value == "false":
        return False
    try:
        return float(value)
    except ValueError:
        return value


def parse_xml_tool_calls(text: str) -> list[ToolCall]:
    stamp = int(time.time() * 1000)
    calls: list[ToolCall] = []

    for match in _INVOKE.finditer(text):
        name, body = match.group(1), match.group(2)
        arguments: dict[str, Any] = {}
        for param in _PARAMETER.finditer(body):
            arguments[param.group(1)] = _coerce_scalar(param.group(2).strip())
        if not arguments and body.strip():
            try:
                parsed = json.loads(body.strip())
                arguments = parsed if isinstance(parsed, dict) else {"input": parsed}
            except (json.JSONDecodeError, ValueError):
                arguments = {"input": body.strip()}
        calls.append(ToolCall(id=f"xml_tool_{stamp}_{len(calls)}", name=name, input=arguments))

    if calls:
        return calls

    for block in _FUNCTION_CALLS.finditer(text):
        for fn in _FUNCTION.finditer(block.group(1)):
            raw = fn.group(2).strip()
            try:
                parsed = json.loads(raw)
                arguments = parsed if isinstance(parsed, dict) else {"raw": raw}
            except (json.JSONDecodeError, ValueError):
                arguments = {"raw": raw}
            calls.append(
                ToolCall(id=f"fc_tool_{stamp}_{len(calls)}", name=fn.group(1).strip(), input=arguments)
            )
    return calls


def strip_xml_tool_calls(text: str) -> str:
    result = _INVOKE.sub("", text)
    result = _FUNCTION_CALLS.sub("", result)
    result = _BARE_FUNCTION.sub("", result)
    return re.sub(r"\n{3,}", "\n\n", result).strip()
