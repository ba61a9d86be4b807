"""
Shell-command helpers built on top of the registry.

Each helper renders a prompt asking for a JSON answer, sends it through
``ProviderRegistry.chat`` and parses the reply.  Models do not always
comply, so every parser has a plain-text fallback.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from modelbridge.llm.registry import ProviderRegistry
from modelbridge.llm.types import ChatMessage, ChatRequest, MessageRole

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

DEFAULT_CONFIDENCE = 0.5


@dataclass
class ShellContext:
    current_directory: str | None = None
    operating_system: str | None = None
    shell: str | None = None


@dataclass
class CommandSuggestion:
    command: str
    explanation: str
    confidence: float = DEFAULT_CONFIDENCE


@dataclass
class CommandExplanation:
    explanation: str
    breakdown: list[dict[str, str]] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)


@dataclass
class ResultAnalysis:
    summary: str
    insights: list[str] = field(default_factory=list)
    success: bool = True
    issues: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def build_command_prompt(natural_language: str, context: ShellContext | None = None) -> str:
    lines = [
        "Convert the following description into a precise terminal command:",
        "",
        f'"{natural_language}"',
        "",
    ]
    if context is not None:
        lines.append("Current environment:")
        if context.current_directory:
            lines.append(f"- Current directory: {context.current_directory}")
        if context.operating_system:
            lines.append(f"- Operating system: {context.operating_system}")
        if context.shell:
            lines.append(f"- Shell: {context.shell}")
        lines.append("")
    lines += [
        "Reply with JSON only:",
        "{",
        '  "command": "the command",',
        '  "explanation": "what it does",',
        '  "confidence": 0.95',
        "}",
    ]
    return "\n".join(lines)


def build_explain_prompt(command: str, context: ShellContext | None = None) -> str:
    lines = ["Explain the following terminal command in detail:", "", f"`{command}`", ""]
    if context is not None and context.current_directory:
        lines.append(f"Current directory: {context.current_directory}")
    if context is not None and context.operating_system:
        lines.append(f"Operating system: {context.operating_system}")
    lines += [
        "",
        "Reply in this JSON format:",
        "{",
        '  "explanation": "overall explanation",',
        '  "breakdown": [',
        '    {"part": "command part", "description": "meaning"}',
        "  ],",
        '  "examples": ["usage example"]',
        "}",
    ]
    return "\n".join(lines)


def build_analysis_prompt(
    command: str,
    output: str,
    exit_code: int | None = None,
    working_directory: str | None = None,
) -> str:
    lines = [
        "Analyse the result of this command:",
        "",
        f"Command: {command}",
        f"Exit code: {exit_code if exit_code is not None else 'unknown'}",
        f"Output:\n{output}",
        "",
    ]
    if working_directory:
        lines.append(f"Working directory: {working_directory}")
    lines += [
        "",
        "Reply in this JSON format:",
        "{",
        '  "summary": "short summary",',
        '  "insights": ["insight 1", "insight 2"],',
        '  "success": true,',
        '  "issues": [',
        '    {"severity": "warning|error|info", "message": "problem", "suggestion": "fix"}',
        "  ]",
        "}",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def _json_object(content: str) -> dict[str, Any] | None:
    match = _JSON_OBJECT.search(content)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except (json.JSONDecodeError, ValueError):
        logger.warning("Failed to parse model reply as JSON")
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_command_response(content: str) -> CommandSuggestion:
    parsed = _json_object(content)
    if parsed is not None:
        confidence = parsed.get("confidence")
        if not isinstance(confidence, (int, float)) or not confidence:
            confidence = DEFAULT_CONFIDENCE
        return CommandSuggestion(
            command=str(parsed.get("command") or ""),
            explanation=str(parsed.get("explanation") or ""),
            confidence=float(confidence),
        )
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    return CommandSuggestion(
        command=lines[0] if lines else "",
        explanation=" ".join(lines[1:]) or "AI-generated command",
        confidence=DEFAULT_CONFIDENCE,
    )


def parse_explain_response(content: str) -> CommandExplanation:
    parsed = _json_object(content)
    if parsed is not None:
        breakdown = parsed.get("breakdown")
        examples = parsed.get("examples")
        return CommandExplanation(
            explanation=str(parsed.get("explanation") or ""),
            breakdown=breakdown if isinstance(breakdown, list) else [],
            examples=examples if isinstance(examples, list) else [],
        )
    return CommandExplanation(explanation=content)


def parse_analysis_response(content: str) -> ResultAnalysis:
    parsed = _json_object(content)
    if parsed is not None:
        insights = parsed.get("insights")
        issues = parsed.get("issues")
        return ResultAnalysis(
            summary=str(parsed.get("summary") or ""),
            insights=insights if isinstance(insights, list) else [],
            success=parsed.get("success") is not False,
            issues=issues if isinstance(issues, list) else [],
        )
    return ResultAnalysis(summary=content)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class CommandGenerator:
    """Natural language <-> shell command helpers over the active provider."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    async def _ask(self, prompt: str, max_tokens: int, temperature: float) -> str:
        request = ChatRequest(
            messages=[ChatMessage(role=MessageRole.USER, content=prompt)],
            max_tokens=max_tokens,
            temperature=temperature,
            stream=False,
        )
        response = await self._registry.chat(request)
        return response.message.content

    async def generate_command(
        self, natural_language: str, context: ShellContext | None = None
    ) -> CommandSuggestion:
        content = await self._ask(
            build_command_prompt(natural_language, context), max_tokens=500, temperature=0.3
        )
        return parse_command_response(content)

    async def explain_command(
        self, command: str, context: ShellContext | None = None
    ) -> CommandExplanation:
        content = await self._ask(
            build_explain_prompt(command, context), max_tokens=1000, temperature=0.5
        )
        return parse_explain_response(content)

    async def analyze_result(
        self,
        command: str,
        output: str,
        exit_code: int | None = None,
        working_directory: str | None = None,
    ) -> ResultAnalysis:
        content = await self._ask(
            build_analysis_prompt(command, output, exit_code, working_directory),
            max_tokens=1000,
            temperature=0.7,
        )
        return parse_analysis_response(content)
