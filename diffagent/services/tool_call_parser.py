"""
Tool Call Parser - Extract a {"tool", "args"} intent from free-form model text

Candidates are fenced code blocks first, then every top-level balanced
{...} span of the raw text. The first candidate that is valid JSON and looks
like a tool call wins.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..models.agent import AgentToolCall

FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def parse_agent_tool_call(response: str) -> AgentToolCall | None:
    """Return the first valid tool call in the response, or None"""
    if not response or not response.strip():
        return None

    for candidate in collect_json_candidates(response):
        try:
            parsed = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        tool_call = normalize_tool_call(parsed)
        if tool_call:
            return tool_call

    return None


def normalize_tool_call(value: Any) -> AgentToolCall | None:
    """Accept only objects with a non-empty string 'tool'"""
    if not isinstance(value, dict):
        return None

    tool = value.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None

    args = value.get("args")
    return AgentToolCall(
        tool=tool.strip().lower(),
        args=args if isinstance(args, dict) else {},
    )


def collect_json_candidates(text: str) -> list[str]:
    """Fenced blocks, then balanced brace spans; deduplicated by trimmed text"""
    candidates: list[str] = []
    seen: set[str] = set()

    def add_candidate(candidate: str):
        trimmed = candidate.strip()
        if trimmed and trimmed not in seen:
            seen.add(trimmed)
            candidates.append(trimmed)

    for match in FENCED_BLOCK_RE.finditer(text):
        add_candidate(match.group(1))

    for span in extract_balanced_json_objects(text):
        add_candidate(span)

    return candidates


def extract_balanced_json_objects(text: str) -> list[str]:
    """Top-level {...} spans; braces inside double-quoted strings are ignored"""
    objects = []
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                objects.append(text[start:index + 1])
                start = -1

    return objects
