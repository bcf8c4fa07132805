"""
Best-effort recovery of tool-call arguments streamed as JSON fragments.

Streams cut off mid-object (max_tokens, dropped connection) leave
unbalanced brackets. We close them and try once more; anything else is
left alone. This is deliberately not a relaxed JSON parser.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_LOG_PREVIEW_CHARS = 500


def repair_json_if_unbalanced(value: str) -> str:
    """
    Append the closers for any ``{`` / ``[`` still open at end of input.

    Brackets inside string literals are ignored. A closer that does not
    match the innermost open bracket is skipped without popping it.
    Returns ``value`` unchanged when nothing is left open.
    """
    stack: list[str] = []
    in_string = False
    escape = False

    for char in value:
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            stack.append("}")
        elif char == "[":
            stack.append("]")
        elif char in "}]":
            if stack and stack[-1] == char:
                stack.pop()

    if not stack:
        return value
    return value + "".join(reversed(stack))


def parse_tool_input(raw: str) -> Optional[Any]:
    """
    Parse buffered tool-input JSON, repairing unbalanced brackets once.

    Returns None when the input is empty or cannot be recovered. Never raises.
    """
    trimmed = raw.strip()
    if not trimmed:
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        pass

    repaired = repair_json_if_unbalanced(trimmed)
    if repaired == trimmed:
        return None
    try:
        return json.loads(repaired)
    except json.JSONDecodeError:
        return None


def coerce_tool_input(raw: str, tool_name: str = "") -> dict:
    """
    Turn a buffered argument string into the dict handed to a tool.

    Unrecoverable or non-object input becomes ``{}`` and is logged.
    """
    if not raw.strip():
        return {}
    parsed = parse_tool_input(raw)
    if isinstance(parsed, dict):
        return parsed
    logger.warning(
        f"Could not parse input for tool '{tool_name}', using {{}}: "
        f"{raw[:_LOG_PREVIEW_CHARS]!r}"
    )
    return {}
