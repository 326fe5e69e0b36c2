"""
JSON payload extraction from raw LLM responses.

Models sometimes wrap their JSON in a markdown code fence or surround it
with commentary even when structured output was requested. This module
recovers the minimal JSON substring, or reports that none is present.
"""

import json
import re

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

_CLOSERS = {"{": "}", "[": "]"}


def extract_json(text: str | None) -> str | None:
    """
    Extract a JSON document from a model response.

    Args:
        text: Raw response text.

    Returns:
        The JSON substring, or None if nothing parseable was found.
    """
    if not text:
        return None

    fence = _FENCE_PATTERN.search(text)
    if fence and fence.group(1).strip():
        return fence.group(1).strip()

    start = _find_opening(text)
    if start == -1:
        return None

    open_char = text[start]
    close_char = _CLOSERS[open_char]
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]

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
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                candidate = text[start : i + 1]
                try:
                    json.loads(candidate)
                except json.JSONDecodeError:
                    continue
                return candidate

    return None


def _find_opening(text: str) -> int:
    """Index of the first '{' or '[', whichever comes first, or -1."""
    positions = [p for p in (text.find("{"), text.find("[")) if p != -1]
    return min(positions) if positions else -1
