"""
JSON extraction from model output.

Completion backends are asked for bare JSON but routinely wrap it in code
fences or prose. extract_json_object() recovers the first complete object.
"""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class JsonExtractionError(ValueError):
    """No JSON object could be recovered from the text."""

    def __init__(self, reason: str, raw_text: str):
        super().__init__(f"{reason}: {raw_text[:120]!r}")
        self.reason = reason
        self.raw_text = raw_text


def _balanced_object(text: str) -> str | None:
    """Return the first brace-balanced {...} span, honouring string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str | None) -> dict[str, Any]:
    """
    Parse a JSON object out of free-form model output.

    Tries, in order: the whole text, the contents of a ``` fence, and the
    first brace-balanced span.

    Raises:
        JsonExtractionError: If nothing parses to a JSON object
    """
    if not text or not text.strip():
        raise JsonExtractionError("empty_output", text or "")

    candidates = [text.strip()]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())
    span = _balanced_object(text)
    if span:
        candidates.append(span)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise JsonExtractionError("no_json_object", text)


def render_json(data: Any, limit: int = 4000) -> str:
    """
    Render data for a prompt line, cut to `limit` characters.

    Never raises: values json cannot encode (circular structures, ints
    beyond the interpreter's str conversion limit) render as a placeholder.
    """
    try:
        text = json.dumps(data, default=str)
    except (TypeError, ValueError) as e:
        text = f"<unrenderable {type(data).__name__}: {e}>"
    if len(text) > limit:
        return text[:limit] + "..."
    return text
