"""
Best-effort extraction of a JSON object from free-form model text.

Models asked for "JSON only" still wrap the object in markdown fences or add
a sentence around it. parse_json_object() strips fences, then decodes the
first balanced top-level ``{...}`` substring. It never raises: callers get
either a dict or None and must handle the unparseable case.
"""
import json
import re
from typing import Any, Dict, Optional

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # An opening fence the model never closed.
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped[3:]
        newline = stripped.find("\n")
        if newline != -1 and not stripped[:newline].strip().startswith("{"):
            stripped = stripped[newline + 1:]
    return stripped.strip()


def first_balanced_object(text: str) -> Optional[str]:
    """
    Find the first balanced top-level ``{...}`` substring.

    Braces inside JSON string literals (including escaped quotes) are
    ignored while counting depth.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse possibly-fenced model text into a dict, or None."""
    if not text or not isinstance(text, str):
        return None
    body = strip_code_fences(text)
    candidate = first_balanced_object(body)
    if candidate is None:
        return None
    try:
        payload = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload
