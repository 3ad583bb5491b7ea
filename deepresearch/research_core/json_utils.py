from __future__ import annotations

import json
from typing import Any


def _strip_code_fence(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def _first_balanced(text: str, opener: str, closer: str) -> Any | None:
    """Decode the first well-formed JSON value that starts with ``opener``."""
    decoder = json.JSONDecoder()
    start = text.find(opener)
    while start >= 0:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find(opener, start + 1)
            continue
        return value
    # Greedy fallback: outermost opener..closer span.
    first, last = text.find(opener), text.rfind(closer)
    if first >= 0 and last > first:
        try:
            return json.loads(text[first : last + 1])
        except json.JSONDecodeError:
            return None
    return None


def extract_json_array(raw_text: str) -> list[Any] | None:
    """First JSON array in free-form model output, or None."""
    if not raw_text:
        return None
    value = _first_balanced(_strip_code_fence(raw_text), "[", "]")
    return value if isinstance(value, list) else None


def extract_json_object(raw_text: str) -> dict[str, Any] | None:
    """First JSON object in free-form model output, or None."""
    if not raw_text:
        return None
    value = _first_balanced(_strip_code_fence(raw_text), "{", "}")
    return value if isinstance(value, dict) else None


def string_items(values: list[Any] | None) -> list[str]:
    if not values:
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]
