from __future__ import annotations

import json
import re
from typing import Any

# Reply shapes seen across the Ollama chat/generate APIs and Messages-style payloads,
# probed in this order.
_REPLY_TEXT_PATHS: tuple[tuple[str, ...], ...] = (
    ("message", "content"),
    ("response",),
    ("output_text",),
    ("output",),
    ("content",),
)

_FENCE_LANGUAGE_TAG = re.compile(r"```json", flags=re.IGNORECASE)
_OUTER_OBJECT = re.compile(r"\{.*\}", flags=re.DOTALL)


def extract_reply_text(reply: Any) -> str:
    """Collect every text fragment from a provider reply of unknown nesting.

    Strings are taken as-is, lists are walked in order, and objects contribute
    their ``text`` field and whatever sits under ``content``. Never raises; an
    unrecognized reply yields an empty string.
    """
    segments: list[str] = []
    for path in _REPLY_TEXT_PATHS:
        _collect_text(_lookup(reply, path), segments)
    return "\n".join(segments).strip()


def _lookup(payload: Any, path: tuple[str, ...]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _collect_text(value: Any, segments: list[str]) -> None:
    if not value:
        return
    if isinstance(value, str):
        segments.append(value)
    elif isinstance(value, list):
        for item in value:
            _collect_text(item, segments)
    elif isinstance(value, dict):
        text = value.get("text")
        if isinstance(text, str) and text:
            segments.append(text)
        if "content" in value:
            _collect_text(value["content"], segments)


def extract_json_from_text(text: Any) -> Any | None:
    """Parse the JSON value a model wrapped in code fences and/or prose.

    Tries the fence-stripped text as a whole first, then the span between the
    first ``{`` and the last ``}``. Returns ``None`` when neither parses.
    """
    if not isinstance(text, str) or not text:
        return None

    cleaned = _FENCE_LANGUAGE_TAG.sub("```", text).replace("```", "").strip()
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    match = _OUTER_OBJECT.search(cleaned)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except ValueError:
        return None
