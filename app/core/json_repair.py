"""Recover a JSON object from free-form LLM output.

Models wrap JSON in prose or markdown fences and emit two classes of
defects reliably: raw control characters inside string literals and
trailing commas. Both are repaired before parsing.
"""

from __future__ import annotations

import json
import re
from typing import Any

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


class JSONExtractionError(ValueError):
    """No JSON object found in the text."""


def extract_json_object(text: str) -> str:
    """Return the substring from the first '{' to the last '}'.

    Raises:
        JSONExtractionError: If the text holds no braces.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        raise JSONExtractionError("No JSON found in LLM response")
    return match.group(0)


def escape_control_chars(raw: str) -> str:
    """Escape literal control characters (< 0x20) inside string literals.

    Single pass tracking whether we are inside a quoted string and whether
    the previous character was a backslash. Characters outside strings are
    left alone, so already-valid JSON is unchanged.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in raw:
        if escaped:
            out.append(ch)
            escaped = False
            continue
        if ch == "\\" and in_string:
            out.append(ch)
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            out.append(ch)
            continue
        if in_string and ord(ch) < 0x20:
            out.append(_CONTROL_ESCAPES.get(ch, f"\\u{ord(ch):04x}"))
        else:
            out.append(ch)
    return "".join(out)


def strip_trailing_commas(raw: str) -> str:
    """Drop commas directly before '}' or ']'.

    Known limitation: also fires on a literal ",}" inside a string value.
    """
    return _TRAILING_COMMA_RE.sub(r"\1", raw)


def repair_json(raw: str) -> str:
    """Apply both repairs. Idempotent."""
    return strip_trailing_commas(escape_control_chars(raw))


def parse_llm_json(text: str) -> Any:
    """Extract, repair and parse the JSON object embedded in text.

    Raises:
        JSONExtractionError: If there is no object in the text.
        json.JSONDecodeError: If the repaired text is still not JSON.
    """
    return json.loads(repair_json(extract_json_object(text)))
