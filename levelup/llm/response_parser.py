"""Response parsing utilities for oracle output.

Extracts a JSON object from raw LLM text, tolerating markdown fences and
chatter around the object.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from levelup.core.exceptions import ResponseParseError

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a single surrounding ```json ... ``` fence, if present."""
    cleaned = text.strip()
    match = _FENCE_PATTERN.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned


def extract_json_block(text: str) -> Optional[Any]:
    """Best-effort JSON extraction; None when nothing in ``text`` decodes."""
    blocks = re.findall(r"```json\s*\n(.*?)```", text, re.DOTALL)
    if blocks:
        try:
            return json.loads(blocks[0].strip())
        except json.JSONDecodeError:
            pass

    try:
        return json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        return _first_embedded_object(text)


def _first_embedded_object(text: str) -> Optional[dict[str, Any]]:
    """First decodable {...} object inside surrounding prose."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse an LLM response that must be a single JSON object.

    Raises:
        ResponseParseError: if the text is not JSON or not an object.
    """
    data = extract_json_block(text)
    if data is None:
        raise ResponseParseError(f"Failed to parse JSON from LLM response. Raw: {text[:500]}")
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data
