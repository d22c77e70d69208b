"""Helpers for pulling JSON out of model text."""
import json
import re
from typing import Any, Optional

from services.research.providers.base import SynthesisParseError


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*\n?", "", cleaned)
        cleaned = re.sub(r"\n?```\s*$", "", cleaned)
    return cleaned


def find_first_json_object(text: str) -> Optional[str]:
    """
    Return the first top-level {...} span in `text`, or None.

    Scans from the first '{' to its matching '}', skipping braces inside
    JSON strings. Returns None when the braces never balance.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
                return text[start:idx + 1]
    return None


def parse_json_object(text: str, source: str) -> dict[str, Any]:
    """Strictly parse `text` as a JSON object (fences tolerated)."""
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise SynthesisParseError(f"{source} response is not valid JSON: {exc}", raw_text=text) from exc
    if not isinstance(data, dict):
        raise SynthesisParseError(f"{source} response is JSON but not an object", raw_text=text)
    return data


def extract_json_object(text: str, source: str) -> dict[str, Any]:
    """Best-effort: parse the first JSON object embedded in free text."""
    candidate = find_first_json_object(text)
    if candidate is None:
        raise SynthesisParseError(f"{source} synthesis did not return JSON", raw_text=text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise SynthesisParseError(f"{source} synthesis JSON is malformed: {exc}", raw_text=text) from exc
