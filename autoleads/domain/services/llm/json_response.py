"""
Pull the first JSON object out of a model response.

Models wrap JSON in markdown fences or add prose around it; both are tolerated.
"""
import json
import re
from typing import Any, Optional

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_decoder = json.JSONDecoder()


def _first_object(text: str) -> Optional[dict[str, Any]]:
    start = text.find("{")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: Optional[str]) -> Optional[dict[str, Any]]:
    """First well-formed JSON object in text, fenced blocks first; None if there is none"""
    if not text:
        return None
    for block in _FENCE.findall(text):
        found = _first_object(block)
        if found is not None:
            return found
    return _first_object(text)
