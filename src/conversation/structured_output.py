"""Parsing of structured (JSON object) model output.

Models frequently wrap JSON in markdown code fences; recognized
```json / ``` wrapping is stripped before a strict parse.
"""

from __future__ import annotations

import json
import re
from typing import Any


_OPENING_FENCE = re.compile(r"^```[a-zA-Z]*\s*")
_CLOSING_FENCE = re.compile(r"\s*```\s*$")


class StructuredOutputError(ValueError):
    """Raised when model output is not a JSON object."""


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any.

    Example:
        >>> strip_code_fence('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    stripped = _OPENING_FENCE.sub("", stripped, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Strictly parse model output as a JSON object.

    Raises:
        StructuredOutputError: If the text is not valid JSON or not an object.
    """
    payload = strip_code_fence(text)
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"Model output is not valid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise StructuredOutputError(
            f"Model output is a JSON {type(parsed).__name__}, expected an object"
        )
    return parsed
