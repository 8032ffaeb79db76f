from __future__ import annotations

import json
import re
from typing import Any, List

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence, as models often add one."""
    return _FENCE_RE.sub("", raw.strip()).strip()


def parse_json_array(raw: str) -> List[Any]:
    """Parse the first JSON array found in an LLM response.

    Raises ``ValueError`` when the response is empty or holds no array.
    """
    if not raw or not raw.strip():
        raise ValueError("Empty AI response")

    cleaned = strip_code_fences(raw)
    match = re.search(r"\[[\s\S]*\]", cleaned)
    if not match:
        raise ValueError("No JSON array found in AI response")

    data = json.loads(match.group(0))
    if not isinstance(data, list):
        raise ValueError("AI response JSON is not an array")
    return data
