"""AI response cleanup and JSON decoding utilities."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def clean_ai_json(text: str) -> str:
    """Strip markdown code fences and comma-only lines from an AI response."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    lines = [line for line in cleaned.split("\n") if line.strip() != ","]
    return "\n".join(lines).strip()


def loads_or_raw(text: str) -> Any:
    """Decode JSON, or hand back the text unchanged when it is not JSON."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text
