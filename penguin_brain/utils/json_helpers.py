"""Helpers for pulling JSON objects out of free-form model replies."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

_DECODER = json.JSONDecoder()


def _strip_fences(text: str) -> str:
    lines = text.splitlines()
    if lines and lines[0].startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first complete JSON object embedded in ``text``.

    Only one object is ever returned, even when the reply contains several.
    """

    stripped = (text or "").strip()
    if not stripped:
        return None
    if stripped.startswith("```"):
        stripped = _strip_fences(stripped)

    position = stripped.find("{")
    while position != -1:
        try:
            value, _ = _DECODER.raw_decode(stripped, position)
        except json.JSONDecodeError:
            position = stripped.find("{", position + 1)
            continue
        if isinstance(value, dict):
            return value
        position = stripped.find("{", position + 1)
    return None


__all__ = ["extract_json_object"]
