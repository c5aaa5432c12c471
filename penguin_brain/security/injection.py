"""Input guard: message validation, invisible-character stripping and
prompt-injection heuristics."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from ..errors import ValidationError

logger = logging.getLogger("penguin_brain.security")

MAX_MESSAGE_CHARS = 4000

# Zero-width, variation selectors, bidi controls and other invisible marks.
_INVISIBLE_CHARS = re.compile(
    "[\u200B-\u200D\uFEFF\u2060-\u2064"
    "\uFE00-\uFE0F"
    "\u200E\u200F\u202A-\u202E\u2066-\u2069"
    "\u00AD\u034F\u061C\u180E]"
)

INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ignore\s+(all\s+)?previous\s+(instructions|prompts)", re.IGNORECASE),
    re.compile(r"ignore\s+(the\s+)?(above|system)", re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+", re.IGNORECASE),
    re.compile(r"new\s+instructions?:", re.IGNORECASE),
    re.compile(r"system\s+prompt:", re.IGNORECASE),
    re.compile(r"\[system\]", re.IGNORECASE),
    re.compile(r"\[inst\]", re.IGNORECASE),
    re.compile(r"<<sys>>", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all|your)\s+(above|previous|instructions)", re.IGNORECASE),
    re.compile(r"do\s+not\s+follow\s+(the\s+)?(above|previous|system)", re.IGNORECASE),
    re.compile(r"override\s+(system|instructions|rules)", re.IGNORECASE),
    re.compile(r"jailbreak", re.IGNORECASE),
    re.compile(r"DAN\s+mode", re.IGNORECASE),
)


@dataclass
class GuardedMessage:
    """A validated user utterance ready for the orchestrator."""

    text: str
    original_length: int
    flagged: bool = False
    matched_patterns: List[str] = field(default_factory=list)


def strip_invisible_chars(text: str) -> str:
    return _INVISIBLE_CHARS.sub("", text)


def detect_injection(text: str) -> List[str]:
    """Return the source of every injection pattern found in ``text``."""

    return [pattern.pattern for pattern in INJECTION_PATTERNS if pattern.search(text)]


def validate_message(raw: Any, max_chars: int = MAX_MESSAGE_CHARS) -> GuardedMessage:
    """Validate and clean an inbound message.

    Raises ``ValidationError`` for non-strings, over-long input and blank
    input. Injection phrasing is only flagged and logged; the request still
    proceeds.
    """

    if not isinstance(raw, str):
        raise ValidationError("Message is required and must be a string")
    if len(raw) > max_chars:
        raise ValidationError(f"Message too long. Maximum {max_chars} characters.")
    if not raw.strip():
        raise ValidationError("Message cannot be empty")

    cleaned = strip_invisible_chars(raw)
    if not cleaned.strip():
        raise ValidationError("Message cannot be empty")

    matches = detect_injection(cleaned)
    if matches:
        logger.warning(
            "Prompt injection pattern detected in user message",
            extra={"patterns": len(matches), "input_length": len(raw)},
        )
    return GuardedMessage(
        text=cleaned,
        original_length=len(raw),
        flagged=bool(matches),
        matched_patterns=matches,
    )


def is_suspicious_text(text: str, phrases: Sequence[str]) -> bool:
    """Return True if any suspicious phrase is present in the text."""

    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in phrases)


def filter_suspicious_entries(
    entries: Iterable[dict],
    phrases: Sequence[str],
) -> list[dict]:
    """Drop knowledge entries whose title or content carries injection text."""

    filtered: list[dict] = []
    for entry in entries:
        text = f"{entry.get('title') or ''}\n{entry.get('content') or ''}"
        if not text.strip():
            continue
        if is_suspicious_text(text, phrases) or detect_injection(text):
            logger.warning("Dropped suspicious knowledge entry", extra={"chars": len(text)})
            continue
        filtered.append(entry)
    return filtered


__all__ = [
    "GuardedMessage",
    "INJECTION_PATTERNS",
    "MAX_MESSAGE_CHARS",
    "detect_injection",
    "filter_suspicious_entries",
    "is_suspicious_text",
    "strip_invisible_chars",
    "validate_message",
]
