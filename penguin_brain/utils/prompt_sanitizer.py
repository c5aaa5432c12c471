"""Sanitize stored text before it is embedded in the system prompt.

Knowledge entries are written by users and by the memory extractor, so they
are treated as untrusted when they re-enter a prompt.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..config import CONFIG

logger = logging.getLogger("penguin_brain.prompt_sanitizer")


@dataclass
class SanitizationResult:
    """Result of sanitization operation."""

    content: str
    original_length: int
    was_truncated: bool = False
    modifications: List[str] = field(default_factory=list)

    @property
    def was_modified(self) -> bool:
        return bool(self.modifications)


class PromptSanitizer:
    """Neutralizes prompt-structure markers and caps the length of untrusted text."""

    # Patterns that could break prompt structure or confuse the model
    DANGEROUS_PATTERNS = [
        (r"-{2,}\s*END OF SYSTEM INSTRUCTIONS\s*-{2,}", "[end-of-instructions marker removed]"),
        (r"<\|im_start\|>", "[IM_START]"),
        (r"<\|im_end\|>", "[IM_END]"),
        (r"\[SYSTEM\]", "[CONTEXT-SYSTEM]"),
        (r"\[INST\]", "[CONTEXT-INST]"),
        (r"\[/INST\]", "[CONTEXT-/INST]"),
        (r"<<SYS>>", "[[SYS]]"),
        (r"<</SYS>>", "[[/SYS]]"),
        (r"\[ACTION_BUTTON:", "[ACTION-BUTTON:"),
    ]

    # Tags the orchestrator parses out of model output
    TAG_ESCAPE_MAP = {
        "<memory>": "&lt;memory&gt;",
        "</memory>": "&lt;/memory&gt;",
    }

    def __init__(self, max_length: int = 6000) -> None:
        self.max_length = max_length

    def sanitize(self, content: str, source: str = "unknown") -> SanitizationResult:
        if not content:
            return SanitizationResult(content="", original_length=0)

        original_length = len(content)
        modifications: List[str] = []
        sanitized = content

        for pattern, replacement in self.DANGEROUS_PATTERNS:
            if re.search(pattern, sanitized, re.IGNORECASE):
                sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
                modifications.append(f"neutralized: {pattern}")

        for tag, escaped in self.TAG_ESCAPE_MAP.items():
            if tag in sanitized:
                sanitized = sanitized.replace(tag, escaped)
                modifications.append(f"escaped: {tag}")

        was_truncated = False
        if self.max_length > 0 and len(sanitized) > self.max_length:
            sanitized = sanitized[: self.max_length] + "\n[TRUNCATED]"
            was_truncated = True
            modifications.append(f"truncated: {original_length} -> {self.max_length}")

        if modifications:
            logger.debug(
                "Sanitized content from %s: %s",
                source,
                ", ".join(modifications),
                extra={"input_length": original_length, "output_length": len(sanitized)},
            )

        return SanitizationResult(
            content=sanitized,
            original_length=original_length,
            was_truncated=was_truncated,
            modifications=modifications,
        )

    def sanitize_context(self, content: str, context_type: str = "knowledge") -> str:
        return self.sanitize(content, source=f"context:{context_type}").content


def compute_prompt_stats(messages: Sequence[Any]) -> Dict[str, int]:
    """Message counts by role plus total characters, for request logging."""

    stats = {"message_count": len(messages), "total_chars": 0}
    for message in messages:
        role = getattr(message, "role", "unknown")
        stats[f"{role}_messages"] = stats.get(f"{role}_messages", 0) + 1
        stats["total_chars"] += len(getattr(message, "content", "") or "")
    return stats


DEFAULT_SANITIZER = PromptSanitizer(max_length=CONFIG.security.context_char_budget)


__all__ = [
    "DEFAULT_SANITIZER",
    "PromptSanitizer",
    "SanitizationResult",
    "compute_prompt_stats",
]
