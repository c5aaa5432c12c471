"""Utility modules for Penguin Brain."""

from .json_helpers import extract_json_object
from .prompt_sanitizer import (
    DEFAULT_SANITIZER,
    PromptSanitizer,
    SanitizationResult,
    compute_prompt_stats,
)

__all__ = [
    "extract_json_object",
    "PromptSanitizer",
    "SanitizationResult",
    "compute_prompt_stats",
    "DEFAULT_SANITIZER",
]
