"""Security helper exports for Penguin Brain."""

from .injection import (
    GuardedMessage,
    detect_injection,
    filter_suspicious_entries,
    is_suspicious_text,
    strip_invisible_chars,
    validate_message,
)
from .rate_limit import RateLimiter, client_ip_from_headers

__all__ = [
    "GuardedMessage",
    "RateLimiter",
    "client_ip_from_headers",
    "detect_injection",
    "filter_suspicious_entries",
    "is_suspicious_text",
    "strip_invisible_chars",
    "validate_message",
]
