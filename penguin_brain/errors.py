"""Exception taxonomy for a single assistant turn.

Turn-fatal errors (``ValidationError``, ``AuthConfigError``, ``ProviderError``)
end the request. Per-call errors (``ToolValidationError``, ``ExecutionError``,
``VerificationError``) are reported back to the model as tool results and
never abort sibling tool calls.
"""

from __future__ import annotations

from typing import Any, Optional


class PenguinError(Exception):
    """Base class for all assistant errors."""


class ValidationError(PenguinError):
    """Bad inbound request shape or length. Always user-correctable."""

    status_code = 400


class AuthConfigError(PenguinError):
    """Missing or unusable LLM credentials for the calling user."""

    status_code = 400

    NO_LLM_CONFIGURED = "no_llm_configured"
    INVALID_API_KEY = "invalid_api_key"

    _MESSAGES = {
        NO_LLM_CONFIGURED: "Please go to Settings → AI Connection and connect your preferred AI provider.",
        INVALID_API_KEY: (
            "Your AI provider API key could not be retrieved. "
            "Please go to Settings → AI Connection and reconnect your provider."
        ),
    }

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message or self._MESSAGES.get(code, code)
        super().__init__(self.message)

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ProviderError(PenguinError):
    """Upstream LLM HTTP failure, mapped to a user-facing category."""

    RATE_LIMITED = "rate_limited"
    PAYMENT_REQUIRED = "payment_required"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "unavailable"
    GENERIC = "generic"

    _USER_MESSAGES = {
        UNAUTHORIZED: (
            "Your AI provider API key is invalid or expired. "
            "Please go to Settings → AI Connection and reconnect your provider.",
            "您的 AI 供應商 API 金鑰無效或已過期。請前往 設定 → AI 連線 重新連接。",
        ),
        PAYMENT_REQUIRED: (
            "Payment required. Please check your AI provider credits.",
            "需要付款。請檢查您的 AI 供應商額度。",
        ),
        RATE_LIMITED: (
            "Rate limit exceeded, please try again later.",
            "已超出請求限制，請稍後再試。",
        ),
        UNAVAILABLE: (
            "The AI provider could not be reached. Please try again later.",
            "無法連接 AI 供應商，請稍後再試。",
        ),
    }

    def __init__(self, status_code: int, detail: str = "", category: Optional[str] = None) -> None:
        self.status_code = status_code
        self.detail = detail
        self.category = category or self.category_for_status(status_code)
        super().__init__(f"LLM API error {status_code}: {detail[:500]}")

    @classmethod
    def category_for_status(cls, status_code: int) -> str:
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 402:
            return cls.PAYMENT_REQUIRED
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code == 0:
            return cls.UNAVAILABLE
        return cls.GENERIC

    def user_message(self, language: str = "en") -> str:
        pair = self._USER_MESSAGES.get(self.category)
        if pair is None:
            pair = (f"LLM API error: {self.status_code}", f"LLM API 錯誤：{self.status_code}")
        return pair[1] if language == "zh" else pair[0]


class ToolValidationError(PenguinError):
    """Tool arguments failed structural checks; the model is asked to retry."""

    def __init__(self, tool_name: str, reason: str) -> None:
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Invalid arguments for {tool_name}: {reason}")


class ExecutionError(PenguinError):
    """Data-store failure while running a tool."""


class VerificationError(ExecutionError):
    """A write reported success but the re-read row disagrees with the request."""

    def __init__(self, field: str, expected: Any, actual: Any) -> None:
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"Verification failed for {field}: expected {expected!r}, got {actual!r}")


__all__ = [
    "PenguinError",
    "ValidationError",
    "AuthConfigError",
    "ProviderError",
    "ToolValidationError",
    "ExecutionError",
    "VerificationError",
]
