"""Provider-agnostic chat model access."""

from .messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolResultMessage,
    Transcript,
    UserMessage,
)
from .providers import (
    LLMConnection,
    ProviderRequest,
    StreamNormalizer,
    build_provider_request,
    extract_completion_text,
    requires_api_key,
)

__all__ = [
    "AssistantMessage",
    "LLMConnection",
    "Message",
    "ProviderRequest",
    "StreamNormalizer",
    "SystemMessage",
    "ToolCall",
    "ToolResultMessage",
    "Transcript",
    "UserMessage",
    "build_provider_request",
    "extract_completion_text",
    "requires_api_key",
]
