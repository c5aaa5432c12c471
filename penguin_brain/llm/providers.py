"""Provider adapter: one canonical request and stream shape for every vendor.

``build_provider_request`` turns the transcript and tool list into the wire
request of the tenant's provider. ``StreamNormalizer`` converts each decoded
stream event back into OpenAI-style deltas so the orchestrator only ever sees
``{"content": ...}`` and ``{"tool_calls": [...]}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config import CONFIG, LLMConfig
from ..errors import ProviderError
from .messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)

OPENAI = "openai"
OPENROUTER = "openrouter"
ANTHROPIC = "anthropic"
GOOGLE = "google"
OLLAMA = "ollama"
LMSTUDIO = "lmstudio"
# Unknown provider with its own base URL, spoken to as OpenAI-compatible.
COMPATIBLE = "openai_compatible"

KEYLESS_PROVIDERS = frozenset({OLLAMA, LMSTUDIO})


@dataclass(frozen=True)
class LLMConnection:
    """The calling user's active model connection, secret already resolved."""

    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def family(self) -> str:
        provider = (self.provider or "").lower()
        if provider in (OPENAI, OPENROUTER, ANTHROPIC, GOOGLE, OLLAMA, LMSTUDIO):
            return provider
        if self.base_url:
            return COMPATIBLE
        return OPENROUTER


@dataclass
class ProviderRequest:
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    provider: str
    model: str
    stream: bool = True
    # NDJSON instead of SSE framing.
    line_delimited: bool = False


def requires_api_key(provider: str) -> bool:
    return (provider or "").lower() not in KEYLESS_PROVIDERS


def build_provider_request(
    connection: LLMConnection,
    messages: Sequence[Message],
    tools: Sequence[Dict[str, Any]] = (),
    tool_choice: Optional[str] = None,
    stream: bool = True,
    config: Optional[LLMConfig] = None,
) -> ProviderRequest:
    """Translate a transcript into the provider's HTTP request.

    ``tools`` are OpenAI function declarations; ``tool_choice`` is
    ``"required"``, ``"auto"`` or None (no preference).
    """

    config = config or CONFIG.llm
    family = connection.family
    if family == ANTHROPIC:
        return _anthropic_request(connection, messages, tools, tool_choice, stream, config)
    if family == GOOGLE:
        return _google_request(connection, messages, tools, tool_choice, stream, config)
    if family == OLLAMA:
        base = (connection.base_url or config.ollama_url).rstrip("/")
        body: Dict[str, Any] = {
            "model": connection.model,
            "messages": [_ollama_message(message) for message in messages],
            "stream": stream,
        }
        if tools:
            body["tools"] = list(tools)
        return ProviderRequest(
            url=f"{base}/api/chat",
            headers={"Content-Type": "application/json"},
            body=body,
            provider=family,
            model=connection.model,
            stream=stream,
            line_delimited=True,
        )

    headers = {"Content-Type": "application/json"}
    if family == OPENAI:
        url = config.openai_url
    elif family == LMSTUDIO:
        url = f"{(connection.base_url or config.lmstudio_url).rstrip('/')}/v1/chat/completions"
    elif family == COMPATIBLE:
        url = connection.base_url.rstrip("/")
        if not url.endswith("/chat/completions"):
            url += "/chat/completions"
    else:
        url = config.openrouter_url
        headers["HTTP-Referer"] = config.app_referer
        headers["X-Title"] = config.app_title
    if connection.api_key:
        headers["Authorization"] = f"Bearer {connection.api_key}"

    body = {
        "model": connection.model,
        "messages": [message.to_openai() for message in messages],
        "stream": stream,
    }
    if tools:
        body["tools"] = list(tools)
        body["tool_choice"] = tool_choice or "auto"
        body["parallel_tool_calls"] = True
    return ProviderRequest(
        url=url,
        headers=headers,
        body=body,
        provider=family,
        model=connection.model,
        stream=stream,
    )


def _ollama_message(message: Message) -> Dict[str, Any]:
    wire = message.to_openai()
    if isinstance(message, AssistantMessage) and message.tool_calls:
        wire["content"] = message.content or ""
        wire["tool_calls"] = [
            {"function": {"name": call.name, "arguments": _safe_arguments(call.arguments)}}
            for call in message.tool_calls
        ]
    return wire


def _safe_arguments(raw: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _split_system(messages: Sequence[Message]) -> tuple[str, List[Message]]:
    """Leading system messages become the system prompt; later ones stay inline."""

    system_parts: List[str] = []
    index = 0
    while index < len(messages) and isinstance(messages[index], SystemMessage):
        system_parts.append(messages[index].content)
        index += 1
    return "\n\n".join(system_parts), list(messages[index:])


def _merge_turns(turns: List[Dict[str, Any]], parts_key: str) -> List[Dict[str, Any]]:
    merged: List[Dict[str, Any]] = []
    for turn in turns:
        if merged and merged[-1]["role"] == turn["role"]:
            merged[-1][parts_key].extend(turn[parts_key])
        else:
            merged.append({"role": turn["role"], parts_key: list(turn[parts_key])})
    return merged


def _anthropic_request(
    connection: LLMConnection,
    messages: Sequence[Message],
    tools: Sequence[Dict[str, Any]],
    tool_choice: Optional[str],
    stream: bool,
    config: LLMConfig,
) -> ProviderRequest:
    system, rest = _split_system(messages)
    turns: List[Dict[str, Any]] = []
    for message in rest:
        if isinstance(message, (SystemMessage, UserMessage)):
            turns.append({"role": "user", "content": [{"type": "text", "text": message.content}]})
        elif isinstance(message, AssistantMessage):
            blocks: List[Dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _safe_arguments(call.arguments),
                    }
                )
            if blocks:
                turns.append({"role": "assistant", "content": blocks})
        elif isinstance(message, ToolResultMessage):
            turns.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": message.call_id,
                            "content": message.content,
                        }
                    ],
                }
            )

    body: Dict[str, Any] = {
        "model": connection.model,
        "max_tokens": config.max_tokens,
        "messages": _merge_turns(turns, "content"),
        "stream": stream,
    }
    if system:
        body["system"] = system
    if tools:
        body["tools"] = [
            {
                "name": tool["function"]["name"],
                "description": tool["function"].get("description", ""),
                "input_schema": tool["function"].get("parameters", {"type": "object", "properties": {}}),
            }
            for tool in tools
        ]
        body["tool_choice"] = {"type": "any" if tool_choice == "required" else "auto"}
    headers = {
        "Content-Type": "application/json",
        "x-api-key": connection.api_key or "",
        "anthropic-version": config.anthropic_version,
    }
    return ProviderRequest(
        url=connection.base_url or config.anthropic_url,
        headers=headers,
        body=body,
        provider=ANTHROPIC,
        model=connection.model,
        stream=stream,
    )


def _google_request(
    connection: LLMConnection,
    messages: Sequence[Message],
    tools: Sequence[Dict[str, Any]],
    tool_choice: Optional[str],
    stream: bool,
    config: LLMConfig,
) -> ProviderRequest:
    system, rest = _split_system(messages)
    turns: List[Dict[str, Any]] = []
    for message in rest:
        if isinstance(message, (SystemMessage, UserMessage)):
            turns.append({"role": "user", "parts": [{"text": message.content}]})
        elif isinstance(message, AssistantMessage):
            parts: List[Dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            for call in message.tool_calls:
                parts.append({"functionCall": {"name": call.name, "args": _safe_arguments(call.arguments)}})
            if parts:
                turns.append({"role": "model", "parts": parts})
        elif isinstance(message, ToolResultMessage):
            turns.append(
                {
                    "role": "user",
                    "parts": [{"functionResponse": {"name": message.name, "response": message.payload}}],
                }
            )

    body: Dict[str, Any] = {"contents": _merge_turns(turns, "parts")}
    if system:
        body["systemInstruction"] = {"parts": [{"text": system}]}
    if tools:
        body["tools"] = [
            {
                "functionDeclarations": [
                    {
                        "name": tool["function"]["name"],
                        "description": tool["function"].get("description", ""),
                        "parameters": tool["function"].get("parameters", {"type": "object", "properties": {}}),
                    }
                    for tool in tools
                ]
            }
        ]
        body["toolConfig"] = {
            "functionCallingConfig": {"mode": "ANY" if tool_choice == "required" else "AUTO"}
        }
    base = (connection.base_url or config.google_base_url).rstrip("/")
    key = connection.api_key or ""
    if stream:
        url = f"{base}/{connection.model}:streamGenerateContent?alt=sse&key={key}"
    else:
        url = f"{base}/{connection.model}:generateContent?key={key}"
    return ProviderRequest(
        url=url,
        headers={"Content-Type": "application/json"},
        body=body,
        provider=GOOGLE,
        model=connection.model,
        stream=stream,
    )


# --------------------------------------------------------------------------- #
# Response normalization
# --------------------------------------------------------------------------- #


@dataclass
class StreamNormalizer:
    """Stateful converter from one provider's stream events to OpenAI deltas."""

    provider: str
    _next_index: int = 0
    _block_to_index: Dict[int, int] = field(default_factory=dict)

    def feed(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        if self.provider == ANTHROPIC:
            return self._anthropic(event)
        if self.provider == GOOGLE:
            return self._google(event)
        if self.provider == OLLAMA:
            return self._ollama(event)
        return self._openai(event)

    def _allocate(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    @staticmethod
    def _raise_stream_error(error: Any) -> None:
        if isinstance(error, dict):
            code = error.get("code") or error.get("status")
            detail = str(error.get("message") or error)
        else:
            code, detail = None, str(error)
        status = code if isinstance(code, int) else 500
        raise ProviderError(status, detail)

    def _openai(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        if "error" in event:
            self._raise_stream_error(event["error"])
        choices = event.get("choices") or []
        if not choices:
            return []
        delta = choices[0].get("delta") or {}
        out: Dict[str, Any] = {}
        if delta.get("content"):
            out["content"] = delta["content"]
        if delta.get("tool_calls"):
            out["tool_calls"] = delta["tool_calls"]
        return [out] if out else []

    def _anthropic(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        kind = event.get("type")
        if kind == "error":
            self._raise_stream_error(event.get("error"))
        if kind == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                index = self._allocate()
                self._block_to_index[event.get("index", 0)] = index
                return [
                    {
                        "tool_calls": [
                            {
                                "index": index,
                                "id": block.get("id"),
                                "function": {"name": block.get("name", ""), "arguments": ""},
                            }
                        ]
                    }
                ]
            if block.get("type") == "text" and block.get("text"):
                return [{"content": block["text"]}]
            return []
        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return [{"content": delta["text"]}]
            if delta.get("type") == "input_json_delta":
                index = self._block_to_index.get(event.get("index", 0))
                if index is None:
                    return []
                return [
                    {
                        "tool_calls": [
                            {"index": index, "function": {"arguments": delta.get("partial_json", "")}}
                        ]
                    }
                ]
        return []

    def _google(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        if "error" in event:
            self._raise_stream_error(event["error"])
        candidates = event.get("candidates") or []
        if not candidates:
            return []
        parts = (candidates[0].get("content") or {}).get("parts") or []
        deltas: List[Dict[str, Any]] = []
        for part in parts:
            if part.get("text"):
                deltas.append({"content": part["text"]})
            call = part.get("functionCall")
            if call:
                index = self._allocate()
                deltas.append(
                    {
                        "tool_calls": [
                            {
                                "index": index,
                                "id": f"call_{index}",
                                "function": {
                                    "name": call.get("name", ""),
                                    "arguments": json.dumps(call.get("args") or {}, ensure_ascii=False),
                                },
                            }
                        ]
                    }
                )
        return deltas

    def _ollama(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        if "error" in event:
            self._raise_stream_error(event["error"])
        message = event.get("message") or {}
        deltas: List[Dict[str, Any]] = []
        if message.get("content"):
            deltas.append({"content": message["content"]})
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {}, ensure_ascii=False)
            index = self._allocate()
            deltas.append(
                {
                    "tool_calls": [
                        {
                            "index": index,
                            "id": f"call_{index}",
                            "function": {"name": function.get("name", ""), "arguments": arguments},
                        }
                    ]
                }
            )
        return deltas


def extract_completion_text(provider: str, body: Dict[str, Any]) -> str:
    """Assistant text of a non-streamed reply in any provider's shape."""

    if provider == ANTHROPIC:
        blocks = body.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
    if provider == GOOGLE:
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)
    if provider == OLLAMA:
        return (body.get("message") or {}).get("content") or ""
    choices = body.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("message") or {}).get("content") or ""


__all__ = [
    "LLMConnection",
    "ProviderRequest",
    "StreamNormalizer",
    "build_provider_request",
    "extract_completion_text",
    "requires_api_key",
]
