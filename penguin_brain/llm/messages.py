"""Chat transcript messages exchanged with the model during one turn."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


@dataclass(frozen=True)
class ToolCall:
    """One accumulated tool call; ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> Any:
        """Decode the argument text. Raises ``json.JSONDecodeError`` when malformed."""

        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: str = field(default="system", init=False)

    def to_openai(self) -> Dict[str, Any]:
        return {"role": "system", "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: str = field(default="user", init=False)

    def to_openai(self) -> Dict[str, Any]:
        return {"role": "user", "content": self.content}


@dataclass(frozen=True)
class AssistantMessage:
    content: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    role: str = field(default="assistant", init=False)

    def to_openai(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        elif message["content"] is None:
            message["content"] = ""
        return message


@dataclass(frozen=True)
class ToolResultMessage:
    """Result of executing ``call_id``; ``payload`` is sent back as JSON."""

    call_id: str
    name: str
    payload: Dict[str, Any]
    role: str = field(default="tool", init=False)

    @property
    def content(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False, default=str)

    def to_openai(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.call_id, "content": self.content}


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolResultMessage]


class Transcript:
    """Ordered messages for one turn.

    A tool result may only follow the assistant message that issued the
    matching call, and every call of an assistant message must be answered
    before any other message is appended.
    """

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self._messages: List[Message] = []
        self._pending: Dict[str, str] = {}
        for message in messages or []:
            self.append(message)

    def append(self, message: Message) -> None:
        if isinstance(message, ToolResultMessage):
            if message.call_id not in self._pending:
                raise ValueError(f"Tool result for unknown call id: {message.call_id}")
            del self._pending[message.call_id]
        elif self._pending:
            raise ValueError(
                f"Unanswered tool calls: {', '.join(sorted(self._pending.values()))}"
            )
        if isinstance(message, AssistantMessage):
            self._pending = {call.id: call.name for call in message.tool_calls}
        self._messages.append(message)

    def extend(self, messages: List[Message]) -> None:
        for message in messages:
            self.append(message)

    @property
    def pending_calls(self) -> Dict[str, str]:
        return dict(self._pending)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def to_openai(self) -> List[Dict[str, Any]]:
        return [message.to_openai() for message in self._messages]

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


__all__ = [
    "AssistantMessage",
    "Message",
    "SystemMessage",
    "ToolCall",
    "ToolResultMessage",
    "Transcript",
    "UserMessage",
]
