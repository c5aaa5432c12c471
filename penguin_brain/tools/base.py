"""Base tool abstractions for Penguin Brain."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence


class ToolKind(str, Enum):
    """Search tools feed the summary pass; mutations are ledgered and deduplicated."""

    SEARCH = "search"
    MUTATION = "mutation"


@dataclass
class ToolRequest:
    """Who is calling a tool, and in which language to answer."""

    company_id: str
    user_id: str
    language: str = "en"
    conversation_id: Optional[str] = None

    def msg(self, en: str, zh: str) -> str:
        return zh if self.language == "zh" else en


@dataclass
class ToolResult:
    """Normalized result returned by any tool."""

    success: bool
    message: str
    data: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        payload["message"] = self.message
        payload.update(self.extras)
        return payload

    @property
    def result_count(self) -> int:
        if isinstance(self.data, list):
            return len(self.data)
        return int(self.extras.get("count", 0) or 0)


Handler = Callable[[Dict[str, Any], ToolRequest], ToolResult]


@dataclass(frozen=True)
class ToolSpec:
    """Declaration of one model-callable function."""

    name: str
    description: str
    parameters: Dict[str, Any]
    kind: ToolKind = ToolKind.MUTATION
    entity_type: Optional[str] = None
    handler: Optional[Handler] = None

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))

    @property
    def is_search(self) -> bool:
        return self.kind is ToolKind.SEARCH

    def bind(self, handler: Handler) -> "ToolSpec":
        return replace(self, handler=handler)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# --------------------------------------------------------------------------- #
# Schema helpers
# --------------------------------------------------------------------------- #


def string(description: str = "", enum: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "string"}
    if description:
        schema["description"] = description
    if enum:
        schema["enum"] = list(enum)
    return schema


def number(description: str = "") -> Dict[str, Any]:
    return {"type": "number", "description": description} if description else {"type": "number"}


def boolean(description: str) -> Dict[str, Any]:
    return {"type": "boolean", "description": description}


def obj(description: str = "") -> Dict[str, Any]:
    return {"type": "object", "description": description} if description else {"type": "object"}


def array(items: Dict[str, Any], description: str = "") -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "array", "items": items}
    if description:
        schema["description"] = description
    return schema


def declare(
    name: str,
    description: str,
    properties: Dict[str, Dict[str, Any]],
    required: Iterable[str] = (),
    *,
    kind: ToolKind = ToolKind.MUTATION,
    entity_type: Optional[str] = None,
) -> ToolSpec:
    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    required = list(required)
    if required:
        parameters["required"] = required
    return ToolSpec(
        name=name,
        description=description,
        parameters=parameters,
        kind=kind,
        entity_type=entity_type,
    )


# --------------------------------------------------------------------------- #
# Registry
# --------------------------------------------------------------------------- #

TALENT_ONLY_TOOLS = frozenset(
    {
        "create_talent",
        "update_talent",
        "search_talent",
        "delete_talent",
        "create_booking",
        "update_booking",
        "search_bookings",
        "cancel_booking",
    }
)
TALENT_INDUSTRY = "talent_agency"
SUPER_ADMIN_ROLE = "SUPER_ADMIN"


class ToolRegistry:
    """Simple in-memory registry of tool declarations and their handlers."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, tool: ToolSpec) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolSpec:
        if name not in self._tools:
            raise KeyError(f"Tool '{name}' is not registered")
        return self._tools[name]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def list_tools(self) -> List[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def filter_for_tenant(self, industry: Optional[str], roles: Iterable[str] = ()) -> List[ToolSpec]:
        """Tools visible to a tenant; roster tools need the talent industry or super admin."""

        if industry == TALENT_INDUSTRY or SUPER_ADMIN_ROLE in set(roles):
            return self.list_tools()
        return [tool for tool in self._tools.values() if tool.name not in TALENT_ONLY_TOOLS]

    def openai_tools(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        if names is None:
            return [tool.to_openai() for tool in self._tools.values()]
        return [self._tools[name].to_openai() for name in names if name in self._tools]


__all__ = [
    "Handler",
    "TALENT_ONLY_TOOLS",
    "ToolKind",
    "ToolRegistry",
    "ToolRequest",
    "ToolResult",
    "ToolSpec",
    "array",
    "boolean",
    "declare",
    "number",
    "obj",
    "string",
]
