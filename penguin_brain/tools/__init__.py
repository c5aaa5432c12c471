"""CRM tools callable by the assistant."""

from .base import (
    TALENT_ONLY_TOOLS,
    ToolKind,
    ToolRegistry,
    ToolRequest,
    ToolResult,
    ToolSpec,
)
from .catalog import ALL_SPECS, build_registry
from .executor import ToolExecutor

__all__ = [
    "ALL_SPECS",
    "TALENT_ONLY_TOOLS",
    "ToolExecutor",
    "ToolKind",
    "ToolRegistry",
    "ToolRequest",
    "ToolResult",
    "ToolSpec",
    "build_registry",
]
