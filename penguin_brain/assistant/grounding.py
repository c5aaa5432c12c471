"""Reject tool calls whose name arguments never appeared in the conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# Tools that locate an existing record by a person's name.
GUARDED_TOOLS = frozenset(
    {
        "search_contacts",
        "update_contact",
        "delete_contact",
        "clean_duplicate_contacts",
        "update_lead",
        "search_talent",
        "update_talent",
        "delete_talent",
        "create_booking",
        "create_invoice",
    }
)
NAME_KEYS = ("first_name", "last_name", "name", "stage_name", "lookup_name", "talent_name", "client_name")


def _normalize(text: str) -> str:
    return " ".join(text.split()).casefold()


@dataclass
class GroundingVerdict:
    grounded: bool
    ungrounded: List[str] = field(default_factory=list)

    def corrective_message(self, tool_name: str) -> str:
        names = ", ".join(f'"{value}"' for value in self.ungrounded)
        return (
            f"The {tool_name} call was not executed: the name {names} does not appear in the user's "
            "message or the recent conversation. Never invent or guess names. Use only names the user "
            "actually wrote, or ask the user which record they mean."
        )


class GroundingGuard:
    """Checks name arguments against the text the user has actually seen or written."""

    def __init__(self, tools: Sequence[str] = tuple(GUARDED_TOOLS), name_keys: Sequence[str] = NAME_KEYS) -> None:
        self.tools = frozenset(tools)
        self.name_keys = tuple(name_keys)
        self.logger = logging.getLogger("penguin_brain.grounding")

    def check(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        message: str,
        recent: Sequence[str] = (),
    ) -> GroundingVerdict:
        if tool_name not in self.tools:
            return GroundingVerdict(grounded=True)
        haystack = _normalize("\n".join([message, *recent]))
        missing: List[str] = []
        for key in self.name_keys:
            value: Optional[Any] = arguments.get(key)
            if not isinstance(value, str) or not value.strip():
                continue
            if _normalize(value) not in haystack:
                missing.append(value.strip())
        if missing:
            self.logger.warning(
                "Ungrounded name arguments: %s", ", ".join(missing), extra={"tool": tool_name}
            )
            return GroundingVerdict(grounded=False, ungrounded=missing)
        return GroundingVerdict(grounded=True)


__all__ = ["GUARDED_TOOLS", "GroundingGuard", "GroundingVerdict", "NAME_KEYS"]
