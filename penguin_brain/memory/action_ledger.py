"""Append-only log of executed tool calls, used for audit and duplicate suppression."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import CONFIG, AgentConfig
from ..store.db import Condition, PenguinDB, contains, timestamp_ago
from ..tools.base import ToolRequest, ToolResult
from ..tools.entity import money

ENTITY_TYPES = ("contact", "task", "lead", "project", "talent", "booking", "invoice", "expense")

# Tools whose repeat within the duplicate window is treated as the same action.
STATUS_TOOLS = frozenset({"complete_task", "cancel_booking", "mark_invoice_paid", "approve_expense"})


def entity_type_for(tool_name: str) -> Optional[str]:
    for entity in ENTITY_TYPES:
        if entity in tool_name:
            return entity
    return None


def _pick(args: Dict[str, Any], result: Optional[ToolResult], key: str, default: str = "") -> str:
    """First non-empty value of ``key`` in the result extras, result data, then args."""

    sources: List[Any] = []
    if result is not None:
        sources.extend([result.extras, result.data])
    sources.append(args)
    for source in sources:
        if isinstance(source, dict) and source.get(key) not in (None, ""):
            return str(source[key])
    return default


def _name(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    named = _pick(args, result, "name")
    if named:
        return named
    return " ".join(
        part for part in (_pick(args, result, "first_name"), _pick(args, result, "last_name")) if part
    )


def _bulk(verb: str, noun: str) -> Callable[[Dict[str, Any], Optional[ToolResult]], str]:
    def summary(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
        done = _pick(args, result, "deleted") or _pick(args, result, "updated") or "0"
        failed = _pick(args, result, "failed", "0")
        text = f"{verb} {done} {noun}"
        return f"{text} ({failed} failed)" if failed not in ("", "0") else text

    return summary


def _with(prefix: str, key: str, sep: str = ": ") -> Callable[[Dict[str, Any], Optional[ToolResult]], str]:
    def summary(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
        value = _name(args, result) if key == "name" else _pick(args, result, key)
        return f"{prefix}{sep}{value}" if value else prefix

    return summary


def _created_contact(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    email = _pick(args, result, "email")
    text = f"Created contact: {_name(args, result)}"
    return f"{text} ({email})" if email else text


def _created_project(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    return f"Created project: {_pick(args, result, 'title')} at {_pick(args, result, 'address')}"


def _created_talent(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    stage = _pick(args, result, "stage_name")
    text = f"Created talent: {_pick(args, result, 'name')}"
    return f"{text} ({stage})" if stage else text


def _created_booking(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    return f"Created booking: {_pick(args, result, 'booking_type')} on {_pick(args, result, 'date')}"


def _created_expense(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    return f"Created expense: {_pick(args, result, 'description')} ({money(_pick(args, result, 'amount'))})"


def _cleaned(args: Dict[str, Any], result: Optional[ToolResult]) -> str:
    return f"Cleaned duplicates: kept {_pick(args, result, 'kept', '0')}, deleted {_pick(args, result, 'deleted', '0')}"


_SUMMARIES: Dict[str, Callable[[Dict[str, Any], Optional[ToolResult]], str]] = {
    "create_contact": _created_contact,
    "update_contact": _with("Updated contact", "name"),
    "delete_contact": _with("Deleted contact", "name"),
    "bulk_delete_contacts": _bulk("Deleted", "contacts"),
    "clean_duplicate_contacts": _cleaned,
    "create_task": _with("Created task", "title"),
    "update_task": _with("Updated task", "title"),
    "complete_task": _with("Completed task", "title"),
    "delete_task": _with("Deleted task", "title"),
    "bulk_delete_tasks": _bulk("Deleted", "tasks"),
    "create_lead": _with("Created lead from", "source", " "),
    "update_lead": _with("Updated lead", "name"),
    "delete_lead": _with("Deleted lead", "name"),
    "bulk_delete_leads": _bulk("Deleted", "leads"),
    "create_project": _created_project,
    "update_project": _with("Updated project", "title"),
    "delete_project": _with("Deleted project", "title"),
    "bulk_delete_projects": _bulk("Deleted", "projects"),
    "bulk_update_projects": _bulk("Updated", "projects"),
    "create_talent": _created_talent,
    "update_talent": _with("Updated talent", "name"),
    "delete_talent": _with("Deleted talent", "name"),
    "create_booking": _created_booking,
    "update_booking": _with("Updated booking for", "talent", " "),
    "cancel_booking": _with("Cancelled booking for", "talent", " "),
    "create_invoice": _with("Created invoice for", "client", " "),
    "update_invoice": _with("Updated invoice", "invoice_number"),
    "mark_invoice_paid": _with("Marked invoice as paid", "invoice_number"),
    "create_expense": _created_expense,
    "approve_expense": _with("Approved expense", "description"),
}


def generate_action_summary(tool_name: str, args: Dict[str, Any], result: Optional[ToolResult] = None) -> str:
    """One human-readable line describing what a tool call did."""

    formatter = _SUMMARIES.get(tool_name)
    if formatter is not None:
        summary = formatter(args, result)
    elif tool_name.startswith("search_"):
        count = result.result_count if result is not None else 0
        summary = f"Searched {tool_name[len('search_'):]}: {count} results"
    else:
        summary = "Executed tool"
    if result is not None and not result.success:
        summary += " (failed)"
    return summary


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.split()).casefold()
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items() if item not in (None, "")}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


def action_identity(tool_name: str, args: Dict[str, Any]) -> Optional[str]:
    """Key identifying "the same action", or None when the tool is never deduplicated."""

    if tool_name == "create_contact":
        keys = ("first_name", "last_name", "email")
        return json.dumps([_normalize(args.get(key) or "") for key in keys])
    if tool_name.startswith("create_") or tool_name.startswith("update_") or tool_name in STATUS_TOOLS:
        return json.dumps(_normalize(args), sort_keys=True, default=str)
    return None


class ActionLedger:
    """Durable record of every non-search tool execution."""

    def __init__(self, db: PenguinDB, config: Optional[AgentConfig] = None) -> None:
        self.db = db
        self.config = config or CONFIG.agent
        self.logger = logging.getLogger("penguin_brain.action_ledger")

    def record(
        self,
        request: ToolRequest,
        tool_name: str,
        args: Dict[str, Any],
        result: ToolResult,
    ) -> Dict[str, Any]:
        summary = generate_action_summary(tool_name, args, result)
        row = self.db.insert(
            "actions",
            {
                "conversation_id": request.conversation_id,
                "user_id": request.user_id,
                "company_id": request.company_id,
                "tool_name": tool_name,
                "tool_args": args,
                "tool_result": result.to_payload(),
                "success": result.success,
                "error_message": None if result.success else result.message,
                "summary": summary,
                "entity_type": entity_type_for(tool_name),
                "entity_id": result.extras.get("entity_id"),
            },
        )
        self.logger.info(
            "Action recorded",
            extra={
                "tool": tool_name,
                "success": result.success,
                "conversation_id": request.conversation_id,
                "company_id": request.company_id,
            },
        )
        return row

    def find_duplicate(self, request: ToolRequest, tool_name: str, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """A successful identical action by this user inside the duplicate window."""

        identity = action_identity(tool_name, args)
        if identity is None:
            return None
        rows = self.db.select(
            "actions",
            company_id=request.company_id,
            where=[
                ("user_id", "=", request.user_id),
                ("tool_name", "=", tool_name),
                ("success", "=", True),
                ("created_at", ">=", timestamp_ago(minutes=self.config.duplicate_window_minutes)),
            ],
            limit=self.config.duplicate_lookback,
        )
        for row in rows:
            if action_identity(tool_name, row.get("tool_args") or {}) == identity:
                self.logger.info(
                    "Duplicate action suppressed",
                    extra={"tool": tool_name, "conversation_id": request.conversation_id},
                )
                return row
        return None

    def search_recent(
        self,
        request: ToolRequest,
        *,
        tool_name: Optional[str] = None,
        entity_type: Optional[str] = None,
        search_summary: Optional[str] = None,
        hours: float = 24,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        where: List[Condition] = [
            ("user_id", "=", request.user_id),
            ("created_at", ">=", timestamp_ago(hours=hours)),
        ]
        if tool_name:
            where.append(("tool_name", "=", tool_name))
        if entity_type:
            where.append(("entity_type", "=", entity_type))
        search = [(("summary",), contains(search_summary))] if search_summary else []
        return self.db.select(
            "actions", company_id=request.company_id, where=where, search=search, limit=limit
        )


__all__ = [
    "ActionLedger",
    "action_identity",
    "entity_type_for",
    "generate_action_summary",
]
