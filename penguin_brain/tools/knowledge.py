"""Tools that read the knowledge base and the user's own action history."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config import CONFIG, KnowledgeConfig
from ..store.knowledge import KnowledgeStore
from .base import ToolKind, ToolRequest, ToolResult, declare, number, string
from .entity import arg_text, clamp_limit

if TYPE_CHECKING:  # pragma: no cover - import only for type checking
    from ..memory.action_ledger import ActionLedger

SPECS = [
    declare(
        "search_knowledge",
        "Search the knowledge base for past learnings, procedures, best practices, or information about "
        "the platform. Use this when users ask 'how do I...', 'what can you do', or reference past "
        "conversations.",
        {
            "query": string("What to search for in the knowledge base"),
            "category": string("Optional category filter (e.g., 'platform_info', 'procedures', 'outcomes')"),
            "match_count": number("Number of results to return (default: 5, max: 10)"),
        },
        ["query"],
        kind=ToolKind.SEARCH,
    ),
    declare(
        "search_my_actions",
        "Search your action history to see what you've done before. Use this when user asks 'Did I...?' "
        "or 'Do I have...?' or to check if you've already completed a similar action recently.",
        {
            "tool_name": string("Filter by specific tool name (e.g., 'create_contact', 'update_lead')"),
            "entity_type": string("Filter by entity type (e.g., 'contact', 'task', 'lead', 'project')"),
            "search_summary": string(
                "Search within action summaries (e.g., search for a name like 'Susan' or keyword)"
            ),
            "hours_ago": number("How many hours back to search (default: 24, max: 168 for 7 days)"),
        },
        kind=ToolKind.SEARCH,
    ),
]


class KnowledgeTools:
    """Read-only access to knowledge entries and the action ledger."""

    def __init__(
        self,
        knowledge: KnowledgeStore,
        ledger: "ActionLedger",
        config: Optional[KnowledgeConfig] = None,
    ) -> None:
        self.knowledge = knowledge
        self.ledger = ledger
        self.config = config or CONFIG.knowledge
        self.logger = logging.getLogger("penguin_brain.tools.knowledge")

    def search_knowledge(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        query = arg_text(args, "query") or ""
        count = clamp_limit(args.get("match_count"), self.config.tool_match_count, self.config.max_match_count)
        matches = self.knowledge.search(
            request.company_id,
            query,
            user_id=request.user_id,
            match_threshold=self.config.match_threshold,
            match_count=count,
            category=arg_text(args, "category"),
        )
        self.knowledge.touch(match.id for match in matches)
        if not matches:
            message = request.msg(
                f"No knowledge found about \"{query}\".", f"知識庫中沒有關於「{query}」的資料。"
            )
        else:
            message = request.msg(
                f"Found {len(matches)} knowledge entr{'y' if len(matches) == 1 else 'ies'}.",
                f"找到 {len(matches)} 條相關知識。",
            )
        return ToolResult(
            success=True,
            message=message,
            data=[match.to_dict() for match in matches],
            extras={"count": len(matches)},
        )

    def search_my_actions(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        hours = clamp_limit(args.get("hours_ago"), 24, 168)
        rows = self.ledger.search_recent(
            request,
            tool_name=arg_text(args, "tool_name"),
            entity_type=arg_text(args, "entity_type"),
            search_summary=arg_text(args, "search_summary"),
            hours=hours,
        )
        actions = [
            {
                "tool_name": row["tool_name"],
                "summary": row.get("summary"),
                "success": bool(row.get("success")),
                "entity_type": row.get("entity_type"),
                "created_at": row.get("created_at"),
            }
            for row in rows
        ]
        return ToolResult(
            success=True,
            message=request.msg(
                f"Found {len(actions)} previous action(s) in the last {hours} hours.",
                f"在過去 {hours} 小時內找到 {len(actions)} 個操作記錄。",
            ),
            data=actions,
            extras={"count": len(actions)},
        )


__all__ = ["KnowledgeTools", "SPECS"]
