"""Context assembly for one assistant turn.

MemoryManager gathers, concurrently:
- the tenant's business snapshot (counts plus capped recent listings)
- the conversation's recent history
- knowledge entries similar to the user's message

and renders them into the system prompt. A failing source degrades to an
empty section instead of failing the turn.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..config import CONFIG, AgentConfig
from ..llm.messages import AssistantMessage, Message, UserMessage
from ..security.injection import filter_suspicious_entries
from ..store.conversations import ConversationStore
from ..store.db import Condition, PenguinDB
from ..store.knowledge import KnowledgeMatch, KnowledgeStore
from ..tools.base import ToolRequest
from ..tools.leads import IS_LEAD
from .prompts import BusinessSnapshot, PromptSettings, build_system_prompt

T = TypeVar("T")

DEAL_STATUSES = ("WON", "SOLD", "RENTED")
_NOT_LEAD = ("lead_stage", "=", "NONE")


@dataclass
class AssembledContext:
    """Everything the orchestrator needs before the first model call."""

    system_prompt: str
    history: List[Message] = field(default_factory=list)
    snapshot: BusinessSnapshot = field(default_factory=BusinessSnapshot)
    knowledge: List[KnowledgeMatch] = field(default_factory=list)

    @property
    def history_texts(self) -> List[str]:
        return [message.content for message in self.history if message.content]


class MemoryManager:
    """Builds the prompt context for a tenant, a user and a conversation."""

    def __init__(
        self,
        db: PenguinDB,
        conversations: ConversationStore,
        knowledge: KnowledgeStore,
        config: Optional[AgentConfig] = None,
    ) -> None:
        self.db = db
        self.conversations = conversations
        self.knowledge = knowledge
        self.config = config or CONFIG.agent
        self.security = CONFIG.security
        self.logger = logging.getLogger("penguin_brain.memory")

    # ---- Context Assembly ------------------------------------------------
    def assemble(
        self,
        request: ToolRequest,
        message: str,
        settings: PromptSettings,
    ) -> AssembledContext:
        started = time.perf_counter()
        with ThreadPoolExecutor(max_workers=self.config.context_workers) as pool:
            counts_future = pool.submit(self._guarded, "counts", self._counts, request, default={})
            tasks_future = pool.submit(self._guarded, "tasks", self._open_tasks, request, default=[])
            leads_future = pool.submit(self._guarded, "leads", self._recent_leads, request, default=[])
            contacts_future = pool.submit(self._guarded, "contacts", self._recent_contacts, request, default=[])
            projects_future = pool.submit(self._guarded, "projects", self._recent_projects, request, default=[])
            history_future = pool.submit(self._guarded, "history", self._history, request, default=[])
            knowledge_future = pool.submit(
                self._guarded, "knowledge", self._knowledge, request, message, default=[]
            )
            snapshot = BusinessSnapshot(
                counts=counts_future.result(),
                open_tasks=tasks_future.result(),
                leads=leads_future.result(),
                contacts=contacts_future.result(),
                projects=projects_future.result(),
            )
            history = history_future.result()
            knowledge = knowledge_future.result()

        prompt = build_system_prompt(settings, snapshot, knowledge)
        self.logger.info(
            "Prepared context",
            extra={
                "conversation_id": request.conversation_id,
                "company_id": request.company_id,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
                "chars": len(prompt),
            },
        )
        return AssembledContext(
            system_prompt=prompt,
            history=history,
            snapshot=snapshot,
            knowledge=knowledge,
        )

    def _guarded(self, section: str, loader: Callable[..., T], *args: Any, default: T) -> T:
        try:
            return loader(*args)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Context section %s unavailable: %s", section, exc)
            return default

    # ---- Business snapshot ----------------------------------------------
    def _counts(self, request: ToolRequest) -> Dict[str, int]:
        company = request.company_id

        def count(table: str, *where: Condition) -> int:
            return self.db.count(table, company_id=company, where=list(where))

        return {
            "leads": count("clients", IS_LEAD),
            "contacts": count("clients", _NOT_LEAD),
            "projects": count("projects"),
            "deals": count("projects", ("status", "in", DEAL_STATUSES)),
            "tasks": count("tasks"),
            "open_tasks": count("tasks", ("status", "in", ("OPEN", "IN_PROGRESS"))),
        }

    def _open_tasks(self, request: ToolRequest) -> List[Dict[str, Any]]:
        return self.db.select(
            "tasks",
            company_id=request.company_id,
            where=[("status", "in", ("OPEN", "IN_PROGRESS"))],
            limit=self.config.recent_tasks,
        )

    def _recent_leads(self, request: ToolRequest) -> List[Dict[str, Any]]:
        return self.db.select(
            "clients", company_id=request.company_id, where=[IS_LEAD], limit=self.config.recent_leads
        )

    def _recent_contacts(self, request: ToolRequest) -> List[Dict[str, Any]]:
        return self.db.select(
            "clients", company_id=request.company_id, where=[_NOT_LEAD], limit=self.config.recent_contacts
        )

    def _recent_projects(self, request: ToolRequest) -> List[Dict[str, Any]]:
        return self.db.select("projects", company_id=request.company_id, limit=self.config.recent_projects)

    # ---- Conversation and knowledge ---------------------------------------
    def _history(self, request: ToolRequest) -> List[Message]:
        if not request.conversation_id:
            return []
        rows = self.conversations.recent_history(
            request.conversation_id,
            window_minutes=self.config.history_window_minutes,
            limit=self.config.history_limit,
        )
        history: List[Message] = []
        for row in rows:
            if row["role"] == "user":
                history.append(UserMessage(row["content"]))
            else:
                history.append(AssistantMessage(content=row["content"]))
        return history

    def _knowledge(self, request: ToolRequest, message: str) -> List[KnowledgeMatch]:
        matches = self.knowledge.search(request.company_id, message, user_id=request.user_id)
        if self.security.enable_injection_filter:
            safe = filter_suspicious_entries(
                [{"id": match.id, "title": match.title, "content": match.content} for match in matches],
                self.security.suspicious_phrases,
            )
            kept = {entry["id"] for entry in safe}
            matches = [match for match in matches if match.id in kept]
        self.knowledge.touch(match.id for match in matches)
        return matches


__all__ = ["AssembledContext", "DEAL_STATUSES", "MemoryManager"]
