"""Assemble the full tool catalogue with handlers bound to their implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List

from ..store.db import PenguinDB
from ..store.knowledge import KnowledgeStore
from . import contacts, finance, knowledge, leads, projects, talent, tasks
from .base import ToolRegistry, ToolSpec

if TYPE_CHECKING:  # pragma: no cover - import only for type checking
    from ..memory.action_ledger import ActionLedger

logger = logging.getLogger("penguin_brain.tools.catalog")

ALL_SPECS: List[ToolSpec] = [
    *contacts.SPECS,
    *tasks.SPECS,
    *leads.SPECS,
    *projects.SPECS,
    *knowledge.SPECS,
    *talent.SPECS,
    *finance.SPECS,
]


def _bind(registry: ToolRegistry, specs: List[ToolSpec], *implementations: Any) -> None:
    for spec in specs:
        handler = None
        for implementation in implementations:
            handler = getattr(implementation, spec.name, None)
            if handler is not None:
                break
        if handler is None:
            raise RuntimeError(f"No handler implements tool '{spec.name}'")
        registry.register(spec.bind(handler))


def build_registry(db: PenguinDB, knowledge_store: KnowledgeStore, ledger: "ActionLedger") -> ToolRegistry:
    """Every declared tool, bound to a handler sharing ``db``."""

    registry = ToolRegistry()
    talent_tools = talent.TalentTools(db)
    _bind(registry, contacts.SPECS, contacts.ContactTools(db))
    _bind(registry, tasks.SPECS, tasks.TaskTools(db))
    _bind(registry, leads.SPECS, leads.LeadTools(db))
    _bind(registry, projects.SPECS, projects.ProjectTools(db))
    _bind(registry, knowledge.SPECS, knowledge.KnowledgeTools(knowledge_store, ledger))
    _bind(registry, talent.SPECS, talent_tools, talent.BookingTools(db, talent_tools))
    _bind(
        registry,
        finance.SPECS,
        finance.InvoiceTools(db),
        finance.ExpenseTools(db),
    )
    logger.debug("Tool registry built", extra={"tool_count": len(registry.names())})
    return registry


__all__ = ["ALL_SPECS", "build_registry"]
