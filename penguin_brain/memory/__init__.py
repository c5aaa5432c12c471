"""Context assembly and the action ledger."""

from __future__ import annotations

from .action_ledger import ActionLedger, generate_action_summary
from .manager import AssembledContext, MemoryManager

__all__ = ["ActionLedger", "AssembledContext", "MemoryManager", "generate_action_summary"]
