"""Application runtime bootstrap helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .assistant.grounding import GroundingGuard
from .assistant.intent import KeywordIntentClassifier
from .assistant.orchestrator import PenguinAssistant
from .assistant.tool_policy import ToolPolicy
from .config import AppConfig, CONFIG
from .llm_client import LLMClient
from .memory.action_ledger import ActionLedger
from .memory.manager import MemoryManager
from .security.rate_limit import RateLimiter
from .store.conversations import ConversationStore
from .store.db import PenguinDB
from .store.knowledge import KnowledgeStore
from .store.settings import SettingsStore
from .tools.base import ToolRegistry
from .tools.catalog import build_registry
from .tools.executor import ToolExecutor


@dataclass
class AppRuntime:
    """Bundle of shared services for the Penguin application."""

    config: AppConfig
    db: PenguinDB
    llm_client: LLMClient
    conversations: ConversationStore
    settings: SettingsStore
    knowledge: KnowledgeStore
    ledger: ActionLedger
    registry: ToolRegistry
    memory_manager: MemoryManager
    assistant: PenguinAssistant
    rate_limiter: RateLimiter


def create_runtime(
    config: AppConfig = CONFIG,
    *,
    sqlite_path: Optional[Path] = None,
    llm_client: Optional[LLMClient] = None,
    embedder: Optional[Callable[[str], Sequence[float]]] = None,
) -> AppRuntime:
    """Instantiate shared services once and wire dependencies explicitly.

    Dependency order:
    1. Storage and the LLM client
    2. Stores built on the database (conversations, settings, knowledge, ledger)
    3. Tool registry and its executor
    4. MemoryManager (needs the stores)
    5. PenguinAssistant (needs all of the above)
    """
    # Layer 1: Clients
    db = PenguinDB(sqlite_path or config.paths.sqlite_path)
    llm_client = llm_client or LLMClient(config.llm)

    # Layer 2: Stores
    conversations = ConversationStore(db)
    settings = SettingsStore(db)
    if embedder is None:
        knowledge = KnowledgeStore(db, config=config.knowledge)
    else:
        knowledge = KnowledgeStore(db, embedder, config=config.knowledge)
    ledger = ActionLedger(db, config.agent)

    # Layer 3: Tools
    registry = build_registry(db, knowledge, ledger)
    executor = ToolExecutor(registry)

    # Layer 4: Memory management
    memory_manager = MemoryManager(db, conversations, knowledge, config.agent)

    # Layer 5: Orchestration
    assistant = PenguinAssistant(
        llm_client=llm_client,
        conversations=conversations,
        settings=settings,
        memory_manager=memory_manager,
        registry=registry,
        ledger=ledger,
        executor=executor,
        tool_policy=ToolPolicy(registry),
        grounding=GroundingGuard(),
        intent_classifier=KeywordIntentClassifier(),
        config=config.agent,
    )

    return AppRuntime(
        config=config,
        db=db,
        llm_client=llm_client,
        conversations=conversations,
        settings=settings,
        knowledge=knowledge,
        ledger=ledger,
        registry=registry,
        memory_manager=memory_manager,
        assistant=assistant,
        rate_limiter=RateLimiter(config.rate_limit),
    )


__all__ = ["AppRuntime", "create_runtime"]
