"""Persistence for conversations, settings, knowledge and tenant business data."""

from .conversations import ConversationStore, DEFAULT_TITLE, derive_title
from .db import PenguinDB
from .knowledge import KnowledgeMatch, KnowledgeStore
from .settings import Profile, SettingsStore

__all__ = [
    "ConversationStore",
    "DEFAULT_TITLE",
    "KnowledgeMatch",
    "KnowledgeStore",
    "PenguinDB",
    "Profile",
    "SettingsStore",
    "derive_title",
]
