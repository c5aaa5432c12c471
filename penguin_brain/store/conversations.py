"""Conversation, message and usage-log persistence."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from .db import PenguinDB, timestamp_ago, to_timestamp, utcnow

DEFAULT_TITLE = "New conversation"
TITLE_MAX_CHARS = 50


def derive_title(message: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Short conversation title from the first user message."""

    collapsed = re.sub(r"\s+", " ", message).strip()
    if len(collapsed) <= max_chars:
        return collapsed or DEFAULT_TITLE
    return collapsed[: max_chars - 1].rstrip() + "…"


class ConversationStore:
    """Reads and writes conversations and their immutable messages."""

    def __init__(self, db: PenguinDB) -> None:
        self.db = db
        self.logger = logging.getLogger("penguin_brain.conversations")

    def ensure_conversation(
        self,
        conversation_id: Optional[str],
        user_id: str,
        company_id: str,
    ) -> Dict[str, Any]:
        """Return the caller's conversation, creating it on first message."""

        if conversation_id:
            existing = self.db.get("conversations", conversation_id)
            if existing is not None:
                if existing["user_id"] != user_id or existing["company_id"] != company_id:
                    raise ValidationError("Conversation not found")
                if existing.get("deleted_at"):
                    raise ValidationError("Conversation has been deleted")
                return existing
        values: Dict[str, Any] = {"user_id": user_id, "company_id": company_id, "title": DEFAULT_TITLE}
        if conversation_id:
            values["id"] = conversation_id
        created = self.db.insert("conversations", values)
        self.logger.info("Conversation created", extra={"conversation_id": created["id"]})
        return created

    def record_user_message(self, conversation: Dict[str, Any], content: str) -> Dict[str, Any]:
        """Store the user turn, derive a title if needed and bump ``updated_at``."""

        message = self.add_message(conversation["id"], "user", content)
        changes: Dict[str, Any] = {}
        if conversation.get("title") in (None, "", DEFAULT_TITLE):
            changes["title"] = derive_title(content)
        self.db.update("conversations", conversation["id"], changes)
        return message

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        model_used: Optional[str] = None,
    ) -> Dict[str, Any]:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role}")
        return self.db.insert(
            "messages",
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "metadata": metadata,
                "model_used": model_used,
            },
        )

    def recent_history(
        self,
        conversation_id: str,
        *,
        window_minutes: int,
        limit: int,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Messages from the last ``window_minutes``, oldest first, capped at ``limit``.

        Empty assistant messages are dropped.
        """

        conversation = self.db.get("conversations", conversation_id)
        if conversation is None or conversation.get("deleted_at"):
            return []
        rows = self.db.select(
            "messages",
            where=[
                ("conversation_id", "=", conversation_id),
                ("created_at", ">=", timestamp_ago(minutes=window_minutes, now=now)),
            ],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        rows.reverse()
        return [
            row for row in rows
            if not (row["role"] == "assistant" and not (row.get("content") or "").strip())
        ]

    def soft_delete(self, conversation_id: str, user_id: str) -> bool:
        conversation = self.db.get("conversations", conversation_id)
        if conversation is None or conversation["user_id"] != user_id:
            return False
        return self.db.update(
            "conversations", conversation_id, {"deleted_at": to_timestamp(utcnow())}
        )

    def mark_learnings_extracted(self, conversation_id: str) -> bool:
        return self.db.update("conversations", conversation_id, {"learnings_extracted": True})

    def log_usage(
        self,
        *,
        user_id: str,
        company_id: str,
        conversation_id: str,
        provider: str,
        model: str,
        input_chars: int,
        output_chars: int,
    ) -> None:
        self.db.insert(
            "usage_logs",
            {
                "user_id": user_id,
                "company_id": company_id,
                "conversation_id": conversation_id,
                "provider": provider,
                "model": model,
                "input_chars": input_chars,
                "output_chars": output_chars,
            },
        )


__all__ = ["ConversationStore", "DEFAULT_TITLE", "derive_title"]
