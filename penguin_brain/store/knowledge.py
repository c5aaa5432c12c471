"""Knowledge entries with embedding similarity search and a per-user memory cap."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..config import CONFIG, KnowledgeConfig
from ..embeddings import cosine_similarity, embed_single
from .db import Condition, PenguinDB, to_timestamp, utcnow

# Categories written by the memory extractor for a single user.
MEMORY_CATEGORIES = ("preference", "fact", "pattern", "person")


@dataclass
class KnowledgeMatch:
    id: str
    title: str
    content: str
    category: Optional[str]
    similarity: float
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "similarity": round(self.similarity, 3),
        }


class KnowledgeStore:
    """Tenant knowledge base; entries without ``user_id`` are company-wide."""

    def __init__(
        self,
        db: PenguinDB,
        embedder: Callable[[str], Sequence[float]] = embed_single,
        config: Optional[KnowledgeConfig] = None,
    ) -> None:
        self.db = db
        self.embedder = embedder
        self.config = config or CONFIG.knowledge
        self.logger = logging.getLogger("penguin_brain.knowledge")

    def search(
        self,
        company_id: str,
        query: str,
        *,
        user_id: Optional[str] = None,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[KnowledgeMatch]:
        """Entries at or above the similarity floor, best first.

        Embedding failures propagate; callers decide how to degrade.
        """

        threshold = self.config.match_threshold if match_threshold is None else match_threshold
        count = min(match_count or self.config.match_count, self.config.max_match_count)
        vector = list(self.embedder(query))
        if not vector:
            return []
        where: List[Condition] = [("embedding", "not null", None)]
        if category:
            where.append(("category", "=", category))
        rows = [
            row
            for row in self.db.select("knowledge_entries", company_id=company_id, where=where)
            if (row.get("user_id") is None or row.get("user_id") == user_id)
            and isinstance(row.get("embedding"), list)
            and len(row["embedding"]) == len(vector)
        ]
        if not rows:
            return []
        scores = cosine_similarity(vector, [row["embedding"] for row in rows])
        ranked = sorted(zip(rows, scores), key=lambda pair: pair[1], reverse=True)
        return [
            KnowledgeMatch(
                id=row["id"],
                title=row["title"],
                content=row["content"],
                category=row.get("category"),
                similarity=float(score),
                user_id=row.get("user_id"),
            )
            for row, score in ranked
            if score >= threshold
        ][:count]

    def touch(self, entry_ids: Iterable[str]) -> None:
        stamp = to_timestamp(utcnow())
        for entry_id in entry_ids:
            self.db.update("knowledge_entries", entry_id, {"last_accessed_at": stamp})

    def add_entry(
        self,
        company_id: str,
        title: str,
        content: str,
        *,
        user_id: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Store an entry; user-scoped entries respect the memory cap."""

        if user_id:
            self._enforce_cap(company_id, user_id)
        return self.db.insert(
            "knowledge_entries",
            {
                "company_id": company_id,
                "user_id": user_id,
                "title": title,
                "content": content,
                "category": category,
                "tags": tags or [],
                "embedding": list(self.embedder(f"{title}\n{content}")),
                "last_accessed_at": to_timestamp(utcnow()),
            },
        )

    def _enforce_cap(self, company_id: str, user_id: str) -> None:
        where: List[Condition] = [("user_id", "=", user_id)]
        overflow = self.db.count("knowledge_entries", company_id=company_id, where=where) - self.config.memory_cap + 1
        if overflow <= 0:
            return
        oldest = self.db.select(
            "knowledge_entries",
            company_id=company_id,
            where=where,
            order_by="last_accessed_at",
            descending=False,
            limit=overflow,
        )
        for row in oldest:
            self.db.delete("knowledge_entries", row["id"], company_id)
        self.logger.info(
            "Evicted %d least recently used memories", len(oldest), extra={"company_id": company_id}
        )


__all__ = ["KnowledgeMatch", "KnowledgeStore", "MEMORY_CATEGORIES"]
