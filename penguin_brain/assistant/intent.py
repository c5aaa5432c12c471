"""Action-intent detection for a user message.

An action-intent turn forces the model to call a tool, buffers its prose
until a tool call shows up, and enables the planner fallback. The keyword
classifier is the default; anything implementing ``IntentClassifier`` can
replace it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


@dataclass(frozen=True)
class IntentDecision:
    action_intent: bool
    reason: str
    verb: Optional[str] = None
    entity: Optional[str] = None


class IntentClassifier(Protocol):
    def classify(self, message: str) -> IntentDecision:
        ...


ACTION_VERBS: Sequence[str] = (
    "update", "change", "set", "correct", "fix", "adjust", "modify",
    "create", "add", "delete", "remove", "mark", "complete", "assign",
    "unassign", "move", "edit",
    "how many", "count", "total", "list", "show", "find", "search", "get",
    "display", "fetch", "check",
    "更新", "更改", "設定", "校正", "修正", "調整", "創建", "新增", "刪除",
    "移除", "標記", "完成", "指派", "移動", "編輯",
    "有多少", "幾個", "數量", "總共", "列出", "顯示", "搜尋", "查找", "取得",
)

ENTITY_KEYWORDS: Sequence[str] = (
    "task", "property", "project", "house", "apartment", "unit", "listing",
    "contact", "client", "lead", "price", "pricing", "rent", "status",
    "priority", "stage", "assignee", "address", "title", "district",
    "won", "lost", "sold", "available", "pending", "active", "completed",
    "deal", "deals", "projects", "tasks", "contacts", "leads", "overdue",
    "任務", "物業", "項目", "房屋", "公寓", "單位", "清單", "聯絡人", "客戶",
    "潛在客戶", "價格", "租金", "狀態", "優先級", "階段", "地址", "標題",
    "已贏", "已輸", "已售", "可用", "待處理", "活躍", "已完成", "交易", "過期",
)

COUNT_PATTERN = re.compile(r"(how many|幾個|有多少|總共|count|total|statistics|stats)")
CURRENCY_PATTERN = re.compile(r"(\$|€|£|¥|hkd|usd|cad|aud|rmb)?\s*\d+[,\s]?\d*\s*(k|thousand|万|萬)?")
ADDRESS_PATTERN = re.compile(r"(address|street|tower|block|road|avenue|floor|unit|地址|街|大廈|樓|單位)")


def _first_match(text: str, keywords: Sequence[str]) -> Optional[str]:
    for keyword in keywords:
        if keyword in text:
            return keyword
    return None


class KeywordIntentClassifier:
    """Substring heuristics over bilingual verb and entity vocabularies."""

    def __init__(
        self,
        verbs: Sequence[str] = ACTION_VERBS,
        entities: Sequence[str] = ENTITY_KEYWORDS,
    ) -> None:
        self.verbs = tuple(verbs)
        self.entities = tuple(entities)

    def classify(self, message: str) -> IntentDecision:
        text = (message or "").lower()
        verb = _first_match(text, self.verbs)
        entity = _first_match(text, self.entities)

        if COUNT_PATTERN.search(text) and entity:
            return IntentDecision(True, "count_query", verb=verb, entity=entity)
        if verb and entity:
            return IntentDecision(True, "verb_entity", verb=verb, entity=entity)
        if verb and CURRENCY_PATTERN.search(text) and ADDRESS_PATTERN.search(text):
            return IntentDecision(True, "price_at_address", verb=verb)
        return IntentDecision(False, "no_match", verb=verb, entity=entity)


__all__ = [
    "ACTION_VERBS",
    "ENTITY_KEYWORDS",
    "IntentClassifier",
    "IntentDecision",
    "KeywordIntentClassifier",
]
