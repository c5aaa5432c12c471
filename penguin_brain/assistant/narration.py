"""Server-sent event framing and the bilingual progress narration of a turn."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

from ..tools.base import ToolResult

DONE = "data: [DONE]\n\n"

# (english, chinese) noun for each tool suffix
_NOUNS: Dict[str, Tuple[str, str]] = {
    "contact": ("contact", "聯絡人"),
    "contacts": ("contacts", "聯絡人"),
    "task": ("task", "任務"),
    "tasks": ("tasks", "任務"),
    "lead": ("lead", "潛在客戶"),
    "leads": ("leads", "潛在客戶"),
    "project": ("project", "項目"),
    "projects": ("projects", "項目"),
    "talent": ("talent", "人才"),
    "booking": ("booking", "預約"),
    "bookings": ("bookings", "預約"),
    "invoice": ("invoice", "發票"),
    "invoices": ("invoices", "發票"),
    "expense": ("expense", "開支"),
    "expenses": ("expenses", "開支"),
    "knowledge": ("knowledge base", "知識庫"),
    "my_actions": ("your action history", "操作記錄"),
}

_SEARCH_ICONS = {
    "contacts": "🔍",
    "tasks": "📋",
    "leads": "🎯",
    "projects": "🏢",
    "talent": "🌟",
    "bookings": "📅",
    "invoices": "🧾",
    "expenses": "💰",
    "knowledge": "📚",
    "my_actions": "🕘",
}

# Tools whose start status does not follow the verb_noun pattern.
_SPECIAL_STARTS: Dict[str, Tuple[str, str, str]] = {
    "clean_duplicate_contacts": ("🧹", "Cleaning duplicate contacts...", "正在清理重複聯絡人..."),
    "complete_task": ("✅", "Marking task as complete...", "正在標記任務為已完成..."),
    "cancel_booking": ("🚫", "Cancelling booking...", "正在取消預約..."),
    "mark_invoice_paid": ("✅", "Marking invoice as paid...", "正在標記發票為已付款..."),
    "approve_expense": ("✅", "Approving expense...", "正在批准開支..."),
}

_VERBS: Dict[str, Tuple[str, str, str]] = {
    "create": ("➕", "Creating", "正在建立"),
    "update": ("✏️", "Updating", "正在更新"),
    "delete": ("🗑️", "Deleting", "正在刪除"),
    "bulk_delete": ("🗑️", "Deleting multiple", "正在批量刪除"),
    "bulk_update": ("✏️", "Updating multiple", "正在批量更新"),
}


def sse_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def content_chunk(text: str) -> str:
    """One OpenAI-style streaming delta carrying ``text``."""

    return sse_event({"choices": [{"delta": {"content": text}, "index": 0}]})


def error_chunk(message: str, status: int) -> str:
    return sse_event({"error": message, "status": status})


def _noun(suffix: str, language: str) -> str:
    pair = _NOUNS.get(suffix, (suffix.replace("_", " "), suffix.replace("_", " ")))
    return pair[1] if language == "zh" else pair[0]


class Narrator:
    """Status lines for one turn, rendered in the user's language."""

    def __init__(self, language: str = "en") -> None:
        self.language = language

    def _pick(self, en: str, zh: str) -> str:
        return zh if self.language == "zh" else en

    def status(self, icon: str, en: str, zh: str) -> str:
        return content_chunk(f"{icon} {self._pick(en, zh)}\n\n")

    def thinking(self) -> str:
        return self.status("💭", "Thinking...", "思考中...")

    def preparing_tool(self) -> str:
        return self.status("🔧", "Preparing to call tool...", "準備調用工具...")

    def summarizing(self) -> str:
        return self.status("📝", "Summarizing results...", "正在整理結果...")

    def analyzing(self) -> str:
        return self.status("🔄", "Analyzing request...", "正在分析請求...")

    def tool_started(self, tool_name: str) -> str:
        special = _SPECIAL_STARTS.get(tool_name)
        if special is not None:
            return self.status(*special)
        if tool_name.startswith("search_"):
            suffix = tool_name[len("search_"):]
            icon = _SEARCH_ICONS.get(suffix, "🔍")
            if suffix == "my_actions":
                return self.status(icon, "Checking your action history...", "正在查看操作記錄...")
            return self.status(icon, f"Searching {_noun(suffix, 'en')}...", f"正在搜尋{_noun(suffix, 'zh')}...")
        for prefix in ("bulk_delete", "bulk_update", "create", "update", "delete"):
            if tool_name.startswith(prefix + "_"):
                icon, en, zh = _VERBS[prefix]
                suffix = tool_name[len(prefix) + 1:]
                return self.status(icon, f"{en} {_noun(suffix, 'en')}...", f"{zh}{_noun(suffix, 'zh')}...")
        return self.status("🔧", f"Executing {tool_name}...", f"正在執行 {tool_name}...")

    def tool_finished(self, tool_name: str, result: ToolResult) -> str:
        if not result.success:
            return self.status("⚠️", "Error occurred", "發生錯誤")
        if tool_name.startswith("search_"):
            count = result.result_count
            return self.status("📖", f"Reading {count} results...", f"正在閱讀 {count} 個結果...")
        if tool_name == "clean_duplicate_contacts":
            deleted = result.extras.get("deleted", 0)
            kept = result.extras.get("kept", 0)
            if deleted:
                return self.status("✅", f"Cleaned: deleted {deleted}, kept {kept}", f"已清理：刪除 {deleted} 個，保留 {kept} 個")
            return self.status("ℹ️", "No duplicates found", "沒有發現重複")
        if tool_name.startswith("bulk_delete_"):
            deleted = result.extras.get("deleted", 0)
            return self.status("✅", f"Verified: Deleted {deleted} records", f"已驗證：已刪除 {deleted} 筆記錄")
        if tool_name.startswith("bulk_update_") or tool_name.startswith("update_"):
            return self.status("✅", "Verified: Update successful", "已驗證：更新成功")
        if tool_name.startswith("create_"):
            return self.status("✅", "Verified: Creation successful", "已驗證：建立成功")
        if tool_name.startswith("delete_"):
            return self.status("✅", "Verified: Deletion successful", "已驗證：刪除成功")
        return self.status("✅", "Verified: Action completed", "已驗證：操作完成")

    def skipped_ungrounded(self) -> str:
        return self.status("⚠️", "Skipped: name not found in your message", "已略過：您的訊息中沒有該名稱")

    def duplicate_notice(self, summary: Optional[str]) -> str:
        detail = f" ({summary})" if summary else ""
        return self._pick(
            f"\n\n⚠️ I already completed this action recently{detail}, so I didn't repeat it.\n\n",
            f"\n\n⚠️ 我最近已完成此操作{detail}，因此沒有重複執行。\n\n",
        )

    def verified_message(self, result: ToolResult) -> str:
        return f"\n\n{result.message}\n\n"


SEARCH_FALLBACK = "Search completed. Results shown above.\n搜尋完成。結果已顯示於上方。"
ACTION_NOT_VERIFIED = "❌ Action not verified (no tool executed).\n操作未驗證（未執行任何工具）。"


__all__ = [
    "ACTION_NOT_VERIFIED",
    "DONE",
    "Narrator",
    "SEARCH_FALLBACK",
    "content_chunk",
    "error_chunk",
    "sse_event",
]
