"""Task tools."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..store.db import Condition, contains, to_timestamp, utcnow
from .base import ToolKind, ToolRequest, ToolResult, array, boolean, declare, string
from .entity import EntityTools, arg_text, clamp_limit, day

TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")
TASK_TYPES = ("TASK", "FOLLOW_UP", "CALL", "EMAIL", "MEETING", "AUTOMATION_REQUEST")
TASK_STATUSES = ("OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED")
TASK_FIELDS = ("title", "description", "priority", "status", "due_date", "assignee_id")

_TARGET = {
    "task_id": string("ID of the task"),
    "lookup_title": string("Task title to look up if task_id is not available"),
}

SPECS = [
    declare(
        "create_task",
        "Create a new task",
        {
            "title": string("Task title"),
            "description": string("Task description"),
            "priority": string("Task priority", enum=TASK_PRIORITIES),
            "type": string("Task type", enum=TASK_TYPES),
            "due_date": string("Due date in ISO format"),
            "assignee_id": string("User ID to assign the task to"),
            "client_id": string("Related client ID"),
            "lead_id": string("Related lead ID"),
            "project_id": string("Related project ID"),
        },
        ["title"],
        entity_type="task",
    ),
    declare(
        "update_task",
        "Update an existing task",
        {
            **_TARGET,
            "title": string("New task title"),
            "description": string("Task description"),
            "priority": string("Task priority", enum=TASK_PRIORITIES),
            "status": string("Task status", enum=TASK_STATUSES),
            "due_date": string("Due date in ISO format"),
            "assignee_id": string("User ID to assign the task to"),
        },
        entity_type="task",
    ),
    declare(
        "complete_task",
        "Mark a task as completed",
        {**_TARGET, "resolution_notes": string("Notes about task completion")},
        entity_type="task",
    ),
    declare(
        "delete_task",
        "Delete a task from the system. Always confirm with user before deleting.",
        dict(_TARGET),
        entity_type="task",
    ),
    declare(
        "bulk_delete_tasks",
        "Delete multiple tasks at once. Always confirm with user before bulk deleting.",
        {
            "task_ids": array(string(), "Array of task IDs to delete"),
            "reason": string("Reason for deletion (e.g., 'completed', 'outdated')"),
        },
        ["task_ids"],
        entity_type="task",
    ),
    declare(
        "search_tasks",
        "Search for tasks by status, priority, assignee, due date, or other criteria. "
        "Use this to find specific tasks or analyze task data.",
        {
            "get_stats": boolean(
                "If true, returns aggregated statistics (counts by status, priority, type) instead of "
                "raw tasks. Use this when user asks for counts/totals."
            ),
            "query": string("General search term to match against task title or description"),
            "status": string("Filter by task status", enum=TASK_STATUSES),
            "priority": string("Filter by priority level", enum=TASK_PRIORITIES),
            "type": string("Filter by task type", enum=TASK_TYPES),
            "assignee_id": string("Filter by assignee user ID"),
            "client_id": string("Filter tasks related to a specific client"),
            "lead_id": string("Filter tasks related to a specific lead"),
            "project_id": string("Filter tasks related to a specific project"),
            "due_before": string("Filter tasks due before this date (ISO format)"),
            "due_after": string("Filter tasks due after this date (ISO format)"),
            "overdue": boolean("If true, only return overdue tasks"),
            "created_by_automation": boolean("Filter by whether task was auto-created"),
        },
        kind=ToolKind.SEARCH,
        entity_type="task",
    ),
]


def describe_task(row: Dict[str, Any]) -> str:
    due = day(row.get("due_date"))
    detail = f"due {due}" if due else f"{(row.get('status') or 'OPEN').lower()}, added {day(row.get('created_at'))}"
    return f"{row.get('title')} ({detail})"


def public_task(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "title": row.get("title"),
        "description": row.get("description"),
        "priority": row.get("priority"),
        "type": row.get("type"),
        "status": row.get("status"),
        "due_date": row.get("due_date"),
        "assignee_id": row.get("assignee_id"),
        "created_at": row.get("created_at"),
    }


class TaskTools(EntityTools):
    table = "tasks"
    noun = ("task", "任務")

    def _target(
        self, request: ToolRequest, args: Dict[str, Any], tool: str, verb: Tuple[str, str]
    ) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        """Resolve ``task_id`` or ``lookup_title`` to exactly one row."""

        task_id = arg_text(args, "task_id")
        if task_id:
            row = self._fetch(request, task_id)
            if row is None:
                return None, ToolResult(
                    success=False,
                    message=request.msg("❌ Task not found or already deleted", "❌ 找不到任務或已被刪除"),
                )
            return row, None
        title = arg_text(args, "lookup_title") or ""
        matches = self._find(request, search=[(("title",), contains(title))], limit=5) if title else []
        if not matches:
            return None, self._not_found(request, title)
        if len(matches) > 1:
            extra = {key: value for key, value in args.items() if key not in ("task_id", "lookup_title")}
            return None, self._disambiguate(
                request, tool, matches, id_key="task_id", describe=describe_task, verb=verb, extra_args=extra
            )
        return matches[0], None

    def create_task(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        values: Dict[str, Any] = {
            "title": arg_text(args, "title"),
            "priority": arg_text(args, "priority") or "MEDIUM",
            "type": arg_text(args, "type") or "TASK",
            "status": "OPEN",
            "assignee_id": arg_text(args, "assignee_id") or request.user_id,
            "created_by": request.user_id,
        }
        for field in ("description", "due_date", "client_id", "lead_id", "project_id"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        row = self._create_verified(request, values)
        title = row["title"]
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Task \"{title}\" created successfully", f"✓ 已成功建立任務「{title}」"),
            data=public_task(row),
            extras={"entity_id": row["id"]},
        )

    def update_task(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._target(request, args, "update_task", ("Update", "更新"))
        if failure is not None:
            return failure
        updates = {field: args[field] for field in TASK_FIELDS if args.get(field) is not None}
        if updates.get("status") in ("COMPLETED", "CANCELLED"):
            updates["resolved_at"] = to_timestamp(utcnow())
        if not updates:
            return ToolResult(
                success=False,
                message=request.msg(
                    "No fields provided to update. Tell me what should change.",
                    "沒有提供需要更新的欄位，請告訴我要修改甚麼。",
                ),
            )
        row = self._update_verified(request, target["id"], updates)
        fields = ", ".join(field for field in updates if field != "resolved_at")
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Task \"{row['title']}\" updated successfully\n\nUpdated fields: {fields}",
                f"✓ 已成功更新任務「{row['title']}」\n\n已更新欄位: {fields}",
            ),
            data=public_task(row),
            extras={"entity_id": row["id"], "title": row["title"]},
        )

    def complete_task(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._target(request, args, "complete_task", ("Complete", "完成"))
        if failure is not None:
            return failure
        updates: Dict[str, Any] = {"status": "COMPLETED", "resolved_at": to_timestamp(utcnow())}
        if arg_text(args, "resolution_notes"):
            updates["resolution_notes"] = arg_text(args, "resolution_notes")
        row = self._update_verified(request, target["id"], updates)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Task \"{row['title']}\" marked as completed.", f"✓ 任務「{row['title']}」已標記為完成。"
            ),
            data=public_task(row),
            extras={"entity_id": row["id"], "title": row["title"]},
        )

    def delete_task(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._target(request, args, "delete_task", ("Delete", "刪除"))
        if failure is not None:
            return failure
        if not self._delete_verified(request, target["id"]):
            return ToolResult(
                success=False,
                message=request.msg("❌ Task not found or already deleted", "❌ 找不到任務或已被刪除"),
            )
        return ToolResult(
            success=True,
            message=request.msg("✓ Task deleted successfully", "✓ 已成功刪除任務"),
            data={"title": target["title"]},
            extras={"entity_id": target["id"]},
        )

    def bulk_delete_tasks(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        deleted, failed, errors = self._bulk(
            args.get("task_ids") or [], lambda row_id: self._delete_verified(request, row_id)
        )
        message = request.msg(f"✓ Deleted {deleted} task(s)", f"✓ 已刪除 {deleted} 個任務")
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={"deleted": deleted, "failed": failed, "errors": errors},
        )

    def search_tasks(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        if args.get("get_stats"):
            stats = self._stats(request, {"by_status": "status", "by_priority": "priority", "by_type": "type"})
            open_count = sum(
                count for status, count in stats["by_status"].items() if status not in ("COMPLETED", "CANCELLED")
            )
            stats["open_count"] = open_count
            return ToolResult(
                success=True,
                message=request.msg(
                    f"You have {stats['total']} task(s), {open_count} still open.",
                    f"您共有 {stats['total']} 個任務，其中 {open_count} 個未完成。",
                ),
                data=stats,
                extras={"count": stats["total"]},
            )
        where: List[Condition] = []
        for field in ("status", "priority", "type", "assignee_id", "client_id", "lead_id", "project_id"):
            if arg_text(args, field):
                where.append((field, "=", arg_text(args, field)))
        if arg_text(args, "due_before"):
            where.append(("due_date", "<", arg_text(args, "due_before")))
        if arg_text(args, "due_after"):
            where.append(("due_date", ">", arg_text(args, "due_after")))
        if args.get("overdue"):
            where.append(("due_date", "<", to_timestamp(utcnow())))
            where.append(("status", "!=", "COMPLETED"))
        if args.get("created_by_automation") is not None:
            where.append(("created_by_automation", "=", bool(args["created_by_automation"])))
        search = []
        if arg_text(args, "query"):
            search.append((("title", "description"), contains(arg_text(args, "query") or "")))
        rows = self._find(request, where=where, search=search, limit=clamp_limit(args.get("limit"), 50, 100))
        return self._found(request, rows, bool(where or search), public_task)


__all__ = ["SPECS", "TASK_STATUSES", "TaskTools", "describe_task", "public_task"]
