"""Lead tools.

A lead is a contact row whose ``lead_stage`` is not ``NONE``. Deleting a lead
resets the lead fields and keeps the contact.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..store.db import Condition, contains
from .base import ToolKind, ToolRequest, ToolResult, array, boolean, declare, number, string
from .contacts import full_name
from .entity import EntityTools, arg_text, clamp_limit, parse_amount

LEAD_STAGES = ("NEW", "CONTACTED", "QUALIFIED", "PROPOSAL", "NEGOTIATION", "WON", "LOST")
LEAD_PRIORITIES = ("LOW", "MEDIUM", "HIGH")
ACTIVE_STAGES = ("NEW", "CONTACTED", "QUALIFIED", "PROPOSAL", "NEGOTIATION")

# Values that turn a lead back into a plain contact.
LEAD_RESET = {"lead_stage": "NONE", "lead_source": None, "lead_priority": "MEDIUM", "value_estimate": None}

IS_LEAD: Condition = ("lead_stage", "!=", "NONE")

SPECS = [
    declare(
        "create_lead",
        "Create a new lead (a contact with sales opportunity tracking)",
        {
            "first_name": string("Lead's first name"),
            "last_name": string("Lead's last name"),
            "email": string("Lead's email address"),
            "phone": string("Lead's phone number"),
            "source": string("Lead source (e.g., WEBSITE, REFERRAL, COLD_CALL)"),
            "stage": string("Lead stage", enum=LEAD_STAGES),
            "priority": string("Lead priority", enum=LEAD_PRIORITIES),
            "value_estimate": number("Estimated deal value"),
            "project_id": string("Related project ID"),
            "notes": string("Additional notes"),
        },
        ["source"],
        entity_type="lead",
    ),
    declare(
        "update_lead",
        "Update an existing lead. Pass lead_id when known, otherwise the lead's first_name/last_name.",
        {
            "lead_id": string("ID of the lead to update"),
            "first_name": string("Lead's first name, to look it up if lead_id is not available"),
            "last_name": string("Lead's last name, to look it up if lead_id is not available"),
            "stage": string("Lead stage", enum=LEAD_STAGES),
            "priority": string("Lead priority", enum=LEAD_PRIORITIES),
            "value_estimate": number("Estimated deal value"),
            "notes": string("Additional notes"),
        },
        entity_type="lead",
    ),
    declare(
        "delete_lead",
        "Delete a lead from the system. Can delete by lead_id OR by source/notes. "
        "Always confirm with user before deleting.",
        {
            "lead_id": string("ID of the lead to delete (if known)"),
            "source": string("Lead source to look up"),
            "notes": string("Lead notes to search"),
        },
        entity_type="lead",
    ),
    declare(
        "bulk_delete_leads",
        "Delete multiple leads at once. Always confirm with user before bulk deleting.",
        {
            "lead_ids": array(string(), "Array of lead IDs to delete"),
            "reason": string("Reason for deletion (e.g., 'lost', 'duplicates')"),
        },
        ["lead_ids"],
        entity_type="lead",
    ),
    declare(
        "search_leads",
        "Search for leads by source, stage, priority, or other criteria. "
        "Use this to find specific leads or analyze lead pipeline.",
        {
            "get_stats": boolean(
                "If true, returns aggregated statistics (counts by stage, priority) instead of raw leads. "
                "Use this when user asks for counts/totals."
            ),
            "query": string("General search term"),
            "source": string("Filter by lead source (e.g., 'Website', 'Referral')"),
            "stage": string("Filter by lead stage", enum=LEAD_STAGES),
            "priority": string("Filter by priority", enum=LEAD_PRIORITIES),
            "min_value_estimate": number("Filter leads with estimated value >= this amount"),
            "max_value_estimate": number("Filter leads with estimated value <= this amount"),
            "project_id": string("Filter leads associated with a specific project"),
            "created_by_automation": boolean("Filter by whether lead was auto-created"),
        },
        kind=ToolKind.SEARCH,
        entity_type="lead",
    ),
]


def describe_lead(row: Dict[str, Any]) -> str:
    return f"{full_name(row)} ({row.get('lead_source') or 'unknown source'}, {row.get('lead_stage')})"


def public_lead(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "first_name": row.get("first_name"),
        "last_name": row.get("last_name"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "source": row.get("lead_source"),
        "stage": row.get("lead_stage"),
        "priority": row.get("lead_priority"),
        "value_estimate": row.get("value_estimate"),
        "notes": row.get("notes"),
        "created_at": row.get("created_at"),
    }


class LeadTools(EntityTools):
    table = "clients"
    noun = ("lead", "潛在客戶")

    def _lead(self, request: ToolRequest, lead_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetch(request, lead_id)
        return row if row and row.get("lead_stage") != "NONE" else None

    def _missing(self, request: ToolRequest) -> ToolResult:
        return ToolResult(
            success=False,
            message=request.msg("❌ Lead not found or already deleted", "❌ 找不到潛在客戶或已被刪除"),
        )

    def create_lead(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        source = arg_text(args, "source") or ""
        values: Dict[str, Any] = {
            "first_name": arg_text(args, "first_name") or "Lead",
            "last_name": arg_text(args, "last_name") or f"from {source}",
            "lead_source": source,
            "lead_stage": arg_text(args, "stage") or "NEW",
            "lead_priority": arg_text(args, "priority") or "MEDIUM",
            "status": "ACTIVE",
            "owner_id": request.user_id,
        }
        for field in ("email", "phone", "notes", "project_id"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        value_estimate = parse_amount(args.get("value_estimate"))
        if value_estimate is not None:
            values["value_estimate"] = value_estimate
        row = self._create_verified(request, values)
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Lead created successfully from {source}", f"✓ 已成功從{source}建立潛在客戶"),
            data=public_lead(row),
            extras={"entity_id": row["id"]},
        )

    def update_lead(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        lead_id = arg_text(args, "lead_id")
        if lead_id:
            target = self._lead(request, lead_id)
            if target is None:
                return self._missing(request)
        else:
            search = [((key,), contains(arg_text(args, key) or "")) for key in ("first_name", "last_name") if arg_text(args, key)]
            matches = self._find(request, where=[IS_LEAD], search=search, limit=5) if search else []
            if not matches:
                term = " ".join(arg_text(args, key) or "" for key in ("first_name", "last_name")).strip()
                return self._not_found(request, term)
            if len(matches) > 1:
                extra = {key: args[key] for key in ("stage", "priority", "value_estimate", "notes") if args.get(key) is not None}
                return self._disambiguate(
                    request,
                    "update_lead",
                    matches,
                    id_key="lead_id",
                    describe=describe_lead,
                    verb=("Update", "更新"),
                    extra_args=extra,
                )
            target = matches[0]
        updates: Dict[str, Any] = {}
        if arg_text(args, "stage"):
            updates["lead_stage"] = arg_text(args, "stage")
        if arg_text(args, "priority"):
            updates["lead_priority"] = arg_text(args, "priority")
        value_estimate = parse_amount(args.get("value_estimate"))
        if value_estimate is not None:
            updates["value_estimate"] = value_estimate
        if arg_text(args, "notes"):
            updates["notes"] = arg_text(args, "notes")
        if not updates:
            return ToolResult(
                success=False,
                message=request.msg(
                    "No fields provided to update. Tell me what should change.",
                    "沒有提供需要更新的欄位，請告訴我要修改甚麼。",
                ),
            )
        row = self._update_verified(request, target["id"], updates)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Lead {full_name(row)} updated successfully", f"✓ 已成功更新潛在客戶 {full_name(row)}"
            ),
            data=public_lead(row),
            extras={"entity_id": row["id"], "name": full_name(row)},
        )

    def _convert(self, request: ToolRequest, lead_id: str) -> bool:
        if self._lead(request, lead_id) is None:
            return False
        self._update_verified(request, lead_id, dict(LEAD_RESET))
        return True

    def delete_lead(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target: Optional[Dict[str, Any]] = None
        lead_id = arg_text(args, "lead_id")
        if lead_id:
            target = self._lead(request, lead_id)
        if target is None and (arg_text(args, "source") or arg_text(args, "notes")):
            search: List[Tuple[Tuple[str, ...], str]] = []
            if arg_text(args, "source"):
                search.append((("lead_source",), contains(arg_text(args, "source") or "")))
            if arg_text(args, "notes"):
                search.append((("notes",), contains(arg_text(args, "notes") or "")))
            matches = self._find(request, where=[IS_LEAD], search=search, limit=5)
            if not matches:
                return ToolResult(
                    success=False,
                    message=request.msg("❌ No lead found matching criteria", "❌ 找不到符合條件的潛在客戶"),
                )
            if len(matches) > 1:
                return self._disambiguate(
                    request,
                    "delete_lead",
                    matches,
                    id_key="lead_id",
                    describe=describe_lead,
                    verb=("Delete", "刪除"),
                )
            target = matches[0]
        if target is None:
            if lead_id:
                return self._missing(request)
            return ToolResult(
                success=False,
                message=request.msg("❌ Please provide lead_id or search criteria", "❌ 請提供潛在客戶 ID 或搜索條件"),
            )
        self._update_verified(request, target["id"], dict(LEAD_RESET))
        name, source = full_name(target), target.get("lead_source") or ""
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Converted lead back to contact: **{name}** ({source})",
                f"✓ 已成功將潛在客戶轉為聯絡人: **{name}** ({source})",
            ),
            data={"name": name, "source": source},
            extras={"entity_id": target["id"]},
        )

    def bulk_delete_leads(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        deleted, failed, errors = self._bulk(args.get("lead_ids") or [], lambda row_id: self._convert(request, row_id))
        message = request.msg(f"✓ Deleted {deleted} lead(s)", f"✓ 已刪除 {deleted} 個潛在客戶")
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={"deleted": deleted, "failed": failed, "errors": errors},
        )

    def search_leads(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        if args.get("get_stats"):
            stats = self._stats(request, {"by_stage": "lead_stage", "by_priority": "lead_priority"}, where=[IS_LEAD])
            active = sum(count for stage, count in stats["by_stage"].items() if stage in ACTIVE_STAGES)
            stats["active_count"] = active
            return ToolResult(
                success=True,
                message=request.msg(
                    f"You have {stats['total']} lead(s), {active} active in the pipeline.",
                    f"您共有 {stats['total']} 個潛在客戶，其中 {active} 個仍在跟進中。",
                ),
                data=stats,
                extras={"count": stats["total"]},
            )
        where: List[Condition] = [IS_LEAD]
        if arg_text(args, "stage"):
            where.append(("lead_stage", "=", arg_text(args, "stage")))
        if arg_text(args, "priority"):
            where.append(("lead_priority", "=", arg_text(args, "priority")))
        if arg_text(args, "project_id"):
            where.append(("project_id", "=", arg_text(args, "project_id")))
        min_value = parse_amount(args.get("min_value_estimate"))
        if min_value is not None:
            where.append(("value_estimate", ">=", min_value))
        max_value = parse_amount(args.get("max_value_estimate"))
        if max_value is not None:
            where.append(("value_estimate", "<=", max_value))
        if args.get("created_by_automation") is not None:
            where.append(("created_by_automation", "=", bool(args["created_by_automation"])))
        search: List[Tuple[Tuple[str, ...], str]] = []
        if arg_text(args, "source"):
            search.append((("lead_source",), contains(arg_text(args, "source") or "")))
        if arg_text(args, "query"):
            search.append(
                (("first_name", "last_name", "email", "lead_source", "notes"), contains(arg_text(args, "query") or ""))
            )
        rows = self._find(request, where=where, search=search, limit=clamp_limit(args.get("limit"), 50, 100))
        return self._found(request, rows, len(where) > 1 or bool(search), public_lead)


__all__ = ["LEAD_RESET", "LEAD_STAGES", "LeadTools", "SPECS", "describe_lead", "public_lead"]
