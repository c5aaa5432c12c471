"""Project (property/portfolio) tools."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..store.db import Condition, contains
from .base import ToolKind, ToolRequest, ToolResult, array, boolean, declare, number, string
from .entity import EntityTools, arg_text, clamp_limit, money, parse_amount

PROJECT_STATUSES = (
    "ACTIVE",
    "PENDING",
    "COMPLETED",
    "ON_HOLD",
    "CANCELLED",
    "WON",
    "LOST",
    "IN_PROGRESS",
    "AVAILABLE",
    "SOLD",
    "RENTED",
)
REVENUE_TYPES = ("RECURRING", "ONE_TIME")
_TYPE_HINT = "Project type (e.g., 'SOFTWARE', 'MARKETING', 'DESIGN', 'CONSULTING', 'OPERATIONS', or custom type)"

SPECS = [
    declare(
        "create_project",
        "Create a new project",
        {
            "title": string("Project title"),
            "property_type": string(_TYPE_HINT),
            "address": string("Project address/location"),
            "district": string("District/area"),
            "price": number("Project price/value"),
            "description": string("Project description"),
            "status": string("Project status", enum=PROJECT_STATUSES),
            "payment_date": string("Payment date when the deal was closed (ISO format, e.g., '2024-11-16')"),
            "revenue_type": string(
                "Revenue type - RECURRING for rent, ONE_TIME for sales", enum=REVENUE_TYPES
            ),
        },
        ["title", "property_type", "address"],
        entity_type="project",
    ),
    declare(
        "update_project",
        "Update an existing project. If project_id is not available, you can provide the title or "
        "address to look it up.",
        {
            "project_id": string("ID of the project to update (preferred)"),
            "lookup_title": string("Project title to look up if project_id is not available"),
            "address": string("Project address to look up if project_id is not available"),
            "title": string("New project title (for updating)"),
            "price": number("Project price/value"),
            "status": string("Project status", enum=PROJECT_STATUSES),
            "description": string("Project description"),
            "bedrooms": number("Number of bedrooms"),
            "bathrooms": number("Number of bathrooms"),
            "payment_date": string(
                "Payment date when the deal was closed (ISO format). Set to empty string to clear."
            ),
            "revenue_type": string(
                "Revenue type - RECURRING for rent, ONE_TIME for sales", enum=REVENUE_TYPES
            ),
        },
        entity_type="project",
    ),
    declare(
        "delete_project",
        "Delete a project from the system. Can delete by project_id OR by title. "
        "Always confirm with user before deleting.",
        {
            "project_id": string("ID of the project to delete (if known)"),
            "title": string("Project title to look up and delete"),
        },
        entity_type="project",
    ),
    declare(
        "bulk_delete_projects",
        "Delete multiple projects/properties at once. Always confirm with user before bulk deleting.",
        {
            "project_ids": array(string(), "Array of project IDs to delete"),
            "reason": string("Reason for deletion (e.g., 'old projects', 'cancelled')"),
        },
        ["project_ids"],
        entity_type="project",
    ),
    declare(
        "bulk_update_projects",
        "Update multiple projects at once with the same status, property_type, or district. "
        "Use this when user wants to update many projects with the same values.",
        {
            "project_ids": array(
                string(), "Array of project IDs to update. Get these from search_projects first."
            ),
            "new_status": string("New status to apply to all projects", enum=PROJECT_STATUSES),
            "new_property_type": string("New project type"),
            "new_district": string("New district to apply to all projects"),
            "reason": string("Reason for bulk update (e.g., 'marking all pending as won')"),
        },
        ["project_ids"],
        entity_type="project",
    ),
    declare(
        "search_projects",
        "Search for projects by type, status, price range, location, or other criteria. "
        "This searches the company's project portfolio.",
        {
            "get_stats": boolean(
                "If true, returns aggregated statistics (counts by status, property_type) instead of raw "
                "projects. Use this when user asks for counts/totals."
            ),
            "query": string("General search term to match against title, description, or address"),
            "property_type": string("Filter by project type"),
            "status": string("Filter by project status", enum=PROJECT_STATUSES),
            "district": string("Filter by district/area"),
            "min_price": number("Filter projects with price >= this amount"),
            "max_price": number("Filter projects with price <= this amount"),
            "min_bedrooms": number("Filter properties with bedrooms >= this number"),
            "max_bedrooms": number("Filter properties with bedrooms <= this number"),
            "min_bathrooms": number("Filter properties with bathrooms >= this number"),
            "min_square_feet": number("Filter properties with square footage >= this amount"),
            "is_featured": boolean("Filter featured properties only"),
            "created_after": string("Filter projects created after this date (ISO format)"),
            "created_before": string("Filter projects created before this date (ISO format)"),
            "updated_after": string("Filter projects updated after this date (ISO format)"),
            "updated_before": string("Filter projects updated before this date (ISO format)"),
            "payment_date_after": string("Filter projects with payment_date >= this date (ISO format)"),
            "payment_date_before": string("Filter projects with payment_date <= this date (ISO format)"),
            "revenue_type": string("Filter by revenue type", enum=REVENUE_TYPES),
        },
        kind=ToolKind.SEARCH,
        entity_type="project",
    ),
]

# search argument -> (column, operator)
_RANGE_FILTERS: Dict[str, Tuple[str, str]] = {
    "min_price": ("price", ">="),
    "max_price": ("price", "<="),
    "min_bedrooms": ("bedrooms", ">="),
    "max_bedrooms": ("bedrooms", "<="),
    "min_bathrooms": ("bathrooms", ">="),
    "min_square_feet": ("square_feet", ">="),
}
_DATE_FILTERS: Dict[str, Tuple[str, str]] = {
    "created_after": ("created_at", ">="),
    "created_before": ("created_at", "<="),
    "updated_after": ("updated_at", ">="),
    "updated_before": ("updated_at", "<="),
    "payment_date_after": ("payment_date", ">="),
    "payment_date_before": ("payment_date", "<="),
}


def describe_project(row: Dict[str, Any]) -> str:
    return f"{row.get('title')} - {row.get('address') or 'no address'} ({row.get('property_type') or 'untyped'})"


def public_project(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "title": row.get("title"),
        "property_type": row.get("property_type"),
        "address": row.get("address"),
        "district": row.get("district"),
        "price": row.get("price"),
        "status": row.get("status"),
        "payment_date": row.get("payment_date"),
        "revenue_type": row.get("revenue_type"),
        "created_at": row.get("created_at"),
    }


class ProjectTools(EntityTools):
    table = "projects"
    noun = ("project", "項目")

    def create_project(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        values: Dict[str, Any] = {
            "title": arg_text(args, "title"),
            "property_type": arg_text(args, "property_type"),
            "address": arg_text(args, "address"),
            "status": arg_text(args, "status") or "AVAILABLE",
            "revenue_type": arg_text(args, "revenue_type") or "ONE_TIME",
            "created_by": request.user_id,
        }
        for field in ("district", "description", "payment_date"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        price = parse_amount(args.get("price"))
        if price is not None:
            values["price"] = price
        row = self._create_verified(request, values)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Project \"{row['title']}\" created successfully", f"✓ 已成功建立項目「{row['title']}」"
            ),
            data=public_project(row),
            extras={"entity_id": row["id"]},
        )

    def _lookup(
        self, request: ToolRequest, column: str, term: str, tool: str, verb: Tuple[str, str], extra: Dict[str, Any]
    ) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        matches = self._find(request, search=[((column,), contains(term))], limit=5)
        if not matches:
            return None, self._not_found(request, term)
        if len(matches) > 1:
            return None, self._disambiguate(
                request,
                tool,
                matches,
                id_key="project_id",
                describe=describe_project,
                verb=verb,
                extra_args=extra,
            )
        return matches[0], None

    def update_project(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target: Optional[Dict[str, Any]] = None
        project_id = arg_text(args, "project_id")
        if project_id:
            target = self._fetch(request, project_id)
        extra = {
            key: value
            for key, value in args.items()
            if key not in ("project_id", "lookup_title", "address") and value is not None
        }
        for column, key in (("address", "address"), ("title", "lookup_title")):
            if target is None and arg_text(args, key):
                target, failure = self._lookup(
                    request, column, arg_text(args, key) or "", "update_project", ("Update", "更新"), extra
                )
                if failure is not None:
                    return failure
        if target is None:
            return ToolResult(
                success=False,
                message=request.msg(
                    "❌ Project not found with that ID." if project_id else "❌ Please provide project_id, title, or address.",
                    "❌ 找不到該 ID 的項目。" if project_id else "❌ 請提供項目 ID、標題或地址。",
                ),
            )

        updates: Dict[str, Any] = {}
        changes: List[str] = []
        title = arg_text(args, "title")
        if title and title != target.get("title"):
            updates["title"] = title
            changes.append(f"Title: {target.get('title')} → {title}")
        if args.get("price") is not None:
            price = parse_amount(args["price"])
            if price is None:
                return ToolResult(
                    success=False,
                    message=request.msg(f"❌ Could not read the price \"{args['price']}\"", f"❌ 無法識別價格「{args['price']}」"),
                )
            if price != target.get("price"):
                updates["price"] = price
                changes.append(f"Price: {money(target.get('price'))} → {money(price)}")
        for field in ("status", "description", "revenue_type"):
            value = arg_text(args, field)
            if value and value != target.get(field):
                updates[field] = value
                changes.append(f"{field.replace('_', ' ').capitalize()}: {target.get(field) or '-'} → {value}")
        for field in ("bedrooms", "bathrooms"):
            amount = parse_amount(args.get(field))
            if amount is None:
                continue
            count = int(amount) if amount.is_integer() else amount
            if count != target.get(field):
                updates[field] = count
                changes.append(f"{field.capitalize()}: {target.get(field) or '-'} → {count}")
        if "payment_date" in args:
            updates["payment_date"] = arg_text(args, "payment_date")
            changes.append(f"Payment date: {updates['payment_date'] or 'cleared'}")

        if not updates:
            return ToolResult(
                success=True,
                message=request.msg(
                    f"ℹ️ No changes needed - {target.get('title')} already matches your request.",
                    f"ℹ️ 無需更改 - {target.get('title')} 已符合您的要求。",
                ),
                data=public_project(target),
                extras={"entity_id": target["id"], "unchanged": True},
            )
        row = self._update_verified(request, target["id"], updates)
        summary = "\n".join(changes)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Project \"{row['title']}\" updated successfully\n\nUpdated: {summary}",
                f"✓ 已成功更新項目「{row['title']}」\n\n已更新: {summary}",
            ),
            data=public_project(row),
            extras={"entity_id": row["id"], "title": row["title"]},
        )

    def delete_project(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target: Optional[Dict[str, Any]] = None
        project_id = arg_text(args, "project_id")
        if project_id:
            target = self._fetch(request, project_id)
        if target is None and arg_text(args, "title"):
            target, failure = self._lookup(
                request, "title", arg_text(args, "title") or "", "delete_project", ("Delete", "刪除"), {}
            )
            if failure is not None:
                return failure
        if target is None or not self._delete_verified(request, target["id"]):
            return ToolResult(
                success=False,
                message=request.msg("❌ Project not found or already deleted", "❌ 找不到項目或已被刪除"),
            )
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Deleted project: **{target['title']}**", f"✓ 已刪除項目: **{target['title']}**"),
            data={"title": target["title"]},
            extras={"entity_id": target["id"]},
        )

    def bulk_delete_projects(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        deleted, failed, errors = self._bulk(
            args.get("project_ids") or [], lambda row_id: self._delete_verified(request, row_id)
        )
        message = request.msg(f"✓ Deleted {deleted} project(s)", f"✓ 已刪除 {deleted} 個項目")
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={"deleted": deleted, "failed": failed, "errors": errors},
        )

    def bulk_update_projects(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        values: Dict[str, Any] = {}
        labels: List[str] = []
        for key, column, label in (
            ("new_status", "status", "status"),
            ("new_property_type", "property_type", "type"),
            ("new_district", "district", "district"),
        ):
            if arg_text(args, key):
                values[column] = arg_text(args, key)
                labels.append(f"{label} → {values[column]}")
        if not values:
            return ToolResult(
                success=False,
                message=request.msg(
                    "❌ No update fields provided. Specify new_status, new_property_type, or new_district.",
                    "❌ 未提供更新欄位。請指定 new_status、new_property_type 或 new_district。",
                ),
            )

        def apply(row_id: str) -> bool:
            if self._fetch(request, row_id) is None:
                return False
            self._update_verified(request, row_id, values)
            return True

        updated, failed, errors = self._bulk(args.get("project_ids") or [], apply)
        summary = ", ".join(labels)
        message = request.msg(
            f"✓ Updated {updated} project(s) ({summary})", f"✓ 已更新 {updated} 個項目 ({summary})"
        )
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={"updated": updated, "failed": failed, "errors": errors},
        )

    def search_projects(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        if args.get("get_stats"):
            stats = self._stats(request, {"by_status": "status", "by_type": "property_type"})
            return ToolResult(
                success=True,
                message=request.msg(
                    f"You have {stats['total']} project(s) in total.", f"您共有 {stats['total']} 個項目。"
                ),
                data=stats,
                extras={"count": stats["total"]},
            )
        where: List[Condition] = []
        for field in ("status", "revenue_type"):
            if arg_text(args, field):
                where.append((field, "=", arg_text(args, field)))
        for key, (column, operator) in _RANGE_FILTERS.items():
            amount = parse_amount(args.get(key))
            if amount is not None:
                where.append((column, operator, amount))
        for key, (column, operator) in _DATE_FILTERS.items():
            if arg_text(args, key):
                where.append((column, operator, arg_text(args, key)))
        if args.get("is_featured"):
            where.append(("is_featured", "=", True))
        search: List[Tuple[Tuple[str, ...], str]] = []
        for field in ("property_type", "district"):
            if arg_text(args, field):
                search.append(((field,), contains(arg_text(args, field) or "")))
        if arg_text(args, "query"):
            search.append((("title", "description", "address"), contains(arg_text(args, "query") or "")))
        rows = self._find(request, where=where, search=search, limit=clamp_limit(args.get("limit"), 50, 100))
        return self._found(request, rows, bool(where or search), public_project)


__all__ = ["PROJECT_STATUSES", "ProjectTools", "SPECS", "describe_project", "public_project"]
