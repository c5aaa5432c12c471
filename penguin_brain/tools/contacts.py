"""Contact tools: create, update, delete, duplicate cleanup and search."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..store.db import Condition, contains, escape_like
from .base import ToolKind, ToolRequest, ToolResult, array, boolean, declare, number, string
from .entity import EntityTools, arg_text, clamp_limit, day

CONTACT_STATUSES = ("ACTIVE", "INACTIVE")
CONTACT_FIELDS = ("first_name", "last_name", "email", "phone", "company", "notes", "status")
LOOKUP_FIELDS = ("first_name", "last_name", "email")

SPECS = [
    declare(
        "create_contact",
        "Create a new contact/client in the system",
        {
            "first_name": string("First name"),
            "last_name": string("Last name"),
            "email": string("Email address"),
            "phone": string("Phone number"),
            "company": string("Company name"),
            "notes": string("Additional notes"),
        },
        ["first_name", "last_name"],
        entity_type="contact",
    ),
    declare(
        "update_contact",
        "Update an existing contact/client. Pass client_id when known; otherwise first_name, "
        "last_name and/or email identify the contact and the remaining fields are the new values.",
        {
            "client_id": string("ID of the contact to update"),
            "first_name": string("First name"),
            "last_name": string("Last name"),
            "email": string("Email address"),
            "phone": string("Phone number"),
            "company": string("Company name"),
            "notes": string("Additional notes"),
            "status": string("Contact status", enum=CONTACT_STATUSES),
        },
        entity_type="contact",
    ),
    declare(
        "delete_contact",
        "Delete a contact/client from the system. Can delete by client_id OR by name/email. "
        "Always confirm with user before deleting.",
        {
            "client_id": string("ID of the contact to delete (if known)"),
            "first_name": string("First name to look up contact"),
            "last_name": string("Last name to look up contact"),
            "email": string("Email address to uniquely identify contact"),
        },
        entity_type="contact",
    ),
    declare(
        "bulk_delete_contacts",
        "Delete multiple contacts at once. Use this to clean up duplicates. "
        "Always confirm with user before bulk deleting.",
        {
            "client_ids": array(string(), "Array of contact IDs to delete"),
            "reason": string("Reason for deletion (e.g., 'duplicates', 'inactive')"),
        },
        ["client_ids"],
        entity_type="contact",
    ),
    declare(
        "clean_duplicate_contacts",
        "Find and delete duplicate contacts by name, automatically keeping the newest one. "
        "Use this when user asks to clean up or delete duplicates.",
        {
            "first_name": string("First name to find duplicates for"),
            "last_name": string("Last name to find duplicates for"),
            "keep": string("Which record to keep (default: newest)", enum=("newest", "oldest")),
        },
        ["first_name", "last_name"],
        entity_type="contact",
    ),
    declare(
        "search_contacts",
        "Search for contacts/clients by name, email, phone, company, or other criteria. Use this "
        "BEFORE updating or deleting contacts to find their IDs, or to list contacts matching "
        "specific criteria.",
        {
            "get_stats": boolean(
                "If true, returns aggregated statistics (counts by status) instead of raw contacts. "
                "Use this when user asks for counts/totals."
            ),
            "find_duplicates": boolean(
                "If true, returns contacts with duplicate names grouped together. "
                "Use when user asks about duplicate contacts."
            ),
            "query": string("General search term to match against name, email, phone, or company"),
            "first_name": string("Filter by first name (partial match)"),
            "last_name": string("Filter by last name (partial match)"),
            "email": string("Filter by email (partial match)"),
            "phone": string("Filter by phone number (partial match)"),
            "company": string("Filter by company name (partial match)"),
            "status": string("Filter by contact status", enum=CONTACT_STATUSES),
            "limit": number("Maximum number of results to return (default: 20, max: 100)"),
        },
        kind=ToolKind.SEARCH,
        entity_type="contact",
    ),
]


def full_name(row: Dict[str, Any]) -> str:
    return " ".join(part for part in (row.get("first_name"), row.get("last_name")) if part).strip()


def describe_contact(row: Dict[str, Any]) -> str:
    detail = row.get("email") or row.get("phone") or f"added {day(row.get('created_at'))}"
    return f"{full_name(row)} ({detail})"


def public_contact(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "first_name": row.get("first_name"),
        "last_name": row.get("last_name"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "company": row.get("company"),
        "status": row.get("status"),
        "created_at": row.get("created_at"),
    }


class ContactTools(EntityTools):
    table = "clients"
    noun = ("contact", "聯絡人")

    def create_contact(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        values: Dict[str, Any] = {
            field: arg_text(args, field)
            for field in ("first_name", "last_name", "email", "phone", "company", "notes")
            if arg_text(args, field) is not None
        }
        values.update({"status": "ACTIVE", "owner_id": request.user_id})
        row = self._create_verified(request, values)
        name = full_name(row)
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Contact {name} created successfully", f"✓ 已成功建立聯絡人 {name}"),
            data=public_contact(row),
            extras={"entity_id": row["id"]},
        )

    def _match_exact(self, request: ToolRequest, args: Dict[str, Any], keys: Tuple[str, ...]) -> List[Dict[str, Any]]:
        where: List[Condition] = [
            (key, "ilike", escape_like(arg_text(args, key) or "")) for key in keys if arg_text(args, key)
        ]
        return self._find(request, where=where, limit=5) if where else []

    def update_contact(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        client_id = arg_text(args, "client_id")
        if client_id:
            target = self._fetch(request, client_id)
            if target is None:
                return ToolResult(
                    success=False,
                    message=request.msg("❌ Contact not found", "❌ 找不到該聯絡人"),
                )
            updates = {field: args[field] for field in CONTACT_FIELDS if field in args and args[field] is not None}
        else:
            matches = self._match_exact(request, args, LOOKUP_FIELDS)
            term = " ".join(arg_text(args, key) or "" for key in LOOKUP_FIELDS).strip()
            if not matches:
                return ToolResult(
                    success=False,
                    message=request.msg(
                        f"❌ Couldn't find a contact matching \"{term}\"",
                        f"❌ 找不到符合「{term}」的聯絡人",
                    ),
                )
            if len(matches) > 1:
                editable = {
                    field: args[field]
                    for field in CONTACT_FIELDS
                    if field not in LOOKUP_FIELDS and args.get(field) is not None
                }
                return self._disambiguate(
                    request,
                    "update_contact",
                    matches,
                    id_key="client_id",
                    describe=describe_contact,
                    verb=("Update", "更新"),
                    extra_args=editable,
                )
            target = matches[0]
            updates = {
                field: args[field]
                for field in CONTACT_FIELDS
                if field not in LOOKUP_FIELDS and args.get(field) is not None
            }
        if not updates:
            return ToolResult(
                success=False,
                message=request.msg(
                    "No fields provided to update. Tell me what should change.",
                    "沒有提供需要更新的欄位，請告訴我要修改甚麼。",
                ),
            )
        row = self._update_verified(request, target["id"], updates)
        fields = ", ".join(updates)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Contact updated successfully\n\nUpdated fields: {fields}",
                f"✓ 已成功更新聯絡人\n\n已更新欄位: {fields}",
            ),
            data=public_contact(row),
            extras={"entity_id": row["id"], "name": full_name(row)},
        )

    def delete_contact(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        client_id = arg_text(args, "client_id")
        if client_id:
            target = self._fetch(request, client_id)
            if target is None:
                return ToolResult(
                    success=False,
                    message=request.msg("❌ Contact not found or already deleted", "❌ 找不到聯絡人或已被刪除"),
                )
            matches = [target]
        else:
            matches = self._match_exact(request, args, ("email",))
            if not matches:
                search = [
                    ((key,), contains(arg_text(args, key) or ""))
                    for key in ("first_name", "last_name")
                    if arg_text(args, key)
                ]
                matches = self._find(request, search=search, limit=5) if search else []
        if not matches:
            term = " ".join(
                arg_text(args, key) or "" for key in ("first_name", "last_name", "email")
            ).strip()
            return ToolResult(
                success=False,
                message=request.msg(
                    f"❌ No contact found with name \"{term}\"", f"❌ 找不到名為「{term}」的聯絡人"
                ),
            )
        if len(matches) > 1:
            return self._disambiguate(
                request,
                "delete_contact",
                matches,
                id_key="client_id",
                describe=describe_contact,
                verb=("Delete", "刪除"),
            )
        target = matches[0]
        if not self._delete_verified(request, target["id"]):
            return ToolResult(
                success=False,
                message=request.msg("❌ Contact not found or already deleted", "❌ 找不到聯絡人或已被刪除"),
            )
        name = full_name(target)
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Deleted contact: **{name}**", f"✓ 已刪除聯絡人: **{name}**"),
            data={"name": name},
            extras={"entity_id": target["id"]},
        )

    def bulk_delete_contacts(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        deleted, failed, errors = self._bulk(
            args.get("client_ids") or [], lambda row_id: self._delete_verified(request, row_id)
        )
        message = request.msg(f"✓ Deleted {deleted} contact(s)", f"✓ 已刪除 {deleted} 個聯絡人")
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={"deleted": deleted, "failed": failed, "errors": errors},
        )

    def clean_duplicate_contacts(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        first = arg_text(args, "first_name") or ""
        last = arg_text(args, "last_name") or ""
        keep_oldest = args.get("keep") == "oldest"
        rows = self._find(
            request,
            where=[("first_name", "ilike", escape_like(first)), ("last_name", "ilike", escape_like(last))],
            limit=None,
            descending=not keep_oldest,
        )
        name = f"{first} {last}".strip()
        if len(rows) <= 1:
            return ToolResult(
                success=True,
                message=request.msg(f"No duplicates found for {name}", f"沒有找到 {name} 的重複聯絡人"),
                extras={"kept": len(rows), "deleted": 0, "failed": 0},
            )
        kept, duplicates = rows[0], rows[1:]
        deleted, failed, errors = self._bulk(
            [row["id"] for row in duplicates], lambda row_id: self._delete_verified(request, row_id)
        )
        kept_on = day(kept.get("created_at"))
        message = request.msg(
            f"✓ Cleaned {name} duplicates: kept 1 (created {kept_on}), deleted {deleted}",
            f"✓ 已清理 {name} 的重複聯絡人：保留 1 個（建立於 {kept_on}），刪除 {deleted} 個",
        )
        if failed:
            message += request.msg(f", {failed} failed", f"，{failed} 個失敗")
        return ToolResult(
            success=failed == 0,
            message=message,
            extras={
                "kept": 1,
                "deleted": deleted,
                "failed": failed,
                "errors": errors,
                "keep_details": describe_contact(kept),
            },
        )

    def search_contacts(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        if args.get("get_stats"):
            stats = self._stats(request, {"by_status": "status"})
            return ToolResult(
                success=True,
                message=request.msg(
                    f"You have {stats['total']} contact(s) in total.", f"您共有 {stats['total']} 個聯絡人。"
                ),
                data=stats,
                extras={"count": stats["total"]},
            )
        if args.get("find_duplicates"):
            return self._duplicates(request)
        search: List[Tuple[Tuple[str, ...], str]] = []
        query = arg_text(args, "query")
        if query:
            search.append((("first_name", "last_name", "email", "phone", "company"), contains(query)))
        for key in ("first_name", "last_name", "email", "phone", "company"):
            value = arg_text(args, key)
            if value:
                search.append(((key,), contains(value)))
        where: List[Condition] = []
        if arg_text(args, "status"):
            where.append(("status", "=", arg_text(args, "status")))
        rows = self._find(request, where=where, search=search, limit=clamp_limit(args.get("limit"), 20, 100))
        return self._found(request, rows, bool(search or where), public_contact)

    def _duplicates(self, request: ToolRequest) -> ToolResult:
        groups: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        for row in self._find(request, limit=None):
            key = ((row.get("first_name") or "").strip().lower(), (row.get("last_name") or "").strip().lower())
            groups.setdefault(key, []).append(row)
        duplicates = [
            {"name": full_name(rows[0]), "count": len(rows), "contacts": [public_contact(row) for row in rows]}
            for rows in groups.values()
            if len(rows) > 1
        ]
        if not duplicates:
            message = request.msg("No duplicate contacts found.", "沒有找到重複的聯絡人。")
        else:
            names = ", ".join(f"{group['name']} ({group['count']})" for group in duplicates)
            message = request.msg(
                f"Found {len(duplicates)} duplicate group(s): {names}",
                f"找到 {len(duplicates)} 組重複聯絡人：{names}",
            )
        return ToolResult(success=True, message=message, data=duplicates, extras={"count": len(duplicates)})


__all__ = ["CONTACT_STATUSES", "ContactTools", "SPECS", "describe_contact", "full_name", "public_contact"]
