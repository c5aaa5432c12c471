"""Talent roster and booking tools for the talent-agency vertical."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..store.db import Condition, PenguinDB, contains
from .base import ToolKind, ToolRequest, ToolResult, array, declare, number, obj, string
from .entity import EntityTools, arg_text, clamp_limit, day, money, parse_amount

AVAILABILITY = ("available", "booked", "on_hold", "inactive")
BOOKING_STATUSES = ("pending", "confirmed", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "invoiced", "paid")

TALENT_FIELDS = (
    "name",
    "stage_name",
    "category",
    "email",
    "phone",
    "social_handles",
    "follower_count",
    "engagement_rate",
    "rate_card",
    "availability",
    "contract_start",
    "contract_end",
    "tags",
    "notes",
)
BOOKING_FIELDS = ("booking_type", "date", "duration", "fee", "status", "payment_status", "notes")

_TALENT_PROPERTIES = {
    "name": string("Full name"),
    "stage_name": string("Performance/brand name"),
    "category": string("Category: influencer, model, actor, musician, etc."),
    "email": string("Email address"),
    "phone": string("Phone number"),
    "social_handles": obj("Social media handles e.g. {instagram: '@name', tiktok: '@name'}"),
    "follower_count": number("Total follower count"),
    "engagement_rate": number("Average engagement rate percentage"),
    "rate_card": obj("Rate card e.g. {social_post: 500, video: 2000}"),
    "tags": array(string(), "Searchable tags"),
    "notes": string("Notes about the talent"),
}

SPECS = [
    declare(
        "create_talent",
        "Add a new talent/influencer/model to the roster",
        dict(_TALENT_PROPERTIES),
        ["name"],
        entity_type="talent",
    ),
    declare(
        "update_talent",
        "Update an existing talent's details. Pass talent_id when known, otherwise lookup_name.",
        {
            "talent_id": string("ID of the talent to update"),
            "lookup_name": string("Name or stage name to look the talent up if talent_id is not available"),
            **_TALENT_PROPERTIES,
            "availability": string("Availability", enum=AVAILABILITY),
            "contract_start": string("Contract start date (YYYY-MM-DD)"),
            "contract_end": string("Contract end date (YYYY-MM-DD)"),
        },
        entity_type="talent",
    ),
    declare(
        "search_talent",
        "Search the talent roster",
        {
            "query": string("Search by name, stage name, or tags"),
            "category": string("Filter by category"),
            "availability": string("Filter by availability status", enum=AVAILABILITY),
            "limit": number("Max results (default 20)"),
        },
        kind=ToolKind.SEARCH,
        entity_type="talent",
    ),
    declare(
        "delete_talent",
        "Remove a talent from the roster. Always confirm with user before deleting.",
        {
            "talent_id": string("ID of the talent to delete"),
            "lookup_name": string("Name or stage name to look the talent up if talent_id is not available"),
        },
        entity_type="talent",
    ),
    declare(
        "create_booking",
        "Create a new booking for a talent",
        {
            "talent_id": string("ID of the talent to book"),
            "talent_name": string("Name of the talent to book if talent_id is not available"),
            "client_id": string("ID of the client (who booked)"),
            "project_id": string("ID of the related project (optional)"),
            "booking_type": string("Type: photoshoot, video, social_post, event, appearance"),
            "date": string("Booking date (YYYY-MM-DD)"),
            "duration": string("Duration (e.g. '2 hours', 'full day')"),
            "fee": number("Fee amount"),
            "notes": string("Booking notes"),
        },
        ["booking_type", "date"],
        entity_type="booking",
    ),
    declare(
        "update_booking",
        "Update a booking's details or status",
        {
            "booking_id": string("ID of the booking"),
            "booking_type": string(),
            "date": string(),
            "duration": string(),
            "fee": number(),
            "status": string("Booking status", enum=BOOKING_STATUSES),
            "payment_status": string("Payment status", enum=PAYMENT_STATUSES),
            "notes": string(),
        },
        ["booking_id"],
        entity_type="booking",
    ),
    declare(
        "search_bookings",
        "Search bookings",
        {
            "talent_id": string("Filter by talent"),
            "client_id": string("Filter by client"),
            "status": string("Filter by status", enum=BOOKING_STATUSES),
            "date_from": string("Start date (YYYY-MM-DD)"),
            "date_to": string("End date (YYYY-MM-DD)"),
            "limit": number("Max results (default 20)"),
        },
        kind=ToolKind.SEARCH,
        entity_type="booking",
    ),
    declare(
        "cancel_booking",
        "Cancel a booking",
        {"booking_id": string("ID of the booking to cancel")},
        ["booking_id"],
        entity_type="booking",
    ),
]


def talent_label(row: Dict[str, Any]) -> str:
    stage = row.get("stage_name")
    return f"{row.get('name')} ({stage})" if stage and stage != row.get("name") else str(row.get("name"))


def describe_talent(row: Dict[str, Any]) -> str:
    detail = row.get("category") or row.get("email") or f"added {day(row.get('created_at'))}"
    return f"{talent_label(row)} - {detail}"


def public_talent(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "stage_name": row.get("stage_name"),
        "category": row.get("category"),
        "email": row.get("email"),
        "follower_count": row.get("follower_count"),
        "engagement_rate": row.get("engagement_rate"),
        "availability": row.get("availability"),
        "tags": row.get("tags") or [],
    }


def public_booking(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "talent_id": row.get("talent_id"),
        "client_id": row.get("client_id"),
        "booking_type": row.get("booking_type"),
        "date": row.get("date"),
        "duration": row.get("duration"),
        "fee": row.get("fee"),
        "status": row.get("status"),
        "payment_status": row.get("payment_status"),
    }


def _talent_values(args: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field in TALENT_FIELDS:
        value = args.get(field)
        if value is None or value == "":
            continue
        if field == "follower_count":
            value = int(parse_amount(value) or 0)
        elif field == "engagement_rate":
            value = parse_amount(value)
        elif isinstance(value, str):
            value = value.strip()
        values[field] = value
    return values


class TalentTools(EntityTools):
    table = "talent"
    noun = ("talent", "人才")

    def resolve(
        self, request: ToolRequest, talent_id: Optional[str], name: Optional[str], tool: str, verb: Tuple[str, str]
    ) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        """One talent row by id, else by name or stage name."""

        if talent_id:
            row = self._fetch(request, talent_id)
            if row is None:
                return None, ToolResult(
                    success=False, message=request.msg("❌ Talent not found", "❌ 找不到該人才")
                )
            return row, None
        if not name:
            return None, ToolResult(
                success=False,
                message=request.msg("❌ Please tell me which talent", "❌ 請告訴我是哪一位人才"),
            )
        matches = self._find(request, search=[(("name", "stage_name"), contains(name))], limit=5)
        if not matches:
            return None, self._not_found(request, name)
        if len(matches) > 1:
            return None, self._disambiguate(
                request, tool, matches, id_key="talent_id", describe=describe_talent, verb=verb
            )
        return matches[0], None

    def create_talent(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        values = _talent_values(args)
        values.setdefault("availability", "available")
        values["created_by"] = request.user_id
        row = self._create_verified(request, values)
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Created talent: {talent_label(row)}", f"✓ 已新增人才：{talent_label(row)}"),
            data=public_talent(row),
            extras={"entity_id": row["id"]},
        )

    def update_talent(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self.resolve(
            request, arg_text(args, "talent_id"), arg_text(args, "lookup_name"), "update_talent", ("Update", "更新")
        )
        if failure is not None:
            if failure.extras.get("choices"):
                updates = _talent_values(args)
                for choice in failure.extras["choices"]:
                    choice["arguments"].update(updates)
            return failure
        updates = _talent_values(args)
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
                f"✓ Updated talent: {talent_label(row)}\n\nUpdated fields: {', '.join(updates)}",
                f"✓ 已更新人才：{talent_label(row)}\n\n已更新欄位: {', '.join(updates)}",
            ),
            data=public_talent(row),
            extras={"entity_id": row["id"], "name": row["name"]},
        )

    def delete_talent(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self.resolve(
            request, arg_text(args, "talent_id"), arg_text(args, "lookup_name"), "delete_talent", ("Delete", "刪除")
        )
        if failure is not None:
            return failure
        if not self._delete_verified(request, target["id"]):
            return ToolResult(success=False, message=request.msg("❌ Talent not found", "❌ 找不到該人才"))
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Removed talent: {talent_label(target)}", f"✓ 已移除人才：{talent_label(target)}"),
            data={"name": target["name"]},
            extras={"entity_id": target["id"]},
        )

    def search_talent(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        where: List[Condition] = []
        if arg_text(args, "availability"):
            where.append(("availability", "=", arg_text(args, "availability")))
        search: List[Tuple[Tuple[str, ...], str]] = []
        if arg_text(args, "category"):
            search.append((("category",), contains(arg_text(args, "category") or "")))
        if arg_text(args, "query"):
            search.append((("name", "stage_name", "tags"), contains(arg_text(args, "query") or "")))
        rows = self._find(
            request,
            where=where,
            search=search,
            limit=clamp_limit(args.get("limit"), 20, 100),
            order_by="name",
            descending=False,
        )
        return self._found(request, rows, bool(where or search), public_talent)


class BookingTools(EntityTools):
    table = "bookings"
    noun = ("booking", "預約")

    def __init__(self, db: PenguinDB, talent: TalentTools) -> None:
        super().__init__(db)
        self.talent = talent

    def _booking(self, request: ToolRequest, args: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        row = self._fetch(request, arg_text(args, "booking_id"))
        if row is None:
            return None, ToolResult(success=False, message=request.msg("❌ Booking not found", "❌ 找不到該預約"))
        return row, None

    def _talent_name(self, request: ToolRequest, talent_id: Optional[str]) -> str:
        row = self.talent._fetch(request, talent_id)
        return talent_label(row) if row else request.msg("the talent", "該人才")

    def create_booking(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        talent, failure = self.talent.resolve(
            request, arg_text(args, "talent_id"), arg_text(args, "talent_name"), "create_booking", ("Book", "預約")
        )
        if failure is not None:
            if failure.extras.get("choices"):
                for choice in failure.extras["choices"]:
                    choice["arguments"].update(
                        {key: value for key, value in args.items() if key not in ("talent_id", "talent_name")}
                    )
            return failure
        values: Dict[str, Any] = {
            "talent_id": talent["id"],
            "booking_type": arg_text(args, "booking_type"),
            "date": arg_text(args, "date"),
            "status": "pending",
            "payment_status": "pending",
            "created_by": request.user_id,
        }
        for field in ("client_id", "project_id", "duration", "notes"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        fee = parse_amount(args.get("fee"))
        if fee is not None:
            values["fee"] = fee
        row = self._create_verified(request, values)
        name = talent_label(talent)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Booking created for {name} on {row['date']}", f"✓ 已為 {name} 建立 {row['date']} 的預約"
            ),
            data=public_booking(row),
            extras={"entity_id": row["id"], "talent": name},
        )

    def update_booking(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._booking(request, args)
        if failure is not None:
            return failure
        updates: Dict[str, Any] = {}
        for field in BOOKING_FIELDS:
            if args.get(field) is None:
                continue
            updates[field] = parse_amount(args[field]) if field == "fee" else args[field]
        if not updates:
            return ToolResult(
                success=False,
                message=request.msg(
                    "No fields provided to update. Tell me what should change.",
                    "沒有提供需要更新的欄位，請告訴我要修改甚麼。",
                ),
            )
        row = self._update_verified(request, target["id"], updates)
        name = self._talent_name(request, row.get("talent_id"))
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Updated {name}'s {row['booking_type']} booking on {row['date']}",
                f"✓ 已更新 {name} 於 {row['date']} 的{row['booking_type']}預約",
            ),
            data=public_booking(row),
            extras={"entity_id": row["id"], "talent": name},
        )

    def cancel_booking(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._booking(request, args)
        if failure is not None:
            return failure
        row = self._update_verified(request, target["id"], {"status": "cancelled"})
        name = self._talent_name(request, row.get("talent_id"))
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Cancelled {name}'s booking on {row['date']}", f"✓ 已取消 {name} 於 {row['date']} 的預約"
            ),
            data=public_booking(row),
            extras={"entity_id": row["id"], "talent": name},
        )

    def search_bookings(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        where: List[Condition] = []
        for field in ("talent_id", "client_id", "status"):
            if arg_text(args, field):
                where.append((field, "=", arg_text(args, field)))
        if arg_text(args, "date_from"):
            where.append(("date", ">=", arg_text(args, "date_from")))
        if arg_text(args, "date_to"):
            where.append(("date", "<=", arg_text(args, "date_to")))
        rows = self._find(
            request, where=where, limit=clamp_limit(args.get("limit"), 20, 100), order_by="date", descending=False
        )
        result = self._found(request, rows, bool(where), public_booking)
        total = sum(parse_amount(row.get("fee")) or 0 for row in rows)
        result.extras["total_fees"] = total
        if rows:
            result.message += request.msg(f" Total fees: {money(total)}.", f" 費用合計：{money(total)}。")
        return result


__all__ = ["BookingTools", "SPECS", "TalentTools", "describe_talent", "public_booking", "public_talent", "talent_label"]
