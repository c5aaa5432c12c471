"""Invoice and expense tools."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..store.db import Condition, contains, escape_like, utcnow
from .base import ToolKind, ToolRequest, ToolResult, array, declare, number, obj, string
from .contacts import describe_contact, full_name
from .entity import EntityTools, arg_text, clamp_limit, money, parse_amount

INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
EXPENSE_STATUSES = ("pending", "approved", "rejected")

_LINE_ITEM = {
    "type": "object",
    "properties": {
        "description": string(),
        "quantity": number(),
        "unit_price": number(),
    },
}

SPECS = [
    declare(
        "create_invoice",
        "Create a new invoice for a client. Invoice number is auto-generated.",
        {
            "client_id": string("ID of the client to invoice"),
            "client_name": string("Client's full name if client_id is not available"),
            "talent_id": string("ID of related talent (optional)"),
            "booking_id": string("ID of related booking (optional)"),
            "items": array(_LINE_ITEM, "Line items"),
            "tax_rate": number("Tax rate percentage (e.g. 20 for 20%)"),
            "due_date": string("Due date (YYYY-MM-DD)"),
            "notes": string("Invoice notes"),
        },
        entity_type="invoice",
    ),
    declare(
        "update_invoice",
        "Update an invoice's details or status",
        {
            "invoice_id": string("ID of the invoice"),
            "items": array(obj(), "Updated line items"),
            "tax_rate": number(),
            "due_date": string(),
            "status": string("Invoice status", enum=INVOICE_STATUSES),
            "notes": string(),
        },
        ["invoice_id"],
        entity_type="invoice",
    ),
    declare(
        "search_invoices",
        "Search invoices",
        {
            "status": string("Filter by status", enum=INVOICE_STATUSES),
            "client_id": string("Filter by client"),
            "date_from": string("Issue date from (YYYY-MM-DD)"),
            "date_to": string("Issue date to (YYYY-MM-DD)"),
            "limit": number("Max results (default 20)"),
        },
        kind=ToolKind.SEARCH,
        entity_type="invoice",
    ),
    declare(
        "mark_invoice_paid",
        "Mark an invoice as paid",
        {"invoice_id": string("ID of the invoice")},
        ["invoice_id"],
        entity_type="invoice",
    ),
    declare(
        "create_expense",
        "Log a new expense",
        {
            "description": string("Expense description"),
            "category": string("Category: travel, equipment, marketing, office, talent_fee, etc."),
            "amount": number("Amount"),
            "date": string("Expense date (YYYY-MM-DD)"),
            "project_id": string("Related project ID (optional)"),
            "talent_id": string("Related talent ID (optional)"),
            "notes": string("Notes"),
        },
        ["description", "amount"],
        entity_type="expense",
    ),
    declare(
        "approve_expense",
        "Approve a pending expense",
        {"expense_id": string("ID of the expense to approve")},
        ["expense_id"],
        entity_type="expense",
    ),
    declare(
        "search_expenses",
        "Search expenses",
        {
            "category": string("Filter by category"),
            "status": string("Filter by status", enum=EXPENSE_STATUSES),
            "date_from": string("Date from (YYYY-MM-DD)"),
            "date_to": string("Date to (YYYY-MM-DD)"),
            "limit": number("Max results (default 20)"),
        },
        kind=ToolKind.SEARCH,
        entity_type="expense",
    ),
]


def today() -> str:
    return utcnow().date().isoformat()


def invoice_totals(items: List[Dict[str, Any]], tax_rate: float) -> Dict[str, float]:
    """Subtotal is the sum of quantity (default 1) times unit price."""

    subtotal = 0.0
    for item in items:
        quantity = parse_amount(item.get("quantity"))
        subtotal += (1.0 if quantity is None else quantity) * (parse_amount(item.get("unit_price")) or 0.0)
    subtotal = round(subtotal, 2)
    tax = round(subtotal * tax_rate / 100, 2)
    return {"subtotal": subtotal, "tax_rate": tax_rate, "tax_amount": tax, "total": round(subtotal + tax, 2)}


def public_invoice(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "invoice_number": row.get("invoice_number"),
        "client_id": row.get("client_id"),
        "items": row.get("items") or [],
        "subtotal": row.get("subtotal"),
        "tax_rate": row.get("tax_rate"),
        "total": row.get("total"),
        "status": row.get("status"),
        "issue_date": row.get("issue_date"),
        "due_date": row.get("due_date"),
        "paid_date": row.get("paid_date"),
    }


def public_expense(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "description": row.get("description"),
        "category": row.get("category"),
        "amount": row.get("amount"),
        "date": row.get("date"),
        "status": row.get("status"),
    }


class InvoiceTools(EntityTools):
    table = "invoices"
    noun = ("invoice", "發票")

    def _next_number(self, request: ToolRequest) -> str:
        prefix = f"INV-{utcnow():%Y%m%d}-"
        issued = self._count(request, [("invoice_number", "ilike", escape_like(prefix) + "%")])
        return f"{prefix}{issued + 1:04d}"

    def _client(self, request: ToolRequest, args: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        client_id = arg_text(args, "client_id")
        if client_id:
            row = self.db.get("clients", client_id, request.company_id)
            if row is None:
                return None, ToolResult(success=False, message=request.msg("❌ Client not found", "❌ 找不到該客戶"))
            return row, None
        name = arg_text(args, "client_name")
        if not name:
            return None, ToolResult(
                success=False,
                message=request.msg("❌ Please tell me which client to invoice", "❌ 請告訴我要向哪位客戶開發票"),
            )
        parts = name.split()
        search = [(("first_name", "last_name"), contains(part)) for part in parts]
        matches = self.db.select("clients", company_id=request.company_id, search=search, limit=5)
        if not matches:
            return None, ToolResult(
                success=False,
                message=request.msg(f"❌ No client found matching \"{name}\"", f"❌ 找不到符合「{name}」的客戶"),
            )
        if len(matches) > 1:
            extra = {key: value for key, value in args.items() if key not in ("client_id", "client_name")}
            return None, self._disambiguate(
                request,
                "create_invoice",
                matches,
                id_key="client_id",
                describe=describe_contact,
                verb=("Invoice", "開發票給"),
                extra_args=extra,
                noun=("client", "客戶"),
            )
        return matches[0], None

    def _invoice(self, request: ToolRequest, args: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[ToolResult]]:
        row = self._fetch(request, arg_text(args, "invoice_id"))
        if row is None:
            return None, ToolResult(success=False, message=request.msg("❌ Invoice not found", "❌ 找不到該發票"))
        return row, None

    def create_invoice(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        client, failure = self._client(request, args)
        if failure is not None:
            return failure
        items = [item for item in args.get("items") or [] if isinstance(item, dict)]
        totals = invoice_totals(items, parse_amount(args.get("tax_rate")) or 0.0)
        values: Dict[str, Any] = {
            "invoice_number": self._next_number(request),
            "client_id": client["id"],
            "items": items,
            "status": "draft",
            "issue_date": today(),
            "created_by": request.user_id,
            **totals,
        }
        for field in ("talent_id", "booking_id", "due_date", "notes"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        row = self._create_verified(request, values)
        number, total = row["invoice_number"], money(row["total"])
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Invoice {number} created for {full_name(client)} - Total: {total}",
                f"✓ 發票 {number} 已為 {full_name(client)} 建立 - 合計：{total}",
            ),
            data=public_invoice(row),
            extras={"entity_id": row["id"], "invoice_number": number, "client": full_name(client)},
        )

    def update_invoice(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._invoice(request, args)
        if failure is not None:
            return failure
        updates: Dict[str, Any] = {}
        tax_rate = parse_amount(args.get("tax_rate"))
        if isinstance(args.get("items"), list):
            items = [item for item in args["items"] if isinstance(item, dict)]
            rate = tax_rate if tax_rate is not None else float(target.get("tax_rate") or 0)
            updates.update({"items": items, **invoice_totals(items, rate)})
        elif tax_rate is not None:
            updates.update(invoice_totals(target.get("items") or [], tax_rate))
        for field in ("status", "due_date"):
            if arg_text(args, field):
                updates[field] = arg_text(args, field)
        if "notes" in args:
            updates["notes"] = arg_text(args, "notes")
        if updates.get("status") == "paid" and not target.get("paid_date"):
            updates["paid_date"] = today()
        if not updates:
            return ToolResult(
                success=False,
                message=request.msg(
                    "No fields provided to update. Tell me what should change.",
                    "沒有提供需要更新的欄位，請告訴我要修改甚麼。",
                ),
            )
        row = self._update_verified(request, target["id"], updates)
        number = row["invoice_number"]
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Invoice {number} updated", f"✓ 發票 {number} 已更新"),
            data=public_invoice(row),
            extras={"entity_id": row["id"], "invoice_number": number},
        )

    def mark_invoice_paid(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target, failure = self._invoice(request, args)
        if failure is not None:
            return failure
        row = self._update_verified(request, target["id"], {"status": "paid", "paid_date": today()})
        number = row["invoice_number"]
        return ToolResult(
            success=True,
            message=request.msg(f"✓ Invoice {number} marked as paid", f"✓ 發票 {number} 已標記為已付款"),
            data=public_invoice(row),
            extras={"entity_id": row["id"], "invoice_number": number},
        )

    def search_invoices(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        where: List[Condition] = []
        for field in ("status", "client_id"):
            if arg_text(args, field):
                where.append((field, "=", arg_text(args, field)))
        if arg_text(args, "date_from"):
            where.append(("issue_date", ">=", arg_text(args, "date_from")))
        if arg_text(args, "date_to"):
            where.append(("issue_date", "<=", arg_text(args, "date_to")))
        rows = self._find(request, where=where, limit=clamp_limit(args.get("limit"), 20, 100), order_by="issue_date")
        result = self._found(request, rows, bool(where), public_invoice)
        total = round(sum(parse_amount(row.get("total")) or 0 for row in rows), 2)
        result.extras["total_amount"] = total
        if rows:
            result.message += request.msg(f" Total: {money(total)}.", f" 合計：{money(total)}。")
        return result


class ExpenseTools(EntityTools):
    table = "expenses"
    noun = ("expense", "支出")

    def create_expense(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        amount = parse_amount(args.get("amount"))
        if amount is None:
            return ToolResult(
                success=False,
                message=request.msg("❌ Please provide the expense amount", "❌ 請提供支出金額"),
            )
        values: Dict[str, Any] = {
            "description": arg_text(args, "description"),
            "amount": amount,
            "date": arg_text(args, "date") or today(),
            "status": "pending",
            "created_by": request.user_id,
        }
        for field in ("category", "project_id", "talent_id", "notes"):
            if arg_text(args, field):
                values[field] = arg_text(args, field)
        row = self._create_verified(request, values)
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Expense logged: {row['description']} - {money(row['amount'])}",
                f"✓ 支出已記錄：{row['description']} - {money(row['amount'])}",
            ),
            data=public_expense(row),
            extras={"entity_id": row["id"]},
        )

    def approve_expense(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        target = self._fetch(request, arg_text(args, "expense_id"))
        if target is None:
            return ToolResult(success=False, message=request.msg("❌ Expense not found", "❌ 找不到該支出"))
        row = self._update_verified(request, target["id"], {"status": "approved", "approved_by": request.user_id})
        return ToolResult(
            success=True,
            message=request.msg(
                f"✓ Expense approved: {row['description']}", f"✓ 支出已批准：{row['description']}"
            ),
            data=public_expense(row),
            extras={"entity_id": row["id"], "description": row["description"]},
        )

    def search_expenses(self, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        where: List[Condition] = []
        for field in ("category", "status"):
            if arg_text(args, field):
                where.append((field, "=", arg_text(args, field)))
        if arg_text(args, "date_from"):
            where.append(("date", ">=", arg_text(args, "date_from")))
        if arg_text(args, "date_to"):
            where.append(("date", "<=", arg_text(args, "date_to")))
        rows = self._find(request, where=where, limit=clamp_limit(args.get("limit"), 20, 100), order_by="date")
        result = self._found(request, rows, bool(where), public_expense)
        total = round(sum(parse_amount(row.get("amount")) or 0 for row in rows), 2)
        result.extras["total_amount"] = total
        if rows:
            result.message += request.msg(f" Total: {money(total)}.", f" 合計：{money(total)}。")
        return result


__all__ = ["ExpenseTools", "InvoiceTools", "SPECS", "invoice_totals", "public_expense", "public_invoice"]
