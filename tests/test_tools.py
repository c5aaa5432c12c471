"""Tests for entity tools, the executor and the tool catalogue."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import List
from unittest import mock

from penguin_brain.assistant.tool_policy import ToolPolicy
from penguin_brain.errors import ExecutionError, VerificationError
from penguin_brain.memory.action_ledger import ActionLedger
from penguin_brain.store.db import PenguinDB
from penguin_brain.store.knowledge import KnowledgeStore
from penguin_brain.tools import ALL_SPECS, TALENT_ONLY_TOOLS, ToolExecutor, ToolRegistry, ToolRequest, build_registry
from penguin_brain.tools.base import ToolKind, ToolResult, declare, string
from penguin_brain.tools.contacts import ContactTools
from penguin_brain.tools.finance import ExpenseTools, InvoiceTools, invoice_totals
from penguin_brain.tools.knowledge import KnowledgeTools
from penguin_brain.tools.leads import LeadTools
from penguin_brain.tools.projects import ProjectTools
from penguin_brain.tools.talent import BookingTools, TalentTools
from penguin_brain.tools.tasks import TaskTools


class _DBTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.db = PenguinDB(Path(self._tmp.name) / "tools.sqlite")
        self.request = ToolRequest(company_id="c1", user_id="u1", conversation_id="conv1")


class ContactToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tools = ContactTools(self.db)

    def test_create_contact_verifies_and_reports(self) -> None:
        result = self.tools.create_contact({"first_name": "Amanda", "last_name": "Lopez"}, self.request)
        self.assertTrue(result.success)
        self.assertEqual(result.message, "✓ Contact Amanda Lopez created successfully")
        row = self.db.get("clients", result.extras["entity_id"], "c1")
        self.assertEqual(row["owner_id"], "u1")
        self.assertEqual(row["status"], "ACTIVE")

    def test_update_by_name_changes_remaining_fields(self) -> None:
        self.tools.create_contact({"first_name": "Amanda", "last_name": "Lopez"}, self.request)
        result = self.tools.update_contact(
            {"first_name": "amanda", "last_name": "LOPEZ", "phone": "555-1234"}, self.request
        )
        self.assertTrue(result.success)
        self.assertIn("Updated fields: phone", result.message)
        self.assertEqual(result.data["phone"], "555-1234")

    def test_ambiguous_delete_offers_choices_and_deletes_nothing(self) -> None:
        self.db.insert("clients", {"company_id": "c1", "first_name": "Jane", "last_name": "Jones", "email": "jane1@example.com"})
        self.db.insert("clients", {"company_id": "c1", "first_name": "Jane", "last_name": "Jones", "phone": "555-0000"})

        result = self.tools.delete_contact({"first_name": "Jane", "last_name": "Jones"}, self.request)

        self.assertFalse(result.success)
        self.assertTrue(result.extras["requires_confirmation"])
        self.assertEqual(result.extras["matches"], 2)
        choices = result.extras["choices"]
        self.assertEqual(len(choices), 2)
        self.assertTrue(all(choice["tool"] == "delete_contact" for choice in choices))
        self.assertEqual(len({choice["arguments"]["client_id"] for choice in choices}), 2)
        self.assertIn("Jane Jones (jane1@example.com)", result.message)
        self.assertEqual(self.db.count("clients", company_id="c1"), 2)

    def test_other_tenants_rows_are_invisible(self) -> None:
        self.db.insert("clients", {"company_id": "c2", "first_name": "Amanda", "last_name": "Lopez"})
        result = self.tools.delete_contact({"first_name": "Amanda", "last_name": "Lopez"}, self.request)
        self.assertFalse(result.success)
        self.assertEqual(self.db.count("clients", company_id="c2"), 1)

    def test_verification_mismatch_is_reported_as_failure(self) -> None:
        created = self.tools.create_contact({"first_name": "Amanda", "last_name": "Lopez"}, self.request)
        registry = ToolRegistry()
        for spec in ALL_SPECS:
            if spec.name == "update_contact":
                registry.register(spec.bind(self.tools.update_contact))
        stale = dict(self.db.get("clients", created.extras["entity_id"]), phone=None)

        with mock.patch.object(self.tools, "_fetch", return_value=stale):
            result = ToolExecutor(registry).execute(
                "update_contact", {"first_name": "Amanda", "last_name": "Lopez", "phone": "555-1234"}, self.request
            )

        self.assertFalse(result.success)
        self.assertTrue(result.extras["verification_failed"])
        self.assertIn("phone was not saved as requested", result.message)


class TaskToolTests(_DBTestCase):
    def test_bulk_delete_reports_partial_failure_and_ledgers_once(self) -> None:
        tools = TaskTools(self.db)
        ledger = ActionLedger(self.db)
        first = tools.create_task({"title": "Call the bank"}, self.request)
        second = tools.create_task({"title": "Send the contract"}, self.request)
        args = {"task_ids": [first.extras["entity_id"], second.extras["entity_id"], "missing-id"]}

        result = tools.bulk_delete_tasks(args, self.request)
        ledger.record(self.request, "bulk_delete_tasks", args, result)

        self.assertEqual((result.extras["deleted"], result.extras["failed"]), (2, 1))
        self.assertEqual(result.extras["errors"], [{"id": "missing-id", "error": "not found"}])
        self.assertEqual(self.db.count("tasks", company_id="c1"), 0)
        entries = self.db.select("actions", company_id="c1")
        self.assertEqual(len(entries), 1)
        self.assertTrue(entries[0]["summary"].startswith("Deleted 2 tasks (1 failed)"))
        self.assertEqual(entries[0]["entity_type"], "task")

    def test_lookup_title_resolves_single_task(self) -> None:
        tools = TaskTools(self.db)
        tools.create_task({"title": "Call the bank"}, self.request)
        result = tools.complete_task({"lookup_title": "bank"}, self.request)
        self.assertTrue(result.success)
        self.assertEqual(result.data["status"], "COMPLETED")


def _policy() -> ToolPolicy:
    registry = ToolRegistry()
    for spec in ALL_SPECS:
        registry.register(spec)
    return ToolPolicy(registry)


class LeadToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tools = LeadTools(self.db)
        self.policy = _policy()

    def _create(self, **args) -> ToolResult:
        return self.tools.create_lead(self.policy.check("create_lead", args), self.request)

    def test_value_shorthand_is_stored_as_a_number(self) -> None:
        result = self._create(source="Website", value_estimate="60k", priority="high")
        self.assertTrue(result.success)
        row = self.db.get("clients", result.extras["entity_id"], "c1")
        self.assertEqual(row["value_estimate"], 60000.0)
        self.assertEqual(row["lead_priority"], "HIGH")
        self.assertEqual(row["lead_stage"], "NEW")

        updated = self.tools.update_lead(
            self.policy.check("update_lead", {"lead_id": row["id"], "value_estimate": "$75,000"}), self.request
        )
        self.assertEqual(updated.data["value_estimate"], 75000.0)

    def test_value_range_filters_accept_shorthand(self) -> None:
        self._create(source="Website", value_estimate="60k")
        self._create(source="Referral", value_estimate="20k")
        args = self.policy.check("search_leads", {"min_value_estimate": "50k"})
        result = self.tools.search_leads(args, self.request)
        self.assertEqual([lead["source"] for lead in result.data], ["Website"])

    def test_delete_resets_lead_fields_and_keeps_contact(self) -> None:
        self._create(source="Website", value_estimate="60k", priority="HIGH")

        result = self.tools.delete_lead({"source": "website"}, self.request)

        self.assertTrue(result.success)
        self.assertIn("Converted lead back to contact", result.message)
        rows = self.db.select("clients", company_id="c1")
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row["lead_stage"], "NONE")
        self.assertIsNone(row["lead_source"])
        self.assertIsNone(row["value_estimate"])
        self.assertEqual(row["lead_priority"], "MEDIUM")
        self.assertFalse(self.tools.search_leads({}, self.request).data)


class ProjectToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tools = ProjectTools(self.db)
        self.harbour = self.tools.create_project(
            {"title": "Harbour View", "property_type": "APARTMENT", "address": "88 Nathan Road"}, self.request
        ).extras["entity_id"]
        self.garden = self.tools.create_project(
            {"title": "Garden House", "property_type": "HOUSE", "address": "12 Park Road"}, self.request
        ).extras["entity_id"]

    def test_update_by_address_parses_price_and_rooms(self) -> None:
        result = self.tools.update_project({"address": "nathan", "price": "5k", "bedrooms": "3"}, self.request)
        self.assertTrue(result.success)
        self.assertIn("Price: - → $5,000", result.message)
        row = self.db.get("projects", self.harbour, "c1")
        self.assertEqual(row["price"], 5000.0)
        self.assertEqual(row["bedrooms"], 3)

    def test_unknown_id_falls_back_to_title(self) -> None:
        result = self.tools.update_project(
            {"project_id": "missing", "lookup_title": "garden", "status": "SOLD"}, self.request
        )
        self.assertTrue(result.success)
        self.assertEqual(self.db.get("projects", self.garden, "c1")["status"], "SOLD")

    def test_ambiguous_address_carries_update_into_choices(self) -> None:
        result = self.tools.update_project({"address": "Road", "status": "SOLD"}, self.request)
        self.assertFalse(result.success)
        self.assertEqual(result.extras["matches"], 2)
        for choice in result.extras["choices"]:
            self.assertEqual(choice["arguments"]["status"], "SOLD")
            self.assertIn(choice["arguments"]["project_id"], (self.harbour, self.garden))
        self.assertFalse(self.db.select("projects", company_id="c1", where=[("status", "=", "SOLD")]))

    def test_bulk_update_reports_per_item_outcome(self) -> None:
        result = self.tools.bulk_update_projects(
            {"project_ids": [self.harbour, self.garden, "missing"], "new_status": "SOLD"}, self.request
        )
        self.assertFalse(result.success)
        self.assertEqual((result.extras["updated"], result.extras["failed"]), (2, 1))
        statuses = {row["status"] for row in self.db.select("projects", company_id="c1")}
        self.assertEqual(statuses, {"SOLD"})

    def test_bulk_update_without_fields_is_refused(self) -> None:
        result = self.tools.bulk_update_projects({"project_ids": [self.harbour]}, self.request)
        self.assertFalse(result.success)
        self.assertIn("new_status", result.message)


class TalentToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.talent = TalentTools(self.db)
        self.bookings = BookingTools(self.db, self.talent)
        created = self.talent.create_talent(
            {"name": "Mia Wong", "stage_name": "Mia", "follower_count": "12k", "tags": ["fashion"]}, self.request
        )
        self.mia = created.extras["entity_id"]

    def test_create_talent_normalizes_counts(self) -> None:
        row = self.db.get("talent", self.mia, "c1")
        self.assertEqual(row["follower_count"], 12000)
        self.assertEqual(row["tags"], ["fashion"])
        self.assertEqual(row["availability"], "available")

    def test_booking_by_name_then_cancel(self) -> None:
        created = self.bookings.create_booking(
            {"talent_name": "mia", "booking_type": "photoshoot", "date": "2026-11-02", "fee": "2.5k"}, self.request
        )
        self.assertTrue(created.success)
        self.assertEqual(created.message, "✓ Booking created for Mia Wong (Mia) on 2026-11-02")
        self.assertEqual(created.data["fee"], 2500.0)
        self.assertEqual(created.data["status"], "pending")

        found = self.bookings.search_bookings({"talent_id": self.mia}, self.request)
        self.assertEqual(found.extras["total_fees"], 2500.0)
        self.assertIn("Total fees: $2,500.", found.message)

        cancelled = self.bookings.cancel_booking({"booking_id": created.extras["entity_id"]}, self.request)
        self.assertEqual(cancelled.data["status"], "cancelled")

    def test_ambiguous_talent_update_writes_nothing(self) -> None:
        self.talent.create_talent({"name": "Mia Chan"}, self.request)
        result = self.talent.update_talent({"lookup_name": "Mia", "availability": "booked"}, self.request)
        self.assertFalse(result.success)
        self.assertTrue(result.extras["requires_confirmation"])
        self.assertTrue(all(choice["arguments"]["availability"] == "booked" for choice in result.extras["choices"]))
        self.assertFalse(self.db.select("talent", company_id="c1", where=[("availability", "=", "booked")]))

    def test_unknown_booking_is_a_failure(self) -> None:
        result = self.bookings.cancel_booking({"booking_id": "missing"}, self.request)
        self.assertFalse(result.success)


class FinanceToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.invoices = InvoiceTools(self.db)
        self.expenses = ExpenseTools(self.db)
        self.db.insert("clients", {"company_id": "c1", "first_name": "Amanda", "last_name": "Lopez"})

    def test_invoice_totals(self) -> None:
        items = [{"quantity": 2, "unit_price": 500}, {"unit_price": "1.5k"}]
        self.assertEqual(
            invoice_totals(items, 10.0),
            {"subtotal": 2500.0, "tax_rate": 10.0, "tax_amount": 250.0, "total": 2750.0},
        )

    def test_create_invoice_then_recompute_on_tax_change(self) -> None:
        created = self.invoices.create_invoice(
            {
                "client_name": "Amanda Lopez",
                "items": [{"description": "Shoot", "quantity": 2, "unit_price": 500}],
                "tax_rate": 10,
            },
            self.request,
        )
        self.assertTrue(created.success)
        self.assertTrue(created.extras["invoice_number"].startswith("INV-"))
        self.assertTrue(created.extras["invoice_number"].endswith("-0001"))
        self.assertIn("Total: $1,100", created.message)
        self.assertEqual(created.data["status"], "draft")

        updated = self.invoices.update_invoice(
            {"invoice_id": created.extras["entity_id"], "tax_rate": 20}, self.request
        )
        self.assertEqual((updated.data["subtotal"], updated.data["total"]), (1000.0, 1200.0))

        paid = self.invoices.update_invoice(
            {"invoice_id": created.extras["entity_id"], "status": "paid"}, self.request
        )
        self.assertIsNotNone(paid.data["paid_date"])

    def test_invoice_needs_a_known_client(self) -> None:
        result = self.invoices.create_invoice({"client_name": "Nobody Here", "items": []}, self.request)
        self.assertFalse(result.success)
        self.assertEqual(self.db.count("invoices", company_id="c1"), 0)

    def test_expense_lifecycle(self) -> None:
        created = self.expenses.create_expense(
            {"description": "Taxi", "amount": "$1,200", "category": "travel"}, self.request
        )
        self.assertEqual(created.message, "✓ Expense logged: Taxi - $1,200")
        self.assertEqual(created.data["status"], "pending")

        approved = self.expenses.approve_expense({"expense_id": created.extras["entity_id"]}, self.request)
        self.assertTrue(approved.success)
        row = self.db.get("expenses", created.extras["entity_id"], "c1")
        self.assertEqual((row["status"], row["approved_by"]), ("approved", "u1"))

    def test_expense_without_amount_is_refused(self) -> None:
        result = self.expenses.create_expense({"description": "Taxi", "amount": "lots"}, self.request)
        self.assertFalse(result.success)
        self.assertEqual(self.db.count("expenses", company_id="c1"), 0)


def keyword_embedder(text: str) -> List[float]:
    return [1.0, 0.0] if "price" in text.lower() else [0.0, 1.0]


class KnowledgeToolTests(_DBTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = KnowledgeStore(self.db, keyword_embedder)
        self.ledger = ActionLedger(self.db)
        self.tools = KnowledgeTools(self.store, self.ledger)

    def test_search_knowledge_returns_matches_above_threshold(self) -> None:
        self.store.add_entry("c1", "Pricing", "Our price is 500 per hour")
        self.store.add_entry("c1", "Parking", "Visitors park on level 2")

        result = self.tools.search_knowledge({"query": "what is the price?"}, self.request)

        self.assertEqual([entry["title"] for entry in result.data], ["Pricing"])
        self.assertEqual(result.message, "Found 1 knowledge entry.")

    def test_search_knowledge_without_hits(self) -> None:
        result = self.tools.search_knowledge({"query": "parking"}, self.request)
        self.assertEqual(result.data, [])
        self.assertIn("No knowledge found", result.message)

    def test_search_my_actions_is_scoped_to_the_user(self) -> None:
        created = ToolResult(success=True, message="ok", extras={"entity_id": "x"})
        self.ledger.record(self.request, "create_contact", {"first_name": "Amanda", "last_name": "Lopez"}, created)
        other = ToolRequest(company_id="c1", user_id="u2")
        self.ledger.record(other, "create_contact", {"first_name": "Amanda", "last_name": "Stone"}, created)

        result = self.tools.search_my_actions({"search_summary": "Amanda"}, self.request)

        self.assertEqual(result.extras["count"], 1)
        self.assertEqual(result.data[0]["summary"], "Created contact: Amanda Lopez")
        self.assertEqual(result.data[0]["entity_type"], "contact")
        self.assertTrue(result.data[0]["success"])


class ExecutorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.request = ToolRequest(company_id="c1", user_id="u1", language="zh")
        self.registry = ToolRegistry()

    def _register(self, handler) -> None:
        spec = declare("create_widget", "test", {"name": string("Name")})
        self.registry.register(spec.bind(handler))

    def test_unknown_tool_is_a_failed_result(self) -> None:
        result = ToolExecutor(self.registry).execute("nope", {}, self.request)
        self.assertFalse(result.success)
        self.assertEqual(result.message, "未知的工具：nope")

    def test_execution_error_becomes_generic_failure(self) -> None:
        def boom(args, request):
            raise ExecutionError("disk full")

        self._register(boom)
        result = ToolExecutor(self.registry).execute("create_widget", {}, self.request)
        self.assertFalse(result.success)
        self.assertNotIn("disk full", result.message)

    def test_unexpected_error_becomes_failed_result(self) -> None:
        def crash(args, request):
            raise ValueError("could not convert string to float: '60k'")

        self._register(crash)
        result = ToolExecutor(self.registry).execute("create_widget", {}, self.request)
        self.assertFalse(result.success)
        self.assertTrue(result.extras["unexpected_error"])
        self.assertEqual(result.message, "❌ create_widget 執行時發生意外錯誤，請重試。")

    def test_verification_error_is_flagged(self) -> None:
        def mismatch(args, request):
            raise VerificationError("name", "a", "b")

        self._register(mismatch)
        result = ToolExecutor(self.registry).execute("create_widget", {}, self.request)
        self.assertTrue(result.extras["verification_failed"])


class CatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        db = PenguinDB(Path(tmp.name) / "catalog.sqlite")
        self.registry = build_registry(db, KnowledgeStore(db, lambda text: [1.0]), ActionLedger(db))

    def test_every_declared_tool_has_a_handler(self) -> None:
        self.assertEqual(len(self.registry.names()), 40)
        self.assertEqual(len(set(self.registry.names())), len(ALL_SPECS))
        for spec in self.registry.list_tools():
            self.assertIsNotNone(spec.handler, spec.name)

    def test_search_tools_are_marked(self) -> None:
        searches = {spec.name for spec in self.registry.list_tools() if spec.kind is ToolKind.SEARCH}
        self.assertTrue(all(name.startswith("search_") for name in searches))
        self.assertIn("search_my_actions", searches)

    def test_talent_tools_are_filtered_by_industry(self) -> None:
        general = {spec.name for spec in self.registry.filter_for_tenant("real_estate")}
        self.assertFalse(general & TALENT_ONLY_TOOLS)
        agency = {spec.name for spec in self.registry.filter_for_tenant("talent_agency")}
        self.assertTrue(TALENT_ONLY_TOOLS <= agency)
        admin = {spec.name for spec in self.registry.filter_for_tenant(None, ["SUPER_ADMIN"])}
        self.assertTrue(TALENT_ONLY_TOOLS <= admin)


if __name__ == "__main__":
    unittest.main()
