"""Tests for the action ledger: summaries, duplicate suppression and history search."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from penguin_brain.memory.action_ledger import ActionLedger, action_identity, generate_action_summary
from penguin_brain.store.db import PenguinDB, timestamp_ago
from penguin_brain.tools.base import ToolRequest, ToolResult


class SummaryTests(unittest.TestCase):
    def test_contact_summary_includes_email(self) -> None:
        summary = generate_action_summary(
            "create_contact", {"first_name": "Amanda", "last_name": "Lopez", "email": "a@x.com"}
        )
        self.assertEqual(summary, "Created contact: Amanda Lopez (a@x.com)")

    def test_result_values_win_over_arguments(self) -> None:
        result = ToolResult(success=True, message="ok", extras={"title": "Call the bank"})
        self.assertEqual(generate_action_summary("complete_task", {"lookup_title": "bank"}, result), "Completed task: Call the bank")

    def test_failed_action_is_marked(self) -> None:
        result = ToolResult(success=False, message="nope")
        self.assertEqual(generate_action_summary("delete_task", {}, result), "Deleted task (failed)")

    def test_search_summary_counts_results(self) -> None:
        result = ToolResult(success=True, message="ok", data=[{}, {}])
        self.assertEqual(generate_action_summary("search_leads", {}, result), "Searched leads: 2 results")

    def test_identity_ignores_case_and_blank_fields(self) -> None:
        first = action_identity("create_contact", {"first_name": "Amanda ", "last_name": "lopez"})
        second = action_identity("create_contact", {"first_name": "amanda", "last_name": "Lopez", "email": ""})
        self.assertEqual(first, second)
        self.assertIsNone(action_identity("bulk_delete_tasks", {"task_ids": ["a"]}))


class ActionLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db = PenguinDB(Path(tmp.name) / "ledger.sqlite")
        self.ledger = ActionLedger(self.db)
        self.request = ToolRequest(company_id="c1", user_id="u1", conversation_id="conv1")
        self.args = {"first_name": "Amanda", "last_name": "Lopez"}

    def _record(self, success: bool = True) -> dict:
        result = ToolResult(success=success, message="done", extras={"entity_id": "client-1"})
        return self.ledger.record(self.request, "create_contact", self.args, result)

    def test_record_stores_structured_row(self) -> None:
        row = self._record()
        self.assertEqual(row["tool_args"], self.args)
        self.assertEqual(row["entity_type"], "contact")
        self.assertEqual(row["entity_id"], "client-1")
        self.assertTrue(row["success"])
        self.assertIsNone(row["error_message"])

    def test_successful_identical_action_is_a_duplicate(self) -> None:
        self._record()
        duplicate = self.ledger.find_duplicate(self.request, "create_contact", {"first_name": "amanda", "last_name": "LOPEZ"})
        self.assertIsNotNone(duplicate)
        self.assertIsNone(self.ledger.find_duplicate(self.request, "create_contact", {"first_name": "Amy", "last_name": "Lopez"}))

    def test_failed_or_other_users_actions_are_not_duplicates(self) -> None:
        self._record(success=False)
        self.assertIsNone(self.ledger.find_duplicate(self.request, "create_contact", self.args))
        self._record()
        other = ToolRequest(company_id="c1", user_id="u2")
        self.assertIsNone(self.ledger.find_duplicate(other, "create_contact", self.args))

    def test_actions_outside_window_are_not_duplicates(self) -> None:
        row = self._record()
        self.db.update("actions", row["id"], {"created_at": timestamp_ago(minutes=61)})
        self.assertIsNone(self.ledger.find_duplicate(self.request, "create_contact", self.args))

    def test_search_recent_filters_by_summary(self) -> None:
        self._record()
        task = ToolResult(success=True, message="ok", extras={"title": "Call Susan"})
        self.ledger.record(self.request, "create_task", {"title": "Call Susan"}, task)

        rows = self.ledger.search_recent(self.request, search_summary="susan")
        self.assertEqual([row["tool_name"] for row in rows], ["create_task"])
        rows = self.ledger.search_recent(self.request, entity_type="contact")
        self.assertEqual(len(rows), 1)


if __name__ == "__main__":
    unittest.main()
