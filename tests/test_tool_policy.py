"""Tests for the ToolPolicy argument validator."""

from __future__ import annotations

import unittest

from penguin_brain.assistant.tool_policy import ToolPolicy
from penguin_brain.errors import ToolValidationError
from penguin_brain.tools import ALL_SPECS, ToolRegistry


class ToolPolicyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ToolRegistry()
        for spec in ALL_SPECS:
            self.registry.register(spec)
        self.policy = ToolPolicy(self.registry)

    def test_missing_required_field_rejected(self) -> None:
        reason = self.policy.validate("create_contact", {"first_name": "Amanda"})
        self.assertEqual(reason, "Missing required field: last_name")

    def test_blank_required_field_counts_as_missing(self) -> None:
        self.assertIsNotNone(self.policy.validate("create_task", {"title": "   "}))

    def test_enum_normalized_case_insensitively(self) -> None:
        sanitized = self.policy.check("create_task", {"title": "Call", "priority": "high"})
        self.assertEqual(sanitized["priority"], "HIGH")

    def test_enum_rejects_unknown_value(self) -> None:
        with self.assertRaises(ToolValidationError) as ctx:
            self.policy.check("create_task", {"title": "Call", "priority": "whenever"})
        self.assertIn("priority must be one of", ctx.exception.reason)

    def test_number_and_boolean_coercion(self) -> None:
        sanitized = self.policy.check("search_tasks", {"overdue": "yes", "get_stats": "0"})
        self.assertIs(sanitized["overdue"], True)
        self.assertIs(sanitized["get_stats"], False)
        self.assertIsNotNone(self.policy.validate("search_tasks", {"overdue": "maybe"}))
        sanitized = self.policy.check("search_knowledge", {"query": "pricing", "match_count": "3"})
        self.assertEqual(sanitized["match_count"], 3.0)
        self.assertIsNotNone(self.policy.validate("search_knowledge", {"query": "pricing", "match_count": "many"}))

    def test_non_object_arguments_rejected(self) -> None:
        self.assertEqual(self.policy.validate("create_task", ["title"]), "arguments must be a JSON object")

    def test_lookup_key_can_replace_id(self) -> None:
        self.assertIsNone(self.policy.validate("delete_task", {"lookup_title": "bank"}))
        reason = self.policy.validate("delete_task", {})
        self.assertEqual(reason, "delete_task requires one of: task_id, lookup_title")

    def test_array_fields_must_be_lists(self) -> None:
        self.assertIsNotNone(self.policy.validate("bulk_delete_tasks", {"task_ids": "a,b"}))
        self.assertIsNotNone(self.policy.validate("bulk_delete_tasks", {"task_ids": []}))
        self.assertIsNone(self.policy.validate("bulk_delete_tasks", {"task_ids": ["a", "b"]}))

    def test_expense_amount_must_parse(self) -> None:
        self.assertIsNotNone(self.policy.validate("create_expense", {"description": "Taxi", "amount": "a lot"}))

    def test_create_task_needs_only_a_title(self) -> None:
        self.assertIsNone(self.policy.validate("create_task", {"title": "Call the bank"}))

    def test_number_shorthand_is_written_back(self) -> None:
        sanitized = self.policy.check("create_lead", {"source": "Website", "value_estimate": "60k"})
        self.assertEqual(sanitized["value_estimate"], 60000.0)
        sanitized = self.policy.check("update_lead", {"lead_id": "l1", "value_estimate": "$1,250,000"})
        self.assertEqual(sanitized["value_estimate"], 1250000.0)
        sanitized = self.policy.check("update_project", {"project_id": "p1", "bedrooms": "3.5"})
        self.assertEqual(sanitized["bedrooms"], 3.5)


if __name__ == "__main__":
    unittest.main()
