from __future__ import annotations

import unittest

from penguin_brain.assistant.grounding import GroundingGuard


class GroundingGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.guard = GroundingGuard()

    def test_name_from_message_is_grounded(self) -> None:
        verdict = self.guard.check(
            "update_contact", {"first_name": "Amanda", "last_name": "Lopez"}, "Change Amanda  LOPEZ's phone"
        )
        self.assertTrue(verdict.grounded)

    def test_invented_name_is_flagged(self) -> None:
        verdict = self.guard.check("delete_contact", {"first_name": "Jane", "last_name": "Smith"}, "delete her")
        self.assertFalse(verdict.grounded)
        self.assertEqual(verdict.ungrounded, ["Jane", "Smith"])
        message = verdict.corrective_message("delete_contact")
        self.assertIn('"Jane", "Smith"', message)
        self.assertIn("Never invent or guess names", message)

    def test_recent_conversation_grounds_names(self) -> None:
        verdict = self.guard.check(
            "delete_contact",
            {"first_name": "Jane"},
            "delete her",
            recent=['{"data": [{"first_name": "Jane", "last_name": "Jones"}]}'],
        )
        self.assertTrue(verdict.grounded)

    def test_unguarded_tools_pass_through(self) -> None:
        verdict = self.guard.check("create_contact", {"first_name": "Zed"}, "add a contact")
        self.assertTrue(verdict.grounded)

    def test_blank_and_non_string_values_ignored(self) -> None:
        verdict = self.guard.check("search_contacts", {"first_name": "  ", "last_name": None}, "find")
        self.assertTrue(verdict.grounded)


if __name__ == "__main__":
    unittest.main()
