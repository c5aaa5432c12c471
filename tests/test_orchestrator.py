"""End-to-end turn tests for PenguinAssistant with a scripted model."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, List
from unittest import mock

from penguin_brain.assistant.narration import ACTION_NOT_VERIFIED, DONE, SEARCH_FALLBACK
from penguin_brain.assistant.orchestrator import ChatRequest, ToolCallAccumulator
from penguin_brain.errors import AuthConfigError, ProviderError, ValidationError
from penguin_brain.runtime import create_runtime


def _fake_embedder(text: str) -> List[float]:
    return [1.0, 0.0]


def tool_delta(index: int, call_id: str, name: str, arguments: str) -> Dict[str, Any]:
    return {"tool_calls": [{"index": index, "id": call_id, "function": {"name": name, "arguments": arguments}}]}


class ScriptedLLM:
    """Replays one script per streamed pass and one reply per ``complete`` call."""

    def __init__(self, passes: List[Any], completions: List[Any] = ()) -> None:
        self.passes = list(passes)
        self.completions = list(completions)
        self.requests: List[Any] = []

    def stream(self, request):
        self.requests.append(request)
        script = self.passes.pop(0)
        if isinstance(script, Exception):
            raise script
        for delta in script:
            yield delta

    def complete(self, request) -> str:
        self.requests.append(request)
        reply = self.completions.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def parse_events(events: List[str]) -> List[Any]:
    parsed = []
    for event in events:
        assert event.startswith("data: ") and event.endswith("\n\n"), event
        body = event[len("data: "):-2]
        parsed.append(body if body == "[DONE]" else json.loads(body))
    return parsed


def streamed_text(events: List[str]) -> str:
    text = []
    for event in parse_events(events):
        if isinstance(event, dict) and "choices" in event:
            text.append(event["choices"][0]["delta"]["content"])
    return "".join(text)


class AssistantTurnTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.sqlite_path = Path(self._tmp.name) / "penguin.sqlite"

    def make_runtime(self, llm: ScriptedLLM, *, connect: bool = True):
        runtime = create_runtime(sqlite_path=self.sqlite_path, llm_client=llm, embedder=_fake_embedder)
        if connect:
            runtime.settings.save_connection("u1", "openai", "gpt-4o-mini", api_key="sk-test")
        return runtime

    def run_turn(self, runtime, message: str, **kwargs) -> List[str]:
        request = ChatRequest(message=message, user_id="u1", company_id="c1", **kwargs)
        prepared = runtime.assistant.prepare_turn(request)
        return list(runtime.assistant.stream_turn(prepared))

    def actions(self, runtime) -> List[Dict[str, Any]]:
        return runtime.db.select("actions", company_id="c1")

    def assistant_messages(self, runtime) -> List[Dict[str, Any]]:
        return runtime.db.select("messages", where=[("role", "=", "assistant")])

    # ------------------------------------------------------------------ #

    def test_blank_message_makes_no_provider_call(self) -> None:
        llm = ScriptedLLM([])
        runtime = self.make_runtime(llm)
        with self.assertRaises(ValidationError):
            runtime.assistant.prepare_turn(ChatRequest(message="   ", user_id="u1", company_id="c1"))
        with self.assertRaises(ValidationError):
            runtime.assistant.prepare_turn(ChatRequest(message="x" * 4001, user_id="u1", company_id="c1"))
        self.assertEqual(llm.requests, [])
        self.assertEqual(runtime.db.count("messages"), 0)

    def test_missing_connection_raises_auth_config_error(self) -> None:
        runtime = self.make_runtime(ScriptedLLM([]), connect=False)
        with self.assertRaises(AuthConfigError) as ctx:
            runtime.assistant.prepare_turn(ChatRequest(message="hello", user_id="u1", company_id="c1"))
        self.assertEqual(ctx.exception.code, AuthConfigError.NO_LLM_CONFIGURED)

    def test_create_contact_is_executed_and_ledgered(self) -> None:
        llm = ScriptedLLM(
            [
                [
                    tool_delta(0, "call_a", "create_contact", '{"first_name": "Amanda",'),
                    {"tool_calls": [{"index": 0, "function": {"arguments": ' "last_name": "Lopez"}'}}]},
                ]
            ]
        )
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "Add Amanda Lopez as a contact")

        self.assertEqual(events[-1], DONE)
        text = streamed_text(events)
        self.assertTrue(text.startswith("💭 Thinking..."))
        self.assertIn("🔧 Preparing to call tool...", text)
        self.assertIn("✓ Contact Amanda Lopez created successfully", text)
        self.assertIn("✅ Verified: Creation successful", text)
        self.assertEqual(llm.requests[0].body["tool_choice"], "required")

        contacts = runtime.db.select("clients", company_id="c1")
        self.assertEqual(len(contacts), 1)
        self.assertEqual((contacts[0]["first_name"], contacts[0]["last_name"]), ("Amanda", "Lopez"))
        actions = self.actions(runtime)
        self.assertEqual(len(actions), 1)
        self.assertEqual(actions[0]["tool_name"], "create_contact")
        self.assertEqual(actions[0]["summary"], "Created contact: Amanda Lopez")
        self.assertEqual(len(self.assistant_messages(runtime)), 1)
        self.assertEqual(runtime.db.count("usage_logs"), 1)

    def test_missing_required_field_blocks_execution(self) -> None:
        llm = ScriptedLLM([[tool_delta(0, "call_a", "create_contact", '{"first_name": "Amanda"}')]])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "Add Amanda as a contact")

        self.assertIn("⚠️ Error occurred", streamed_text(events))
        self.assertEqual(runtime.db.count("clients", company_id="c1"), 0)
        self.assertEqual(self.actions(runtime), [])

    def test_ungrounded_name_is_refused(self) -> None:
        llm = ScriptedLLM(
            [[tool_delta(0, "call_a", "delete_contact", '{"first_name": "Jane", "last_name": "Smith"}')]]
        )
        runtime = self.make_runtime(llm)
        runtime.db.insert("clients", {"company_id": "c1", "first_name": "Jane", "last_name": "Smith"})
        events = self.run_turn(runtime, "delete that contact please")

        self.assertIn("Skipped: name not found in your message", streamed_text(events))
        self.assertEqual(runtime.db.count("clients", company_id="c1"), 1)
        self.assertEqual(self.actions(runtime), [])

    def test_duplicate_create_is_not_repeated(self) -> None:
        script = [tool_delta(0, "call_a", "create_contact", '{"first_name": "Amanda", "last_name": "Lopez"}')]
        llm = ScriptedLLM([list(script), list(script)])
        runtime = self.make_runtime(llm)

        self.run_turn(runtime, "Add Amanda Lopez as a contact")
        second = self.run_turn(runtime, "Add Amanda Lopez as a contact")

        self.assertIn("already completed this action recently", streamed_text(second))
        self.assertEqual(runtime.db.count("clients", company_id="c1"), 1)
        self.assertEqual(len(self.actions(runtime)), 1)

    def test_search_triggers_unforced_summary_pass(self) -> None:
        llm = ScriptedLLM(
            [
                [tool_delta(0, "call_s", "search_tasks", '{"status": "OPEN"}')],
                [{"content": "You have one open task: Call the bank."}],
            ]
        )
        runtime = self.make_runtime(llm)
        runtime.db.insert("tasks", {"company_id": "c1", "title": "Call the bank", "status": "OPEN"})
        events = self.run_turn(runtime, "show my open tasks")

        self.assertEqual(len(llm.requests), 2)
        self.assertEqual(llm.requests[0].body["tool_choice"], "required")
        self.assertEqual(llm.requests[1].body["tool_choice"], "auto")
        roles = [message["role"] for message in llm.requests[1].body["messages"]]
        self.assertEqual(roles[-2:], ["assistant", "tool"])
        text = streamed_text(events)
        self.assertIn("📋 Searching tasks...", text)
        self.assertIn("📖 Reading 1 results...", text)
        self.assertIn("📝 Summarizing results...", text)
        self.assertIn("You have one open task: Call the bank.", text)
        self.assertEqual(self.actions(runtime), [])

    def test_failed_summary_pass_falls_back_to_notice(self) -> None:
        llm = ScriptedLLM(
            [
                [tool_delta(0, "call_s", "search_tasks", "{}")],
                ProviderError(503, "overloaded"),
            ]
        )
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "list my tasks")

        self.assertIn(SEARCH_FALLBACK, streamed_text(events))
        self.assertEqual(events[-1], DONE)

    def test_planner_fallback_executes_extracted_call(self) -> None:
        llm = ScriptedLLM(
            [[{"content": "Sure, I will add that."}]],
            completions=['```json\n{"tool": "create_task", "args": {"title": "Call the bank"}}\n```'],
        )
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "add a task to call the bank")

        planner_request = llm.requests[1]
        self.assertFalse(planner_request.stream)
        self.assertNotIn("tools", planner_request.body)
        text = streamed_text(events)
        self.assertIn("🔄 Analyzing request...", text)
        self.assertIn("Sure, I will add that.", text)
        self.assertIn('✓ Task "Call the bank" created successfully', text)
        self.assertEqual(runtime.db.count("tasks", company_id="c1"), 1)
        self.assertNotIn(ACTION_NOT_VERIFIED, text)

    def test_planner_search_gets_a_summary_pass(self) -> None:
        llm = ScriptedLLM(
            [[{"content": "Let me check."}], [{"content": "You have one Website lead: Ann Lee."}]],
            completions=['{"tool": "search_leads", "args": {"source": "Website"}}'],
        )
        runtime = self.make_runtime(llm)
        runtime.db.insert(
            "clients",
            {"company_id": "c1", "first_name": "Ann", "last_name": "Lee", "lead_stage": "NEW", "lead_source": "Website"},
        )
        events = self.run_turn(runtime, "show me the leads from Website")

        self.assertEqual(len(llm.requests), 3)
        self.assertTrue(llm.requests[2].stream)
        text = streamed_text(events)
        self.assertIn("📖 Reading 1 results...", text)
        self.assertIn("📝 Summarizing results...", text)
        self.assertIn("You have one Website lead: Ann Lee.", text)
        self.assertNotIn(ACTION_NOT_VERIFIED, text)
        self.assertEqual(events[-1], DONE)

    def test_value_shorthand_reaches_the_store_as_a_number(self) -> None:
        llm = ScriptedLLM(
            [[tool_delta(0, "call_l", "create_lead", '{"source": "Website", "value_estimate": "60k"}')]]
        )
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "add a lead from Website worth 60k")

        self.assertEqual(events[-1], DONE)
        self.assertIn("✓ Lead created successfully from Website", streamed_text(events))
        leads = runtime.db.select("clients", company_id="c1")
        self.assertEqual(leads[0]["value_estimate"], 60000.0)

    def test_crashing_handler_fails_alone_and_turn_still_ends(self) -> None:
        def crash(args, request):
            raise ValueError("could not convert")

        llm = ScriptedLLM(
            [
                [
                    tool_delta(0, "call_a", "create_task", '{"title": "Call the bank"}'),
                    tool_delta(1, "call_b", "create_contact", '{"first_name": "Amanda", "last_name": "Lopez"}'),
                ]
            ]
        )
        runtime = self.make_runtime(llm)
        runtime.registry.register(runtime.registry.get("create_task").bind(crash))
        events = self.run_turn(runtime, "add a task to call the bank and add Amanda Lopez as a contact")

        self.assertEqual(events[-1], DONE)
        text = streamed_text(events)
        self.assertIn("❌ create_task failed unexpectedly", text)
        self.assertIn("✓ Contact Amanda Lopez created successfully", text)
        self.assertEqual(runtime.db.count("clients", company_id="c1"), 1)
        outcomes = {row["tool_name"]: bool(row["success"]) for row in self.actions(runtime)}
        self.assertEqual(outcomes, {"create_task": False, "create_contact": True})

    def test_unexpected_pipeline_error_still_ends_with_done(self) -> None:
        llm = ScriptedLLM([[tool_delta(0, "call_a", "create_task", '{"title": "Call the bank"}')]])
        runtime = self.make_runtime(llm)
        with mock.patch.object(runtime.assistant.ledger, "find_duplicate", side_effect=RuntimeError("boom")):
            events = self.run_turn(runtime, "add a task to call the bank")

        parsed = parse_events(events)
        self.assertEqual(parsed[-1], "[DONE]")
        self.assertEqual(parsed[-2], {"error": "Something went wrong. Please try again.", "status": 500})
        self.assertEqual(runtime.db.count("tasks", company_id="c1"), 0)

    def test_planner_without_plan_reports_unverified_action(self) -> None:
        llm = ScriptedLLM([[{"content": "Done!"}]], completions=["I could not decide."])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "delete the task about invoices")

        self.assertIn(ACTION_NOT_VERIFIED, streamed_text(events))
        self.assertEqual(self.actions(runtime), [])

    def test_provider_error_ends_turn_with_error_event(self) -> None:
        llm = ScriptedLLM([ProviderError(429, "slow down")])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "hello there")

        parsed = parse_events(events)
        self.assertEqual(parsed[-1], "[DONE]")
        self.assertEqual(parsed[-2], {"error": "Rate limit exceeded, please try again later.", "status": 429})
        self.assertEqual(self.assistant_messages(runtime), [])

    def test_chat_reply_streams_live_and_strips_memory_tag(self) -> None:
        llm = ScriptedLLM([[{"content": "Nice to meet you."}, {"content": '<memory>{"fact": "likes tea"}</memory>'}]])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "hello there, I like tea")

        self.assertEqual(llm.requests[0].body["tool_choice"], "auto")
        self.assertIn("Nice to meet you.", streamed_text(events))
        stored = self.assistant_messages(runtime)
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0]["content"], "Nice to meet you.")
        self.assertEqual(stored[0]["metadata"], {"memory": {"fact": "likes tea"}})
        self.assertEqual(stored[0]["model_used"], "gpt-4o-mini")

    def test_talent_tools_hidden_from_other_industries(self) -> None:
        llm = ScriptedLLM([[tool_delta(0, "call_t", "create_talent", '{"name": "Mia"}')]])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "add Mia to the talent roster", industry="real_estate")

        names = {tool["function"]["name"] for tool in llm.requests[0].body["tools"]}
        self.assertNotIn("create_talent", names)
        self.assertIn("⚠️ Error occurred", streamed_text(events))
        self.assertEqual(self.actions(runtime), [])

    def test_chinese_turn_uses_localized_status(self) -> None:
        llm = ScriptedLLM([[{"content": "你好！"}]])
        runtime = self.make_runtime(llm)
        events = self.run_turn(runtime, "你好", language="zh")
        self.assertTrue(streamed_text(events).startswith("💭 思考中..."))


class ToolCallAccumulatorTests(unittest.TestCase):
    def test_fragments_join_by_index(self) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add([{"index": 0, "id": "a", "function": {"name": "search_", "arguments": '{"q'}}])
        accumulator.add([{"index": 1, "id": "b", "function": {"name": "create_task", "arguments": "{}"}}])
        accumulator.add([{"index": 0, "function": {"name": "tasks", "arguments": '": 1}'}}])

        calls = accumulator.calls()
        self.assertEqual([call.name for call in calls], ["search_tasks", "create_task"])
        self.assertEqual(calls[0].arguments, '{"q": 1}')
        self.assertEqual(calls[0].id, "a")

    def test_missing_id_gets_positional_default(self) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add([{"index": 2, "function": {"name": "search_tasks"}}])
        self.assertEqual(accumulator.calls()[0].id, "call_2")


if __name__ == "__main__":
    unittest.main()
