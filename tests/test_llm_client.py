"""Tests for provider request building, stream normalization and the HTTP client."""

from __future__ import annotations

import json
import unittest
from unittest import mock

import requests

from penguin_brain.errors import ProviderError
from penguin_brain.llm.messages import (
    AssistantMessage,
    SystemMessage,
    ToolCall,
    ToolResultMessage,
    Transcript,
    UserMessage,
)
from penguin_brain.llm.providers import LLMConnection, StreamNormalizer, build_provider_request
from penguin_brain.llm_client import LLMClient

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "search_tasks",
            "description": "Search tasks",
            "parameters": {"type": "object", "properties": {"query": {"type": "string"}}},
        },
    }
]


def sample_messages():
    call = ToolCall(id="call_1", name="search_tasks", arguments='{"query": "bank"}')
    return [
        SystemMessage("You are Penguin."),
        UserMessage("find the bank task"),
        AssistantMessage(content="", tool_calls=(call,)),
        ToolResultMessage(call_id="call_1", name="search_tasks", payload={"success": True, "count": 1}),
    ]


class TranscriptTests(unittest.TestCase):
    def test_unanswered_calls_block_other_messages(self) -> None:
        transcript = Transcript(sample_messages()[:3])
        self.assertEqual(transcript.pending_calls, {"call_1": "search_tasks"})
        with self.assertRaises(ValueError):
            transcript.append(SystemMessage("retry"))

    def test_result_for_unknown_call_rejected(self) -> None:
        transcript = Transcript([UserMessage("hi")])
        with self.assertRaises(ValueError):
            transcript.append(ToolResultMessage(call_id="nope", name="x", payload={}))


class ProviderRequestTests(unittest.TestCase):
    def test_openrouter_default_with_attribution_headers(self) -> None:
        connection = LLMConnection(provider="something-new", model="m", api_key="k")
        request = build_provider_request(connection, sample_messages(), TOOLS, "required")
        self.assertEqual(request.url, "https://openrouter.ai/api/v1/chat/completions")
        self.assertEqual(request.headers["Authorization"], "Bearer k")
        self.assertIn("HTTP-Referer", request.headers)
        self.assertEqual(request.body["tool_choice"], "required")
        self.assertEqual(request.body["messages"][2]["tool_calls"][0]["function"]["name"], "search_tasks")

    def test_anthropic_splits_system_and_maps_tools(self) -> None:
        connection = LLMConnection(provider="anthropic", model="claude", api_key="k")
        request = build_provider_request(connection, sample_messages(), TOOLS, "required")
        body = request.body
        self.assertEqual(body["system"], "You are Penguin.")
        self.assertEqual(body["max_tokens"], 4096)
        self.assertEqual(body["tool_choice"], {"type": "any"})
        self.assertEqual(body["tools"][0]["input_schema"]["properties"], {"query": {"type": "string"}})
        roles = [turn["role"] for turn in body["messages"]]
        self.assertEqual(roles, ["user", "assistant", "user"])
        self.assertEqual(body["messages"][1]["content"][0]["input"], {"query": "bank"})
        self.assertEqual(body["messages"][2]["content"][0]["tool_use_id"], "call_1")
        self.assertEqual(request.headers["x-api-key"], "k")
        self.assertEqual(request.headers["anthropic-version"], "2023-06-01")

    def test_google_uses_stream_endpoint_and_function_declarations(self) -> None:
        connection = LLMConnection(provider="google", model="gemini-pro", api_key="k")
        request = build_provider_request(connection, sample_messages(), TOOLS, "auto")
        self.assertTrue(request.url.endswith("/gemini-pro:streamGenerateContent?alt=sse&key=k"))
        self.assertEqual(request.body["systemInstruction"], {"parts": [{"text": "You are Penguin."}]})
        self.assertEqual(request.body["toolConfig"]["functionCallingConfig"]["mode"], "AUTO")
        self.assertEqual(request.body["contents"][1]["role"], "model")

    def test_ollama_is_line_delimited_and_keyless(self) -> None:
        connection = LLMConnection(provider="ollama", model="llama3")
        request = build_provider_request(connection, sample_messages()[:2])
        self.assertEqual(request.url, "http://localhost:11434/api/chat")
        self.assertTrue(request.line_delimited)
        self.assertNotIn("Authorization", request.headers)

    def test_unknown_provider_with_base_url_is_openai_compatible(self) -> None:
        connection = LLMConnection(provider="acme", model="m", api_key="k", base_url="https://llm.acme.dev/v1")
        request = build_provider_request(connection, sample_messages()[:2])
        self.assertEqual(request.url, "https://llm.acme.dev/v1/chat/completions")


class StreamNormalizerTests(unittest.TestCase):
    def test_anthropic_tool_use_becomes_indexed_fragments(self) -> None:
        normalizer = StreamNormalizer("anthropic")
        deltas = []
        for event in (
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Looking"}},
            {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "tu_1", "name": "search_tasks"}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"query":'}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ' "bank"}'}},
        ):
            deltas.extend(normalizer.feed(event))
        self.assertEqual(deltas[0], {"content": "Looking"})
        self.assertEqual(deltas[1]["tool_calls"][0]["id"], "tu_1")
        self.assertEqual(deltas[1]["tool_calls"][0]["index"], 0)
        arguments = "".join(delta["tool_calls"][0]["function"]["arguments"] for delta in deltas[1:])
        self.assertEqual(json.loads(arguments), {"query": "bank"})

    def test_google_function_call_arrives_whole(self) -> None:
        deltas = StreamNormalizer("google").feed(
            {"candidates": [{"content": {"parts": [{"functionCall": {"name": "search_tasks", "args": {"query": "bank"}}}]}}]}
        )
        call = deltas[0]["tool_calls"][0]
        self.assertEqual(call["id"], "call_0")
        self.assertEqual(json.loads(call["function"]["arguments"]), {"query": "bank"})

    def test_mid_stream_error_raises(self) -> None:
        with self.assertRaises(ProviderError) as ctx:
            StreamNormalizer("openai").feed({"error": {"code": 429, "message": "slow down"}})
        self.assertEqual(ctx.exception.status_code, 429)


def _response(status: int = 200, lines=(), body=None) -> mock.MagicMock:
    response = mock.MagicMock()
    response.status_code = status
    response.text = "upstream says no"
    response.iter_lines.return_value = list(lines)
    response.json.return_value = body or {}
    return response


class LLMClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.MagicMock(spec=requests.Session)
        self.client = LLMClient(session=self.session)
        self.request = build_provider_request(LLMConnection("openai", "gpt", "k"), [UserMessage("hi")])

    def test_stream_yields_normalized_deltas_until_done(self) -> None:
        self.session.post.return_value = _response(
            lines=[
                b": keep-alive",
                'data: {"choices":[{"delta":{"content":"Hel"}}]}'.encode(),
                b"",
                'data: {"choices":[{"delta":{"content":"lo 你好"}}]}'.encode("utf-8"),
                b"data: not-json",
                b"data: [DONE]",
                b'data: {"choices":[{"delta":{"content":"ignored"}}]}',
            ]
        )
        deltas = list(self.client.stream(self.request))
        self.assertEqual(deltas, [{"content": "Hel"}, {"content": "lo 你好"}])
        self.session.post.return_value.close.assert_called()

    def test_http_error_maps_to_provider_error(self) -> None:
        self.session.post.return_value = _response(status=402)
        with self.assertRaises(ProviderError) as ctx:
            list(self.client.stream(self.request))
        self.assertEqual(ctx.exception.category, ProviderError.PAYMENT_REQUIRED)
        self.assertIn("credits", ctx.exception.user_message("en"))

    def test_timeout_maps_to_unavailable(self) -> None:
        self.session.post.side_effect = requests.exceptions.Timeout("slow")
        with self.assertRaises(ProviderError) as ctx:
            self.client.complete(self.request)
        self.assertEqual(ctx.exception.status_code, 0)
        self.assertEqual(ctx.exception.category, ProviderError.UNAVAILABLE)

    def test_complete_returns_message_text(self) -> None:
        self.session.post.return_value = _response(body={"choices": [{"message": {"content": "  planned  "}}]})
        self.assertEqual(self.client.complete(self.request), "planned")


if __name__ == "__main__":
    unittest.main()
