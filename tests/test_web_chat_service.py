from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from penguin_brain.config import RateLimitConfig
from penguin_brain.runtime import create_runtime
from penguin_brain.security.rate_limit import RATE_LIMIT_MESSAGE, RateLimiter
from penguin_brain.web.app import create_app


class DummyLLM:
    def __init__(self, text: str = "Hi there!") -> None:
        self.text = text

    def stream(self, request):
        yield {"content": self.text}

    def complete(self, request) -> str:
        return ""


@pytest.fixture
def runtime(tmp_path, monkeypatch):
    # Ensure auth disabled for test simplicity
    monkeypatch.delenv("PENGUIN_WEB_TOKEN", raising=False)
    runtime = create_runtime(
        sqlite_path=tmp_path / "web.sqlite",
        llm_client=DummyLLM(),
        embedder=lambda text: [1.0, 0.0],
    )
    runtime.settings.save_connection("u1", "openai", "gpt-4o-mini", api_key="sk-test")
    return runtime


def chat_payload(**overrides):
    payload = {"message": "hello", "userId": "u1", "companyId": "c1", "userLanguage": "en"}
    payload.update(overrides)
    return payload


def test_health(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


def test_chat_streams_sse_until_done(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.post("/chat", json=chat_payload(conversationId="conv-1"))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = [block for block in resp.text.split("\n\n") if block]
        assert events[-1] == "data: [DONE]"
        contents = [
            json.loads(block[len("data: "):])["choices"][0]["delta"]["content"]
            for block in events[:-1]
        ]
        assert contents[0] == "💭 Thinking...\n\n"
        assert "Hi there!" in contents

    history = runtime.conversations.recent_history("conv-1", window_minutes=15, limit=10)
    assert [row["role"] for row in history] == ["user", "assistant"]


def test_blank_message_rejected(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.post("/chat", json=chat_payload(message="   "))
        assert resp.status_code == 400
        assert "error" in resp.json()


def test_missing_identity_rejected(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.post("/chat", json={"message": "hello"})
        assert resp.status_code == 400


def test_malformed_body_rejected(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.post("/chat", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}


def test_missing_llm_connection_payload(runtime):
    with TestClient(create_app(runtime)) as client:
        resp = client.post("/chat", json=chat_payload(userId="u-without-llm"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "no_llm_configured"
        assert resp.json()["message"]


def test_rate_limit(runtime):
    runtime.rate_limiter = RateLimiter(RateLimitConfig(max_requests=1, window_seconds=60))
    with TestClient(create_app(runtime)) as client:
        first = client.post("/chat", json=chat_payload(), headers={"x-forwarded-for": "5.5.5.5"})
        assert first.status_code == 200
        second = client.post("/chat", json=chat_payload(), headers={"x-forwarded-for": "5.5.5.5"})
        assert second.status_code == 429
        assert second.json() == {"error": RATE_LIMIT_MESSAGE}
        other = client.post("/chat", json=chat_payload(), headers={"x-forwarded-for": "6.6.6.6"})
        assert other.status_code == 200


def test_token_required_when_configured(runtime, monkeypatch):
    monkeypatch.setenv("PENGUIN_WEB_TOKEN", "secret")
    with TestClient(create_app(runtime)) as client:
        assert client.post("/chat", json=chat_payload()).status_code == 401
        bad = client.post("/chat", json=chat_payload(), headers={"Authorization": "Bearer nope"})
        assert bad.status_code == 401
        assert bad.json() == {"error": "Invalid token"}
        ok = client.post("/chat", json=chat_payload(), headers={"Authorization": "Bearer secret"})
        assert ok.status_code == 200
