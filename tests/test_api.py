"""
Tests for the HTTP layer: SSE framing and engine error mapping.

The engine is swapped in through ``app.dependency_overrides`` with a scripted
provider; the Supabase client is the in-memory fake from conftest.
"""

import json
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from docsync.api.deps import get_engine
from docsync.core.conversation_engine import ConversationEngine
from docsync.core.rate_limiter import RateLimiter, get_chat_rate_limiter
from docsync.core.schemas_documents import ImpactAssessment
from docsync.main import app
from tests.fakes.fake_provider import FakeProvider

USER_ID = UUID("00000000-0000-0000-0000-0000000000a7")


def parse_sse_events(text: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in text.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture
def engine(fake_supabase):
    engine = ConversationEngine(
        provider=FakeProvider(), oracle=AsyncMock(return_value=ImpactAssessment())
    )
    app.dependency_overrides[get_engine] = lambda: engine
    get_chat_rate_limiter.cache_clear()
    yield engine
    app.dependency_overrides.clear()
    get_chat_rate_limiter.cache_clear()


@pytest.fixture
def client(engine):
    with TestClient(app) as test_client:
        yield test_client


def _start(client) -> str:
    response = client.post("/v1/conversations", params={"user_id": str(USER_ID)}, json={})
    assert response.status_code == 200
    return response.json()["conversation"]["id"]


# ──────────────────────────────────────────────────────────────────────
# Conversations & turns
# ──────────────────────────────────────────────────────────────────────


class TestConversationEndpoints:
    def test_start_conversation(self, client):
        response = client.post(
            "/v1/conversations", params={"user_id": str(USER_ID)}, json={"title": "Payroll"}
        )

        body = response.json()
        assert body["conversation"]["title"] == "Payroll"
        assert body["documents"] == []
        assert body["notices"] == []

    def test_unknown_conversation_is_404(self, client):
        response = client.get(f"/v1/conversations/{uuid4()}")
        assert response.status_code == 404

    def test_send_message_streams_turn(self, client):
        conversation_id = _start(client)

        response = client.post(
            f"/v1/conversations/{conversation_id}/messages",
            params={"user_id": str(USER_ID)},
            json={"text": "Hello"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse_events(response.text)
        types = [e["type"] for e in events]
        assert types[0] == "conversation"
        assert "user_message" in types
        assert {"type": "text", "content": "OK."} in events
        assert events[-1] == {"type": "done"}

        state = client.get(f"/v1/conversations/{conversation_id}").json()
        assert [m["role"] for m in state["messages"]] == ["user", "assistant"]

    def test_first_message_creates_conversation(self, client, fake_supabase):
        response = client.post(
            "/v1/conversations/messages",
            params={"user_id": str(USER_ID)},
            json={"text": "Expense reports\nThey take too long"},
        )

        events = parse_sse_events(response.text)
        assert events[0]["conversation"]["title"] == "Expense reports"
        assert len(fake_supabase.rows("conversations")) == 1

    def test_empty_message_rejected(self, client):
        conversation_id = _start(client)
        response = client.post(
            f"/v1/conversations/{conversation_id}/messages",
            params={"user_id": str(USER_ID)},
            json={"text": ""},
        )
        assert response.status_code == 422

    def test_token_limit_is_402(self, client, fake_supabase):
        fake_supabase.seed(
            "user_profiles",
            {"id": str(USER_ID), "plan": "free", "tokens_used": 10, "token_limit": 10},
        )

        response = client.post(
            "/v1/conversations/messages",
            params={"user_id": str(USER_ID)},
            json={"text": "Hello"},
        )

        assert response.status_code == 402

    def test_rate_limited_is_429(self, client, monkeypatch):
        limiter = RateLimiter(requests_per_minute=1, burst_size=1)
        monkeypatch.setattr("docsync.core.rate_limiter.get_chat_rate_limiter", lambda: limiter)
        conversation_id = _start(client)
        url = f"/v1/conversations/{conversation_id}/messages"

        client.post(url, params={"user_id": str(USER_ID)}, json={"text": "one"})
        response = client.post(url, params={"user_id": str(USER_ID)}, json={"text": "two"})

        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_stop_without_generation(self, client):
        conversation_id = _start(client)
        response = client.post(f"/v1/conversations/{conversation_id}/stop")
        assert response.json() == {"stopped": False}


# ──────────────────────────────────────────────────────────────────────
# Documents
# ──────────────────────────────────────────────────────────────────────


class TestDocumentEndpoints:
    def _generate(self, client, conversation_id, doc_type="analysis"):
        return client.post(
            f"/v1/conversations/{conversation_id}/documents/{doc_type}/generate",
            params={"user_id": str(USER_ID)},
            json={},
        )

    def test_generate_streams_and_commits(self, client):
        conversation_id = _start(client)

        events = parse_sse_events(self._generate(client, conversation_id).text)

        types = [e["type"] for e in events]
        assert types[0] == "generation_started"
        assert "document_chunk" in types
        committed = [e for e in events if e["type"] == "document_committed"]
        assert committed[0]["version"]["version_number"] == 1

        versions = client.get(f"/v1/conversations/{conversation_id}/documents/analysis/versions")
        assert len(versions.json()["versions"]) == 1

    def test_missing_upstream_is_409(self, client):
        conversation_id = _start(client)
        response = self._generate(client, conversation_id, "traceability")
        assert response.status_code == 409

    def test_unknown_document_type_is_422(self, client):
        conversation_id = _start(client)
        response = self._generate(client, conversation_id, "roadmap")
        assert response.status_code == 422

    def test_template_change_needs_confirmation(self, client):
        conversation_id = _start(client)
        self._generate(client, conversation_id)

        response = client.post(
            f"/v1/conversations/{conversation_id}/documents/analysis/template",
            params={"user_id": str(USER_ID)},
            json={"template_id": "system-analysis"},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "confirmation_required"

    def test_edit_and_restore(self, client):
        conversation_id = _start(client)
        self._generate(client, conversation_id)

        edit = client.put(
            f"/v1/conversations/{conversation_id}/documents/analysis",
            json={"content": "# Edited"},
        )
        assert edit.json()["version"]["version_number"] == 2

        first = client.get(
            f"/v1/conversations/{conversation_id}/documents/analysis/versions"
        ).json()["versions"][0]
        restore = client.post(
            f"/v1/conversations/{conversation_id}/documents/versions/{first['id']}/restore"
        )
        assert restore.json()["version"]["version_number"] == 3
        assert restore.json()["version"]["reason_for_change"] == "restored to v1"

    def test_restore_unknown_version_is_404(self, client):
        conversation_id = _start(client)
        response = client.post(
            f"/v1/conversations/{conversation_id}/documents/versions/{uuid4()}/restore"
        )
        assert response.status_code == 404

    def test_templates_include_builtin_default(self, client):
        response = client.get("/v1/templates", params={"doc_type": "test"})

        templates = response.json()["templates"]
        assert templates[0]["id"] == "system-test"
        assert templates[0]["is_system_template"] is True
