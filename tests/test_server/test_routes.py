"""Tests for server routes."""

import asyncio
import json

import httpx
import pytest
from starlette.testclient import TestClient

from parley_core.backends.store.memory import MemoryMessageStore
from parley_core.client import ChatClient
from parley_core.config import Config
from parley_core.server.app import create_app
from parley_core.server.routes import NDJSONResponse, format_ndjson
from parley_core.streaming.registry import RequestRegistry


@pytest.fixture
def chat_client(sample_config_dict) -> ChatClient:
    """Create a chat client backed by the mock provider."""
    return ChatClient.from_dict(sample_config_dict)


@pytest.fixture
def client(chat_client: ChatClient) -> TestClient:
    """Create a test client with lifespan events."""
    with TestClient(create_app(chat_client)) as test_client:
        yield test_client


def ndjson_lines(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line]


def create_session(client: TestClient) -> str:
    response = client.post("/sessions", json={})
    assert response.status_code == 201
    return response.json()["id"]


class ClaimingStore(MemoryMessageStore):
    """Memory store that lets another stream claim a request ID mid-request.

    The route checks the session once, then ``send_message`` checks it again;
    the ID is registered between the two.
    """

    def __init__(self, registry: RequestRegistry, request_id: str) -> None:
        super().__init__()
        self.registry = registry
        self.request_id = request_id
        self.checks = 0
        self.claimed = None

    async def session_exists(self, session_id: str) -> bool:
        self.checks += 1
        if self.checks == 2:
            self.claimed = self.registry.register(self.request_id)
        return await super().session_exists(session_id)


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        """Health endpoint returns status ok."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["active_requests"] == 0
        assert "timestamp" in data

    def test_ping_alias(self, client: TestClient) -> None:
        """Ping endpoint is an alias for health."""
        response = client.get("/ping")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestChatStreamEndpoint:
    """Tests for the streaming chat endpoint."""

    def test_streams_chunks_then_done(self, client: TestClient) -> None:
        """Reply arrives as NDJSON chunks followed by done."""
        session_id = create_session(client)

        response = client.post(
            "/chat/stream",
            json={"session_id": session_id, "message": "Hello", "request_id": "req-42"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert response.headers["x-request-id"] == "req-42"
        lines = ndjson_lines(response)
        assert lines[-1] == {"type": "done"}
        assert "".join(line["content"] for line in lines[:-1]) == "Echo: Hello "

    def test_generates_request_id(self, client: TestClient) -> None:
        session_id = create_session(client)

        response = client.post("/chat/stream", json={"session_id": session_id, "message": "Hi"})

        assert response.headers["x-request-id"].startswith("req-")

    def test_tool_calls_are_streamed(self, client: TestClient) -> None:
        session_id = create_session(client)

        response = client.post(
            "/chat/stream",
            json={"session_id": session_id, "message": "weather", "tools": ["web_search"]},
        )

        lines = ndjson_lines(response)
        types = [line["type"] for line in lines]
        assert types[0] == "tool_call_start"
        assert "tool_call_progress" in types
        complete = next(line for line in lines if line["type"] == "tool_call_complete")
        assert complete["record"]["item_id"] == "ws_mock"
        assert complete["record"]["type"] == "web_search"
        assert complete["record"]["status"] == "completed"
        assert complete["record"]["query"] == "weather"
        assert types[-1] == "done"

    def test_messages_are_persisted(self, client: TestClient) -> None:
        session_id = create_session(client)
        client.post("/chat/stream", json={"session_id": session_id, "message": "Hello"})

        response = client.get(f"/sessions/{session_id}/messages")

        assert response.status_code == 200
        messages = response.json()["messages"]
        assert [(m["role"], m["status"]) for m in messages] == [
            ("user", "sent"),
            ("assistant", "sent"),
        ]
        assert messages[1]["content"] == "Echo: Hello "

    def test_invalid_json(self, client: TestClient) -> None:
        response = client.post(
            "/chat/stream",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_body_not_utf8(self, client: TestClient) -> None:
        response = client.post(
            "/chat/stream",
            content=b'\xff\xfe{"message": "hi"}',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/chat/stream", json={"message": "Hello"})

        assert response.status_code == 400

    def test_unknown_tool(self, client: TestClient) -> None:
        session_id = create_session(client)

        response = client.post(
            "/chat/stream",
            json={"session_id": session_id, "message": "Hi", "tools": ["telepathy"]},
        )

        assert response.status_code == 400

    def test_bad_attachment(self, client: TestClient) -> None:
        session_id = create_session(client)

        response = client.post(
            "/chat/stream",
            json={"session_id": session_id, "message": "Hi", "attachments": [{"type": "video"}]},
        )

        assert response.status_code == 400

    def test_unknown_session(self, client: TestClient) -> None:
        response = client.post(
            "/chat/stream",
            json={"session_id": "session-missing", "message": "Hello"},
        )

        assert response.status_code == 404

    def test_provider_error_is_streamed(self, sample_config_dict) -> None:
        sample_config_dict["llm"]["provider_specific"] = {"fail_after": 0}
        chat_client = ChatClient.from_dict(sample_config_dict)

        with TestClient(create_app(chat_client)) as client:
            session_id = create_session(client)
            response = client.post(
                "/chat/stream",
                json={"session_id": session_id, "message": "Hello"},
            )

        assert response.status_code == 200
        assert ndjson_lines(response) == [
            {"type": "error", "error": "Mock API error: 500 simulated failure"}
        ]

    def test_request_id_in_flight_is_conflict(
        self, client: TestClient, chat_client: ChatClient
    ) -> None:
        """A second stream with a running request ID is refused and the first is untouched."""
        session_id = create_session(client)
        running = chat_client.registry.register("req-dup")

        response = client.post(
            "/chat/stream",
            json={"session_id": session_id, "message": "Hello", "request_id": "req-dup"},
        )

        assert response.status_code == 409
        assert not running.aborted
        assert chat_client.registry.get("req-dup") is running
        assert client.get(f"/sessions/{session_id}/messages").json()["messages"] == []

    def test_late_duplicate_does_not_cancel_running_stream(self, sample_config_dict) -> None:
        """A request that loses the ID after the route check must not abort the winner."""
        registry = RequestRegistry()
        store = ClaimingStore(registry, "req-dup")
        chat_client = ChatClient(Config.from_dict(sample_config_dict), store=store, registry=registry)

        with TestClient(create_app(chat_client)) as client:
            session_id = create_session(client)
            response = client.post(
                "/chat/stream",
                json={"session_id": session_id, "message": "Hello", "request_id": "req-dup"},
            )

            assert ndjson_lines(response) == [
                {"type": "error", "error": "Request already in flight: req-dup"}
            ]
            assert not store.claimed.aborted
            assert registry.get("req-dup") is store.claimed

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_leaves_first_stream_complete(
        self, sample_config_dict
    ) -> None:
        """Two overlapping POSTs with one request ID: the first still reaches done."""
        sample_config_dict["llm"]["provider_specific"] = {"delay": 0.05}
        chat_client = ChatClient.from_dict(sample_config_dict)
        session = await chat_client.store.create_session()
        payload = {"session_id": session.id, "message": "one two three", "request_id": "dup"}

        transport = httpx.ASGITransport(app=create_app(chat_client))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            first = asyncio.create_task(http.post("/chat/stream", json=payload))
            while "dup" not in chat_client.registry and not first.done():
                await asyncio.sleep(0.01)

            second = await http.post("/chat/stream", json=payload)
            first_response = await first

        assert second.status_code == 409
        lines = ndjson_lines(first_response)
        assert lines[-1] == {"type": "done"}
        assert "".join(line["content"] for line in lines[:-1]) == "Echo: one two three "
        messages = await chat_client.store.list_messages(session.id)
        assert [(m.role, m.status) for m in messages] == [("user", "sent"), ("assistant", "sent")]


class TestChatCancelEndpoint:
    """Tests for the cancel endpoint."""

    def test_unknown_request(self, client: TestClient) -> None:
        response = client.post("/chat/cancel", json={"request_id": "req-unknown"})

        assert response.status_code == 200
        assert response.json() == {"found": False}

    def test_in_flight_request(self, client: TestClient, chat_client: ChatClient) -> None:
        handle = chat_client.registry.register("req-1")

        first = client.post("/chat/cancel", json={"request_id": "req-1"})
        second = client.post("/chat/cancel", json={"request_id": "req-1"})

        assert first.json() == {"found": True}
        assert second.json() == {"found": False}
        assert handle.aborted

    def test_missing_request_id(self, client: TestClient) -> None:
        response = client.post("/chat/cancel", json={})

        assert response.status_code == 400


class TestSessionEndpoints:
    """Tests for session routes."""

    def test_create_with_title(self, client: TestClient) -> None:
        response = client.post("/sessions", json={"title": "Trip planning"})

        assert response.status_code == 201
        assert response.json()["title"] == "Trip planning"

    def test_create_without_body(self, client: TestClient) -> None:
        response = client.post("/sessions")

        assert response.status_code == 201
        assert response.json()["title"] == "New Chat"

    def test_list_sessions(self, client: TestClient) -> None:
        first = create_session(client)
        second = create_session(client)

        response = client.get("/sessions", params={"limit": 10})

        data = response.json()
        assert {s["id"] for s in data["sessions"]} == {first, second}
        assert data["limit"] == 10
        assert data["offset"] == 0

    def test_list_sessions_bad_limit(self, client: TestClient) -> None:
        response = client.get("/sessions", params={"limit": "ten"})

        assert response.status_code == 400

    def test_messages_of_unknown_session(self, client: TestClient) -> None:
        response = client.get("/sessions/session-missing/messages")

        assert response.status_code == 404

    def test_get_session(self, client: TestClient) -> None:
        response = client.post("/sessions", json={"title": "Trip planning"})
        session_id = response.json()["id"]

        fetched = client.get(f"/sessions/{session_id}")

        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Trip planning"
        assert client.get("/sessions/session-missing").status_code == 404

    def test_rename_session(self, client: TestClient) -> None:
        session_id = create_session(client)

        response = client.patch(f"/sessions/{session_id}", json={"title": "  Renamed  "})

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert client.get(f"/sessions/{session_id}").json()["title"] == "Renamed"

    def test_rename_requires_title(self, client: TestClient) -> None:
        session_id = create_session(client)

        assert client.patch(f"/sessions/{session_id}", json={}).status_code == 400
        assert client.patch(f"/sessions/{session_id}", json={"title": "   "}).status_code == 400

    def test_rename_unknown_session(self, client: TestClient) -> None:
        response = client.patch("/sessions/session-missing", json={"title": "Renamed"})

        assert response.status_code == 404

    def test_delete_session(self, client: TestClient) -> None:
        session_id = create_session(client)

        assert client.delete(f"/sessions/{session_id}").json() == {"deleted": True}
        assert client.delete(f"/sessions/{session_id}").status_code == 404


class TestLifespan:
    """Tests for app shutdown."""

    def test_shutdown_aborts_outstanding_requests(self, chat_client: ChatClient) -> None:
        with TestClient(create_app(chat_client)):
            handle = chat_client.registry.register("req-1")

        assert handle.aborted
        assert len(chat_client.registry) == 0


class TestNDJSON:
    """Tests for NDJSON helpers."""

    def test_format_ndjson(self) -> None:
        assert format_ndjson({"type": "done"}) == '{"type": "done"}\n'

    def test_response_headers(self) -> None:
        async def empty():
            if False:
                yield ""

        response = NDJSONResponse(empty(), headers={"X-Request-ID": "req-1"})

        assert response.media_type == "application/x-ndjson"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-request-id"] == "req-1"
