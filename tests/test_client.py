"""Tests for the chat client facade."""

import asyncio
import contextlib

import pytest
import yaml

from parley_core.backends.store.memory import MemoryMessageStore
from parley_core.backends.store.sqlite import SQLiteMessageStore
from parley_core.client import ChatClient
from parley_core.exceptions import RequestInFlightError, SessionNotFoundError
from parley_core.llm.base import Done, Error, StreamCallbacks, TextDelta, ToolType
from parley_core.streaming.controller import StreamRequest


@pytest.fixture
def client(sample_config_dict) -> ChatClient:
    """Create a client using the mock provider and memory store."""
    return ChatClient.from_dict(sample_config_dict)


async def reply(client: ChatClient, session_id: str, content: str, **kwargs) -> list:
    return [event async for event in client.send_message(session_id, content, **kwargs)]


class TestConstruction:
    """Tests for building a client from configuration."""

    def test_from_dict(self, client: ChatClient) -> None:
        assert isinstance(client.store, MemoryMessageStore)
        assert client.config.llm.provider == "mock"
        assert client.controller.registry is client.registry

    def test_from_config_file(self, tmp_path, sample_config_dict) -> None:
        sample_config_dict["storage"] = {"backend": "sqlite", "path": str(tmp_path / "chat.db")}
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(sample_config_dict))

        client = ChatClient.from_config(path)

        assert isinstance(client.store, SQLiteMessageStore)
        assert client.config.server.port == 9000


class TestSendMessage:
    """Tests for send_message."""

    @pytest.mark.asyncio
    async def test_persists_conversation(self, client: ChatClient) -> None:
        session = await client.store.create_session()

        events = await reply(client, session.id, "Hello")

        assert isinstance(events[-1], Done)
        messages = await client.store.list_messages(session.id)
        assert [(m.role, m.content, m.status) for m in messages] == [
            ("user", "Hello", "sent"),
            ("assistant", "Echo: Hello ", "sent"),
        ]
        assert (await client.store.get_session(session.id)).title == "Hello"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: ChatClient) -> None:
        with pytest.raises(SessionNotFoundError):
            await reply(client, "session-missing", "Hello")

    @pytest.mark.asyncio
    async def test_duplicate_request_id_persists_nothing(self, client: ChatClient) -> None:
        """A request ID that is still streaming is refused before any row is written."""
        session = await client.store.create_session()
        running = client.registry.register("req-dup")

        with pytest.raises(RequestInFlightError):
            await reply(client, session.id, "Hello", request_id="req-dup")

        assert await client.store.list_messages(session.id) == []
        assert not running.aborted
        assert client.registry.get("req-dup") is running

    @pytest.mark.asyncio
    async def test_error_is_saved_on_placeholder(self, client: ChatClient) -> None:
        session = await client.store.create_session()
        config = client.config.llm.model_copy(update={"provider_specific": {"fail_after": 0}})

        events = await reply(client, session.id, "Hello", config=config)

        assert isinstance(events[-1], Error)
        assistant = (await client.store.list_messages(session.id))[-1]
        assert assistant.status == "error"
        assert assistant.content == "Mock API error: 500 simulated failure"

    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_reply(self, client: ChatClient) -> None:
        session = await client.store.create_session()
        events = []

        async for event in client.send_message(session.id, "one two three", request_id="req-1"):
            events.append(event)
            if isinstance(event, TextDelta):
                assert client.cancel_chat("req-1").found

        assert events == [TextDelta("Echo: ")]
        assistant = (await client.store.list_messages(session.id))[-1]
        assert assistant.status == "sent"
        assert assistant.content == "Echo: "

    @pytest.mark.asyncio
    async def test_history_is_sent_and_tool_calls_persisted(self, client: ChatClient) -> None:
        session = await client.store.create_session()
        await reply(client, session.id, "first")

        events = await reply(client, session.id, "second", tools=[ToolType.WEB_SEARCH])

        assert [e.type for e in events][:1] == ["tool_started"]
        messages = await client.store.list_messages(session.id)
        tool_rows = [m for m in messages if m.content_type == "tool_call"]
        assert len(tool_rows) == 1
        assert tool_rows[0].tool_query == "second"
        assert tool_rows[0].status == "sent"
        assert [m.role for m in messages] == ["user", "assistant", "user", "assistant", "tool"]

    @pytest.mark.asyncio
    async def test_closing_early_finalizes_reply(self, client: ChatClient) -> None:
        session = await client.store.create_session()

        async with contextlib.aclosing(client.send_message(session.id, "a b c")) as events:
            async for _ in events:
                break

        assistant = (await client.store.list_messages(session.id))[-1]
        assert assistant.status == "sent"
        assert assistant.content == "Echo: "
        assert len(client.registry) == 0


class TestCallbacksAndShutdown:
    """Tests for the callback API and aclose."""

    @pytest.mark.asyncio
    async def test_stream_chat(self, client: ChatClient) -> None:
        chunks: list[str] = []
        done: list[bool] = []
        request = StreamRequest.create(
            messages=[],
            config=client.config.llm,
            request_id="req-1",
        )

        await client.stream_chat(
            request,
            StreamCallbacks(on_chunk=chunks.append, on_done=lambda: done.append(True)),
        )

        assert "".join(chunks) == "Echo: "
        assert done == [True]

    @pytest.mark.asyncio
    async def test_aclose_aborts_streams(self, client: ChatClient) -> None:
        config = client.config.llm.model_copy(update={"provider_specific": {"delay": 5}})
        request = StreamRequest.create(messages=[], config=config, request_id="req-1")
        errors: list[str] = []

        task = client.stream_chat(request, StreamCallbacks(on_error=errors.append))
        await asyncio.sleep(0.01)

        async with client:
            pass

        assert task.done()
        assert errors == []
        assert len(client.registry) == 0
