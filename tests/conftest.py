"""Pytest configuration and fixtures."""

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from parley_core.config import ProviderConfig


def sse_body(*payloads: dict | str, done: bool = True) -> bytes:
    """Encode payloads as an SSE response body."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def chat_chunk(text: str) -> dict:
    """A chat_completions streaming chunk carrying ``text``."""
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def text_delta(text: str) -> dict:
    """A responses ``output_text.delta`` event."""
    return {"type": "response.output_text.delta", "delta": text}


class TrackedBody(httpx.AsyncByteStream):
    """Response body that records whether httpx closed it.

    Yields ``chunks``, then optionally blocks on ``hold`` and raises ``error``.
    """

    def __init__(
        self,
        *chunks: bytes,
        hold: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self.chunks = chunks
        self.hold = hold
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class StubUpstream:
    """httpx transport handler that replays a canned SSE response.

    Records every request it receives so tests can inspect the payload.
    """

    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        self.body = body
        self.status_code = status_code
        self.headers = headers or {"content-type": "text/event-stream"}
        self.handler = handler
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        return httpx.Response(self.status_code, content=self.body, headers=self.headers)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def openai_config() -> ProviderConfig:
    """Chat-completions OpenAI config."""
    return ProviderConfig(provider="openai", api_key="sk-test", model="gpt-4o")


@pytest.fixture
def responses_config() -> ProviderConfig:
    """Responses-dialect OpenAI config without default tools."""
    return ProviderConfig(provider="openai", api_key="sk-test", model="o4-mini")


@pytest.fixture
def mock_config() -> ProviderConfig:
    """Config for the mock provider."""
    return ProviderConfig(provider="mock", api_key="test", model="mock")


@pytest.fixture
def sample_config_dict() -> dict:
    """Sample configuration dictionary for testing."""
    return {
        "llm": {"provider": "mock", "api_key": "test", "model": "mock"},
        "streaming": {"connect_timeout_seconds": 5, "read_timeout_seconds": 30},
        "storage": {"backend": "memory"},
        "server": {"host": "0.0.0.0", "port": 9000},
        "logging": {"level": "DEBUG", "format": "text"},
    }
