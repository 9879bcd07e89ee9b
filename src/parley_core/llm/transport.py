"""Server-Sent Events transport over httpx.

Opens one streaming POST per call and yields the decoded JSON payload of each
SSE event. Parsing follows the usual framing rules: ``data:`` lines accumulate
until a blank line, ``:`` comment lines and ``event:``/``id:``/``retry:``
fields are ignored, and a ``[DONE]`` payload ends the stream.
"""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from parley_core.exceptions import TransportError
from parley_core.observability import get_logger
from parley_core.streaming.registry import CancellationHandle

logger = get_logger(__name__)

DONE_SENTINEL = "[DONE]"

_ABORTED = object()


@dataclass(frozen=True)
class PreparedRequest:
    """Outbound request, fully built by an adapter."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort upstream error message from a non-2xx response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] if text else response.reason_phrase

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if payload.get("message"):
            return str(payload["message"])
    return response.reason_phrase


def _decode(data: str) -> dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise TransportError(f"Malformed stream chunk: {data[:200]!r}") from e
    if not isinstance(payload, dict):
        raise TransportError(f"Malformed stream chunk: expected object, got {type(payload).__name__}")
    return payload


async def _next_or_abort(lines: AsyncIterator[str], handle: CancellationHandle) -> Any:
    """Await the next line, or ``_ABORTED`` as soon as ``handle`` fires.

    Raises StopAsyncIteration at the end of the body.
    """
    if handle.aborted:
        return _ABORTED

    async def pull() -> str:
        return await lines.__anext__()

    next_line = asyncio.ensure_future(pull())
    abort_wait = asyncio.ensure_future(handle.wait())
    try:
        await asyncio.wait({next_line, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (next_line, abort_wait):
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending

    if next_line.cancelled():
        return _ABORTED
    return next_line.result()


class TransportStreamReader:
    """Reads provider-native events from a streaming HTTP response.

    The reader owns no connection state between calls; each call to
    :meth:`events` opens and releases exactly one response.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the reader.

        Args:
            client: Shared client to use. When omitted, a client is created
                per stream and closed with it.
            timeout: Timeout for per-stream clients
            transport: Transport for per-stream clients (httpx default if
                None); closed along with each of them
        """
        self._client = client
        self._timeout = timeout or httpx.Timeout(10.0, read=None)
        self._transport = transport

    @contextlib.asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            yield client

    async def events(
        self,
        request: PreparedRequest,
        handle: CancellationHandle,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded SSE payloads until the stream ends.

        Args:
            request: The outbound request
            handle: Cancellation handle of the owning stream

        Yields:
            One dict per SSE event

        Raises:
            TransportError: On connection failure, non-2xx status or a
                malformed chunk. Never raised because of an abort.
        """
        if handle.aborted:
            return

        async with self._client_scope() as client:
            try:
                async with client.stream(
                    "POST",
                    request.url,
                    json=request.body,
                    headers={"Accept": "text/event-stream", **request.headers},
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise TransportError(
                            f"{response.status_code} {_error_detail(response)}",
                            status_code=response.status_code,
                        )

                    lines = response.aiter_lines()
                    data_parts: list[str] = []
                    while True:
                        try:
                            line = await _next_or_abort(lines, handle)
                        except StopAsyncIteration:
                            break
                        if line is _ABORTED:
                            logger.debug("Transport stopped by abort")
                            return

                        if not line.strip():
                            # Blank line = event boundary
                            if not data_parts:
                                continue
                            data = "\n".join(data_parts).strip()
                            data_parts.clear()
                            if data == DONE_SENTINEL:
                                return
                            if data:
                                yield _decode(data)
                            continue

                        if line.startswith(":"):
                            continue
                        name, _, value = line.partition(":")
                        if name == "data":
                            data_parts.append(value[1:] if value.startswith(" ") else value)

                    # Flush an event not followed by a blank line
                    data = "\n".join(data_parts).strip()
                    if data and data != DONE_SENTINEL:
                        yield _decode(data)
            except httpx.HTTPError as e:
                if handle.aborted:
                    return
                raise TransportError(f"Connection error: {e}") from e
