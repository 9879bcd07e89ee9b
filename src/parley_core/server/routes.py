"""HTTP route handlers with Streamable HTTP streaming.

Chat replies are streamed as NDJSON (newline-delimited JSON) over chunked
HTTP, one canonical stream event per line.
"""

import json
import time
import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from parley_core.exceptions import RequestInFlightError, SessionNotFoundError
from parley_core.llm.base import Attachment, Error, StreamEvent, ToolType, event_to_dict
from parley_core.observability import get_logger
from parley_core.streaming.registry import CancellationHandle

if TYPE_CHECKING:
    from parley_core.client import ChatClient

logger = get_logger(__name__)


class NDJSONResponse(StreamingResponse):
    """Newline-delimited JSON streaming response (Streamable HTTP).

    Each chunk is a JSON object followed by a newline, enabling simple
    parsing without special protocols.
    """

    media_type = "application/x-ndjson"

    def __init__(
        self,
        content: AsyncIterator[str],
        status_code: int = 200,
        headers: dict | None = None,
    ) -> None:
        ndjson_headers = {
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        }
        if headers:
            ndjson_headers.update(headers)

        super().__init__(
            content=content,
            status_code=status_code,
            headers=ndjson_headers,
            media_type=self.media_type,
        )


def format_ndjson(data: dict) -> str:
    """Format data as NDJSON line.

    Args:
        data: Data to serialize

    Returns:
        JSON string followed by newline
    """
    return json.dumps(data) + "\n"


def _parse_tools(raw: Any) -> list[ToolType] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValueError("tools must be a list")
    return [ToolType(name) for name in raw]


def _parse_attachments(raw: Any) -> list[Attachment]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValueError("attachments must be a list")
    attachments = []
    for item in raw:
        if item.get("type") not in ("image", "file"):
            raise ValueError(f"Unsupported attachment type: {item.get('type')}")
        attachments.append(
            Attachment(
                type=item["type"],
                mime_type=item["mime_type"],
                data=item["data"],
                name=item.get("name"),
            )
        )
    return attachments


def _is_duplicate(event: StreamEvent) -> bool:
    return isinstance(event, Error) and isinstance(event.cause, RequestInFlightError)


async def _read_json(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError
        return None
    return body if isinstance(body, dict) else None


def create_routes(client: "ChatClient") -> list[Route]:
    """Create HTTP routes for the chat client.

    Args:
        client: The configured ChatClient instance

    Returns:
        List of Starlette routes
    """

    async def health(request: Request) -> Response:
        """Health check endpoint."""
        return JSONResponse(
            {
                "status": "ok",
                "active_requests": len(client.registry),
                "timestamp": time.time(),
            }
        )

    async def chat_stream(request: Request) -> Response:
        """Send a message and stream the reply (Streamable HTTP).

        Body:
            {"session_id": "...", "message": "...", "request_id": "...",
             "tools": ["web_search"], "attachments": [...]}

        Returns NDJSON stream with lines:
            {"type": "chunk", "content": "..."}
            {"type": "tool_call_start" | "tool_call_progress" |
             "tool_call_complete", "record": {...}}
            {"type": "done"}
            {"type": "error", "error": "..."}

        The request ID is echoed in the ``X-Request-ID`` header so the
        caller can cancel the stream.
        """
        body = await _read_json(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message")
        session_id = body.get("session_id")
        if not message or not session_id:
            return JSONResponse(
                {"error": "Missing required fields: session_id, message"},
                status_code=400,
            )

        try:
            tools = _parse_tools(body.get("tools"))
            attachments = _parse_attachments(body.get("attachments"))
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            return JSONResponse({"error": f"Invalid request: {e}"}, status_code=400)

        if not await client.store.session_exists(session_id):
            return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)

        request_id = body.get("request_id") or f"req-{uuid.uuid4().hex[:12]}"
        if request_id in client.registry:
            return JSONResponse(
                {"error": f"Request already in flight: {request_id}"},
                status_code=409,
            )

        async def generate() -> AsyncIterator[str]:
            """Generate NDJSON stream."""
            owned: CancellationHandle | None = None
            first = True
            try:
                async for event in client.send_message(
                    session_id,
                    message,
                    attachments=attachments,
                    request_id=request_id,
                    tools=tools,
                ):
                    if first:
                        first = False
                        if not _is_duplicate(event):
                            owned = client.registry.get(request_id)
                    yield format_ndjson(event_to_dict(event))
            except (SessionNotFoundError, RequestInFlightError) as e:
                yield format_ndjson({"type": "error", "error": str(e)})
            finally:
                # Aborts on disconnect, only if the registration is still ours
                if owned is not None and client.registry.get(request_id) is owned:
                    client.cancel_chat(request_id)

        return NDJSONResponse(generate(), headers={"X-Request-ID": request_id})

    async def chat_cancel(request: Request) -> Response:
        """Cancel an in-flight stream.

        Always 200; ``found`` tells whether the request was still running.
        """
        body = await _read_json(request)
        if body is None or not body.get("request_id"):
            return JSONResponse(
                {"error": "Missing required field: request_id"},
                status_code=400,
            )

        result = client.cancel_chat(body["request_id"])
        return JSONResponse({"found": result.found})

    async def session_create(request: Request) -> Response:
        """Create a chat session. Body (optional): {"title": "..."}"""
        body = await _read_json(request) if await request.body() else {}
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        session = await client.store.create_session(title=body.get("title"))
        return JSONResponse(session.to_dict(), status_code=201)

    async def sessions(request: Request) -> Response:
        """List sessions, most recently updated first.

        Query params:
        - limit: Maximum sessions to return (default 50)
        - offset: Number to skip (default 0)
        """
        try:
            limit = int(request.query_params.get("limit", "50"))
            offset = int(request.query_params.get("offset", "0"))
        except ValueError:
            return JSONResponse({"error": "limit and offset must be integers"}, status_code=400)

        records = await client.store.list_sessions(limit=limit, offset=offset)
        return JSONResponse(
            {
                "sessions": [s.to_dict() for s in records],
                "limit": limit,
                "offset": offset,
            }
        )

    async def session_messages(request: Request) -> Response:
        """List the messages of a session in creation order."""
        session_id = request.path_params["session_id"]
        if not await client.store.session_exists(session_id):
            return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)

        records = await client.store.list_messages(session_id)
        return JSONResponse(
            {
                "session_id": session_id,
                "messages": [m.to_dict() for m in records],
            }
        )

    async def session_get(request: Request) -> Response:
        """Get one session."""
        session_id = request.path_params["session_id"]
        session = await client.store.get_session(session_id)
        if session is None:
            return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)
        return JSONResponse(session.to_dict())

    async def session_update(request: Request) -> Response:
        """Rename a session. Body: {"title": "..."}"""
        session_id = request.path_params["session_id"]
        body = await _read_json(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        title = body.get("title")
        if not isinstance(title, str) or not title.strip():
            return JSONResponse({"error": "Missing required field: title"}, status_code=400)

        session = await client.store.update_session(session_id, title.strip())
        if session is None:
            return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)
        return JSONResponse(session.to_dict())

    async def session_delete(request: Request) -> Response:
        """Delete a session and its messages."""
        session_id = request.path_params["session_id"]
        if not await client.store.delete_session(session_id):
            return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)
        return JSONResponse({"deleted": True})

    return [
        Route("/health", health, methods=["GET"]),
        Route("/ping", health, methods=["GET"]),  # Alias
        # Chat
        Route("/chat/stream", chat_stream, methods=["POST"]),
        Route("/chat/cancel", chat_cancel, methods=["POST"]),
        # Sessions
        Route("/sessions", session_create, methods=["POST"]),
        Route("/sessions", sessions, methods=["GET"]),
        Route("/sessions/{session_id}/messages", session_messages, methods=["GET"]),
        Route("/sessions/{session_id}", session_get, methods=["GET"]),
        Route("/sessions/{session_id}", session_update, methods=["PATCH"]),
        Route("/sessions/{session_id}", session_delete, methods=["DELETE"]),
    ]
