"""Cancellation handles and the process-wide request registry."""

import asyncio
from dataclasses import dataclass

from parley_core.exceptions import RequestInFlightError
from parley_core.observability import get_logger

logger = get_logger(__name__)


class CancellationHandle:
    """One-shot abort signal owned by a single stream.

    Moves once from active to aborted. After the stream terminates the handle
    is released and must not be reused.
    """

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self._event = asyncio.Event()
        self._released = False
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def released(self) -> bool:
        return self._released

    def abort(self, reason: str | None = None) -> bool:
        """Signal abort. Returns False if the handle was already aborted."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        """Block until the handle is aborted."""
        await self._event.wait()

    def release(self) -> None:
        self._released = True

    def __repr__(self) -> str:
        state = "aborted" if self.aborted else "active"
        return f"CancellationHandle({self.request_id!r}, {state})"


@dataclass(frozen=True)
class CancelResult:
    """Outcome of a cancel request."""

    found: bool


class RequestRegistry:
    """Maps request IDs to the cancellation handle of their stream.

    Every operation is synchronous, so on a single event loop no other task
    can observe the map between a check and the mutation that follows it.
    """

    def __init__(self) -> None:
        self._handles: dict[str, CancellationHandle] = {}

    def register(self, request_id: str) -> CancellationHandle:
        """Create and register a handle for a new stream.

        Raises:
            RequestInFlightError: If ``request_id`` is already registered
        """
        if request_id in self._handles:
            raise RequestInFlightError(f"Request already in flight: {request_id}")
        handle = CancellationHandle(request_id)
        self._handles[request_id] = handle
        return handle

    def get(self, request_id: str) -> CancellationHandle | None:
        return self._handles.get(request_id)

    def cancel(self, request_id: str) -> CancelResult:
        """Abort a stream and drop its entry.

        Unknown or already finished requests report ``found=False``.
        """
        handle = self._handles.pop(request_id, None)
        if handle is None:
            logger.debug("Cancel for unknown request", context={"request_id": request_id})
            return CancelResult(found=False)

        handle.abort("cancelled")
        logger.info("Request cancelled", context={"request_id": request_id})
        return CancelResult(found=True)

    def release(self, request_id: str, handle: CancellationHandle) -> None:
        """Drop the entry for a terminated stream and release its handle.

        The entry is only removed if it still belongs to ``handle``.
        """
        if self._handles.get(request_id) is handle:
            del self._handles[request_id]
        handle.release()

    def shutdown(self) -> int:
        """Abort every outstanding stream and clear the map.

        Returns:
            Number of streams aborted
        """
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.abort("shutdown")
        if handles:
            logger.info("Aborted outstanding streams", context={"count": len(handles)})
        return len(handles)

    def active_requests(self) -> list[str]:
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._handles
