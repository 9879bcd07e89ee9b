"""Tests for cancellation handles and the request registry."""

import asyncio

import pytest

from parley_core.exceptions import RequestInFlightError
from parley_core.streaming.registry import CancellationHandle, CancelResult, RequestRegistry


class TestCancellationHandle:
    """Tests for CancellationHandle."""

    def test_starts_active(self) -> None:
        handle = CancellationHandle("req-1")

        assert not handle.aborted
        assert not handle.released

    def test_abort_is_one_shot(self) -> None:
        """Only the first abort takes effect."""
        handle = CancellationHandle("req-1")

        assert handle.abort("cancelled") is True
        assert handle.abort("shutdown") is False
        assert handle.aborted
        assert handle.reason == "cancelled"

    @pytest.mark.asyncio
    async def test_wait_returns_on_abort(self) -> None:
        handle = CancellationHandle("req-1")
        waiter = asyncio.create_task(handle.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        handle.abort()

        await asyncio.wait_for(waiter, timeout=1)


class TestRequestRegistry:
    """Tests for RequestRegistry."""

    def test_register_and_get(self) -> None:
        registry = RequestRegistry()

        handle = registry.register("req-1")

        assert registry.get("req-1") is handle
        assert "req-1" in registry
        assert len(registry) == 1

    def test_duplicate_register_raises(self) -> None:
        registry = RequestRegistry()
        registry.register("req-1")

        with pytest.raises(RequestInFlightError, match="req-1"):
            registry.register("req-1")

    def test_cancel_twice(self) -> None:
        """The first cancel finds the request; the second does not."""
        registry = RequestRegistry()
        handle = registry.register("req-1")

        assert registry.cancel("req-1") == CancelResult(found=True)
        assert handle.aborted
        assert registry.cancel("req-1") == CancelResult(found=False)

    def test_cancel_unknown(self) -> None:
        registry = RequestRegistry()

        assert registry.cancel("nope").found is False
        assert registry.cancel("nope").found is False

    def test_cancel_after_release(self) -> None:
        """A finished request can no longer be cancelled."""
        registry = RequestRegistry()
        handle = registry.register("req-1")

        registry.release("req-1", handle)

        assert handle.released
        assert registry.cancel("req-1").found is False
        assert not handle.aborted

    def test_release_keeps_newer_handle(self) -> None:
        """Releasing a stale handle never drops the entry of a newer stream."""
        registry = RequestRegistry()
        old = registry.register("req-1")
        registry.cancel("req-1")
        new = registry.register("req-1")

        registry.release("req-1", old)

        assert registry.get("req-1") is new

    def test_shutdown_aborts_everything(self) -> None:
        registry = RequestRegistry()
        handles = [registry.register(f"req-{i}") for i in range(3)]

        assert registry.shutdown() == 3
        assert all(h.aborted and h.reason == "shutdown" for h in handles)
        assert len(registry) == 0
        assert registry.active_requests() == []
