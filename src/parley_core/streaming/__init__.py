"""Request cancellation and stream orchestration.

The controller lives in :mod:`parley_core.streaming.controller`; it is not
re-exported here because the provider adapters import the registry.
"""

from parley_core.streaming.registry import CancellationHandle, CancelResult, RequestRegistry

__all__ = [
    "CancelResult",
    "CancellationHandle",
    "RequestRegistry",
]
