"""Plugin discovery via Python entry points."""

from importlib import import_module
from importlib.metadata import entry_points
from typing import Any

from parley_core.protocols import MessageStore

BACKEND_GROUPS = {
    "store": "parley_core.backends.store",
}

# Backends shipped with the package, available even without installed metadata
BUILTIN_BACKENDS: dict[str, dict[str, str]] = {
    "store": {
        "memory": "parley_core.backends.store.memory:MemoryMessageStore",
        "sqlite": "parley_core.backends.store.sqlite:SQLiteMessageStore",
    },
}


def _load(target: str) -> Any:
    module_name, _, attr = target.partition(":")
    return getattr(import_module(module_name), attr)


def discover_backends(group: str) -> dict[str, Any]:
    """Discover all registered backends for a given group.

    Entry points override built-in backends of the same name.

    Args:
        group: The backend group name (store)

    Returns:
        Dictionary mapping backend names to their classes
    """
    backends = {name: _load(target) for name, target in BUILTIN_BACKENDS.get(group, {}).items()}
    full_group = BACKEND_GROUPS.get(group, group)
    for ep in entry_points(group=full_group):
        backends[ep.name] = ep.load()
    return backends


def get_backend(group: str, name: str) -> Any:
    """Get a specific backend class by group and name.

    Args:
        group: The backend group name (store)
        name: The backend name (e.g., "memory", "sqlite")

    Returns:
        The backend class

    Raises:
        ValueError: If the backend is not found
    """
    backends = discover_backends(group)
    if name not in backends:
        available = ", ".join(sorted(backends.keys())) or "(none)"
        raise ValueError(
            f"Backend '{name}' not found in group '{group}'. Available: {available}"
        )
    return backends[name]


def create_message_store(backend: str, **kwargs: Any) -> MessageStore:
    """Create a MessageStore instance.

    Args:
        backend: The backend name (e.g., "memory", "sqlite")
        **kwargs: Backend-specific configuration

    Returns:
        A MessageStore implementation
    """
    cls = get_backend("store", backend)
    return cls(**kwargs)
