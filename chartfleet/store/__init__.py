"""
Resource store backends.
"""

from pathlib import Path

from chartfleet.config.settings import StoreConfig
from chartfleet.store.base import (
    EVENT_ADDED,
    EVENT_DELETED,
    EVENT_MODIFIED,
    ResourceStore,
    WatchEvent,
)
from chartfleet.store.memory import InMemoryStore


def create_store(settings: StoreConfig) -> ResourceStore:
    """
    Build the store backend named in the configuration.

    Args:
        settings: Store section of the configuration

    Returns:
        A ResourceStore implementation
    """
    if settings.backend == "kubernetes":
        from chartfleet.store.kubernetes import KubernetesStore

        return KubernetesStore(settings)

    snapshot = Path(settings.snapshot_path) if settings.snapshot_path else None
    return InMemoryStore(snapshot_path=snapshot)


__all__ = [
    "EVENT_ADDED",
    "EVENT_DELETED",
    "EVENT_MODIFIED",
    "InMemoryStore",
    "ResourceStore",
    "WatchEvent",
    "create_store",
]
