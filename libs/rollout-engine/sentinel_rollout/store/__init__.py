"""Cluster store implementations."""

from .base import ClusterStore, WatchEvent, WatchEventType
from .cluster import ClusterConnection
from .kubernetes import KubernetesStore
from .memory import InMemoryStore, StoreAction

__all__ = [
    "ClusterStore",
    "WatchEvent",
    "WatchEventType",
    "InMemoryStore",
    "StoreAction",
    "ClusterConnection",
    "KubernetesStore",
]
