"""
Object Stores - Access to cluster state.

``kube`` pulls in the Kubernetes client and is imported on demand.
"""

from .base import ADDED, DELETED, MODIFIED, RESYNC, ObjectStore, WatchEvent
from .memory import InMemoryStore

__all__ = [
    "ADDED",
    "DELETED",
    "MODIFIED",
    "RESYNC",
    "ObjectStore",
    "WatchEvent",
    "InMemoryStore",
]
