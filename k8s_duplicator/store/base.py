"""
Object Store Base Class - Interface to the cluster state store.

The engine only talks to the cluster through this interface. A store
lists, reads and writes immutable snapshots and raises the typed errors
from ``k8s_duplicator.errors``:

- ``get_secret`` raises ``NotFoundError`` when the object is absent
- ``create_secret`` raises ``AlreadyExistsError`` when it lost a race
- ``update_secret`` raises ``ConflictError`` on a stale resource version
- ``delete_secret`` raises ``NotFoundError`` when already gone
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional, Union

from ..models.objects import NamespaceSnapshot, ResourceKind, SecretSnapshot

# Watch event types, as reported by the Kubernetes watch API
ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
# Emitted after a stream (re)lists, when individual changes may have been missed
RESYNC = "RESYNC"


@dataclass(frozen=True)
class WatchEvent:
    """A change notification for a secret or a namespace."""

    type: str
    kind: ResourceKind
    object: Optional[Union[SecretSnapshot, NamespaceSnapshot]] = None


class ObjectStore(ABC):
    """
    Abstract base class for object stores.

    Implementations must be safe to call from several worker threads.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The store identifier (e.g., 'kubernetes', 'memory')."""
        pass

    @abstractmethod
    def list_secrets(self) -> List[SecretSnapshot]:
        """List secrets in all namespaces."""
        pass

    @abstractmethod
    def list_namespaces(self) -> List[NamespaceSnapshot]:
        """List all namespaces."""
        pass

    @abstractmethod
    def get_secret(self, namespace: str, name: str) -> SecretSnapshot:
        pass

    @abstractmethod
    def create_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        pass

    @abstractmethod
    def update_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        """
        Overwrite an existing secret.

        When ``secret.resource_version`` is set the write only succeeds if
        the stored object still has that version.
        """
        pass

    @abstractmethod
    def delete_secret(self, secret: SecretSnapshot) -> None:
        """
        Delete a secret.

        When ``secret.resource_version`` is set the delete is preconditioned
        on it, so a replaced object is never removed by mistake.
        """
        pass

    @abstractmethod
    def stream_events(
        self,
        kind: ResourceKind,
        stop_event: threading.Event,
    ) -> Iterator[WatchEvent]:
        """
        Yield change notifications for ``kind`` until ``stop_event`` is set.

        Streams should recover from transient errors on their own and only
        return once stopped.
        """
        pass

    def interrupt(self) -> None:
        """Wake any blocked ``stream_events`` call so it can observe its stop event."""
        pass
