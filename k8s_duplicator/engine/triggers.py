"""
Trigger Router - Map change notifications to units of reconcile work.

Secret events map 1:1 to a request for that secret. Namespace events map
to the full-resync sentinel, because a namespace appearing, disappearing
or starting to terminate affects placement for every source.

The request only drives scheduling and coalescing in the work queue.
The engine lists the whole cluster on every cycle regardless of it.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models.objects import NamespaceSnapshot, ResourceKind, SecretSnapshot, object_key
from ..store.base import RESYNC, WatchEvent


@dataclass(frozen=True)
class ReconcileRequest:
    """A unit of reconcile work, keyed by secret identity."""

    namespace: str = ""
    name: str = ""

    @property
    def is_full_resync(self) -> bool:
        return not self.namespace and not self.name

    @property
    def key(self) -> str:
        if self.is_full_resync:
            return ""
        return object_key(self.namespace, self.name)

    def __str__(self) -> str:
        return self.key or "<full-resync>"


FULL_RESYNC = ReconcileRequest()


def request_for_secret(secret: SecretSnapshot) -> ReconcileRequest:
    return ReconcileRequest(namespace=secret.namespace, name=secret.name)


def request_for_namespace(namespace: NamespaceSnapshot) -> ReconcileRequest:
    return FULL_RESYNC


def route(event: WatchEvent) -> ReconcileRequest:
    """Map a watch event of either kind to its reconcile request."""
    if event.type == RESYNC:
        return FULL_RESYNC
    if event.kind is ResourceKind.SECRET:
        return request_for_secret(event.object)
    if event.kind is ResourceKind.NAMESPACE:
        return request_for_namespace(event.object)
    raise ValueError(f"Unsupported resource kind: {event.kind}")
