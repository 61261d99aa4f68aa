"""
In-Memory Store - A cluster that lives in a dict.

Behaves like the API server for everything the engine relies on:
typed not-found / already-exists errors, monotonically increasing
resource versions, optimistic concurrency on update and delete, and
watch events for every write.

Every call is recorded in ``operations`` so tests can assert exactly
which writes a cycle issued. ``fail_next`` injects a one-shot error for
a given operation (and optionally a given object).

## Usage

    from k8s_duplicator.store.memory import InMemoryStore

    store = InMemoryStore()
    store.add_namespace("team-a")
    store.put_secret(SecretSnapshot(namespace="default", name="registry-auth", ...))
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from ..models.objects import (
    NamespacePhase,
    NamespaceSnapshot,
    ResourceKind,
    SecretSnapshot,
    object_key,
)
from .base import ADDED, DELETED, MODIFIED, RESYNC, ObjectStore, WatchEvent

logger = logging.getLogger(__name__)

WRITE_OPERATIONS = ("create", "update", "delete")


@dataclass(frozen=True)
class RecordedOperation:
    """One call made against the store."""

    operation: str
    namespace: str = ""
    name: str = ""

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)


class InMemoryStore(ObjectStore):
    """Thread-safe in-memory object store."""

    def __init__(
        self,
        namespaces: Optional[Iterable[NamespaceSnapshot]] = None,
        secrets: Optional[Iterable[SecretSnapshot]] = None,
    ):
        self._lock = threading.RLock()
        self._secrets: Dict[Tuple[str, str], SecretSnapshot] = {}
        self._namespaces: Dict[str, NamespaceSnapshot] = {}
        self._version = 0
        self._faults: List[Tuple[str, Optional[str], StoreError]] = []
        self._subscribers: Dict[ResourceKind, List[queue.Queue]] = {
            ResourceKind.SECRET: [],
            ResourceKind.NAMESPACE: [],
        }
        self.operations: List[RecordedOperation] = []

        for namespace in namespaces or []:
            self.put_namespace(namespace)
        for secret in secrets or []:
            self.put_secret(secret)

    @property
    def name(self) -> str:
        return "memory"

    # ─── Seeding (bypasses recording and faults) ─────────────────

    def add_namespace(self, name: str, phase: str = NamespacePhase.ACTIVE.value) -> NamespaceSnapshot:
        return self.put_namespace(NamespaceSnapshot(name=name, phase=phase))

    def put_namespace(self, namespace: NamespaceSnapshot) -> NamespaceSnapshot:
        with self._lock:
            event_type = MODIFIED if namespace.name in self._namespaces else ADDED
            self._namespaces[namespace.name] = namespace
        self._publish(WatchEvent(event_type, ResourceKind.NAMESPACE, namespace))
        return namespace

    def remove_namespace(self, name: str) -> None:
        """Remove a namespace and every secret in it."""
        with self._lock:
            namespace = self._namespaces.pop(name)
            doomed = [s for (ns, _), s in self._secrets.items() if ns == name]
            for secret in doomed:
                del self._secrets[(secret.namespace, secret.name)]
        for secret in doomed:
            self._publish(WatchEvent(DELETED, ResourceKind.SECRET, secret))
        self._publish(WatchEvent(DELETED, ResourceKind.NAMESPACE, namespace))

    def put_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        """Create or replace a secret unconditionally, like a user's ``kubectl apply``."""
        with self._lock:
            key = (secret.namespace, secret.name)
            event_type = MODIFIED if key in self._secrets else ADDED
            stored = self._store_locked(secret)
        self._publish(WatchEvent(event_type, ResourceKind.SECRET, stored))
        return stored

    def remove_secret(self, namespace: str, name: str) -> None:
        with self._lock:
            secret = self._secrets.pop((namespace, name))
        self._publish(WatchEvent(DELETED, ResourceKind.SECRET, secret))

    def peek(self, namespace: str, name: str) -> Optional[SecretSnapshot]:
        """Read a secret without recording the call."""
        with self._lock:
            return self._secrets.get((namespace, name))

    # ─── Fault injection and inspection ──────────────────────────

    def fail_next(self, operation: str, error: StoreError, key: Optional[str] = None) -> None:
        """
        Make the next matching call raise ``error``.

        Args:
            operation: One of list_secrets, list_namespaces, get, create, update, delete
            error: The error to raise
            key: Restrict the fault to this ``<namespace>/<name>``
        """
        with self._lock:
            self._faults.append((operation, key, error))

    def writes(self) -> List[RecordedOperation]:
        return [op for op in self.operations if op.operation in WRITE_OPERATIONS]

    def reset_operations(self) -> None:
        with self._lock:
            self.operations = []

    # ─── ObjectStore interface ───────────────────────────────────

    def list_secrets(self) -> List[SecretSnapshot]:
        with self._lock:
            self._record("list_secrets")
            return list(self._secrets.values())

    def list_namespaces(self) -> List[NamespaceSnapshot]:
        with self._lock:
            self._record("list_namespaces")
            return list(self._namespaces.values())

    def get_secret(self, namespace: str, name: str) -> SecretSnapshot:
        with self._lock:
            self._record("get", namespace, name)
            secret = self._secrets.get((namespace, name))
            if secret is None:
                raise NotFoundError(f'secrets "{name}" not found in namespace "{namespace}"')
            return secret

    def create_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        with self._lock:
            self._record("create", secret.namespace, secret.name)
            if secret.namespace not in self._namespaces:
                raise NotFoundError(f'namespaces "{secret.namespace}" not found')
            namespace = self._namespaces[secret.namespace]
            if namespace.terminating:
                raise StoreError(
                    f'namespace "{secret.namespace}" is being terminated', status=403
                )
            if (secret.namespace, secret.name) in self._secrets:
                raise AlreadyExistsError(f'secrets "{secret.name}" already exists')
            stored = self._store_locked(secret)
        self._publish(WatchEvent(ADDED, ResourceKind.SECRET, stored))
        return stored

    def update_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        with self._lock:
            self._record("update", secret.namespace, secret.name)
            current = self._secrets.get((secret.namespace, secret.name))
            if current is None:
                raise NotFoundError(f'secrets "{secret.name}" not found')
            self._check_version(current, secret)
            stored = self._store_locked(secret)
        self._publish(WatchEvent(MODIFIED, ResourceKind.SECRET, stored))
        return stored

    def delete_secret(self, secret: SecretSnapshot) -> None:
        with self._lock:
            self._record("delete", secret.namespace, secret.name)
            current = self._secrets.get((secret.namespace, secret.name))
            if current is None:
                raise NotFoundError(f'secrets "{secret.name}" not found')
            self._check_version(current, secret)
            del self._secrets[(secret.namespace, secret.name)]
        self._publish(WatchEvent(DELETED, ResourceKind.SECRET, current))

    def stream_events(
        self,
        kind: ResourceKind,
        stop_event: threading.Event,
    ) -> Iterator[WatchEvent]:
        events: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers[kind].append(events)
        try:
            yield WatchEvent(RESYNC, kind)
            while not stop_event.is_set():
                try:
                    yield events.get(timeout=0.05)
                except queue.Empty:
                    continue
        finally:
            with self._lock:
                self._subscribers[kind].remove(events)

    # ─── Internals ───────────────────────────────────────────────

    def _record(self, operation: str, namespace: str = "", name: str = "") -> None:
        self.operations.append(RecordedOperation(operation, namespace, name))
        key = object_key(namespace, name) if name else None
        for index, (fault_op, fault_key, error) in enumerate(self._faults):
            if fault_op == operation and (fault_key is None or fault_key == key):
                del self._faults[index]
                logger.debug(f"Injected fault for {operation} {key or ''}: {error}")
                raise error

    def _store_locked(self, secret: SecretSnapshot) -> SecretSnapshot:
        self._version += 1
        stored = secret.model_copy(update={"resource_version": str(self._version)})
        self._secrets[(secret.namespace, secret.name)] = stored
        return stored

    @staticmethod
    def _check_version(current: SecretSnapshot, requested: SecretSnapshot) -> None:
        if requested.resource_version and requested.resource_version != current.resource_version:
            raise ConflictError(
                f'the object "{current.key}" has been modified; '
                f"please apply your changes to the latest version and try again"
            )

    def _publish(self, event: WatchEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers[event.kind])
        for subscriber in subscribers:
            subscriber.put(event)
