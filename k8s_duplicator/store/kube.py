"""
Kubernetes Store - ObjectStore backed by the cluster API server.

Uses the official ``kubernetes`` client. Secret payloads travel base64
encoded on the wire and are decoded into raw bytes on the way in.

## Error mapping

| API status                | Raised                |
|---------------------------|-----------------------|
| 404                       | NotFoundError         |
| 409 on create             | AlreadyExistsError    |
| 409 otherwise             | ConflictError         |
| anything else / transport | StoreError            |

## Watches

``stream_events`` lists, then watches from the list's resource version.
A ``410 Gone`` (history compacted) triggers a re-list. Other failures
are retried with jittered exponential backoff. Each (re)list emits one
``RESYNC`` event since changes in between may have been missed.
"""

from __future__ import annotations

import base64
import json
import logging
import random
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from ..errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from ..models.objects import (
    DEFAULT_SECRET_TYPE,
    NamespacePhase,
    NamespaceSnapshot,
    ResourceKind,
    SecretSnapshot,
)
from ..observability.metrics import MetricsRegistry, metrics
from .base import RESYNC, ObjectStore, WatchEvent

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500
DEFAULT_WATCH_TIMEOUT = 300
MAX_WATCH_BACKOFF = 30


def load_client_config(kubeconfig: Optional[str] = None) -> None:
    """Load in-cluster credentials, falling back to a kubeconfig file."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.debug(f"Loaded kubeconfig from {kubeconfig}")
        return
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.debug("Loaded default kubeconfig")


# ─── Conversion ──────────────────────────────────────────────────


def _decode_data(data: Optional[Dict[str, str]]) -> Dict[str, bytes]:
    return {key: base64.b64decode(value or "") for key, value in (data or {}).items()}


def _encode_data(data: Dict[str, bytes]) -> Dict[str, str]:
    return {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}


def secret_from_api(obj: client.V1Secret) -> SecretSnapshot:
    meta = obj.metadata
    return SecretSnapshot(
        namespace=meta.namespace,
        name=meta.name,
        type=obj.type or DEFAULT_SECRET_TYPE,
        data=_decode_data(obj.data),
        annotations=dict(meta.annotations) if meta.annotations is not None else None,
        resource_version=meta.resource_version,
    )


def secret_to_api(secret: SecretSnapshot) -> client.V1Secret:
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=secret.name,
            namespace=secret.namespace,
            annotations=dict(secret.annotations) if secret.annotations else None,
            resource_version=secret.resource_version,
        ),
        type=secret.type,
        data=_encode_data(secret.data),
    )


def namespace_from_api(obj: client.V1Namespace) -> NamespaceSnapshot:
    phase = obj.status.phase if obj.status and obj.status.phase else NamespacePhase.ACTIVE.value
    return NamespaceSnapshot(name=obj.metadata.name, phase=phase)


def _api_reason(e: ApiException) -> str:
    try:
        body = json.loads(e.body) if e.body else {}
    except (TypeError, ValueError):
        return e.reason or ""
    return body.get("message") or body.get("reason") or e.reason or ""


def translate_api_error(e: ApiException, creating: bool = False) -> StoreError:
    """Map an ApiException to the store error hierarchy."""
    message = _api_reason(e) or "API request failed"
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        return AlreadyExistsError(message) if creating else ConflictError(message)
    return StoreError(message, status=e.status)


# ─── Store ───────────────────────────────────────────────────────


class KubernetesStore(ObjectStore):
    """ObjectStore talking to a real cluster through ``CoreV1Api``."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        request_timeout: float = 30,
        page_size: int = DEFAULT_PAGE_SIZE,
        watch_timeout: int = DEFAULT_WATCH_TIMEOUT,
        registry: Optional[MetricsRegistry] = None,
    ):
        self.core_api = core_api or client.CoreV1Api()
        self.request_timeout = request_timeout
        self.page_size = page_size
        self.watch_timeout = watch_timeout
        self.metrics = registry or metrics
        self._watchers: List[watch.Watch] = []
        self._watchers_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> "KubernetesStore":
        load_client_config(settings.kubeconfig)
        return cls(request_timeout=settings.request_timeout_seconds)

    @property
    def name(self) -> str:
        return "kubernetes"

    # ─── Reads ───────────────────────────────────────────────────

    def list_secrets(self) -> List[SecretSnapshot]:
        items, _ = self._list(self.core_api.list_secret_for_all_namespaces)
        return [secret_from_api(item) for item in items]

    def list_namespaces(self) -> List[NamespaceSnapshot]:
        items, _ = self._list(self.core_api.list_namespace)
        return [namespace_from_api(item) for item in items]

    def get_secret(self, namespace: str, name: str) -> SecretSnapshot:
        obj = self._call(
            self.core_api.read_namespaced_secret, name=name, namespace=namespace
        )
        return secret_from_api(obj)

    # ─── Writes ──────────────────────────────────────────────────

    def create_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        body = secret_to_api(secret)
        body.metadata.resource_version = None
        obj = self._call(
            self.core_api.create_namespaced_secret,
            creating=True,
            namespace=secret.namespace,
            body=body,
        )
        return secret_from_api(obj)

    def update_secret(self, secret: SecretSnapshot) -> SecretSnapshot:
        # Replace, not patch: labels and annotations are overwritten too
        obj = self._call(
            self.core_api.replace_namespaced_secret,
            name=secret.name,
            namespace=secret.namespace,
            body=secret_to_api(secret),
        )
        return secret_from_api(obj)

    def delete_secret(self, secret: SecretSnapshot) -> None:
        options = client.V1DeleteOptions()
        if secret.resource_version:
            options.preconditions = client.V1Preconditions(
                resource_version=secret.resource_version
            )
        self._call(
            self.core_api.delete_namespaced_secret,
            name=secret.name,
            namespace=secret.namespace,
            body=options,
        )

    # ─── Watches ─────────────────────────────────────────────────

    def stream_events(
        self,
        kind: ResourceKind,
        stop_event: threading.Event,
    ) -> Iterator[WatchEvent]:
        if kind is ResourceKind.SECRET:
            list_func = self.core_api.list_secret_for_all_namespaces
            convert: Callable[[Any], Any] = secret_from_api
        else:
            list_func = self.core_api.list_namespace
            convert = namespace_from_api

        resource_version: Optional[str] = None
        backoff = 1.0

        while not stop_event.is_set():
            if resource_version is None:
                try:
                    _, listed_version = self._list(list_func)
                except StoreError as e:
                    logger.warning(f"Listing {kind.value}s for watch failed: {e}")
                    self.metrics.increment("watch_errors_total")
                    backoff = self._sleep_backoff(stop_event, backoff)
                    continue
                resource_version = listed_version or ""
                logger.debug(f"Watching {kind.value}s from resourceVersion {resource_version}")
                yield WatchEvent(RESYNC, kind)

            watcher = watch.Watch()
            with self._watchers_lock:
                self._watchers.append(watcher)
            try:
                stream = watcher.stream(
                    list_func,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout,
                    allow_watch_bookmarks=True,
                )
                for raw in stream:
                    if stop_event.is_set():
                        break
                    event_type = str(raw.get("type", ""))
                    obj = raw.get("object")

                    if event_type == "ERROR":
                        # The server reports expiry in-band on some versions
                        logger.info(f"Watch on {kind.value}s returned an error event, re-listing")
                        resource_version = None
                        break

                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and metadata.resource_version:
                        resource_version = metadata.resource_version
                    if event_type == "BOOKMARK" or obj is None:
                        continue

                    self.metrics.increment("watch_events_total", labels={"kind": kind.value})
                    yield WatchEvent(event_type, kind, convert(obj))
                backoff = 1.0
            except ApiException as e:
                if e.status == 410:
                    logger.info(f"Watch on {kind.value}s expired, re-listing")
                    resource_version = None
                    continue
                logger.warning(f"Watch on {kind.value}s failed: {translate_api_error(e)}")
                self.metrics.increment("watch_errors_total")
                backoff = self._sleep_backoff(stop_event, backoff)
            except urllib3.exceptions.HTTPError as e:
                logger.warning(f"Watch on {kind.value}s interrupted: {e}")
                self.metrics.increment("watch_errors_total")
                backoff = self._sleep_backoff(stop_event, backoff)
            finally:
                watcher.stop()
                with self._watchers_lock:
                    self._watchers.remove(watcher)

    def interrupt(self) -> None:
        with self._watchers_lock:
            watchers = list(self._watchers)
        for watcher in watchers:
            watcher.stop()

    # ─── Internals ───────────────────────────────────────────────

    def _call(self, func: Callable[..., Any], creating: bool = False, **kwargs: Any) -> Any:
        try:
            return func(_request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            raise translate_api_error(e, creating=creating) from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"API request failed: {e}") from e

    def _list(self, func: Callable[..., Any]) -> Tuple[List[Any], Optional[str]]:
        """Fetch every page of a list call. Returns (items, resourceVersion)."""
        items: List[Any] = []
        token: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {"limit": self.page_size}
            if token:
                kwargs["_continue"] = token
            page = self._call(func, **kwargs)
            items.extend(page.items or [])
            token = page.metadata._continue if page.metadata else None
            if not token:
                resource_version = page.metadata.resource_version if page.metadata else None
                return items, resource_version

    @staticmethod
    def _sleep_backoff(stop_event: threading.Event, backoff: float) -> float:
        stop_event.wait(timeout=backoff * (0.5 + random.random()))
        return min(backoff * 2, MAX_WATCH_BACKOFF)
