"""
Shared fixtures for controller tests.

Everything runs against an ``InMemoryStore`` seeded with a few active
namespaces, and a private ``MetricsRegistry`` so tests never see each
other's counters.
"""

from __future__ import annotations

from typing import Dict, Optional

import pytest

from k8s_duplicator.engine.reconcile import Reconciler
from k8s_duplicator.models.objects import (
    PROVENANCE_ANNOTATION,
    SOURCE_ANNOTATION,
    NamespaceSnapshot,
    SecretSnapshot,
)
from k8s_duplicator.observability.metrics import MetricsRegistry
from k8s_duplicator.store.memory import InMemoryStore


def make_secret(
    namespace: str,
    name: str,
    data: Optional[Dict[str, bytes]] = None,
    annotations: Optional[Dict[str, str]] = None,
    type: str = "Opaque",
) -> SecretSnapshot:
    return SecretSnapshot(
        namespace=namespace,
        name=name,
        type=type,
        data={"foo": b"bar"} if data is None else data,
        annotations=annotations,
    )


def make_source(namespace: str = "default", name: str = "secretA", **kwargs) -> SecretSnapshot:
    return make_secret(namespace, name, annotations={SOURCE_ANNOTATION: "true"}, **kwargs)


def make_duplicate(namespace: str, source_key: str, name: Optional[str] = None, **kwargs) -> SecretSnapshot:
    name = name or source_key.split("/")[-1]
    return make_secret(namespace, name, annotations={PROVENANCE_ANNOTATION: source_key}, **kwargs)


@pytest.fixture
def registry():
    """Isolated metrics registry."""
    return MetricsRegistry()


@pytest.fixture
def store():
    """Store with namespaces default, a, b and c, all active."""
    return InMemoryStore(
        namespaces=[NamespaceSnapshot(name=n) for n in ("default", "a", "b", "c")]
    )


@pytest.fixture
def reconciler(store, registry):
    return Reconciler(store, registry=registry)
