"""
Classifier - Decide what role each secret plays in a cycle.

A secret is a **source** when it carries ``duplicate: "true"`` (exact,
case-sensitive). It is a **duplicate** when it carries a ``source``
annotation whose value splits on ``/`` into exactly two parts. Anything
else is **unrelated** and never touched.

A malformed ``source`` value is not an error: the secret is simply
unrelated. The rule is structural only, so ``"/"`` (two empty parts)
counts as a duplicate; it can never resolve to a live source and is
therefore cleaned up as an orphan.

## Usage

    from k8s_duplicator.engine.classify import partition, select_eligible_namespaces

    inventory = partition(secrets)
    namespaces = select_eligible_namespaces(all_namespaces)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List

from ..models.objects import (
    PROVENANCE_ANNOTATION,
    SOURCE_ANNOTATION,
    SOURCE_ANNOTATION_VALUE,
    NamespaceSnapshot,
    SecretSnapshot,
)


class Role(str, Enum):
    """Role of a secret within a reconcile cycle."""
    SOURCE = "source"
    DUPLICATE = "duplicate"
    UNRELATED = "unrelated"


@dataclass
class Inventory:
    """Secrets of one listing, grouped by role."""

    sources: List[SecretSnapshot] = field(default_factory=list)
    duplicates: List[SecretSnapshot] = field(default_factory=list)
    unrelated: List[SecretSnapshot] = field(default_factory=list)


def is_source(secret: SecretSnapshot) -> bool:
    """True iff the secret is marked ``duplicate: "true"``."""
    return secret.annotation(SOURCE_ANNOTATION) == SOURCE_ANNOTATION_VALUE


def is_duplicate(secret: SecretSnapshot) -> bool:
    """True iff the ``source`` annotation is present and well-formed."""
    value = secret.annotation(PROVENANCE_ANNOTATION)
    if value is None:
        return False
    return len(value.split("/")) == 2


def classify(secret: SecretSnapshot) -> Role:
    """
    Tag a secret with its role.

    A secret carrying both markers is a source: a live source must never
    be deleted or overwritten as if it were a copy.
    """
    if is_source(secret):
        return Role.SOURCE
    if is_duplicate(secret):
        return Role.DUPLICATE
    return Role.UNRELATED


def partition(secrets: Iterable[SecretSnapshot]) -> Inventory:
    """Classify every secret once, preserving input order within each role."""
    inventory = Inventory()
    for secret in secrets:
        role = classify(secret)
        if role is Role.SOURCE:
            inventory.sources.append(secret)
        elif role is Role.DUPLICATE:
            inventory.duplicates.append(secret)
        else:
            inventory.unrelated.append(secret)
    return inventory


def select_sources(secrets: Iterable[SecretSnapshot]) -> List[SecretSnapshot]:
    """Secrets whose role is SOURCE, in input order."""
    return [s for s in secrets if classify(s) is Role.SOURCE]


def select_duplicates(secrets: Iterable[SecretSnapshot]) -> List[SecretSnapshot]:
    """
    Secrets whose role is DUPLICATE, in input order.

    Filters by role rather than by ``is_duplicate`` alone, so a secret
    carrying both markers is returned by ``select_sources`` only and never
    appears here.
    """
    return [s for s in secrets if classify(s) is Role.DUPLICATE]


def select_eligible_namespaces(
    namespaces: Iterable[NamespaceSnapshot],
) -> List[NamespaceSnapshot]:
    """Drop terminating namespaces; objects cannot be created there."""
    return [ns for ns in namespaces if not ns.terminating]
