"""
Models - Snapshots of cluster objects and reconcile results.
"""

from .objects import (
    PROVENANCE_ANNOTATION,
    SOURCE_ANNOTATION,
    SOURCE_ANNOTATION_VALUE,
    NamespacePhase,
    NamespaceSnapshot,
    ResourceKind,
    SecretSnapshot,
    object_key,
)
from .result import OperationFailure, ReconcileResult

__all__ = [
    "SOURCE_ANNOTATION",
    "SOURCE_ANNOTATION_VALUE",
    "PROVENANCE_ANNOTATION",
    "NamespacePhase",
    "NamespaceSnapshot",
    "ResourceKind",
    "SecretSnapshot",
    "object_key",
    "OperationFailure",
    "ReconcileResult",
]
