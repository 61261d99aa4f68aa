"""
Object Models - Immutable snapshots of cluster objects.

The engine never works on live client objects. Every listing is converted
into frozen snapshots so a reconcile cycle cannot mutate what it fetched.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Annotation contract. These values are part of the wire format.
SOURCE_ANNOTATION = "duplicate"
SOURCE_ANNOTATION_VALUE = "true"
PROVENANCE_ANNOTATION = "source"

DEFAULT_SECRET_TYPE = "Opaque"


class NamespacePhase(str, Enum):
    """Well-known namespace lifecycle phases."""
    ACTIVE = "Active"
    TERMINATING = "Terminating"


class ResourceKind(str, Enum):
    """Resource kinds the controller watches."""
    SECRET = "secret"
    NAMESPACE = "namespace"


def object_key(namespace: str, name: str) -> str:
    """Build the ``<namespace>/<name>`` identity key."""
    return f"{namespace}/{name}"


class SecretSnapshot(BaseModel):
    """A Secret as seen at listing time."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    type: str = DEFAULT_SECRET_TYPE
    data: Dict[str, bytes] = Field(default_factory=dict)
    annotations: Optional[Dict[str, str]] = None
    resource_version: Optional[str] = None

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)

    def annotation(self, name: str) -> Optional[str]:
        """Return an annotation value, tolerating an absent annotation map."""
        if self.annotations is None:
            return None
        return self.annotations.get(name)


class NamespaceSnapshot(BaseModel):
    """A Namespace and its lifecycle phase."""

    model_config = ConfigDict(frozen=True)

    name: str
    phase: Optional[str] = NamespacePhase.ACTIVE.value

    @property
    def terminating(self) -> bool:
        return self.phase == NamespacePhase.TERMINATING.value
