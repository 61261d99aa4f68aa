"""
Reconcile Result - What a single reconciliation cycle did.

Every cycle produces a result, regardless of success or failure. Failed
per-object operations are collected here and logged; only the aggregate
crosses the cycle boundary (see ``errors.ReconcileFailed``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Operation = Literal["get", "create", "update", "delete"]


class OperationFailure(BaseModel):
    """A create/update/delete (or the get guarding it) that failed."""

    operation: Operation
    namespace: str
    name: str
    message: str
    status: Optional[int] = None
    ts_iso: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """Result of one reconciliation cycle."""

    reconcile_id: str
    request: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: int = 0
    dry_run: bool = False

    # Inventory
    sources: int = 0
    duplicates: int = 0
    eligible_namespaces: int = 0

    # Writes, as "<namespace>/<name>"
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    # Placement targets already occupied (managed copy or unrelated secret)
    occupied: int = 0

    failures: List[OperationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def record_failure(
        self,
        operation: Operation,
        namespace: str,
        name: str,
        error: Exception,
    ) -> OperationFailure:
        failure = OperationFailure(
            operation=operation,
            namespace=namespace,
            name=name,
            message=str(error),
            status=getattr(error, "status", None),
        )
        self.failures.append(failure)
        return failure

    def summary(self) -> str:
        return (
            f"sources={self.sources} duplicates={self.duplicates} "
            f"namespaces={self.eligible_namespaces} created={len(self.created)} "
            f"updated={len(self.updated)} deleted={len(self.deleted)} "
            f"failed={len(self.failures)}"
        )
