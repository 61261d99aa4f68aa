"""
Errors - Exception hierarchy shared by the store, engine and controller.

Store errors carry the HTTP-ish status of the failed call so callers can
tell benign races (already exists, not found) from real failures.
Reconcile errors are always retryable: the work queue re-schedules the
request with exponential backoff.

## Usage

    from k8s_duplicator.errors import NotFoundError, ReconcileError

    try:
        store.get_secret("team-a", "registry-auth")
    except NotFoundError:
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models.result import ReconcileResult


class DuplicatorError(Exception):
    """Base class for all k8s-duplicator errors."""


class ConfigurationError(DuplicatorError):
    """Raised when configuration is missing or invalid."""


class StoreError(DuplicatorError):
    """Raised when an object store call fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.status is not None:
            return f"{self.message} (status={self.status})"
        return self.message


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, message: str, status: Optional[int] = 404):
        super().__init__(message, status)


class AlreadyExistsError(StoreError):
    """An object with the same namespace and name already exists."""

    def __init__(self, message: str, status: Optional[int] = 409):
        super().__init__(message, status)


class ConflictError(StoreError):
    """The write was rejected because the object changed since it was read."""

    def __init__(self, message: str, status: Optional[int] = 409):
        super().__init__(message, status)


class ReconcileError(DuplicatorError):
    """A reconciliation cycle did not complete cleanly and should be retried."""

    retryable = True


class ListingError(ReconcileError):
    """Listing secrets or namespaces failed; no work was attempted."""

    def __init__(self, kind: str, cause: Exception):
        self.kind = kind
        self.cause = cause
        super().__init__(f"failed to list {kind}: {cause}")


class ReconcileFailed(ReconcileError):
    """One or more per-object operations failed during the cycle."""

    def __init__(self, result: "ReconcileResult"):
        self.result = result
        super().__init__(
            f"reconcile {result.reconcile_id} finished with "
            f"{len(result.failures)} failed operation(s)"
        )


class ReconcileCancelled(ReconcileError):
    """The cycle was cancelled before it finished."""
