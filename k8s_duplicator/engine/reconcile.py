"""
Convergence Engine - The reconcile cycle.

A cycle is the atomic unit of work. Each cycle:
1. Lists every secret and every namespace
2. Classifies secrets into sources, duplicates and unrelated
3. Source pass: creates missing duplicates in eligible namespaces
4. Duplicate pass: deletes orphans and overwrites drifted copies
5. Returns a result, or raises a single retryable error

## Design Principles

- **Stateless**: nothing survives between cycles; every cycle starts
  from a fresh listing, so drift from any cause heals on the next run
- **Non-clobbering**: placement only creates on not-found, and only
  objects classified as duplicates are ever updated or deleted
- **Partial-failure tolerant**: a failed write is recorded and the pass
  continues; the cycle reports one aggregated error at the end

## Reconcile ID Format

    R-{YYYYMMDD}T{HHMMSS}-{RANDOM}
    Example: R-20260204T221903-92929A

## Usage

    from k8s_duplicator.engine.reconcile import Reconciler
    from k8s_duplicator.engine.triggers import FULL_RESYNC

    reconciler = Reconciler(store)
    try:
        result = reconciler.reconcile(FULL_RESYNC)
    except ReconcileError:
        # re-queue with backoff
        ...
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
from uuid import uuid4

from ..errors import (
    AlreadyExistsError,
    ListingError,
    NotFoundError,
    ReconcileCancelled,
    ReconcileFailed,
    StoreError,
)
from ..models.objects import (
    PROVENANCE_ANNOTATION,
    NamespaceSnapshot,
    SecretSnapshot,
)
from ..models.result import ReconcileResult
from ..observability.metrics import MetricsRegistry, metrics
from ..store.base import ObjectStore
from .classify import partition, select_eligible_namespaces
from .mirror import build_duplicate, duplicate_matches
from .triggers import FULL_RESYNC, ReconcileRequest

logger = logging.getLogger(__name__)


def generate_reconcile_id() -> str:
    """Generate a unique reconcile ID."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    suffix = uuid4().hex[:6].upper()
    return f"R-{ts}-{suffix}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Reconciler:
    """
    Converges duplicates towards their sources.

    Safe to share between worker threads: it holds no per-cycle state.
    """

    def __init__(
        self,
        store: ObjectStore,
        dry_run: bool = False,
        registry: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.dry_run = dry_run
        self.metrics = registry or metrics
        self._last_success_lock = threading.Lock()
        self._last_success: Optional[float] = None

    @property
    def last_success(self) -> Optional[float]:
        """Wall-clock time of the last cycle that finished without failures."""
        with self._last_success_lock:
            return self._last_success

    def reconcile(
        self,
        request: ReconcileRequest = FULL_RESYNC,
        cancel: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        """
        Run one full reconcile cycle.

        Args:
            request: The unit of work that triggered this cycle. Only used
                     for logging; the whole cluster is reconciled.
            cancel: When set, the cycle aborts before its next store call.

        Returns:
            ReconcileResult describing the writes issued

        Raises:
            ListingError: listing secrets or namespaces failed
            ReconcileFailed: one or more per-object operations failed
            ReconcileCancelled: ``cancel`` was set mid-cycle
        """
        start_time = time.time()
        result = ReconcileResult(
            reconcile_id=generate_reconcile_id(),
            request=str(request),
            started_at=_now_iso(),
            dry_run=self.dry_run,
        )
        log_extra = {"reconcile_id": result.reconcile_id, "request": result.request}
        logger.debug(f"Starting reconcile {result.reconcile_id} for {request}", extra=log_extra)
        self.metrics.increment("reconcile_total")

        try:
            self._run(result, cancel)
        except ListingError:
            self.metrics.increment("reconcile_errors_total", labels={"reason": "listing"})
            raise
        except ReconcileCancelled:
            self.metrics.increment("reconcile_errors_total", labels={"reason": "cancelled"})
            logger.info(f"Reconcile {result.reconcile_id} cancelled", extra=log_extra)
            raise
        finally:
            result.duration_ms = int((time.time() - start_time) * 1000)
            result.ended_at = _now_iso()
            self.metrics.timing("reconcile_duration_seconds", time.time() - start_time)

        if result.failures:
            for failure in result.failures:
                logger.warning(
                    f"  ✗ {failure.operation} {failure.key} failed: {failure.message}",
                    extra={
                        **log_extra,
                        "namespace": failure.namespace,
                        "secret": failure.name,
                        "operation": failure.operation,
                    },
                )
            self.metrics.increment("reconcile_errors_total", labels={"reason": "operations"})
            logger.warning(
                f"Reconcile {result.reconcile_id} incomplete, will retry: {result.summary()}",
                extra=log_extra,
            )
            raise ReconcileFailed(result)

        with self._last_success_lock:
            self._last_success = time.time()

        log = logger.info if result.writes else logger.debug
        log(
            f"Reconcile {result.reconcile_id} complete in {result.duration_ms}ms: "
            f"{result.summary()}",
            extra=log_extra,
        )
        return result

    def _run(self, result: ReconcileResult, cancel: Optional[threading.Event]) -> None:
        # --- Phase 1: List ---
        self._check_cancelled(cancel)
        try:
            secrets = self.store.list_secrets()
        except StoreError as e:
            raise ListingError("secrets", e) from e
        self._check_cancelled(cancel)
        try:
            namespaces = self.store.list_namespaces()
        except StoreError as e:
            raise ListingError("namespaces", e) from e

        # --- Phase 2: Classify ---
        inventory = partition(secrets)
        eligible = select_eligible_namespaces(namespaces)

        result.sources = len(inventory.sources)
        result.duplicates = len(inventory.duplicates)
        result.eligible_namespaces = len(eligible)
        self.metrics.set_gauge("source_secrets", result.sources)
        self.metrics.set_gauge("duplicate_secrets", result.duplicates)
        self.metrics.set_gauge("eligible_namespaces", result.eligible_namespaces)

        logger.debug(
            f"Found {result.sources} source(s), {result.duplicates} duplicate(s), "
            f"{result.eligible_namespaces} non-terminating namespace(s)"
        )

        # --- Phase 3: Sources -> duplicates ---
        self.reconcile_sources(inventory.sources, eligible, result, cancel)

        # --- Phase 4: Duplicates -> sources ---
        terminating = {ns.name for ns in namespaces if ns.terminating}
        self.reconcile_duplicates(
            inventory.duplicates, inventory.sources, result, cancel, skip_namespaces=terminating
        )

    def reconcile_sources(
        self,
        sources: List[SecretSnapshot],
        namespaces: List[NamespaceSnapshot],
        result: ReconcileResult,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Create missing duplicates for every source in every eligible namespace.

        An object found at the target is left alone whoever owns it;
        drift correction belongs to the duplicate pass.
        """
        for source in sources:
            for namespace in namespaces:
                if namespace.name == source.namespace:
                    continue

                self._check_cancelled(cancel)
                try:
                    self.store.get_secret(namespace.name, source.name)
                except NotFoundError:
                    self._create(build_duplicate(source, namespace.name), result, cancel)
                except StoreError as e:
                    result.record_failure("get", namespace.name, source.name, e)
                    self._count("get", "error")
                else:
                    result.occupied += 1

    def reconcile_duplicates(
        self,
        duplicates: List[SecretSnapshot],
        sources: List[SecretSnapshot],
        result: ReconcileResult,
        cancel: Optional[threading.Event] = None,
        skip_namespaces: Optional[Set[str]] = None,
    ) -> None:
        """
        Delete orphaned duplicates and overwrite out-of-sync ones.

        Duplicates inside ``skip_namespaces`` (terminating namespaces) are
        left untouched; the namespace deletion removes them.
        """
        sources_by_key: Dict[str, SecretSnapshot] = {s.key: s for s in sources}
        skip = skip_namespaces or set()

        for duplicate in duplicates:
            if duplicate.namespace in skip:
                logger.debug(f"Skipping {duplicate.key} in terminating namespace")
                continue

            # Present and well-formed: only classified duplicates get here
            source = sources_by_key.get(duplicate.annotation(PROVENANCE_ANNOTATION))

            if source is None:
                self._delete(duplicate, result, cancel)
            elif not duplicate_matches(duplicate, source):
                # Overwrite the copy in place, whatever name it was given
                desired = build_duplicate(source, duplicate.namespace).model_copy(
                    update={"name": duplicate.name, "resource_version": duplicate.resource_version}
                )
                self._update(desired, result, cancel)

    # ─── Writes ──────────────────────────────────────────────────

    def _create(
        self,
        duplicate: SecretSnapshot,
        result: ReconcileResult,
        cancel: Optional[threading.Event],
    ) -> None:
        self._check_cancelled(cancel)
        if self.dry_run:
            logger.info(f"[dry-run] Would create {duplicate.key}")
            result.created.append(duplicate.key)
            return

        try:
            self.store.create_secret(duplicate)
        except AlreadyExistsError:
            logger.debug(f"{duplicate.key} appeared concurrently, leaving it alone")
            self._count("create", "exists")
        except StoreError as e:
            result.record_failure("create", duplicate.namespace, duplicate.name, e)
            self._count("create", "error")
        else:
            logger.info(f"  ✓ Created duplicate {duplicate.key}")
            result.created.append(duplicate.key)
            self._count("create", "ok")

    def _update(
        self,
        duplicate: SecretSnapshot,
        result: ReconcileResult,
        cancel: Optional[threading.Event],
    ) -> None:
        self._check_cancelled(cancel)
        if self.dry_run:
            logger.info(f"[dry-run] Would update {duplicate.key}")
            result.updated.append(duplicate.key)
            return

        try:
            self.store.update_secret(duplicate)
        except StoreError as e:
            result.record_failure("update", duplicate.namespace, duplicate.name, e)
            self._count("update", "error")
        else:
            logger.info(f"  ✓ Updated out-of-sync duplicate {duplicate.key}")
            result.updated.append(duplicate.key)
            self._count("update", "ok")

    def _delete(
        self,
        duplicate: SecretSnapshot,
        result: ReconcileResult,
        cancel: Optional[threading.Event],
    ) -> None:
        self._check_cancelled(cancel)
        if self.dry_run:
            logger.info(f"[dry-run] Would delete orphaned {duplicate.key}")
            result.deleted.append(duplicate.key)
            return

        try:
            self.store.delete_secret(duplicate)
        except NotFoundError:
            logger.debug(f"{duplicate.key} already gone")
            self._count("delete", "absent")
        except StoreError as e:
            result.record_failure("delete", duplicate.namespace, duplicate.name, e)
            self._count("delete", "error")
        else:
            logger.info(
                f"  ✓ Deleted orphaned duplicate {duplicate.key} "
                f"(source {duplicate.annotation(PROVENANCE_ANNOTATION)} is gone)"
            )
            result.deleted.append(duplicate.key)
            self._count("delete", "ok")

    def _count(self, operation: str, outcome: str) -> None:
        self.metrics.increment(
            "operations_total", labels={"operation": operation, "result": outcome}
        )

    @staticmethod
    def _check_cancelled(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled("reconcile cancelled")
