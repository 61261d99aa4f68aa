"""
Health Check - Controller health for probes and the CLI.

Components:
- object_store: can the API server be reached (lists namespaces)
- leadership: holding the lease, on standby, or election disabled
- reconcile_freshness: age of the last successful cycle
- work_queue: number of requests waiting

## Usage

    from k8s_duplicator.observability.health import HealthChecker

    checker = HealthChecker(store, reconciler=reconciler, queue=controller.queue)
    status = checker.check()

    if status.healthy:
        print("All systems operational")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import StoreError

logger = logging.getLogger(__name__)

QUEUE_DEGRADED_DEPTH = 100


class HealthStatus(str, Enum):
    """Health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall system health status."""

    status: HealthStatus
    timestamp: str
    uptime_seconds: float
    components: List[ComponentHealth]

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def ready(self) -> bool:
        return self.status != HealthStatus.UNHEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "uptime_seconds": self.uptime_seconds,
            "healthy": self.healthy,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                    "details": c.details,
                }
                for c in self.components
            ],
        }


class HealthChecker:
    """
    Controller health checker.

    Every collaborator except the store is optional; checks for a missing
    one are skipped.
    """

    def __init__(
        self,
        store,
        reconciler=None,
        queue=None,
        elector=None,
        resync_period_seconds: float = 36000,
    ):
        self.store = store
        self.reconciler = reconciler
        self.queue = queue
        self.elector = elector
        self.resync_period_seconds = resync_period_seconds
        self._start_time = time.time()

    def check(self) -> SystemHealth:
        """Run all health checks and return status."""
        components = [self._check_object_store()]

        if self.elector is not None:
            components.append(self._check_leadership())
        if self.reconciler is not None:
            components.append(self._check_reconcile_freshness())
        if self.queue is not None:
            components.append(self._check_work_queue())

        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            uptime_seconds=time.time() - self._start_time,
            components=components,
        )

    def _check_object_store(self) -> ComponentHealth:
        start = time.time()
        try:
            namespaces = self.store.list_namespaces()
        except StoreError as e:
            logger.warning(f"Health check could not reach {self.store.name}: {e}")
            return ComponentHealth(
                name="object_store",
                status=HealthStatus.UNHEALTHY,
                message=f"Listing namespaces failed: {e}",
            )

        return ComponentHealth(
            name="object_store",
            status=HealthStatus.HEALTHY,
            message=f"{self.store.name} reachable",
            latency_ms=(time.time() - start) * 1000,
            details={"namespaces": len(namespaces)},
        )

    def _check_leadership(self) -> ComponentHealth:
        details = {"identity": self.elector.identity, "lock": self.elector.lock_name}
        if self.elector.is_leader:
            message = "Holding the lease"
        else:
            message = "Standby, waiting for the lease"
        return ComponentHealth(
            name="leadership",
            status=HealthStatus.HEALTHY,
            message=message,
            details={**details, "leader": self.elector.is_leader},
        )

    def _check_reconcile_freshness(self) -> ComponentHealth:
        # Standby replicas never reconcile
        if self.elector is not None and not self.elector.is_leader:
            return ComponentHealth(
                name="reconcile_freshness",
                status=HealthStatus.HEALTHY,
                message="Not leading, no cycles expected",
            )

        last_success = self.reconciler.last_success
        if last_success is None:
            return ComponentHealth(
                name="reconcile_freshness",
                status=HealthStatus.DEGRADED,
                message="No successful reconcile yet",
            )

        age = time.time() - last_success
        details = {"age_seconds": age}
        period = self.resync_period_seconds

        if period and age > 2 * period:
            status = HealthStatus.UNHEALTHY
        elif period and age > period:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return ComponentHealth(
            name="reconcile_freshness",
            status=status,
            message=f"Last successful reconcile {age:.0f}s ago",
            details=details,
        )

    def _check_work_queue(self) -> ComponentHealth:
        depth = len(self.queue)
        delayed = self.queue.pending_delayed()
        status = HealthStatus.DEGRADED if depth > QUEUE_DEGRADED_DEPTH else HealthStatus.HEALTHY
        return ComponentHealth(
            name="work_queue",
            status=status,
            message=f"Work queue has {depth} ready and {delayed} delayed requests",
            details={"depth": depth, "delayed": delayed},
        )
