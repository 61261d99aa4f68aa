"""
Leader Election - Keep a single active controller across replicas.

Wraps ``kubernetes.leaderelection`` with a ConfigMap lock. Only the
lease holder runs the controller; standby replicas keep trying to
acquire the lease. Losing the lease stops the controller and ends
``run``, so the process exits and its replacement rejoins as a
candidate.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable, Optional
from uuid import uuid4

from kubernetes.leaderelection import electionconfig, leaderelection
from kubernetes.leaderelection.resourcelock.configmaplock import ConfigMapLock

from ..config.loader import ControllerSettings
from ..errors import ConfigurationError
from ..observability.metrics import MetricsRegistry, metrics

logger = logging.getLogger(__name__)


def default_identity() -> str:
    return f"{socket.gethostname()}_{uuid4().hex[:8]}"


class LeaderElector:
    """
    Runs ``on_started`` while holding the lease and ``on_stopped`` once it is lost.

    ``on_started`` runs on its own thread and may block.
    """

    def __init__(
        self,
        settings: ControllerSettings,
        on_started: Callable[[], None],
        on_stopped: Callable[[], None],
        identity: Optional[str] = None,
        registry: Optional[MetricsRegistry] = None,
    ):
        self.settings = settings
        self.identity = identity or default_identity()
        self.lock_name = settings.lock_name
        self.metrics = registry or metrics
        self._on_started = on_started
        self._on_stopped = on_stopped
        self._leading = threading.Event()

        self.metrics.set_gauge("leader", 0)

    @property
    def is_leader(self) -> bool:
        return self._leading.is_set()

    def build_config(self) -> electionconfig.Config:
        lock = ConfigMapLock(self.lock_name, self.settings.lease_namespace, self.identity)
        try:
            return electionconfig.Config(
                lock,
                lease_duration=self.settings.lease_duration_seconds,
                renew_deadline=self.settings.renew_deadline_seconds,
                retry_period=self.settings.retry_period_seconds,
                onstarted_leading=self._started_leading,
                onstopped_leading=self._stopped_leading,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid leader election timings: {e}") from e

    def run(self) -> None:
        """Block until the lease is acquired and then lost."""
        config = self.build_config()
        logger.info(
            f"Waiting for lease {self.settings.lease_namespace}/{self.lock_name} "
            f"as {self.identity}"
        )
        leaderelection.LeaderElection(config).run()

    def _started_leading(self) -> None:
        self._leading.set()
        self.metrics.set_gauge("leader", 1)
        logger.info(f"Acquired lease {self.lock_name}, starting controller")
        self._on_started()

    def _stopped_leading(self) -> None:
        was_leading = self._leading.is_set()
        self._leading.clear()
        self.metrics.set_gauge("leader", 0)
        if was_leading:
            logger.warning(f"Lost lease {self.lock_name}, stopping controller")
        self._on_stopped()
