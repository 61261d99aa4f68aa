"""
Controller - Watches, work queue and workers wired together.

Threads:
- one watch thread per resource kind, feeding requests into the queue
- ``workers`` worker threads, each running one reconcile at a time
- an optional resync thread enqueuing a full resync every period

A full resync is enqueued on start so the cluster converges even if no
event ever arrives.

## Usage

    controller = Controller(store, workers=2, resync_period=36000)
    controller.start()
    ...
    controller.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from ..engine.reconcile import Reconciler
from ..engine.triggers import FULL_RESYNC, ReconcileRequest, route
from ..errors import ReconcileCancelled, ReconcileError
from ..models.objects import ResourceKind
from ..observability.metrics import MetricsRegistry, metrics
from ..store.base import ObjectStore
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)

WATCH_RESTART_DELAY = 1.0


class Controller:
    """Event-driven reconcile loop over an ObjectStore."""

    def __init__(
        self,
        store: ObjectStore,
        reconciler: Optional[Reconciler] = None,
        workers: int = 1,
        resync_period: float = 36000,
        queue: Optional[WorkQueue[ReconcileRequest]] = None,
        registry: Optional[MetricsRegistry] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.store = store
        self.metrics = registry or metrics
        self.reconciler = reconciler or Reconciler(store, registry=self.metrics)
        self.workers = workers
        self.resync_period = resync_period
        self.queue: WorkQueue[ReconcileRequest] = queue or WorkQueue(registry=self.metrics)

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._started = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._started:
                raise RuntimeError("Controller already started")
            self._started = True

        logger.info(
            f"Starting controller: store={self.store.name}, workers={self.workers}, "
            f"resync={self.resync_period or 'off'}"
        )
        for kind in (ResourceKind.SECRET, ResourceKind.NAMESPACE):
            self._spawn(f"watch-{kind.value}", self._watch_loop, kind)
        for index in range(self.workers):
            self._spawn(f"worker-{index}", self._worker_loop, index)
        if self.resync_period > 0:
            self._spawn("resync", self._resync_loop)

        self.queue.add(FULL_RESYNC)

    def stop(self, timeout: float = 10.0) -> None:
        """Cancel in-flight cycles and join every thread."""
        if self._stop.is_set():
            return
        logger.info("Stopping controller")
        self._stop.set()
        self.store.interrupt()
        self.queue.shutdown()

        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Thread {thread.name} did not stop within {timeout}s")
        logger.info("Controller stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``stop`` is called. Returns True once stopped."""
        return self._stop.wait(timeout)

    def process_next(self, worker: int = 0) -> bool:
        """
        Take one request off the queue and reconcile it.

        Returns False once the queue is shut down.
        """
        request = self.queue.get()
        if request is None:
            return False

        log_extra = {"request": str(request), "worker": worker}
        try:
            self.reconciler.reconcile(request, cancel=self._stop)
        except ReconcileCancelled:
            logger.debug(f"Reconcile for {request} cancelled", extra=log_extra)
        except ReconcileError as e:
            delay = self.queue.add_rate_limited(request)
            logger.info(f"Requeued {request} in {delay:.3f}s: {e}", extra=log_extra)
        except Exception:
            logger.exception(f"Unexpected error reconciling {request}", extra=log_extra)
            self.queue.add_rate_limited(request)
        else:
            self.queue.forget(request)
        finally:
            self.queue.done(request)
        return True

    # ─── Thread bodies ───────────────────────────────────────────

    def _spawn(self, name: str, target, *args) -> None:
        thread = threading.Thread(
            target=target, args=args, name=f"duplicator-{name}", daemon=True
        )
        self._threads.append(thread)
        thread.start()

    def _worker_loop(self, index: int) -> None:
        while self.process_next(index):
            pass
        logger.debug(f"Worker {index} exiting")

    def _watch_loop(self, kind: ResourceKind) -> None:
        while not self._stop.is_set():
            try:
                for event in self.store.stream_events(kind, self._stop):
                    request = route(event)
                    logger.debug(f"{event.type} {kind.value} -> {request}")
                    self.queue.add(request)
            except Exception:
                logger.exception(f"Watch on {kind.value}s crashed, restarting")
                self.metrics.increment("watch_errors_total")
            self._stop.wait(WATCH_RESTART_DELAY)
        logger.debug(f"Watch on {kind.value}s exiting")

    def _resync_loop(self) -> None:
        while not self._stop.wait(self.resync_period):
            logger.debug("Periodic resync")
            self.queue.add(FULL_RESYNC)
