"""
Work Queue - Deduplicating, rate-limited queue of reconcile requests.

Guarantees:
- An item waiting in the queue is stored once, however often it is added
- An item is handed to at most one worker at a time. Adding an item that
  is being processed marks it dirty; it is re-queued when ``done`` is called
- ``add_rate_limited`` delays an item by ``base * 2**(failures - 1)``
  seconds, capped at ``max_delay``, until ``forget`` resets its count

## Usage

    queue = WorkQueue()
    queue.add(request)

    item = queue.get()          # blocks; None once shut down and drained
    try:
        process(item)
        queue.forget(item)
    except ReconcileError:
        queue.add_rate_limited(item)
    finally:
        queue.done(item)
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Generic, Hashable, List, Optional, Set, Tuple, TypeVar

from ..observability.metrics import MetricsRegistry, metrics

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)

DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0


class WorkQueue(Generic[T]):
    """Thread-safe work queue shared by the watch threads and the workers."""

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        registry: Optional[MetricsRegistry] = None,
    ):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("Backoff requires 0 < base_delay <= max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.metrics = registry or metrics

        self._cond = threading.Condition()
        self._queue: Deque[T] = deque()
        self._dirty: Set[T] = set()
        self._processing: Set[T] = set()
        self._waiting: List[Tuple[float, int, T]] = []
        self._sequence = itertools.count()
        self._failures: Dict[T, int] = {}
        self._shutting_down = False

    # ─── Producers ───────────────────────────────────────────────

    def add(self, item: T) -> None:
        with self._cond:
            self._add_locked(item)

    def add_after(self, item: T, delay: float) -> None:
        """Add ``item`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            heapq.heappush(
                self._waiting, (time.monotonic() + delay, next(self._sequence), item)
            )
            self._cond.notify()

    def add_rate_limited(self, item: T) -> float:
        """Re-queue ``item`` after its backoff delay. Returns the delay used."""
        with self._cond:
            failures = self._failures.get(item, 0) + 1
            self._failures[item] = failures
        delay = self.backoff_for(failures)
        self.metrics.increment("workqueue_retries_total")
        logger.debug(f"Retrying {item} in {delay:.3f}s (attempt {failures})")
        self.add_after(item, delay)
        return delay

    def backoff_for(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        # Exponent capped to keep the float finite for long outages
        exponent = min(failures - 1, 64)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def forget(self, item: T) -> None:
        """Stop tracking failures for ``item``."""
        with self._cond:
            self._failures.pop(item, None)

    def num_requeues(self, item: T) -> int:
        with self._cond:
            return self._failures.get(item, 0)

    # ─── Consumers ───────────────────────────────────────────────

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Block until an item is ready and mark it as processing.

        Returns None when the queue is shut down and empty, or when
        ``timeout`` expires first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_ready_locked()
                if self._queue:
                    item = self._queue.popleft()
                    self._dirty.discard(item)
                    self._processing.add(item)
                    self._update_depth_locked()
                    return item
                if self._shutting_down:
                    return None

                now = time.monotonic()
                wait = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - now, 0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, item: T) -> None:
        """Mark ``item`` as finished; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                self._update_depth_locked()
                self._cond.notify()

    # ─── Lifecycle ───────────────────────────────────────────────

    def shutdown(self) -> None:
        """Stop accepting items and wake every waiting worker."""
        with self._cond:
            self._shutting_down = True
            self._waiting = []
            self._cond.notify_all()
        logger.debug("Work queue shut down")

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._waiting)

    def is_processing(self, item: T) -> bool:
        with self._cond:
            return item in self._processing

    # ─── Internals ───────────────────────────────────────────────

    def _add_locked(self, item: T) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._update_depth_locked()
        self._cond.notify()

    def _promote_ready_locked(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, item = heapq.heappop(self._waiting)
            self._add_locked(item)

    def _update_depth_locked(self) -> None:
        self.metrics.set_gauge("workqueue_depth", len(self._queue))
